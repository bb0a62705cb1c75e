"""arXiv source download."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

import requests

from scholarize.config import Settings
from scholarize.errors import ArchiveDownloadError, ExternalProcessTimeout
from scholarize.parser.source import extract_archive

logger = logging.getLogger(__name__)

_NEW_ID_RE = re.compile(r"^\d{4}\.\d{4,5}(?:v\d+)?$")
_OLD_ID_RE = re.compile(r"^[a-z\-]+(?:\.[A-Z]{2})?/\d{7}(?:v\d+)?$")


def normalize_arxiv_id(raw: str) -> str:
    """Reduce an id, ``arXiv:`` reference or abs/pdf URL to a bare arXiv id.

    Raises ``ValueError`` for anything that does not look like an arXiv id.
    """
    value = raw.strip()
    value = re.sub(r"^arxiv:", "", value, flags=re.IGNORECASE)
    value = re.sub(r"^https?://(?:www\.|export\.)?arxiv\.org/(?:abs|pdf|e-print|src)/", "", value)
    value = value.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    if value.lower().endswith(".pdf"):
        value = value[: -len(".pdf")]
    if _NEW_ID_RE.match(value) or _OLD_ID_RE.match(value):
        return value
    raise ValueError(f"Not an arXiv identifier: {raw!r}")


def looks_like_arxiv_id(raw: str) -> bool:
    try:
        normalize_arxiv_id(raw)
    except ValueError:
        return False
    return True


def download_arxiv_source(arxiv_id: str, dest: Path, settings: Settings | None = None) -> Path:
    """Download the e-print archive for ``arxiv_id`` and unpack it into ``dest``.

    Any network failure is fatal for the conversion and surfaces as
    ``ArchiveDownloadError`` (or ``ExternalProcessTimeout`` on timeout).
    """
    settings = settings or Settings()
    clean_id = normalize_arxiv_id(arxiv_id)
    url = settings.arxiv_source_url.format(arxiv_id=clean_id)
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    archive_path = dest / f"{clean_id.replace('/', '_')}.source"

    logger.info("Downloading %s", url)
    try:
        with requests.get(
            url,
            headers={"User-Agent": settings.user_agent},
            stream=True,
            timeout=settings.download_timeout_s,
        ) as response:
            response.raise_for_status()
            content_type = response.headers.get("content-type", "")
            if "html" in content_type.lower():
                raise ArchiveDownloadError(f"{url} returned an HTML page instead of a source archive")
            with archive_path.open("wb") as fh:
                shutil.copyfileobj(response.raw, fh)
    except requests.Timeout as exc:
        raise ExternalProcessTimeout(
            f"download of {clean_id} exceeded {settings.download_timeout_s:g}s"
        ) from exc
    except requests.RequestException as exc:
        raise ArchiveDownloadError(f"could not download {clean_id}: {exc}") from exc

    source_dir = dest / "source"
    try:
        extract_archive(archive_path, source_dir)
    finally:
        archive_path.unlink(missing_ok=True)
    return source_dir
