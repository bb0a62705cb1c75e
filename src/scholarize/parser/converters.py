"""Image format conversion through ordered fallback chains."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from scholarize.config import Settings
from scholarize.errors import Diagnostic, ExternalProcessTimeout, FigureConversionFailure

try:  # pragma: no cover - optional import guard for environments without pymupdf
    import fitz  # type: ignore
except ImportError:  # pragma: no cover
    fitz = None

logger = logging.getLogger(__name__)

Converter = Callable[[Path, Path, Settings], None]

WEB_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


class ConverterUnavailable(RuntimeError):
    pass


def _run(cmd: list[str], source: Path, settings: Settings) -> None:
    if shutil.which(cmd[0]) is None:
        raise ConverterUnavailable(f"{cmd[0]} not installed")
    try:
        subprocess.run(cmd, check=True, capture_output=True, timeout=settings.converter_timeout_s)
    except subprocess.TimeoutExpired as exc:
        raise ExternalProcessTimeout(
            f"{cmd[0]} exceeded {settings.converter_timeout_s:g}s converting {source.name}"
        ) from exc


def pdf_with_pymupdf(source: Path, dest: Path, settings: Settings) -> None:
    if fitz is None:
        raise ConverterUnavailable("pymupdf is not installed")
    with fitz.open(str(source)) as doc:
        if doc.page_count == 0:
            raise RuntimeError(f"{source.name} has no pages")
        pixmap = doc[0].get_pixmap(dpi=settings.pdf_dpi)
        pixmap.save(str(dest))


def pdf_with_pdftoppm(source: Path, dest: Path, settings: Settings) -> None:
    prefix = dest.with_suffix("")
    _run(["pdftoppm", "-png", "-r", str(settings.pdf_dpi), "-singlefile", str(source), str(prefix)], source, settings)


def with_imagemagick(source: Path, dest: Path, settings: Settings) -> None:
    exe = "magick" if shutil.which("magick") else "convert"
    _run([exe, "-density", str(settings.pdf_dpi), f"{source}[0]", str(dest)], source, settings)


def eps_with_ghostscript(source: Path, dest: Path, settings: Settings) -> None:
    _run(
        [
            "gs",
            "-dSAFER",
            "-dBATCH",
            "-dNOPAUSE",
            "-dEPSCrop",
            "-sDEVICE=png16m",
            f"-r{settings.pdf_dpi}",
            f"-sOutputFile={dest}",
            str(source),
        ],
        source,
        settings,
    )


CONVERTER_CHAINS: dict[str, tuple[tuple[str, Converter], ...]] = {
    ".pdf": (("pymupdf", pdf_with_pymupdf), ("pdftoppm", pdf_with_pdftoppm), ("imagemagick", with_imagemagick)),
    ".eps": (("imagemagick", with_imagemagick), ("ghostscript", eps_with_ghostscript)),
    ".ps": (("imagemagick", with_imagemagick), ("ghostscript", eps_with_ghostscript)),
}
_DEFAULT_CHAIN: tuple[tuple[str, Converter], ...] = (("imagemagick", with_imagemagick),)


def convert_to_png(
    source: Path,
    dest: Path,
    settings: Settings,
    *,
    diagnostics: list[Diagnostic] | None = None,
    chain: tuple[tuple[str, Converter], ...] | None = None,
) -> bool:
    """Try each converter for ``source`` in order until one writes ``dest``.

    A timeout or failure only moves on to the next converter. Returns
    ``False`` (and records a diagnostic) when the whole chain fails.
    """
    if chain is None:
        chain = CONVERTER_CHAINS.get(source.suffix.lower(), _DEFAULT_CHAIN)
    for name, converter in chain:
        try:
            converter(source, dest, settings)
        except ExternalProcessTimeout as exc:
            logger.warning("%s", exc)
            if diagnostics is not None:
                diagnostics.append(Diagnostic.from_error("figures", exc))
            continue
        except ConverterUnavailable as exc:
            logger.debug("Skipping %s: %s", name, exc)
            continue
        except (OSError, RuntimeError, ValueError, subprocess.CalledProcessError) as exc:
            logger.debug("%s failed on %s: %s", name, source.name, exc)
            continue
        if dest.is_file():
            logger.debug("Converted %s with %s", source.name, name)
            return True

    error = FigureConversionFailure(f"no converter could turn {source.name} into PNG")
    logger.warning("%s", error)
    if diagnostics is not None:
        diagnostics.append(Diagnostic.from_error("figures", error))
    return False
