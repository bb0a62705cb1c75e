from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    converter_timeout_s: float = 30.0
    download_timeout_s: float = 60.0
    pdf_dpi: int = 200
    macro_max_iterations: int = 16
    workers: int = 1
    arxiv_source_url: str = "https://arxiv.org/e-print/{arxiv_id}"
    user_agent: str = "scholarize/0.1 (+https://arxiv.org/help/bulk_data)"


def _env_number(name: str, cast: type, default: float | int) -> float | int:
    raw = str(os.environ.get(name, "") or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a valid %s, using %s", name, raw, cast.__name__, default)
        return default


def load_settings(**overrides) -> Settings:
    """Build settings from ``SCHOLARIZE_*`` environment variables.

    Keyword overrides win over the environment (used by the CLI flags).
    Malformed numeric values fall back to the defaults.
    """
    env = os.environ
    values = {
        "converter_timeout_s": _env_number("SCHOLARIZE_CONVERTER_TIMEOUT_S", float, Settings.converter_timeout_s),
        "download_timeout_s": _env_number("SCHOLARIZE_DOWNLOAD_TIMEOUT_S", float, Settings.download_timeout_s),
        "pdf_dpi": _env_number("SCHOLARIZE_PDF_DPI", int, Settings.pdf_dpi),
        "macro_max_iterations": _env_number("SCHOLARIZE_MACRO_MAX_ITERATIONS", int, Settings.macro_max_iterations),
        "workers": max(1, _env_number("SCHOLARIZE_WORKERS", int, Settings.workers)),
        "arxiv_source_url": (env.get("SCHOLARIZE_ARXIV_SOURCE_URL") or Settings.arxiv_source_url).strip(),
        "user_agent": (env.get("SCHOLARIZE_USER_AGENT") or Settings.user_agent).strip(),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)
