"""Figure extraction: captions, labels and image assets."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Iterator

from scholarize.config import Settings
from scholarize.errors import Diagnostic, FigureAssetMissing
from scholarize.placeholders import make_token

from .base import Figure
from .converters import WEB_IMAGE_SUFFIXES, convert_to_png
from .texutil import find_environment, read_balanced_braces, read_optional, skip_spaces

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("", ".png", ".jpg", ".jpeg", ".pdf", ".eps")

_FIGURE_BEGIN_RE = re.compile(r"\\begin\{(figure\*?|wrapfigure)\}")
_GRAPHICSPATH_RE = re.compile(r"\\graphicspath\s*\{((?:\s*\{[^{}]*\})+)\s*\}")
_INCLUDEGRAPHICS_RE = re.compile(r"\\includegraphics(?![A-Za-z@])\*?")
_CAPTION_RE = re.compile(r"\\(?:sub)?caption(?![A-Za-z@])\*?")
_LABEL_RE = re.compile(r"\\label\s*\{([^{}]*)\}")
_WIDTH_RE = re.compile(r"width\s*=\s*([^,\]]+)")
_RELATIVE_WIDTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)?\s*\\(?:linewidth|textwidth|columnwidth|hsize)\s*$")
_ABSOLUTE_WIDTH_RE = re.compile(r"^\s*[0-9]*\.?[0-9]+\s*(?:cm|mm|in|pt|px|em)\s*$")
_SUBFIGURE_ENVS = ("subfigure", "subfigure*", "minipage")


def parse_graphicspath(text: str) -> list[str]:
    """Directory prefixes declared with ``\\graphicspath{{a/}{b/}}``."""
    paths: list[str] = []
    for match in _GRAPHICSPATH_RE.finditer(text):
        paths.extend(p.strip() for p in re.findall(r"\{([^{}]*)\}", match.group(1)) if p.strip())
    return paths


def iter_figure_environments(text: str) -> Iterator[tuple[int, int, str]]:
    """Yield ``(begin, end, body)`` for each top-level figure environment in order."""
    pos = 0
    while True:
        match = _FIGURE_BEGIN_RE.search(text, pos)
        if not match:
            return
        span = find_environment(text, match.group(1), match.start())
        if span is None:
            return
        yield span[0], span[3], text[span[1] : span[2]]
        pos = span[3]


def _command_arguments(text: str, pattern: re.Pattern[str]) -> list[tuple[str | None, str]]:
    found = []
    for match in pattern.finditer(text):
        opt, pos = read_optional(text, match.end())
        probe = skip_spaces(text, pos)
        if probe < len(text) and text[probe] == "{":
            arg, _end = read_balanced_braces(text, probe)
            found.append((opt, arg))
    return found


def _without_subfigures(block: str) -> tuple[str, list[str]]:
    inner: list[str] = []
    for env in _SUBFIGURE_ENVS:
        while True:
            span = find_environment(block, env)
            if span is None:
                break
            inner.append(block[span[1] : span[2]])
            block = block[: span[0]] + block[span[3] :]
    return block, inner


def _caption(block: str, ordinal: int) -> str:
    outer, subfigures = _without_subfigures(block)
    captions = [arg for _opt, arg in _command_arguments(outer, _CAPTION_RE)]
    if not captions:
        captions = [arg for sub in subfigures for _opt, arg in _command_arguments(sub, _CAPTION_RE)]
    caption = " ".join(c.strip() for c in captions if c.strip())
    caption = _LABEL_RE.sub("", caption).strip()
    return caption or f"Figure {ordinal}"


def _width_hint(options: str | None) -> str | None:
    if not options:
        return None
    match = _WIDTH_RE.search(options)
    return match.group(1).strip() if match else None


def width_style(hint: str | None) -> str | None:
    """CSS for a width hint: ``0.5\\linewidth`` becomes ``width:50%``."""
    if not hint:
        return None
    relative = _RELATIVE_WIDTH_RE.match(hint)
    if relative:
        factor = float(relative.group(1) or 1)
        return f"width:{min(100.0, factor * 100):g}%"
    if _ABSOLUTE_WIDTH_RE.match(hint):
        return f"width:{hint.replace(' ', '')};max-width:100%"
    return None


def resolve_image(base_dir: Path, declared: str, graphics_paths: list[str] | tuple[str, ...] = ()) -> Path | None:
    """First existing file among the declared path plus each known extension."""
    for prefix in ("", *graphics_paths):
        for ext in IMAGE_EXTENSIONS:
            candidate = base_dir / prefix / f"{declared}{ext}"
            if candidate.is_file():
                return candidate
    return None


class _AssetWriter:
    """Copies or converts images into ``figures/`` without name collisions."""

    def __init__(self, figures_dir: Path, settings: Settings, diagnostics: list[Diagnostic] | None) -> None:
        self.figures_dir = figures_dir
        self.settings = settings
        self.diagnostics = diagnostics
        self._written: dict[Path, str | None] = {}
        self._names: set[str] = set()

    def _claim(self, name: str) -> str:
        stem, suffix = Path(name).stem, Path(name).suffix
        candidate = name
        idx = 2
        while candidate in self._names:
            candidate = f"{stem}-{idx}{suffix}"
            idx += 1
        self._names.add(candidate)
        return candidate

    def write(self, source: Path) -> str | None:
        source = source.resolve()
        if source in self._written:
            return self._written[source]
        self.figures_dir.mkdir(parents=True, exist_ok=True)
        suffix = source.suffix.lower()
        if suffix in WEB_IMAGE_SUFFIXES:
            name = self._claim(source.name)
            shutil.copyfile(source, self.figures_dir / name)
        else:
            name = self._claim(f"{source.stem}.png")
            if not convert_to_png(source, self.figures_dir / name, self.settings, diagnostics=self.diagnostics):
                self._names.discard(name)
                name = None
        self._written[source] = name
        return name


def extract_figures(
    body: str,
    base_dir: Path,
    output_dir: Path,
    settings: Settings | None = None,
    *,
    graphics_paths: list[str] | tuple[str, ...] = (),
    diagnostics: list[Diagnostic] | None = None,
) -> list[Figure]:
    """Collect every figure environment and place its images in ``output_dir/figures``.

    A figure whose images cannot be found or converted keeps its caption
    with an empty image list.
    """
    settings = settings or Settings()
    writer = _AssetWriter(Path(output_dir) / "figures", settings, diagnostics)
    figures: list[Figure] = []

    for ordinal, (_begin, _end, block) in enumerate(iter_figure_environments(body), start=1):
        label_match = _LABEL_RE.search(block)
        label = label_match.group(1).strip() if label_match else f"fig:{ordinal}"
        graphics = _command_arguments(block, _INCLUDEGRAPHICS_RE)

        images: list[str] = []
        for _opt, declared in graphics:
            declared = declared.strip()
            source = resolve_image(Path(base_dir), declared, graphics_paths)
            if source is None:
                error = FigureAssetMissing(f"figure {ordinal}: {declared} not found")
                logger.warning("%s", error)
                if diagnostics is not None:
                    diagnostics.append(Diagnostic.from_error("figures", error))
                continue
            name = writer.write(source)
            if name is not None:
                images.append(name)

        figures.append(
            Figure(
                ordinal=ordinal,
                label=label,
                caption=_caption(block, ordinal),
                images=images,
                width_hint=_width_hint(graphics[0][0]) if graphics else None,
            )
        )

    logger.info("Extracted %d figures", len(figures))
    return figures


def replace_figures(body: str, figures: list[Figure]) -> str:
    """Swap each figure environment for its figure token, in document order."""
    out: list[str] = []
    i = 0
    for idx, (begin, end, _block) in enumerate(iter_figure_environments(body)):
        out.append(body[i:begin])
        if idx < len(figures):
            out.append(f"\n\n{make_token('F', figures[idx].ordinal)}\n\n")
        i = end
    out.append(body[i:])
    return "".join(out)
