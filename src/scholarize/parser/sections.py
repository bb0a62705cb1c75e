"""Split a document body into top-level sections."""

from __future__ import annotations

import logging
import re

from .base import Section
from .texutil import clean_inline_tex, read_balanced_braces, read_optional, skip_spaces

logger = logging.getLogger(__name__)

SECTION_LEVELS = {
    "section": 1,
    "subsection": 2,
    "subsubsection": 3,
}

HEADING_RE = re.compile(r"\\(section|subsection|subsubsection|appendix)(?![A-Za-z@])(\*?)")


class HeadingNumberer:
    """Display numbers for headings: ``2``, ``2.1``, ``2.1.3``, ``A.1``.

    One instance walks the whole document; a per-section instance made with
    :meth:`for_section` continues below an already-numbered section.
    """

    def __init__(self) -> None:
        self._counts = [0, 0, 0]
        self._fixed_top: str | None = None
        self._top_numbered = True
        self.appendix = False

    @classmethod
    def for_section(cls, number: str | None) -> "HeadingNumberer":
        numberer = cls()
        numberer._fixed_top = number
        numberer._top_numbered = number is not None
        return numberer

    def start_appendix(self) -> None:
        self.appendix = True
        self._counts = [0, 0, 0]

    def next(self, level: int, *, starred: bool = False) -> str | None:
        """Advance the counter for ``level`` and return its display number.

        Starred headings, and headings below an unnumbered section, get
        ``None`` and leave the counters alone.
        """
        if starred:
            if level == 1:
                self._top_numbered = False
            return None
        if level == 1:
            self._top_numbered = True
        elif not self._top_numbered:
            return None
        self._counts[level - 1] += 1
        for i in range(level, len(self._counts)):
            self._counts[i] = 0
        return self.number(level)

    def number(self, level: int) -> str:
        top = self._fixed_top
        if top is None:
            top = _letter(self._counts[0]) if self.appendix else str(self._counts[0])
        return ".".join([top, *(str(c) for c in self._counts[1:level])])


def _letter(n: int) -> str:
    out = ""
    while n > 0:
        n, rem = divmod(n - 1, 26)
        out = chr(ord("A") + rem) + out
    return out or "0"


def read_heading(text: str, pos: int) -> tuple[str, int] | None:
    """Read ``[short]{title}`` after a sectioning command; ``None`` if no title follows."""
    _short, pos = read_optional(text, pos)
    probe = skip_spaces(text, pos)
    if probe >= len(text) or text[probe] != "{":
        return None
    return read_balanced_braces(text, probe)


def segment_sections(body: str) -> list[Section]:
    """Split ``body`` on top-level ``\\section`` commands.

    Text before the first heading becomes an untitled leading section when
    it holds anything besides layout commands. A body without headings
    yields one implicit section, so the result is never empty.
    """
    numberer = HeadingNumberer()
    heads: list[tuple[int, int, str, str | None, bool]] = []
    for match in HEADING_RE.finditer(body):
        kind, star = match.group(1), match.group(2)
        if kind == "appendix":
            numberer.start_appendix()
            continue
        if kind != "section":
            continue
        heading = read_heading(body, match.end())
        if heading is None:
            continue
        title, title_end = heading
        number = numberer.next(1, starred=bool(star))
        heads.append((match.start(), title_end, title.strip(), number, bool(star)))

    if not heads:
        logger.debug("No \\section headings; using one implicit section")
        return [Section(title="", ordinal=1, raw_content=body)]

    sections: list[Section] = []
    prelude = body[: heads[0][0]]
    if clean_inline_tex(re.sub(r"\\appendix(?![A-Za-z@])", "", prelude)):
        sections.append(Section(title="", ordinal=1, raw_content=prelude))

    for idx, (_start, content_start, title, number, starred) in enumerate(heads):
        content_end = heads[idx + 1][0] if idx + 1 < len(heads) else len(body)
        sections.append(
            Section(
                title=title,
                ordinal=len(sections) + 1,
                raw_content=body[content_start:content_end],
                number=number,
                starred=starred,
            )
        )
    logger.info("Segmented %d sections", len(sections))
    return sections
