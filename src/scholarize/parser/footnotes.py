"""Footnote extraction into a numbered side-table."""

from __future__ import annotations

import re

from scholarize.placeholders import make_token

from .base import Footnote
from .texutil import read_balanced_braces, read_optional, skip_spaces

_FOOTNOTE_RE = re.compile(r"\\footnote(?![A-Za-z@])")


def extract_footnotes(text: str) -> tuple[str, list[Footnote]]:
    """Replace each ``\\footnote{...}`` with a footnote token.

    Footnote bodies are kept as TeX and numbered in document order.
    """
    footnotes: list[Footnote] = []
    out = []
    i = 0
    while True:
        match = _FOOTNOTE_RE.search(text, i)
        if not match:
            out.append(text[i:])
            break
        _mark, pos = read_optional(text, match.end())
        probe = skip_spaces(text, pos)
        if probe >= len(text) or text[probe] != "{":
            out.append(text[i : match.end()])
            i = match.end()
            continue
        content, end = read_balanced_braces(text, probe)
        fn_id = len(footnotes) + 1
        footnotes.append(Footnote(id=fn_id, content=content.strip()))
        out.append(text[i : match.start()].rstrip(" \t"))
        out.append(make_token("N", fn_id))
        i = end
    return "".join(out), footnotes
