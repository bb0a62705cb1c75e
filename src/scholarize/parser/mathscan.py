"""Locate math spans in TeX text without touching them."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .texutil import find_environment

EQUATION_ENVS = ("equation", "align", "gather", "multline", "eqnarray", "flalign", "alignat", "displaymath")
SPLIT_ENVS = ("align", "alignat", "flalign", "eqnarray", "gather")

_BEGIN_RE = re.compile(r"\\begin\{([a-zA-Z]+)(\*?)\}")
_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")


@dataclass(frozen=True, slots=True)
class MathMatch:
    start: int
    end: int
    body: str
    display: bool
    env: str | None = None


def find_math_spans(text: str) -> list[MathMatch]:
    """Scan left to right for every inline and display math span."""
    spans: list[MathMatch] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            if text.startswith("\\begin{", i):
                match = _BEGIN_RE.match(text, i)
                if match and match.group(1) in EQUATION_ENVS:
                    env = match.group(1) + match.group(2)
                    span = find_environment(text, env, i)
                    if span is not None:
                        spans.append(MathMatch(span[0], span[3], text[span[1] : span[2]], True, env))
                        i = span[3]
                        continue
                i += len(match.group(0)) if match else 7
                continue
            if text.startswith("\\[", i) or text.startswith("\\(", i):
                closer = "\\]" if text[i + 1] == "[" else "\\)"
                end = _find_unescaped(text, closer, i + 2)
                if end != -1:
                    spans.append(MathMatch(i, end + 2, text[i + 2 : end], closer == "\\]"))
                    i = end + 2
                    continue
            i += 2
            continue
        if ch == "$":
            if text.startswith("$$", i):
                end = _find_unescaped(text, "$$", i + 2)
                if end != -1:
                    spans.append(MathMatch(i, end + 2, text[i + 2 : end], True))
                    i = end + 2
                    continue
                i += 2
                continue
            end = _find_unescaped(text, "$", i + 1)
            if end != -1 and not _BLANK_LINE_RE.search(text, i, end):
                spans.append(MathMatch(i, end + 1, text[i + 1 : end], False))
                i = end + 1
                continue
        i += 1
    return spans


def _find_unescaped(text: str, token: str, start: int) -> int:
    i = start
    while True:
        pos = text.find(token, i)
        if pos == -1:
            return -1
        backslashes = 0
        j = pos - 1
        while j >= start and text[j] == "\\":
            backslashes += 1
            j -= 1
        if backslashes % 2 == 0:
            return pos
        i = pos + 1


def math_regions(text: str) -> list[tuple[int, int]]:
    return [(span.start, span.end) for span in find_math_spans(text)]
