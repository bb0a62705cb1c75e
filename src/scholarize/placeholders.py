"""Opaque placeholder tokens for content that later text passes must not touch.

A token is ``U+E000 kind id U+E001``. The sentinels sit in the Unicode
private use area, so they never occur in real TeX sources.

Kinds:

* ``H`` inline HTML
* ``B``/``E`` opening and closing markup of a block region
* ``D`` a standalone display block (display math included)
* ``M`` an inline math span
* ``F`` a figure, ``N`` a footnote reference (document-level markers)
"""

from __future__ import annotations

import logging
import re

from scholarize.parser.base import MathSpan

logger = logging.getLogger(__name__)

OPEN = "\ue000"
CLOSE = "\ue001"
TOKEN_RE = re.compile(f"{OPEN}([A-Z])([^{OPEN}{CLOSE}]+){CLOSE}")

_MAX_RESTORE_DEPTH = 10


def make_token(kind: str, ident: str | int) -> str:
    return f"{OPEN}{kind}{ident}{CLOSE}"


class Placeholders:
    """Token stash for one fragment.

    ``namespace`` keeps ids unique when the stashes of several fragments are
    merged for the final restore.
    """

    def __init__(self, namespace: str = "p") -> None:
        self.namespace = namespace
        self.values: dict[str, str] = {}
        self.math: dict[str, MathSpan] = {}
        self._next = 0

    def _new_id(self) -> str:
        self._next += 1
        return f"{self.namespace}-{self._next}"

    def stash(self, html: str, kind: str = "H") -> str:
        token = make_token(kind, self._new_id())
        self.values[token] = html
        return token

    def stash_math(
        self,
        raw: str,
        display_mode: bool,
        *,
        label: str | None = None,
        number: str | None = None,
    ) -> MathSpan:
        token = make_token("D" if display_mode else "M", self._new_id())
        span = MathSpan(placeholder_id=token, raw=raw, display_mode=display_mode, label=label, number=number)
        self.math[token] = span
        return span

    def restore(self, text: str) -> str:
        return restore(text, self.values)


def restore(text: str, values: dict[str, str]) -> str:
    """Substitute stashed values back, following tokens nested inside values."""
    for _ in range(_MAX_RESTORE_DEPTH):
        if OPEN not in text:
            return text
        text = TOKEN_RE.sub(lambda m: values.get(m.group(0), m.group(0)), text)
    leftover = TOKEN_RE.findall(text)
    if leftover:
        logger.warning("Dropping %d unrestored placeholder tokens", len(leftover))
        text = TOKEN_RE.sub("", text)
    return text
