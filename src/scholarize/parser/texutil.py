"""Low-level TeX scanning helpers shared by every stage.

Anything that may contain nested braces goes through the depth-counting
scanners here instead of a single-level regex.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Callable


class UnbalancedBraces(ValueError):
    pass


def read_balanced_braces(text: str, brace_start: int, *, strict: bool = False) -> tuple[str, int]:
    """Return ``(content, end)`` for the group opening at ``brace_start``.

    ``end`` is the offset just past the matching close. An unterminated
    group yields the remaining text, or raises when ``strict`` is set.
    """
    return _read_balanced(text, brace_start, "{", "}", strict=strict)


def read_balanced_brackets(text: str, start: int) -> tuple[str, int]:
    return _read_balanced(text, start, "[", "]", strict=False, nest_braces=True)


def _read_balanced(
    text: str,
    start: int,
    open_ch: str,
    close_ch: str,
    *,
    strict: bool,
    nest_braces: bool = False,
) -> tuple[str, int]:
    if start >= len(text) or text[start] != open_ch:
        if strict:
            raise UnbalancedBraces(f"expected {open_ch!r} at offset {start}")
        return "", start
    depth = 0
    brace_depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if nest_braces and ch == "{":
            brace_depth += 1
        elif nest_braces and ch == "}":
            brace_depth -= 1
        elif brace_depth == 0 and ch == open_ch:
            depth += 1
        elif brace_depth == 0 and ch == close_ch:
            depth -= 1
            if depth == 0:
                return text[start + 1 : i], i + 1
        i += 1
    if strict:
        raise UnbalancedBraces(f"unterminated {open_ch!r} opened at offset {start}")
    return text[start + 1 :], len(text)


def skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in " \t\n":
        pos += 1
    return pos


def read_argument(text: str, pos: int) -> tuple[str, int] | None:
    """Read one macro argument: a braced group or a single token."""
    pos = skip_spaces(text, pos)
    if pos >= len(text):
        return None
    ch = text[pos]
    if ch == "{":
        return read_balanced_braces(text, pos)
    if ch == "}":
        return None
    if ch == "\\":
        match = re.match(r"\\(?:[A-Za-z@]+|.)", text[pos:])
        token = match.group(0) if match else "\\"
        return token, pos + len(token)
    return ch, pos + 1


def read_optional(text: str, pos: int) -> tuple[str | None, int]:
    """Read a ``[...]`` argument if one follows ``pos``."""
    probe = skip_spaces(text, pos)
    if probe < len(text) and text[probe] == "[":
        return read_balanced_brackets(text, probe)
    return None, pos


CommandHandler = Callable[[list[str], list[str]], str]


def replace_command(
    text: str,
    name: str,
    handler: CommandHandler,
    *,
    nargs: int = 1,
    star: bool = True,
    max_optional: int = 1,
) -> str:
    """Replace every ``\\name[opt]{arg}...`` with ``handler(args, optionals)``.

    Arguments are read with balanced-brace scanning. Occurrences that lack
    their braced arguments, or whose group never closes, are left as they are.
    """
    pattern = re.compile(rf"\\{re.escape(name)}(?![A-Za-z@])" + (r"\*?" if star else ""))
    out: list[str] = []
    i = 0
    while True:
        match = pattern.search(text, i)
        if not match:
            out.append(text[i:])
            break
        pos = match.end()
        optionals: list[str] = []
        for _ in range(max_optional):
            opt, pos = read_optional(text, pos)
            if opt is None:
                break
            optionals.append(opt)
        args: list[str] = []
        for _ in range(nargs):
            probe = skip_spaces(text, pos)
            if probe >= len(text) or text[probe] != "{":
                break
            try:
                arg, pos = read_balanced_braces(text, probe, strict=True)
            except UnbalancedBraces:
                break
            args.append(arg)
        if len(args) < nargs:
            out.append(text[i : match.end()])
            i = match.end()
            continue
        out.append(text[i : match.start()])
        out.append(handler(args, optionals))
        i = pos
    return "".join(out)


def remove_command(text: str, name: str, *, nargs: int = 1) -> str:
    return replace_command(text, name, lambda args, opts: "", nargs=nargs)


def find_environment(text: str, env: str, start: int = 0) -> tuple[int, int, int, int] | None:
    """Locate ``\\begin{env}...\\end{env}`` honouring nesting of the same env.

    Returns ``(begin, body_start, body_end, end)``.
    """
    begin_token = f"\\begin{{{env}}}"
    end_token = f"\\end{{{env}}}"
    begin = text.find(begin_token, start)
    if begin == -1:
        return None
    depth = 0
    i = begin
    while i < len(text):
        if text.startswith(begin_token, i):
            depth += 1
            i += len(begin_token)
            continue
        if text.startswith(end_token, i):
            depth -= 1
            if depth == 0:
                return begin, begin + len(begin_token), i, i + len(end_token)
            i += len(end_token)
            continue
        i += 1
    return begin, begin + len(begin_token), len(text), len(text)


def extract_command_value(text: str, command: str) -> str | None:
    match = re.search(rf"\\{command}\*?(?![A-Za-z@])\s*(?:\[[^\]]*\])?\s*\{{", text)
    if not match:
        return None
    value, _end = read_balanced_braces(text, match.end() - 1)
    return value


def strip_comments(text: str) -> str:
    """Drop ``%`` comments; ``\\%`` is a literal, ``\\\\%`` is a line break then a comment."""
    lines = []
    for line in text.splitlines():
        pos = line.find("%")
        while pos != -1 and is_escaped(line, pos):
            pos = line.find("%", pos + 1)
        lines.append(line if pos == -1 else line[:pos])
    return "\n".join(lines)


def normalize_whitespace(text: str) -> str:
    text = text.replace("\n", " ")
    return re.sub(r"\s+", " ", text).strip()


_COMBINING_ACCENTS = {
    "'": "\u0301",
    "`": "\u0300",
    "^": "\u0302",
    '"': "\u0308",
    "~": "\u0303",
    "=": "\u0304",
    ".": "\u0307",
    "u": "\u0306",
    "v": "\u030c",
    "H": "\u030b",
    "c": "\u0327",
    "k": "\u0328",
    "r": "\u030a",
}

_ACCENT_RE = re.compile(r"""\\(['`^"~=.]|[uvHckr](?=[\s{]))\s*(?:\{\\?([A-Za-z])\}|\\?([A-Za-z]))""")

_LETTER_MACROS = {
    "ss": "ß",
    "ae": "æ",
    "AE": "Æ",
    "oe": "œ",
    "OE": "Œ",
    "o": "ø",
    "O": "Ø",
    "aa": "å",
    "AA": "Å",
    "l": "ł",
    "L": "Ł",
    "i": "ı",
}


def convert_accents(text: str) -> str:
    """Turn ``\\'e``, ``\\"{o}``, ``\\c{c}`` and friends into Unicode."""

    def repl(match: re.Match[str]) -> str:
        letter = match.group(2) or match.group(3)
        return unicodedata.normalize("NFC", letter + _COMBINING_ACCENTS[match.group(1)])

    text = _ACCENT_RE.sub(repl, text)
    text = re.sub(
        r"\\(" + "|".join(sorted(_LETTER_MACROS, key=len, reverse=True)) + r")(?![A-Za-z])(?:\{\}|\s)?",
        lambda m: _LETTER_MACROS[m.group(1)],
        text,
    )
    return text


def clean_inline_tex(text: str) -> str:
    """Reduce a TeX snippet to plain text (captions, bibliography fields, alt text)."""
    text = convert_accents(text)
    text = text.replace("~", " ").replace("\\\\", " ")
    text = re.sub(r"\\([%&$#_{}])", r"\1", text)
    text = text.replace("``", "\u201c").replace("''", "\u201d")
    text = text.replace("---", "\u2014").replace("--", "\u2013")
    for _ in range(4):
        updated = re.sub(r"\\[a-zA-Z]+\*?(\[[^\]]*\])?\{([^{}]*)\}", r"\2", text)
        if updated == text:
            break
        text = updated
    text = re.sub(r"\\[a-zA-Z]+\*?", "", text)
    text = text.replace("{", "").replace("}", "")
    text = text.replace("\\", "")
    return normalize_whitespace(text)


def is_escaped(text: str, pos: int) -> bool:
    """True when the character at ``pos`` is preceded by an odd number of backslashes."""
    count = 0
    pos -= 1
    while pos >= 0 and text[pos] == "\\":
        count += 1
        pos -= 1
    return count % 2 == 1
