"""Title block extraction: title, authors, date and abstract."""

from __future__ import annotations

import re

from .base import FrontMatter
from .texutil import (
    clean_inline_tex,
    extract_command_value,
    find_environment,
    read_balanced_braces,
    read_optional,
    remove_command,
    skip_spaces,
)

_AUTHOR_RE = re.compile(r"\\author(?![A-Za-z@])")
_AUTHOR_NOISE = ("thanks", "footnote", "inst", "orcidlink", "email", "affiliation", "affil", "IEEEauthorrefmark")


def extract_front_matter(preamble: str, body: str, *, fallback_title: str = "") -> tuple[FrontMatter, str]:
    """Pull the title block out of the document.

    Title and abstract stay as TeX so math in them can be rendered later;
    authors and date are reduced to plain text. Returns the front matter and
    the body with the title block commands removed.
    """
    text = f"{preamble}\n{body}"
    title = remove_command(extract_command_value(text, "title") or "", "thanks").strip() or fallback_title
    authors = _split_authors(_author_blocks(text))
    date = clean_inline_tex(extract_command_value(text, "date") or "").strip() or None

    abstract = ""
    span = find_environment(body, "abstract")
    if span is not None:
        abstract = body[span[1] : span[2]].strip()
        body = body[: span[0]] + body[span[3] :]
    else:
        command = extract_command_value(body, "abstract")
        if command is not None:
            abstract = command.strip()
            body = remove_command(body, "abstract")

    for command in ("title", "author", "date", "affiliation", "affil", "keywords", "icmltitle"):
        body = remove_command(body, command)
    for command in ("thispagestyle", "pagestyle"):
        body = remove_command(body, command)
    for command in ("maketitle", "tableofcontents", "newpage", "clearpage"):
        body = remove_command(body, command, nargs=0)

    return FrontMatter(title=title, authors=authors, date=date, abstract=abstract), body


def _author_blocks(text: str) -> list[str]:
    blocks = []
    for match in _AUTHOR_RE.finditer(text):
        _opt, pos = read_optional(text, match.end())
        probe = skip_spaces(text, pos)
        if probe < len(text) and text[probe] == "{":
            content, _end = read_balanced_braces(text, probe)
            blocks.append(content)
    return blocks


def _split_authors(blocks: list[str]) -> list[str]:
    names: list[str] = []
    for raw in blocks:
        for name in _AUTHOR_NOISE:
            raw = remove_command(raw, name)
        raw = re.sub(r"\$\^\{?[^$]*\}?\$|\\textsuperscript\{[^{}]*\}", "", raw)
        for chunk in re.split(r"\\(?:and|And|AND)(?![A-Za-z])", raw):
            first_line = re.split(r"\\\\|\n\s*\n", chunk.strip(), maxsplit=1)[0]
            for part in first_line.split(","):
                name = clean_inline_tex(part).strip()
                if name and "@" not in name and name not in names:
                    names.append(name)
    return names
