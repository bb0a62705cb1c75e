"""Citation normalization, bibliography extraction and citation binding."""

from __future__ import annotations

import html
import logging
import re
from pathlib import Path

from scholarize.placeholders import Placeholders

from .base import BibEntry, Bibliography, Parsed, PartiallyParsed
from .texutil import (
    clean_inline_tex,
    find_environment,
    read_argument,
    read_balanced_braces,
    read_optional,
    remove_command,
    replace_command,
)

logger = logging.getLogger(__name__)

CITE_COMMANDS = (
    "cite",
    "citep",
    "citet",
    "citealp",
    "citealt",
    "citeauthor",
    "citeyear",
    "parencite",
    "textcite",
    "autocite",
    "footcite",
)

_CITE_START_RE = re.compile(r"\\(?:" + "|".join(sorted(CITE_COMMANDS, key=len, reverse=True)) + r")(?![A-Za-z@])")
_KEY_RE = re.compile(r"(?=[^,]*[A-Za-z])[A-Za-z0-9_:.+/@\-]+")
_MBOX_GROUP_RE = re.compile(r"~\s*\\mbox\s*\{\s*\[([^\[\]{}\n]+)\]\s*\}")
_TILDE_GROUP_RE = re.compile(r"~\[([^\[\]\n]+)\]")
_GROUP_RE = re.compile(r"\[([^\[\]\n]+)\]")
_BIBITEM_RE = re.compile(r"\\bibitem(?![A-Za-z@])")
_ARXIV_RE = re.compile(r"arXiv(?:\s*preprint)?[:\s]*(?:abs/)?(\d{4}\.\d{4,5}(?:v\d+)?|[a-z\-]+(?:\.[A-Z]{2})?/\d{7})", re.IGNORECASE)
_DOI_RE = re.compile(r"(?:doi[:\s]*|doi\.org/)(10\.\d{4,9}/[^\s{}]+)", re.IGNORECASE)
_URL_RE = re.compile(r"https?://[^\s{}]+")
_BIB_ENTRY_RE = re.compile(r"@(\w+)\s*\{\s*([^,\s]+)\s*,")
_BIB_RESOURCE_RE = re.compile(r"\\(?:bibliography|addbibresource)\s*(?:\[[^\]]*\])?\s*\{([^{}]+)\}")


def _is_key_list(text: str) -> bool:
    keys = [k.strip() for k in text.split(",")]
    return bool(keys) and all(_KEY_RE.fullmatch(k) for k in keys)


def collapse_cite_commands(text: str) -> str:
    """Rewrite every ``\\cite``-family command as ``[k1,k2]``.

    Stars and ``[pre][post]`` notes are dropped; ``\\nocite`` disappears.
    """
    if "\\" not in text:
        return text

    def to_group(args: list[str], _opts: list[str]) -> str:
        keys = [k.strip() for k in args[0].split(",") if k.strip()]
        return f"[{','.join(keys)}]" if keys else ""

    for name in CITE_COMMANDS:
        text = replace_command(text, name, to_group, max_optional=2)
    return remove_command(text, "nocite")


def normalize_citations(text: str) -> str:
    """Bring the citation spellings found in preprints to one ``[key]`` form.

    Runs on the whole body before any other rewrite, since the vendor
    wrappers handled here would be mangled by later passes.
    """

    def unwrap_mbox(args: list[str], _opts: list[str]) -> str:
        inner = args[0].strip()
        if _CITE_START_RE.match(inner):
            return inner
        return f"\\mbox{{{args[0]}}}"

    text = replace_command(text, "mbox", unwrap_mbox, star=False, max_optional=0)
    text = _MBOX_GROUP_RE.sub(lambda m: f" [{m.group(1).strip()}]", text)
    text = _TILDE_GROUP_RE.sub(lambda m: f" [{m.group(1)}]" if _is_key_list(m.group(1)) else m.group(0), text)
    return collapse_cite_commands(text)


def cited_keys(text: str) -> list[str]:
    """Candidate citation keys in order of first appearance."""
    seen: dict[str, None] = {}
    for match in _GROUP_RE.finditer(text):
        if not _is_key_list(match.group(1)):
            continue
        for key in match.group(1).split(","):
            seen.setdefault(key.strip(), None)
    return list(seen)


def ref_badge(ordinal: int, entry: BibEntry) -> str:
    title = html.escape(entry.title, quote=True)
    return f'<sup class="ref-badge" data-ref="{ordinal}" data-title="{title}">{ordinal}</sup>'


def bind_citations(text: str, bibliography: Bibliography, placeholders: Placeholders) -> str:
    """Turn bracketed key groups into reference badges.

    A group becomes badges only when at least one of its keys is in the
    bibliography; unknown keys of such a group stay as ``[key]``. Groups with
    no known key are left untouched.
    """
    text = collapse_cite_commands(text)
    if not bibliography:
        return text

    def repl(match: re.Match[str]) -> str:
        keys = [k.strip() for k in match.group(1).split(",")]
        if not any(bibliography.ordinal_for(k) for k in keys):
            return match.group(0)
        parts = []
        for key in keys:
            ordinal = bibliography.ordinal_for(key)
            if ordinal is None:
                parts.append(f"[{key}]")
                continue
            parts.append(placeholders.stash(ref_badge(ordinal, bibliography.entry_for(key))))
        return "".join(parts)

    return _GROUP_RE.sub(repl, text)


def extract_bibliography(
    body: str,
    root: Path | None = None,
    entry_path: Path | None = None,
) -> tuple[str, Bibliography]:
    """Remove the bibliography from ``body`` and parse it.

    Looks for a ``thebibliography`` block first, then a compiled ``.bbl``
    file, then ``.bib`` databases (cited keys only, in citation order).
    """
    resources = _BIB_RESOURCE_RE.findall(body)
    cleaned = _BIB_RESOURCE_RE.sub("", body)
    cleaned = remove_command(cleaned, "bibliographystyle")
    cleaned = remove_command(cleaned, "printbibliography", nargs=0)

    span = find_environment(cleaned, "thebibliography")
    if span is not None:
        entries = parse_bibitems(cleaned[span[1] : span[2]])
        cleaned = cleaned[: span[0]] + cleaned[span[3] :]
        logger.info("Parsed %d bibliography entries from thebibliography", len(entries))
        return cleaned, Bibliography(entries)

    if root is None:
        return cleaned, Bibliography()
    root = Path(root)

    bbl = _find_bbl(root, entry_path)
    if bbl is not None:
        entries = parse_bibitems(bbl.read_text(encoding="utf-8", errors="ignore"))
        if entries:
            logger.info("Parsed %d bibliography entries from %s", len(entries), bbl.name)
            return cleaned, Bibliography(entries)

    bib_entries = _parse_bib_files(_bib_files(root, resources))
    if not bib_entries:
        return cleaned, Bibliography()
    ordered = [bib_entries[key] for key in cited_keys(cleaned) if key in bib_entries]
    logger.info("Parsed %d cited entries from .bib files", len(ordered))
    return cleaned, Bibliography(ordered)


def _find_bbl(root: Path, entry_path: Path | None) -> Path | None:
    if entry_path is not None:
        sibling = Path(entry_path).with_suffix(".bbl")
        if sibling.is_file():
            return sibling
    candidates = sorted(root.rglob("*.bbl"))
    return candidates[0] if candidates else None


def parse_bibitems(block: str) -> list[BibEntry]:
    matches = list(_BIBITEM_RE.finditer(block))
    entries: list[BibEntry] = []
    for idx, match in enumerate(matches):
        stop = matches[idx + 1].start() if idx + 1 < len(matches) else len(block)
        _label, pos = read_optional(block, match.end())
        arg = read_argument(block, pos)
        if arg is None:
            continue
        key, pos = arg
        key = key.strip()
        if key:
            entries.append(_parse_bibitem(key, block[pos:stop]))
    return entries


def _parse_bibitem(key: str, content: str) -> BibEntry:
    external_id = _external_id(content)
    content = replace_command(content, "bibinfo", lambda args, opts: args[1], nargs=2)
    content = replace_command(content, "natexlab", lambda args, opts: args[0])
    content = replace_command(content, "url", lambda args, opts: args[0])
    content = replace_command(content, "href", lambda args, opts: args[1], nargs=2)
    content = re.sub(r"\\penalty\s*-?\d+|\\urlprefix|\\showDOI|\\showURL|\\BibitemOpen|\\BibitemShut\{[^{}]*\}", "", content)
    content = content.replace("\\end{thebibliography}", "")

    if "\\newblock" in content:
        raw_blocks = re.split(r"\\newblock(?![A-Za-z])", content)
    else:
        raw_blocks = content.split("\n")
    blocks = [_field(b) for b in raw_blocks]
    blocks = [b for b in blocks if b]

    if len(blocks) >= 3:
        return BibEntry(
            key=key,
            authors=blocks[0],
            title=blocks[1],
            venue=" ".join(blocks[2:]),
            external_id=external_id,
        )
    if len(blocks) == 2:
        return BibEntry(
            key=key,
            authors=blocks[0],
            title=blocks[1],
            external_id=external_id,
            status=PartiallyParsed("no venue block"),
        )
    return BibEntry(
        key=key,
        title=blocks[0] if blocks else key,
        external_id=external_id,
        status=PartiallyParsed("authors, title and venue could not be separated"),
    )


def _field(text: str) -> str:
    return clean_inline_tex(text).strip().rstrip(",").strip()


def _external_id(content: str) -> str | None:
    match = _ARXIV_RE.search(content)
    if match:
        return f"arXiv:{match.group(1)}"
    match = _DOI_RE.search(content)
    if match:
        return f"doi:{match.group(1).rstrip('.,')}"
    match = _URL_RE.search(content)
    if match:
        return match.group(0).rstrip(".,")
    return None


def _bib_files(root: Path, resources: list[str]) -> list[Path]:
    named: list[Path] = []
    for group in resources:
        for name in group.split(","):
            name = name.strip()
            if not name:
                continue
            path = root / (name if name.endswith(".bib") else f"{name}.bib")
            if path.is_file():
                named.append(path)
    return named or sorted(root.rglob("*.bib"))


def _parse_bib_files(paths: list[Path]) -> dict[str, BibEntry]:
    refs: dict[str, BibEntry] = {}
    for bib in paths:
        text = bib.read_text(encoding="utf-8", errors="ignore")
        for entry_match in _BIB_ENTRY_RE.finditer(text):
            if entry_match.group(1).lower() in {"string", "comment", "preamble"}:
                continue
            key = entry_match.group(2).strip()
            brace = text.find("{", entry_match.start())
            body, _end = read_balanced_braces(text, brace)
            refs.setdefault(key, _bib_entry(key, body))
    return refs


def _bib_entry(key: str, body: str) -> BibEntry:
    title = _extract_bib_field(body, "title") or ""
    authors = (_extract_bib_field(body, "author") or "").replace(" and ", ", ")
    venue_parts = [
        _extract_bib_field(body, name)
        for name in ("journal", "booktitle", "publisher", "howpublished", "year")
    ]
    venue = ", ".join(clean_inline_tex(v) for v in venue_parts if v)

    external_id = None
    eprint = _extract_bib_field(body, "eprint")
    doi = _extract_bib_field(body, "doi")
    url = _extract_bib_field(body, "url")
    if eprint:
        external_id = f"arXiv:{eprint.strip()}"
    elif doi:
        external_id = f"doi:{doi.strip()}"
    elif url:
        external_id = url.strip()

    return BibEntry(
        key=key,
        authors=clean_inline_tex(authors),
        title=clean_inline_tex(title),
        venue=venue,
        external_id=external_id,
        status=Parsed() if title else PartiallyParsed("missing title field"),
    )


def _extract_bib_field(entry_body: str, field: str) -> str | None:
    match = re.search(rf"(?<![A-Za-z]){field}\s*=\s*", entry_body, flags=re.IGNORECASE)
    if not match:
        return None
    pos = match.end()
    if pos >= len(entry_body):
        return None
    if entry_body[pos] == "{":
        value, _end = read_balanced_braces(entry_body, pos)
        return value
    if entry_body[pos] == '"':
        end = entry_body.find('"', pos + 1)
        return entry_body[pos + 1 : end if end != -1 else len(entry_body)]
    bare = re.match(r"[^,}\s]+", entry_body[pos:])
    return bare.group(0) if bare else None
