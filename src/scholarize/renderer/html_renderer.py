"""Assemble rendered fragments into the final HTML fragment."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from scholarize.parser.base import BibEntry, Bibliography, PartiallyParsed
from scholarize.placeholders import restore


@dataclass(slots=True)
class RenderedSection:
    ordinal: int
    anchor: str
    number: str | None
    title_html: str
    html: str


@dataclass(slots=True)
class RenderedFootnote:
    id: int
    html: str


@dataclass(slots=True)
class RenderedDocument:
    """Fragment HTML still holding placeholder tokens, plus the merged token values."""

    title_html: str
    authors: list[str]
    date: str | None
    abstract_html: str
    sections: list[RenderedSection]
    footnotes: list[RenderedFootnote]
    bibliography: Bibliography
    values: dict[str, str] = field(default_factory=dict)


_MD_HEADING_RE = re.compile(r"^[ \t]*(#{1,6})[ \t]+([^\n<]+?)[ \t]*$", re.MULTILINE)
_MD_STRONG_STAR_RE = re.compile(r"\*\*(?=\S)([^*\n<>]+?)(?<=\S)\*\*")
_MD_STRONG_UNDERSCORE_RE = re.compile(r"(?<![\w])__(?=\S)([^_\n<>]+?)(?<=\S)__(?![\w])")
_MD_EM_STAR_RE = re.compile(r"(?<![\w*])\*(?=\S)([^*\n<>]+?)(?<=\S)\*(?![\w*])")
_MD_EM_UNDERSCORE_RE = re.compile(r"(?<![\w])_(?=\S)([^_\n<>]+?)(?<=\S)_(?![\w])")


def markdown_safety_pass(html: str) -> str:
    """Convert markdown syntax that slipped through into HTML.

    Runs while math is still tokenised, so ``*`` and ``_`` inside formulas
    are never seen here.
    """
    html = _MD_HEADING_RE.sub(lambda m: f"<h{len(m.group(1))}>{m.group(2)}</h{len(m.group(1))}>", html)
    html = _MD_STRONG_STAR_RE.sub(r"<strong>\1</strong>", html)
    html = _MD_STRONG_UNDERSCORE_RE.sub(r"<strong>\1</strong>", html)
    html = _MD_EM_STAR_RE.sub(r"<em>\1</em>", html)
    return _MD_EM_UNDERSCORE_RE.sub(r"<em>\1</em>", html)


def external_link(external_id: str | None) -> str | None:
    if not external_id:
        return None
    if external_id.startswith("arXiv:"):
        return f"https://arxiv.org/abs/{external_id[len('arXiv:'):]}"
    if external_id.startswith("doi:"):
        return f"https://doi.org/{external_id[len('doi:'):]}"
    if external_id.startswith(("http://", "https://")):
        return external_id
    return None


def _reference_item(ordinal: int, entry: BibEntry) -> dict[str, object]:
    return {
        "ordinal": ordinal,
        "key": entry.key,
        "authors": entry.authors.rstrip(". "),
        "title": entry.title.rstrip(". "),
        "venue": entry.venue.rstrip(". "),
        "external_id": entry.external_id,
        "link": external_link(entry.external_id),
        "partial": isinstance(entry.status, PartiallyParsed),
    }


class HTMLRenderer:
    """Render a converted document into the fragment template."""

    def __init__(self, template_path: Path | None = None) -> None:
        if template_path is None:
            template_path = Path(__file__).resolve().parent.parent / "template" / "fragment.html"

        loader = FileSystemLoader(str(template_path.parent))
        self._env = Environment(loader=loader, autoescape=True, trim_blocks=True, lstrip_blocks=True)
        self._template_name = template_path.name

    def render(self, document: RenderedDocument) -> str:
        template = self._env.get_template(self._template_name)
        html = template.render(
            title_html=document.title_html,
            authors=document.authors,
            date=document.date,
            abstract_html=document.abstract_html,
            sections=[asdict(s) for s in document.sections],
            footnotes=[asdict(fn) for fn in document.footnotes],
            references=[
                _reference_item(ordinal, entry)
                for ordinal, entry in enumerate(document.bibliography.entries, start=1)
            ],
        )
        html = markdown_safety_pass(html)
        return restore(html, document.values).strip() + "\n"
