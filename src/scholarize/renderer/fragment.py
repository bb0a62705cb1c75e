"""Per-fragment rendering: one section, the title, the abstract or a footnote."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping

from scholarize.errors import Diagnostic
from scholarize.parser.base import Bibliography, Figure, LabelTable
from scholarize.parser.citations import bind_citations
from scholarize.parser.labels import resolve_references
from scholarize.pipeline import Pipeline, Stage
from scholarize.placeholders import Placeholders

from .blocks import (
    convert_environments,
    convert_footnote_refs,
    convert_headings,
    convert_tables,
    expand_figures,
    protect_literals,
    wrap_paragraphs,
)
from .inline import format_inline
from .math import MathRenderer, isolate_math, render_math

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FragmentContext:
    """Everything one fragment needs; the text is rewritten in place by each stage."""

    text: str
    placeholders: Placeholders
    labels: LabelTable
    bibliography: Bibliography
    renderer: MathRenderer
    math_macros: Mapping[str, str] = field(default_factory=dict)
    figures: Mapping[int, Figure] = field(default_factory=dict)
    theorems: Mapping[str, str] = field(default_factory=dict)
    section_number: str | None = None
    table_start: int = 0
    block: bool = True
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _literals(ctx: FragmentContext) -> None:
    ctx.text = protect_literals(ctx.text, ctx.placeholders)


def _figures(ctx: FragmentContext) -> None:
    ctx.text = expand_figures(ctx.text, ctx.figures, ctx.placeholders)


def _math(ctx: FragmentContext) -> None:
    ctx.text = isolate_math(ctx.text, ctx.placeholders, ctx.labels)


def _tables(ctx: FragmentContext) -> None:
    ctx.text = convert_tables(ctx.text, ctx.placeholders, table_start=ctx.table_start)


def _environments(ctx: FragmentContext) -> None:
    ctx.text = convert_environments(ctx.text, ctx.placeholders, ctx.theorems)


def _headings(ctx: FragmentContext) -> None:
    ctx.text = convert_headings(ctx.text, ctx.placeholders, ctx.section_number)


def _footnote_refs(ctx: FragmentContext) -> None:
    ctx.text = convert_footnote_refs(ctx.text, ctx.placeholders)


def _references(ctx: FragmentContext) -> None:
    ctx.text = resolve_references(ctx.text, ctx.labels, ctx.placeholders, diagnostics=ctx.diagnostics)


def _citations(ctx: FragmentContext) -> None:
    ctx.text = bind_citations(ctx.text, ctx.bibliography, ctx.placeholders)


def _inline(ctx: FragmentContext) -> None:
    ctx.text = format_inline(ctx.text, ctx.placeholders)


def _paragraphs(ctx: FragmentContext) -> None:
    if ctx.block:
        ctx.text = wrap_paragraphs(ctx.text)
    else:
        ctx.text = re.sub(r"[ \t\r\n]+", " ", ctx.text).strip()


def _typeset(ctx: FragmentContext) -> None:
    render_math(ctx.placeholders, ctx.renderer, ctx.math_macros, diagnostics=ctx.diagnostics)


FRAGMENT_STAGES: tuple[Stage[FragmentContext], ...] = (
    Stage("literals", _literals, provides=("literals-protected",)),
    Stage("figures", _figures, requires=("figures", "literals-protected"), provides=("figures-expanded",)),
    Stage("math", _math, requires=("labels", "literals-protected"), provides=("math-isolated",)),
    Stage("tables", _tables, requires=("math-isolated",), provides=("tables",)),
    Stage("environments", _environments, requires=("math-isolated", "tables"), provides=("environments",)),
    Stage("headings", _headings, requires=("environments",), provides=("headings",)),
    Stage("footnote-refs", _footnote_refs, requires=("literals-protected",), provides=("footnote-refs",)),
    Stage("references", _references, requires=("labels", "math-isolated", "tables"), provides=("references",)),
    Stage("citations", _citations, requires=("bibliography", "math-isolated", "tables"), provides=("citations",)),
    Stage(
        "inline",
        _inline,
        requires=("figures-expanded", "headings", "footnote-refs", "references", "citations"),
        provides=("inline",),
    ),
    Stage("paragraphs", _paragraphs, requires=("inline",), provides=("paragraphs",)),
    Stage("typeset-math", _typeset, requires=("math-isolated", "paragraphs"), provides=("math-html",)),
)

FRAGMENT_PIPELINE: Pipeline[FragmentContext] = Pipeline(
    FRAGMENT_STAGES, given=("labels", "bibliography", "figures")
)


def render_fragment(ctx: FragmentContext) -> str:
    """Run the fragment pipeline and return HTML that still holds placeholder tokens.

    The tokens are resolved against ``ctx.placeholders.values`` by the
    assembler, after its final markdown pass.
    """
    FRAGMENT_PIPELINE.run(ctx)
    return ctx.text
