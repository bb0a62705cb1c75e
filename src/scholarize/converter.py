"""Document-level conversion: source tree in, HTML fragment and side-tables out."""

from __future__ import annotations

import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from scholarize.config import Settings
from scholarize.errors import Diagnostic, SourceNotFound
from scholarize.parser.base import (
    Bibliography,
    DocumentStats,
    Figure,
    Footnote,
    FrontMatter,
    LabelTable,
    MacroTable,
    Section,
    SourceDocument,
)
from scholarize.parser.citations import extract_bibliography, normalize_citations
from scholarize.parser.figures import extract_figures, parse_graphicspath, replace_figures
from scholarize.parser.footnotes import extract_footnotes
from scholarize.parser.frontmatter import extract_front_matter
from scholarize.parser.labels import collect_labels
from scholarize.parser.macros import expand_macros, extract_macros, remove_definitions
from scholarize.parser.sections import segment_sections
from scholarize.parser.source import extract_archive, is_archive, resolve_source, split_document
from scholarize.parser.tables import count_table_envs
from scholarize.pipeline import Pipeline, Stage
from scholarize.placeholders import Placeholders, restore
from scholarize.renderer.blocks import theorem_names
from scholarize.renderer.fragment import FragmentContext, render_fragment
from scholarize.renderer.html_renderer import HTMLRenderer, RenderedDocument, RenderedFootnote, RenderedSection
from scholarize.renderer.math import MathMLRenderer, MathRenderer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversionResult:
    html: str
    front: FrontMatter
    sections: list[Section]
    figures: list[Figure]
    bibliography: Bibliography
    labels: LabelTable
    stats: DocumentStats
    diagnostics: list[Diagnostic]
    entry_path: Path


@dataclass(slots=True)
class ConversionContext:
    """Side-tables of one run. A fresh context is built for every conversion."""

    root: Path
    output_dir: Path
    settings: Settings
    renderer: MathRenderer
    entry: Path | None = None
    fallback_title: str = ""
    title_override: str | None = None
    source: SourceDocument | None = None
    preamble: str = ""
    body: str = ""
    macros: MacroTable = field(default_factory=MacroTable)
    front: FrontMatter | None = None
    bibliography: Bibliography = field(default_factory=Bibliography)
    labels: LabelTable = field(default_factory=LabelTable)
    footnotes: list[Footnote] = field(default_factory=list)
    figures: list[Figure] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    rendered: RenderedDocument | None = None
    display_equations: int = 0
    html: str = ""
    stats: DocumentStats | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _resolve(ctx: ConversionContext) -> None:
    ctx.source = resolve_source(ctx.root, entry=ctx.entry, diagnostics=ctx.diagnostics)


def _split(ctx: ConversionContext) -> None:
    ctx.preamble, ctx.body = split_document(ctx.source.text)


def _normalize_citations(ctx: ConversionContext) -> None:
    ctx.body = normalize_citations(ctx.body)


def _extract_macros(ctx: ConversionContext) -> None:
    ctx.macros = extract_macros(f"{ctx.preamble}\n{ctx.body}", diagnostics=ctx.diagnostics)
    ctx.preamble = remove_definitions(ctx.preamble)
    ctx.body = remove_definitions(ctx.body)


def _expand_macros(ctx: ConversionContext) -> None:
    limit = ctx.settings.macro_max_iterations
    ctx.preamble = expand_macros(ctx.preamble, ctx.macros, max_iterations=limit, diagnostics=ctx.diagnostics)
    ctx.body = expand_macros(ctx.body, ctx.macros, max_iterations=limit, diagnostics=ctx.diagnostics)


def _front_matter(ctx: ConversionContext) -> None:
    ctx.front, ctx.body = extract_front_matter(ctx.preamble, ctx.body, fallback_title=ctx.fallback_title)
    if ctx.title_override:
        ctx.front.title = ctx.title_override


def _bibliography(ctx: ConversionContext) -> None:
    ctx.body, ctx.bibliography = extract_bibliography(ctx.body, ctx.root, ctx.source.entry_path)


def _labels(ctx: ConversionContext) -> None:
    ctx.labels = collect_labels(ctx.body)
    logger.info("Collected %d labels", len(ctx.labels))


def _footnotes(ctx: ConversionContext) -> None:
    ctx.body, ctx.footnotes = extract_footnotes(ctx.body)


def _figures(ctx: ConversionContext) -> None:
    ctx.figures = extract_figures(
        ctx.body,
        ctx.source.entry_path.parent,
        ctx.output_dir,
        ctx.settings,
        graphics_paths=parse_graphicspath(ctx.preamble),
        diagnostics=ctx.diagnostics,
    )
    ctx.body = replace_figures(ctx.body, ctx.figures)


def _segment(ctx: ConversionContext) -> None:
    ctx.sections = segment_sections(ctx.body)


@dataclass(slots=True)
class _Job:
    key: str
    text: str
    block: bool = True
    section_number: str | None = None
    table_start: int = 0


def _render(ctx: ConversionContext) -> None:
    shared = {
        "labels": ctx.labels,
        "bibliography": ctx.bibliography,
        "renderer": ctx.renderer,
        "math_macros": ctx.macros.math_macros(),
        "figures": {figure.ordinal: figure for figure in ctx.figures},
        "theorems": theorem_names(ctx.preamble),
    }

    jobs = [_Job("title", ctx.front.title, block=False), _Job("abstract", ctx.front.abstract)]
    tables_before = 0
    for section in ctx.sections:
        jobs.append(_Job(f"s{section.ordinal}t", section.title, block=False))
        jobs.append(
            _Job(f"s{section.ordinal}", section.raw_content, section_number=section.number, table_start=tables_before)
        )
        tables_before += count_table_envs(section.raw_content)
    jobs.extend(_Job(f"fn{fn.id}", fn.content, block=False) for fn in ctx.footnotes)

    def run(job: _Job) -> FragmentContext:
        fragment = FragmentContext(
            text=job.text,
            placeholders=Placeholders(job.key),
            block=job.block,
            section_number=job.section_number,
            table_start=job.table_start,
            **shared,
        )
        render_fragment(fragment)
        return fragment

    workers = max(1, ctx.settings.workers)
    if workers > 1 and len(jobs) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            done = list(pool.map(run, jobs))
    else:
        done = [run(job) for job in jobs]
    results = {job.key: fragment for job, fragment in zip(jobs, done)}

    values: dict[str, str] = {}
    for fragment in done:
        values.update(fragment.placeholders.values)
        ctx.diagnostics.extend(fragment.diagnostics)
        ctx.display_equations += sum(1 for span in fragment.placeholders.math.values() if span.display_mode)

    sections = []
    for section in ctx.sections:
        section.title_html = results[f"s{section.ordinal}t"].text
        section.html = results[f"s{section.ordinal}"].text
        sections.append(
            RenderedSection(
                ordinal=section.ordinal,
                anchor=f"sec-{section.ordinal}",
                number=None if section.starred else section.number,
                title_html=section.title_html,
                html=section.html,
            )
        )

    ctx.rendered = RenderedDocument(
        title_html=results["title"].text,
        authors=ctx.front.authors,
        date=ctx.front.date,
        abstract_html=results["abstract"].text,
        sections=sections,
        footnotes=[RenderedFootnote(id=fn.id, html=results[f"fn{fn.id}"].text) for fn in ctx.footnotes],
        bibliography=ctx.bibliography,
        values=values,
    )


def _assemble(ctx: ConversionContext) -> None:
    ctx.html = HTMLRenderer().render(ctx.rendered)
    for section in ctx.sections:
        section.title_html = restore(section.title_html, ctx.rendered.values)
        section.html = restore(section.html, ctx.rendered.values)
    ctx.stats = DocumentStats(
        sections=len(ctx.sections),
        figures=len(ctx.figures),
        equations=ctx.display_equations,
        references=len(ctx.bibliography),
    )


DOCUMENT_STAGES: tuple[Stage[ConversionContext], ...] = (
    Stage("resolve-source", _resolve, provides=("source",)),
    Stage("split-document", _split, requires=("source",), provides=("preamble", "body")),
    Stage("normalize-citations", _normalize_citations, requires=("body",), provides=("citations-normalized",)),
    Stage("extract-macros", _extract_macros, requires=("preamble", "body"), provides=("macros",)),
    Stage("expand-macros", _expand_macros, requires=("macros", "citations-normalized"), provides=("expanded",)),
    Stage("front-matter", _front_matter, requires=("expanded",), provides=("front",)),
    Stage("bibliography", _bibliography, requires=("expanded", "front"), provides=("bibliography",)),
    Stage("collect-labels", _labels, requires=("expanded", "bibliography"), provides=("labels",)),
    Stage("footnotes", _footnotes, requires=("labels",), provides=("footnotes",)),
    Stage("figures", _figures, requires=("labels", "footnotes"), provides=("figures",)),
    Stage("segment-sections", _segment, requires=("figures",), provides=("sections",)),
    Stage(
        "render-fragments",
        _render,
        requires=("sections", "labels", "bibliography", "macros", "front", "footnotes", "figures"),
        provides=("fragments",),
    ),
    Stage("assemble", _assemble, requires=("fragments",), provides=("html", "stats")),
)

DOCUMENT_PIPELINE: Pipeline[ConversionContext] = Pipeline(DOCUMENT_STAGES)


class TeXConverter:
    """Convert a TeX source tree, archive or single ``.tex`` file into an HTML fragment."""

    def __init__(self, settings: Settings | None = None, math_renderer: MathRenderer | None = None) -> None:
        self.settings = settings or Settings()
        self.math_renderer = math_renderer or MathMLRenderer()

    def convert(self, input_path: Path, output_dir: Path, *, title: str | None = None) -> ConversionResult:
        input_path = Path(input_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        if input_path.is_dir():
            return self._convert_tree(input_path, output_dir, title=title)

        if input_path.is_file() and is_archive(input_path):
            with tempfile.TemporaryDirectory(prefix="scholarize_src_") as tmp:
                tmp_path = Path(tmp)
                extract_archive(input_path, tmp_path)
                return self._convert_tree(tmp_path, output_dir, title=title)

        if input_path.is_file() and input_path.suffix.lower() == ".tex":
            return self._convert_tree(input_path.parent, output_dir, entry=input_path, title=title)

        raise SourceNotFound(f"Unsupported input: {input_path} (expected a directory, .tex file or source archive)")

    def _convert_tree(
        self,
        root: Path,
        output_dir: Path,
        *,
        entry: Path | None = None,
        title: str | None = None,
    ) -> ConversionResult:
        ctx = ConversionContext(
            root=root,
            output_dir=output_dir,
            settings=self.settings,
            renderer=self.math_renderer,
            entry=entry,
            fallback_title=entry.stem if entry is not None else root.name,
            title_override=title,
        )
        DOCUMENT_PIPELINE.run(ctx)

        logger.info(
            "Converted %s: %d sections, %d figures, %d equations, %d references, %d diagnostics",
            ctx.source.entry_path.name,
            ctx.stats.sections,
            ctx.stats.figures,
            ctx.stats.equations,
            ctx.stats.references,
            len(ctx.diagnostics),
        )
        return ConversionResult(
            html=ctx.html,
            front=ctx.front,
            sections=ctx.sections,
            figures=ctx.figures,
            bibliography=ctx.bibliography,
            labels=ctx.labels,
            stats=ctx.stats,
            diagnostics=ctx.diagnostics,
            entry_path=ctx.source.entry_path,
        )
