"""scholarize CLI entrypoint."""

from __future__ import annotations

import logging
import tempfile
from datetime import date
from pathlib import Path

import click
import yaml

from scholarize.config import load_settings
from scholarize.converter import ConversionResult, TeXConverter
from scholarize.errors import ScholarizeError
from scholarize.fetch import download_arxiv_source, looks_like_arxiv_id, normalize_arxiv_id
from scholarize.logging_config import setup_logging
from scholarize.parser.texutil import clean_inline_tex

logger = logging.getLogger(__name__)

ABSTRACT_EXCERPT_CHARS = 400


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("source", type=str)
@click.option("--output", "-o", type=click.Path(file_okay=False, path_type=Path), required=True, help="Output directory")
@click.option("--title", type=str, default=None, help="Override document title")
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Render sections on N threads")
@click.option("--verbose", "-v", is_flag=True, help="Log every stage")
def main(source: str, output: Path, title: str | None, workers: int | None, verbose: bool) -> None:
    """Convert a TeX source tree, archive, .tex file or arXiv id into an HTML fragment."""
    setup_logging(verbose)
    settings = load_settings(workers=workers)
    converter = TeXConverter(settings)

    try:
        source_path = Path(source)
        if source_path.exists():
            result = converter.convert(source_path, output, title=title)
        elif looks_like_arxiv_id(source):
            with tempfile.TemporaryDirectory(prefix="scholarize_arxiv_") as tmp:
                tree = download_arxiv_source(source, Path(tmp), settings)
                result = converter.convert(tree, output, title=title)
            source = f"arXiv:{normalize_arxiv_id(source)}"
        else:
            raise click.ClickException(f"{source} is neither an existing path nor an arXiv identifier")
    except ScholarizeError as exc:
        raise click.ClickException(str(exc)) from exc

    html_path = output / "paper.html"
    html_path.write_text(result.html, encoding="utf-8")
    metadata_path = output / "metadata.yaml"
    metadata_path.write_text(
        yaml.safe_dump(build_metadata(result, source), sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )

    for diagnostic in result.diagnostics:
        logger.debug("[%s] %s: %s", diagnostic.stage, diagnostic.kind, diagnostic.message)
    click.echo(f"Rendered: {html_path} ({len(result.diagnostics)} diagnostics)")


def build_metadata(result: ConversionResult, source: str) -> dict[str, object]:
    abstract = clean_inline_tex(result.front.abstract)
    if len(abstract) > ABSTRACT_EXCERPT_CHARS:
        abstract = abstract[:ABSTRACT_EXCERPT_CHARS].rsplit(" ", 1)[0] + "…"
    return {
        "title": clean_inline_tex(result.front.title),
        "authors": list(result.front.authors),
        "date": result.front.date,
        "abstract": abstract,
        "source": source,
        "entry_file": result.entry_path.name,
        "converted": date.today().isoformat(),
        "stats": {
            "sections": result.stats.sections,
            "figures": result.stats.figures,
            "equations": result.stats.equations,
            "references": result.stats.references,
        },
        "diagnostics": [
            {"stage": d.stage, "kind": d.kind, "message": d.message} for d in result.diagnostics
        ],
        "files": ["paper.html", *(f"figures/{name}" for figure in result.figures for name in figure.images)],
    }


if __name__ == "__main__":  # pragma: no cover
    main()
