from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from conftest import write_tex
from scholarize import cli
from scholarize.cli import build_metadata, main

@pytest.fixture(autouse=True)
def fresh_log_handlers():
    # CliRunner swaps stderr per invocation; drop handlers bound to an old stream.
    yield
    logging.getLogger("scholarize").handlers.clear()


BODY = r"""
\begin{abstract}Short abstract with $x$.\end{abstract}
\section{Intro}
Hello \emph{world}.
"""


def _source(tmp_path: Path) -> Path:
    src = tmp_path / "src"
    src.mkdir()
    write_tex(src, BODY, preamble=r"\title{CLI Paper}\author{Ann, Ben}")
    return src


def test_cli_writes_fragment_and_metadata(tmp_path: Path) -> None:
    out = tmp_path / "out"

    result = CliRunner().invoke(main, [str(_source(tmp_path)), "-o", str(out)])

    assert result.exit_code == 0, result.output
    assert "Rendered:" in result.output
    html = (out / "paper.html").read_text(encoding="utf-8")
    assert "<em>world</em>" in html
    metadata = yaml.safe_load((out / "metadata.yaml").read_text(encoding="utf-8"))
    assert metadata["title"] == "CLI Paper"
    assert metadata["authors"] == ["Ann", "Ben"]
    assert metadata["entry_file"] == "main.tex"
    assert metadata["stats"]["sections"] == 1
    assert metadata["files"] == ["paper.html"]
    assert metadata["diagnostics"] == []


def test_cli_title_and_workers(tmp_path: Path) -> None:
    out = tmp_path / "out"

    result = CliRunner().invoke(main, [str(_source(tmp_path)), "-o", str(out), "--title", "Renamed", "--workers", "2"])

    assert result.exit_code == 0, result.output
    assert '<h1 class="paper-title">Renamed</h1>' in (out / "paper.html").read_text(encoding="utf-8")


def test_cli_rejects_unknown_source(tmp_path: Path) -> None:
    result = CliRunner().invoke(main, ["no-such-thing", "-o", str(tmp_path / "out")])

    assert result.exit_code != 0
    assert "neither an existing path nor an arXiv identifier" in result.output


def test_cli_reports_conversion_errors(tmp_path: Path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()

    result = CliRunner().invoke(main, [str(empty), "-o", str(tmp_path / "out")])

    assert result.exit_code != 0
    assert "Error" in result.output


def test_cli_downloads_arxiv_ids(tmp_path: Path, monkeypatch) -> None:
    def fake_download(arxiv_id: str, dest: Path, settings) -> Path:
        tree = dest / "source"
        tree.mkdir(parents=True)
        write_tex(tree, BODY, preamble=r"\title{Remote}")
        return tree

    monkeypatch.setattr(cli, "download_arxiv_source", fake_download)
    out = tmp_path / "out"

    result = CliRunner().invoke(main, ["arXiv:2101.00001", "-o", str(out)])

    assert result.exit_code == 0, result.output
    metadata = yaml.safe_load((out / "metadata.yaml").read_text(encoding="utf-8"))
    assert metadata["source"] == "arXiv:2101.00001"
    assert metadata["title"] == "Remote"


def test_metadata_abstract_excerpt(tmp_path: Path, converter) -> None:
    long_abstract = " ".join(["word"] * 200)
    write_tex(tmp_path, f"\\begin{{abstract}}{long_abstract}\\end{{abstract}}\nBody.")
    result = converter.convert(tmp_path, tmp_path / "out")

    metadata = build_metadata(result, str(tmp_path))

    assert metadata["abstract"].endswith("…")
    assert len(metadata["abstract"]) <= 401


def test_cli_survives_malformed_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SCHOLARIZE_WORKERS", "abc")

    result = CliRunner().invoke(main, [str(_source(tmp_path)), "-o", str(tmp_path / "out")])

    assert result.exit_code == 0, result.output
