"""Tests for source resolution.

Covers:
- tar.gz / gzip / zip archive extraction
- \\input{}/\\include{} resolution for multi-file projects
- comment stripping and entry-file detection
"""

from __future__ import annotations

import gzip
import tarfile
from io import BytesIO
from pathlib import Path
from zipfile import ZipFile

import pytest

from scholarize.errors import SourceNotFound
from scholarize.parser.source import (
    extract_archive,
    find_entry_file,
    is_tar_archive,
    resolve_inputs,
    resolve_source,
    split_document,
    strip_tex_comments,
)


# ---------------------------------------------------------------------------
# archives
# ---------------------------------------------------------------------------

def _make_tar_gz(tmp_path: Path, files: dict[str, str]) -> Path:
    """Create a .tar.gz archive from a dict of {relative_name: content}."""
    archive_path = tmp_path / "paper.tar.gz"
    with tarfile.open(archive_path, "w:gz") as tf:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tf.addfile(info, BytesIO(data))
    return archive_path


def test_tar_gz_single_file(tmp_path: Path, converter) -> None:
    tex = r"""
    \title{Tar Test}
    \author{Alice}
    \begin{document}
    \begin{abstract}A tar abstract.\end{abstract}
    \section{Intro}
    Hello from tar.
    \end{document}
    """
    archive = _make_tar_gz(tmp_path, {"paper.tex": tex})

    result = converter.convert(archive, tmp_path / "out")

    assert result.front.title == "Tar Test"
    assert result.front.authors == ["Alice"]
    assert result.front.abstract == "A tar abstract."
    assert [s.title for s in result.sections] == ["Intro"]
    assert "Hello from tar." in result.html


def test_tar_gz_multi_file_with_input(tmp_path: Path, converter) -> None:
    main_tex = r"""
    \title{Multi-file arXiv Paper}
    \author{Bob \and Carol}
    \begin{document}
    \begin{abstract}An abstract.\end{abstract}
    \input{intro}
    \input{method.tex}
    \end{document}
    """
    archive = _make_tar_gz(tmp_path, {
        "main.tex": main_tex,
        "intro.tex": "\\section{Introduction}\nThis is the introduction.\n",
        "method.tex": "\\section{Method}\nThis is the method section.\n",
    })

    result = converter.convert(archive, tmp_path / "out")

    assert result.front.authors == ["Bob", "Carol"]
    assert [s.title for s in result.sections] == ["Introduction", "Method"]
    assert [s.number for s in result.sections] == ["1", "2"]


def test_gzip_single_tex(tmp_path: Path) -> None:
    """A .gz file holding one TeX file (not a tarball) unpacks as main.tex."""
    gz_path = tmp_path / "paper.gz"
    with gzip.open(gz_path, "wb") as f:
        f.write(b"\\documentclass{article}\\begin{document}Hi\\end{document}")

    dest = extract_archive(gz_path, tmp_path / "src")

    assert (dest / "main.tex").read_text().startswith("\\documentclass")


def test_gzip_pdf_payload_is_rejected(tmp_path: Path) -> None:
    gz_path = tmp_path / "paper.gz"
    with gzip.open(gz_path, "wb") as f:
        f.write(b"%PDF-1.5 not a tex file")

    with pytest.raises(SourceNotFound):
        extract_archive(gz_path, tmp_path / "src")


def test_zip_archive(tmp_path: Path) -> None:
    zip_path = tmp_path / "paper.zip"
    with ZipFile(zip_path, "w") as zf:
        zf.writestr("sub/main.tex", "\\begin{document}x\\end{document}")

    dest = extract_archive(zip_path, tmp_path / "src")

    assert (dest / "sub" / "main.tex").is_file()


def test_is_tar_archive(tmp_path: Path) -> None:
    tar_path = _make_tar_gz(tmp_path, {"a.tex": "hello"})
    assert is_tar_archive(tar_path) is True

    tex_path = tmp_path / "plain.tex"
    tex_path.write_text("hello")
    assert is_tar_archive(tex_path) is False


# ---------------------------------------------------------------------------
# \input{} / \include{} resolution
# ---------------------------------------------------------------------------

def test_resolve_inputs_basic(tmp_path: Path) -> None:
    (tmp_path / "intro.tex").write_text("Introduction content here.")

    resolved = resolve_inputs(r"Before \input{intro} after.", tmp_path)

    assert resolved == "Before Introduction content here. after."


def test_resolve_inputs_include_and_subfile(tmp_path: Path) -> None:
    (tmp_path / "chapter.tex").write_text("Chapter body.")
    (tmp_path / "part.tex").write_text("Part body.")

    resolved = resolve_inputs(r"\include{chapter} \subfile{part.tex}", tmp_path)

    assert resolved == "Chapter body. Part body."


def test_resolve_inputs_nested(tmp_path: Path) -> None:
    (tmp_path / "outer.tex").write_text(r"Outer \input{inner}")
    (tmp_path / "inner.tex").write_text("Inner content.")

    assert resolve_inputs(r"\input{outer}", tmp_path) == "Outer Inner content."


def test_resolve_inputs_space_form(tmp_path: Path) -> None:
    (tmp_path / "macros.tex").write_text("M")

    assert resolve_inputs("\\input macros\n", tmp_path) == "M\n"


def test_resolve_inputs_circular_guard(tmp_path: Path) -> None:
    (tmp_path / "a.tex").write_text(r"A \input{b}")
    (tmp_path / "b.tex").write_text(r"B \input{a}")
    diagnostics = []

    resolved = resolve_inputs(r"\input{a}", tmp_path, diagnostics=diagnostics)

    assert resolved.startswith("A B ")
    assert "<!-- unresolved: \\input{a} -->" in resolved
    assert diagnostics[0].kind == "InputResolutionFailure"


def test_resolve_inputs_missing_file(tmp_path: Path) -> None:
    diagnostics = []

    resolved = resolve_inputs(r"\input{nonexistent}", tmp_path, diagnostics=diagnostics)

    assert resolved == "<!-- unresolved: \\input{nonexistent} -->"
    assert [d.kind for d in diagnostics] == ["InputResolutionFailure"]


def test_resolve_inputs_strips_comments(tmp_path: Path) -> None:
    (tmp_path / "commented.tex").write_text("Real content. % this is a comment\n")

    resolved = resolve_inputs(r"\input{commented}", tmp_path)

    assert "Real content." in resolved
    assert "this is a comment" not in resolved


def test_strip_tex_comments() -> None:
    text = "keep 50\\% % drop\n\\begin{comment}hidden\\end{comment}\\iffalse gone \\ifx a b\\fi gone\\fi shown"

    stripped = strip_tex_comments(text)

    assert "50\\%" in stripped
    assert "drop" not in stripped
    assert "hidden" not in stripped
    assert "gone" not in stripped
    assert stripped.endswith("shown")


def test_comment_after_line_break_is_stripped() -> None:
    text = "row one \\\\% reviewer note\nrow two \\\\\\% kept\nrow three"

    stripped = strip_tex_comments(text)

    assert stripped == "row one \\\\\nrow two \\\\\\% kept\nrow three"


# ---------------------------------------------------------------------------
# entry file
# ---------------------------------------------------------------------------

def test_find_entry_file_prefers_document(tmp_path: Path) -> None:
    (tmp_path / "appendix.tex").write_text("\\section{A}" * 20)
    (tmp_path / "paper.tex").write_text("\\documentclass{article}\\begin{document}\\end{document}")

    assert find_entry_file(tmp_path).name == "paper.tex"


def test_find_entry_file_falls_back_to_largest(tmp_path: Path) -> None:
    (tmp_path / "small.tex").write_text("x")
    (tmp_path / "large.tex").write_text("y" * 100)

    assert find_entry_file(tmp_path).name == "large.tex"


def test_find_entry_file_without_tex(tmp_path: Path) -> None:
    (tmp_path / "readme.txt").write_text("nothing")

    with pytest.raises(SourceNotFound):
        find_entry_file(tmp_path)


def test_resolve_source_and_split(tmp_path: Path) -> None:
    (tmp_path / "body.tex").write_text("Body text.")
    (tmp_path / "main.tex").write_text(
        "\\documentclass{article}\n\\title{T}\n\\begin{document}\n\\input{body}\n\\end{document}\n"
    )

    source = resolve_source(tmp_path)
    preamble, body = split_document(source.text)

    assert source.entry_path.name == "main.tex"
    assert "\\title{T}" in preamble
    assert body.strip() == "Body text."


def test_split_document_without_environment() -> None:
    assert split_document("just text") == ("", "just text")
