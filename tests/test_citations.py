from __future__ import annotations

from pathlib import Path

from scholarize.parser.base import BibEntry, Bibliography, LabelTable, Parsed, PartiallyParsed
from scholarize.parser.citations import (
    bind_citations,
    cited_keys,
    extract_bibliography,
    normalize_citations,
    parse_bibitems,
)
from scholarize.placeholders import Placeholders
from scholarize.renderer.fragment import FragmentContext, render_fragment


def test_normalize_cite_commands() -> None:
    assert normalize_citations(r"as shown~\cite{a, b}.") == "as shown~[a,b]."
    assert normalize_citations(r"\citep[see][p.~3]{smith}") == "[smith]"
    assert normalize_citations(r"x\nocite{hidden}y") == "xy"


def test_normalize_vendor_wrappers() -> None:
    assert normalize_citations(r"text~\mbox{[k1,k2]}") == "text [k1,k2]"
    assert normalize_citations(r"text~\mbox{\cite{a}}") == "text~[a]"
    assert normalize_citations(r"text~[smith2020]") == "text [smith2020]"


def test_numeric_brackets_are_not_citations() -> None:
    text = r"on the interval~[0,1] and $x \in [0, 1]$"

    assert normalize_citations(text) == text
    assert cited_keys(text) == []


def test_cited_keys_in_first_appearance_order() -> None:
    assert cited_keys("[b] then [a,b] then [c]") == ["b", "a", "c"]


def _bib() -> Bibliography:
    return Bibliography([BibEntry("a", title="Alpha"), BibEntry("b", title="Beta")])


def test_bind_mixed_group_keeps_unknown_keys() -> None:
    placeholders = Placeholders("c")

    out = placeholders.restore(bind_citations("x [a,zz,b] y", _bib(), placeholders))

    assert out == (
        'x <sup class="ref-badge" data-ref="1" data-title="Alpha">1</sup>'
        '[zz]'
        '<sup class="ref-badge" data-ref="2" data-title="Beta">2</sup> y'
    )


def test_bind_leaves_unknown_group_byte_for_byte() -> None:
    text = "see [Lemma 2] and [q]"

    assert bind_citations(text, _bib(), Placeholders("c")) == text


def test_bind_without_bibliography_only_collapses_commands() -> None:
    assert bind_citations(r"\cite{a}", Bibliography(), Placeholders("c")) == "[a]"


def test_citation_inside_table_cell(fake_math) -> None:
    ctx = FragmentContext(
        text="\\begin{tabular}{ll}Model & Score\\\\Ours [a] & 1\\end{tabular}",
        placeholders=Placeholders("s1"),
        labels=LabelTable(),
        bibliography=_bib(),
        renderer=fake_math,
    )

    out = ctx.placeholders.restore(render_fragment(ctx))

    assert '<td>Ours <sup class="ref-badge" data-ref="1" data-title="Alpha">1</sup></td>' in out


def test_parse_bibitems_blocks_and_external_id() -> None:
    entries = parse_bibitems(
        r"""
\bibitem{vaswani} A. Vaswani, N. Shazeer.
\newblock Attention is all you need.
\newblock In NeurIPS, 2017. arXiv:1706.03762
\bibitem[Smith(2020)]{smith} Just one blob of text
"""
    )

    first, second = entries
    assert first.key == "vaswani"
    assert first.authors == "A. Vaswani, N. Shazeer."
    assert first.title == "Attention is all you need."
    assert first.venue.startswith("In NeurIPS, 2017.")
    assert first.external_id == "arXiv:1706.03762"
    assert isinstance(first.status, Parsed)
    assert second.key == "smith"
    assert second.title == "Just one blob of text"
    assert isinstance(second.status, PartiallyParsed)


def test_extract_thebibliography_removes_block() -> None:
    body = "Text [k].\n\\begin{thebibliography}{9}\n\\bibitem{k} A.\n\\newblock T.\n\\newblock V.\n\\end{thebibliography}"

    cleaned, bibliography = extract_bibliography(body)

    assert "thebibliography" not in cleaned
    assert bibliography.ordinal_for("k") == 1


def test_bib_file_limited_to_cited_keys(tmp_path: Path) -> None:
    (tmp_path / "refs.bib").write_text(
        "@article{used2, title={Second {Paper}}, author={A and B}, year={2021}}\n"
        '@inproceedings{used1, title="First", booktitle={Conf}, eprint={2101.00001}}\n'
        "@misc{unused, title={Never}}\n",
        encoding="utf-8",
    )

    cleaned, bibliography = extract_bibliography(r"We cite [used1] and [used2].\bibliography{refs}", tmp_path)

    assert "\\bibliography" not in cleaned
    assert [e.key for e in bibliography.entries] == ["used1", "used2"]
    assert bibliography.entries[0].external_id == "arXiv:2101.00001"
    assert bibliography.entries[0].venue == "Conf"
    assert bibliography.entries[1].title == "Second Paper"
    assert bibliography.entries[1].authors == "A, B"


def test_duplicate_titles_share_an_ordinal() -> None:
    bibliography = Bibliography([BibEntry("a", title="Deep Nets"), BibEntry("b", title="Deep nets!")])

    assert len(bibliography) == 1
    assert bibliography.ordinal_for("b") == 1
