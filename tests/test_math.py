from __future__ import annotations

from scholarize.parser.base import BibEntry, Bibliography, LabelTable
from scholarize.parser.citations import bind_citations
from scholarize.parser.labels import collect_labels
from scholarize.parser.mathscan import find_math_spans
from scholarize.placeholders import Placeholders
from scholarize.renderer.math import MathMLRenderer, isolate_math, render_math, split_align_lines


def test_find_math_spans_all_delimiters() -> None:
    spans = find_math_spans(r"a $x$ b \[y\] c \$5 and $$z$$ or \(w\) \begin{equation*}e\end{equation*}")

    assert [(s.body, s.display) for s in spans] == [
        ("x", False),
        ("y", True),
        ("z", True),
        ("w", False),
        ("e", True),
    ]
    assert spans[-1].env == "equation*"


def test_inline_math_never_spans_blank_line() -> None:
    assert find_math_spans("costs $5\n\nand $6") == []


def test_inline_math_keeps_raw_source(fake_math) -> None:
    placeholders = Placeholders("m")

    text = isolate_math("Let $a_1 < b$ hold.", placeholders, LabelTable())
    render_math(placeholders, fake_math, {})

    assert placeholders.restore(text) == (
        'Let <span class="math-inline" data-raw="a_1 &lt; b"><minline>a_1 &lt; b</minline></span> hold.'
    )


def test_align_splits_into_numbered_lines(fake_math) -> None:
    body = "\\begin{align}a &= b \\label{e1}\\\\ c &= d \\nonumber \\\\ e &= f \\label{e2}\\end{align}"
    placeholders = Placeholders("m")

    text = isolate_math(body, placeholders, collect_labels(body))

    spans = list(placeholders.math.values())
    assert [(s.raw, s.number, s.label) for s in spans] == [
        ("a  = b", "1", "e1"),
        ("c  = d", None, None),
        ("e  = f", "2", "e2"),
    ]
    assert text.startswith("\n\n") and text.endswith("\n\n")

    render_math(placeholders, fake_math, {})
    out = placeholders.restore(text)
    assert '<span id="e1" class="label-anchor"></span><div class="math-display" data-raw="a  = b">' in out
    assert '<span class="eq-number">(2)</span></div>' in out


def test_tag_overrides_number_and_refs_inside_math(fake_math) -> None:
    body = r"\begin{equation}x \tag{*}\label{a}\end{equation} and $y = \eqref{a}$"
    placeholders = Placeholders("m")

    isolate_math(body, placeholders, collect_labels(body))

    display, inline = placeholders.math.values()
    assert display.number == "*"
    assert inline.raw == r"y = \text{(1)}"


def test_split_align_lines_leaves_inner_environments() -> None:
    lines = split_align_lines(r"f &= \begin{cases} 1 & x \\ 0 & y \end{cases} \\[2pt] g")

    assert lines == [r"f  = \begin{cases} 1 & x \\ 0 & y \end{cases} ", " g"]


def test_render_failure_falls_back_to_escaped_source(fake_math) -> None:
    placeholders = Placeholders("m")
    diagnostics = []

    text = isolate_math(r"See $\broken<x$.", placeholders, LabelTable())
    render_math(placeholders, fake_math, {}, diagnostics=diagnostics)

    out = placeholders.restore(text)
    assert '<span class="math-error" title="unknown command \\broken">\\broken&lt;x</span>' in out
    assert [d.kind for d in diagnostics] == ["MathRenderFailure"]


def test_macros_reach_the_renderer(fake_math) -> None:
    placeholders = Placeholders("m")
    isolate_math(r"$\foo$", placeholders, LabelTable())

    render_math(placeholders, fake_math, {"\\foo": "bar"})

    assert fake_math.calls == [("\\foo", False, {"\\foo": "bar"})]


def test_mathml_renderer_expands_macros() -> None:
    renderer = MathMLRenderer()

    inline = renderer.render(r"\sq{x}", False, {"\\sq": "#1^2"})
    block = renderer.render("y", True, {})

    assert inline.error is None
    assert "<math" in inline.html
    assert "<msup>" in inline.html
    assert 'display="block"' in block.html


def _render_section(text: str, fake_math, *, cite_first: bool) -> str:
    bibliography = Bibliography([BibEntry("ref1", title="Alpha")])
    placeholders = Placeholders("o")
    labels = LabelTable()
    if cite_first:
        text = bind_citations(text, bibliography, placeholders)
        text = isolate_math(text, placeholders, labels)
    else:
        text = isolate_math(text, placeholders, labels)
        text = bind_citations(text, bibliography, placeholders)
    render_math(placeholders, fake_math, {})
    return placeholders.restore(text)


def test_math_output_does_not_depend_on_citation_order(fake_math) -> None:
    text = r"Take $x_1$ from [ref1] and $a[1]$ with \cite{ref1}."

    before = _render_section(text, fake_math, cite_first=True)
    after = _render_section(text, fake_math, cite_first=False)

    assert before == after
    assert '<span class="math-inline" data-raw="x_1"><minline>x_1</minline></span>' in before
    assert before.count('class="ref-badge"') == 2
