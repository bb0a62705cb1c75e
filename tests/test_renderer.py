"""Tests for fragment rendering and final assembly.

Covers:
- inline formatting of leftover TeX
- lists, theorem-like blocks and verbatim literals
- paragraph wrapping around block regions
- the markdown safety pass and the jinja2 fragment template
"""

from __future__ import annotations

from scholarize.parser.base import BibEntry, Bibliography, LabelTable, PartiallyParsed
from scholarize.placeholders import Placeholders, make_token
from scholarize.renderer.blocks import convert_environments, convert_headings, protect_literals, theorem_names
from scholarize.renderer.fragment import FragmentContext, render_fragment
from scholarize.renderer.html_renderer import (
    HTMLRenderer,
    RenderedDocument,
    RenderedFootnote,
    RenderedSection,
    external_link,
    markdown_safety_pass,
)
from scholarize.renderer.inline import format_inline


def _inline(text: str) -> str:
    placeholders = Placeholders("i")
    return placeholders.restore(format_inline(text, placeholders))


# ---------------------------------------------------------------------------
# inline
# ---------------------------------------------------------------------------

def test_inline_styles_and_typography() -> None:
    out = _inline(r"\textbf{bold} and {\it it} 50\% a\_b x~y -- z ``q''")

    assert out == "<strong>bold</strong> and <em>it</em> 50% a&#95;b x\u00a0y \u2013 z \u201cq\u201d"


def test_inline_escapes_html_and_line_breaks() -> None:
    assert _inline(r"a < b \\ c") == "a &lt; b <br> c"
    assert _inline(r"\textasciitilde{} and \ldots") == "&#126; and \u2026"


def test_inline_unknown_commands_keep_their_argument() -> None:
    assert _inline(r"\foo{kept} \bar gone \textcolor{red}{shown}") == "kept gone shown"


def test_inline_unterminated_groups_are_dropped() -> None:
    assert _inline(r"\textbf{never closed and more") == "never closed and more"
    assert _inline(r"{\bf open text") == "open text"


def test_unterminated_format_does_not_wrap_blocks(fake_math) -> None:
    ctx = FragmentContext(
        text="\\textbf{Unclosed start\n\n\\begin{itemize}\\item One\\end{itemize}\n\\[ y \\]\nTail.",
        placeholders=Placeholders("u"),
        labels=LabelTable(),
        bibliography=Bibliography(),
        renderer=fake_math,
    )

    out = ctx.placeholders.restore(render_fragment(ctx))

    assert "<strong>" not in out
    assert "<ul><li>One</li></ul>" in out
    assert '<div class="math-display" data-raw="y">' in out


def test_inline_accents() -> None:
    assert _inline(r"Schr\"{o}dinger and G\"odel") == "Schrödinger and Gödel"


# ---------------------------------------------------------------------------
# blocks
# ---------------------------------------------------------------------------

def test_lists_with_custom_labels() -> None:
    placeholders = Placeholders("b")

    out = placeholders.restore(
        convert_environments(r"\begin{itemize}\item A \item[*] B\end{itemize}", placeholders, {})
    )

    assert out.strip() == '<ul><li>A</li><li class="custom-label"><span class="item-label">*</span> B</li></ul>'


def test_nested_lists_and_description() -> None:
    placeholders = Placeholders("b")
    text = r"\begin{enumerate}\item Outer \begin{description}\item[Term] Def\end{description}\end{enumerate}"

    out = placeholders.restore(convert_environments(text, placeholders, {}))

    assert "<ol><li>Outer" in out
    assert "<dl><dt>Term</dt><dd>Def</dd></dl>" in out
    assert out.strip().endswith("</li></ol>")


def test_theorems_and_proofs() -> None:
    placeholders = Placeholders("b")
    theorems = theorem_names(r"\newtheorem{thm}{Theorem}")
    text = r"\begin{thm}[Main] Body\end{thm} \begin{proof}Done\end{proof}"

    out = placeholders.restore(convert_environments(text, placeholders, theorems))

    assert '<div class="theorem theorem-thm"><strong class="theorem-title">Theorem (Main).</strong> Body</div>' in out
    assert '<div class="proof"><em class="theorem-title">Proof.</em> Done <span class="qed">\u220e</span></div>' in out


def test_literals_are_protected() -> None:
    placeholders = Placeholders("b")
    text = "\\begin{verbatim}\na_b <x>\n\\end{verbatim}\n\\verb|x_y| \\url{http://a.b/c_d}"

    out = placeholders.restore(protect_literals(text, placeholders))

    assert "<pre><code>a_b &lt;x&gt;</code></pre>" in out
    assert "<code>x_y</code>" in out
    assert '<a href="http://a.b/c_d">http://a.b/c_d</a>' in out


def test_subheadings_below_section_number() -> None:
    placeholders = Placeholders("b")
    text = r"\subsection{Setup} a \subsection*{Aside} b \paragraph{Note} c"

    out = placeholders.restore(convert_headings(text, placeholders, "3"))

    assert '<h3 class="paper-subsection"><span class="heading-number">3.1</span> Setup</h3>' in out
    assert '<h3 class="paper-subsection">Aside</h3>' in out
    assert '<strong class="paper-paragraph">Note</strong>' in out


def test_paragraphs_wrap_prose_but_not_blocks(fake_math) -> None:
    ctx = FragmentContext(
        text="Intro para.\n\nSecond para.\n\\begin{itemize}\\item One\\end{itemize}\nAfter.",
        placeholders=Placeholders("s1"),
        labels=LabelTable(),
        bibliography=Bibliography(),
        renderer=fake_math,
    )

    out = ctx.placeholders.restore(render_fragment(ctx))

    assert out == "<p>Intro para.</p>\n<p>Second para.</p>\n<ul><li>One</li></ul>\n<p>After.</p>"


def test_inline_fragment_is_not_wrapped(fake_math) -> None:
    ctx = FragmentContext(
        text="A \\emph{short}\n title",
        placeholders=Placeholders("t"),
        labels=LabelTable(),
        bibliography=Bibliography(),
        renderer=fake_math,
        block=False,
    )

    assert ctx.placeholders.restore(render_fragment(ctx)) == "A <em>short</em> title"


# ---------------------------------------------------------------------------
# assembly
# ---------------------------------------------------------------------------

def test_markdown_safety_pass() -> None:
    html = "# Title\n**b** __u__ *e* _i_ a*b*c snake_case_name"

    assert markdown_safety_pass(html) == (
        "<h1>Title</h1>\n<strong>b</strong> <strong>u</strong> <em>e</em> <em>i</em> a*b*c snake_case_name"
    )


def test_external_link() -> None:
    assert external_link("arXiv:1706.03762") == "https://arxiv.org/abs/1706.03762"
    assert external_link("doi:10.1000/xyz") == "https://doi.org/10.1000/xyz"
    assert external_link("https://example.org/p") == "https://example.org/p"
    assert external_link("isbn:123") is None
    assert external_link(None) is None


def test_html_renderer_fragment() -> None:
    title_token = make_token("H", "title-1")
    document = RenderedDocument(
        title_html=title_token,
        authors=["Ann"],
        date=None,
        abstract_html="",
        sections=[RenderedSection(ordinal=1, anchor="sec-1", number=None, title_html="Thanks", html="<p>x</p>")],
        footnotes=[RenderedFootnote(id=1, html="Note.")],
        bibliography=Bibliography(
            [BibEntry("k", title="Only title", external_id="arXiv:2101.00001", status=PartiallyParsed("no blocks"))]
        ),
        values={title_token: "<em>T</em>"},
    )

    html = HTMLRenderer().render(document)

    assert html.startswith('<article class="paper">')
    assert html.endswith("</article>\n")
    assert '<h1 class="paper-title"><em>T</em></h1>' in html
    assert "paper-abstract" not in html
    assert '<section class="paper-section" id="sec-1">' in html
    assert '<h2 class="paper-section-title">Thanks</h2>' in html
    assert '<li id="fn-1">Note. <a class="footnote-back" href="#fnref-1">' in html
    assert '<li id="ref-1" data-key="k" data-parse="partial">' in html
    assert '<span class="ref-title">Only title</span>' in html
    assert '<a class="ref-link" href="https://arxiv.org/abs/2101.00001">arXiv:2101.00001</a>' in html
