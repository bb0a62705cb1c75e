"""Block-level rewrites: literals, figures, tables, lists, theorems, headings, paragraphs.

Generated markup is stashed as placeholder tokens, while the TeX that the
reader sees (cell text, list items, captions, headings) stays in the text
so later passes still format it, bind its citations and escape it.
"""

from __future__ import annotations

import html
import re
from typing import Mapping

from scholarize.parser.base import Figure, TableBlock
from scholarize.parser.figures import width_style
from scholarize.parser.sections import HeadingNumberer, read_heading
from scholarize.parser.tables import TABLE_ENVS, TABULAR_ENVS, flatten_tabular, parse_tabular
from scholarize.parser.texutil import (
    clean_inline_tex,
    find_environment,
    read_balanced_braces,
    read_optional,
    replace_command,
    skip_spaces,
)
from scholarize.placeholders import CLOSE, OPEN, TOKEN_RE, Placeholders

VERBATIM_ENVS = ("verbatim", "verbatim*", "Verbatim", "lstlisting", "minted", "alltt")
LIST_ENVS = {"itemize": "ul", "enumerate": "ol", "description": "dl"}
QUOTE_ENVS = ("quote", "quotation", "verse")

DEFAULT_THEOREMS = {
    "theorem": "Theorem",
    "lemma": "Lemma",
    "proposition": "Proposition",
    "corollary": "Corollary",
    "definition": "Definition",
    "remark": "Remark",
    "example": "Example",
    "assumption": "Assumption",
    "conjecture": "Conjecture",
    "claim": "Claim",
    "observation": "Observation",
    "fact": "Fact",
    "proof": "Proof",
}

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_VERB_RE = re.compile(r"\\verb\*?([^A-Za-z\s])(.*?)\1")
_NEWTHEOREM_RE = re.compile(r"\\newtheorem(\*?)\s*\{([^{}]+)\}\s*(?:\[[^\]]*\])?\s*\{([^{}]+)\}")
_ITEM_RE = re.compile(r"\\item(?![A-Za-z@])")
_SUBHEADING_RE = re.compile(r"\\(subsection|subsubsection|paragraph|subparagraph)(?![A-Za-z@])(\*?)")
_CAPTION_RE = re.compile(r"\\caption(?![A-Za-z@])\*?")
_LABEL_RE = re.compile(r"\\label\s*\{([^{}]*)\}")
_SPACE_RE = re.compile(r"[ \t\r\n]+")
_TOKEN_ONLY_RE = re.compile(rf"^(?:\s|{OPEN}H[^{CLOSE}]*{CLOSE})*$")


def theorem_names(preamble: str) -> dict[str, str]:
    """Theorem-like environments: the defaults plus ``\\newtheorem`` declarations."""
    names = dict(DEFAULT_THEOREMS)
    for match in _NEWTHEOREM_RE.finditer(preamble):
        names[match.group(2).strip()] = clean_inline_tex(match.group(3)) or match.group(2).strip()
    return names


def _innermost(text: str, env: str) -> tuple[int, int, int, int] | None:
    begin_token = f"\\begin{{{env}}}"
    end_token = f"\\end{{{env}}}"
    end = text.find(end_token)
    if end == -1:
        return None
    begin = text.rfind(begin_token, 0, end)
    if begin == -1:
        return None
    return begin, begin + len(begin_token), end, end + len(end_token)


# -- literals ---------------------------------------------------------------


def protect_literals(text: str, placeholders: Placeholders) -> str:
    """Stash content that must reach the output verbatim."""
    text = _HTML_COMMENT_RE.sub(lambda m: placeholders.stash(m.group(0)), text)

    for env in VERBATIM_ENVS:
        while True:
            span = find_environment(text, env)
            if span is None:
                break
            body = text[span[1] : span[2]]
            if env == "lstlisting":
                _opt, pos = read_optional(body, 0)
                body = body[pos:]
            elif env == "minted":
                _opt, pos = read_optional(body, 0)
                probe = skip_spaces(body, pos)
                if probe < len(body) and body[probe] == "{":
                    _lang, pos = read_balanced_braces(body, probe)
                body = body[pos:]
            code = html.escape(body.strip("\n"))
            token = placeholders.stash(f"<pre><code>{code}</code></pre>", "D")
            text = f"{text[: span[0]]}\n\n{token}\n\n{text[span[3] :]}"

    text = _VERB_RE.sub(lambda m: placeholders.stash(f"<code>{html.escape(m.group(2))}</code>"), text)

    def url(args: list[str], _opts: list[str]) -> str:
        target = args[0].strip()
        escaped = html.escape(target, quote=True)
        return placeholders.stash(f'<a href="{escaped}">{html.escape(target)}</a>')

    def href(args: list[str], _opts: list[str]) -> str:
        target = html.escape(args[0].strip(), quote=True)
        return placeholders.stash(f'<a href="{target}">') + args[1] + placeholders.stash("</a>")

    text = replace_command(text, "url", url, star=False)
    return replace_command(text, "href", href, nargs=2, star=False)


# -- figures ----------------------------------------------------------------


def expand_figures(text: str, figures: Mapping[int, Figure], placeholders: Placeholders) -> str:
    """Turn figure tokens into figure markup around the (still TeX) caption."""

    def repl(match: re.Match[str]) -> str:
        if match.group(1) != "F":
            return match.group(0)
        figure = figures.get(int(match.group(2)))
        if figure is None:
            return ""
        return figure_markup(figure, placeholders)

    return TOKEN_RE.sub(repl, text)


def figure_markup(figure: Figure, placeholders: Placeholders) -> str:
    alt = html.escape(clean_inline_tex(figure.caption), quote=True)
    style = width_style(figure.width_hint)
    style_attr = f' style="{style}"' if style else ""
    images = "".join(
        f'<img src="./figures/{html.escape(name, quote=True)}" alt="{alt}" loading="lazy"{style_attr}>'
        for name in figure.images
    )
    opening = (
        f'<figure id="{html.escape(figure.label, quote=True)}" class="article-figure" data-figure="{figure.ordinal}">'
        f"{images}<figcaption><strong>Figure {figure.ordinal}.</strong> "
    )
    return placeholders.stash(opening, "B") + figure.caption + placeholders.stash("</figcaption></figure>", "E")


# -- tables -----------------------------------------------------------------


def table_markup(block: TableBlock, placeholders: Placeholders, caption: str | None = None) -> str:
    h = placeholders.stash
    parts = [h('<table class="article-table">', "B")]
    if caption:
        parts += [h("<caption>"), caption, h("</caption>")]
    if block.headers:
        parts.append(h("<thead><tr>"))
        for cell in block.headers:
            parts += [h("<th>"), cell, h("</th>")]
        parts.append(h("</tr></thead>"))
    parts.append(h("<tbody>"))
    for row in block.rows:
        parts.append(h("<tr>"))
        for cell in row:
            parts += [h("<td>"), cell, h("</td>")]
        parts.append(h("</tr>"))
    parts.append(h("</tbody></table>", "E"))
    return "\n\n" + "".join(parts) + "\n\n"


def _tabular_spans(text: str) -> list[tuple[int, int, int, int, str]]:
    spans = []
    for env in TABULAR_ENVS:
        pos = 0
        while True:
            span = find_environment(text, env, pos)
            if span is None:
                break
            spans.append((*span, env))
            pos = span[1]
    return sorted(spans)


def _flatten_nested_tabulars(text: str, placeholders: Placeholders) -> str:
    while True:
        spans = _tabular_spans(text)
        nested = [
            inner
            for inner in spans
            if any(outer[1] <= inner[0] and inner[3] <= outer[2] for outer in spans if outer is not inner)
        ]
        if not nested:
            return text
        innermost = [s for s in nested if not any(s[1] <= o[0] and o[3] <= s[2] for o in spans if o is not s)]
        begin, body_start, body_end, end, env = innermost[0]
        flat = flatten_tabular(text[body_start:body_end], env, placeholders.stash("<br>"))
        text = text[:begin] + flat + text[end:]


def _caption_and_labels(body: str) -> tuple[str | None, str, list[str]]:
    caption = None
    match = _CAPTION_RE.search(body)
    if match:
        _short, pos = read_optional(body, match.end())
        probe = skip_spaces(body, pos)
        if probe < len(body) and body[probe] == "{":
            caption, end = read_balanced_braces(body, probe)
            body = body[: match.start()] + body[end:]
    labels = _LABEL_RE.findall(body)
    body = _LABEL_RE.sub("", body)
    return caption, body, labels


def convert_tables(text: str, placeholders: Placeholders, *, table_start: int = 0) -> str:
    """Rewrite table floats and bare tabulars into ``article-table`` markup.

    ``table_start`` is the number of table floats before this fragment, so
    caption numbers follow document order.
    """
    text = _flatten_nested_tabulars(text, placeholders)
    counter = table_start
    out: list[str] = []
    pos = 0
    while True:
        found = [(span, env) for env in TABLE_ENVS if (span := find_environment(text, env, pos)) is not None]
        if not found:
            break
        span, _env = min(found, key=lambda item: item[0][0])
        counter += 1
        out.append(text[pos : span[0]])
        out.append(_table_float(text[span[1] : span[2]], counter, placeholders))
        pos = span[3]
    out.append(text[pos:])
    text = "".join(out)

    for begin, body_start, body_end, end, env in reversed(_tabular_spans(text)):
        block = parse_tabular(text[body_start:body_end], env)
        text = text[:begin] + table_markup(block, placeholders) + text[end:]
    return text


def _table_float(body: str, number: int, placeholders: Placeholders) -> str:
    caption, body, labels = _caption_and_labels(body)
    anchors = "".join(f"\\label{{{key}}}" for key in labels)
    title = placeholders.stash(f"<strong>Table {number}.</strong> ")
    full_caption = anchors + title + (caption or "").strip()

    spans = _tabular_spans(body)
    if not spans:
        return (
            "\n\n"
            + placeholders.stash('<div class="article-table-float">', "B")
            + body
            + placeholders.stash('<p class="table-caption">')
            + full_caption
            + placeholders.stash("</p></div>", "E")
            + "\n\n"
        )

    out: list[str] = []
    pos = 0
    for idx, (begin, body_start, body_end, end, env) in enumerate(spans):
        out.append(body[pos:begin])
        block = parse_tabular(body[body_start:body_end], env)
        out.append(table_markup(block, placeholders, full_caption if idx == 0 else None))
        pos = end
    out.append(body[pos:])
    return "".join(out)


# -- lists, theorems, quotes ------------------------------------------------


def _split_items(body: str) -> list[tuple[str | None, str]]:
    starts = []
    depth = 0
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            if depth == 0 and _ITEM_RE.match(body, i):
                starts.append(i)
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        i += 1

    items = []
    for idx, start in enumerate(starts):
        stop = starts[idx + 1] if idx + 1 < len(starts) else len(body)
        label, pos = read_optional(body, start + len("\\item"))
        items.append((label, body[pos:stop].strip()))
    return items


def _list_markup(env: str, body: str, placeholders: Placeholders) -> str:
    tag = LIST_ENVS[env]
    h = placeholders.stash
    parts = [h(f"<{tag}>", "B")]
    for label, content in _split_items(body):
        if tag == "dl":
            parts += [h("<dt>"), label or "", h("</dt><dd>"), content, h("</dd>")]
        elif label is not None:
            parts += [h('<li class="custom-label">'), h('<span class="item-label">'), label, h("</span> "), content, h("</li>")]
        else:
            parts += [h("<li>"), content, h("</li>")]
    parts.append(h(f"</{tag}>", "E"))
    return "\n\n" + "".join(parts) + "\n\n"


def convert_environments(text: str, placeholders: Placeholders, theorems: Mapping[str, str]) -> str:
    """Lists, theorem-like blocks and quotations, innermost first."""
    names = [*LIST_ENVS, *QUOTE_ENVS, *theorems]
    names += [f"{name}*" for name in theorems]
    while True:
        span = None
        chosen = ""
        for name in names:
            candidate = _innermost(text, name)
            if candidate is None:
                continue
            inner = text[candidate[1] : candidate[2]]
            if any(f"\\begin{{{other}}}" in inner for other in names):
                continue
            if span is None or candidate[0] < span[0]:
                span, chosen = candidate, name
        if span is None:
            return text
        body = text[span[1] : span[2]]
        text = text[: span[0]] + _environment_markup(chosen, body, placeholders, theorems) + text[span[3] :]


def _environment_markup(env: str, body: str, placeholders: Placeholders, theorems: Mapping[str, str]) -> str:
    h = placeholders.stash
    if env in LIST_ENVS:
        return _list_markup(env, body, placeholders)
    if env in QUOTE_ENVS:
        return "\n\n" + h("<blockquote>", "B") + body.strip() + h("</blockquote>", "E") + "\n\n"

    base = env.rstrip("*")
    note, pos = read_optional(body, 0)
    body = body[pos:].strip()
    title = theorems.get(env) or theorems.get(base) or base.capitalize()
    css = re.sub(r"[^a-z0-9-]", "-", base.lower())
    if base == "proof":
        opening = h(f'<div class="proof"><em class="theorem-title">{html.escape(title)}.</em> ', "B")
        return "\n\n" + opening + body + h(' <span class="qed">\u220e</span></div>', "E") + "\n\n"
    parts = [h(f'<div class="theorem theorem-{css}"><strong class="theorem-title">{html.escape(title)}', "B")]
    if note:
        parts += [h(" ("), note, h(")")]
    parts += [h(".</strong> "), body, h("</div>", "E")]
    return "\n\n" + "".join(parts) + "\n\n"


# -- headings ---------------------------------------------------------------


def convert_headings(text: str, placeholders: Placeholders, section_number: str | None) -> str:
    """Subsection headings become ``h3``/``h4`` blocks numbered below the section."""
    numberer = HeadingNumberer.for_section(section_number)
    out: list[str] = []
    pos = 0
    for match in _SUBHEADING_RE.finditer(text):
        if match.start() < pos:
            continue
        heading = read_heading(text, match.end())
        if heading is None:
            continue
        title, end = heading
        out.append(text[pos : match.start()])
        kind, starred = match.group(1), bool(match.group(2))
        if kind in ("paragraph", "subparagraph"):
            out += [placeholders.stash('<strong class="paper-paragraph">'), title.strip(), placeholders.stash("</strong> ")]
        else:
            level = 2 if kind == "subsection" else 3
            number = numberer.next(level, starred=starred)
            tag = f"h{level + 1}"
            number_html = f'<span class="heading-number">{number}</span> ' if number else ""
            out += [
                "\n\n",
                placeholders.stash(f'<{tag} class="paper-{kind}">{number_html}', "B"),
                title.strip(),
                placeholders.stash(f"</{tag}>", "E"),
                "\n\n",
            ]
        pos = end
    out.append(text[pos:])
    return re.sub(r"\\appendix(?![A-Za-z@])", "", "".join(out))


# -- footnotes --------------------------------------------------------------


def footnote_ref(fn_id: int) -> str:
    return f'<sup class="footnote-ref"><a href="#fn-{fn_id}" id="fnref-{fn_id}">{fn_id}</a></sup>'


def convert_footnote_refs(text: str, placeholders: Placeholders) -> str:
    def repl(match: re.Match[str]) -> str:
        if match.group(1) != "N":
            return match.group(0)
        return placeholders.stash(footnote_ref(int(match.group(2))))

    return TOKEN_RE.sub(repl, text)


# -- paragraphs -------------------------------------------------------------


def wrap_paragraphs(text: str) -> str:
    """Wrap prose in ``<p>`` while leaving block regions and display tokens alone."""
    chunks: list[str] = []
    prose: list[str] = []
    depth = 0
    block: list[str] = []
    pos = 0

    def flush_prose() -> None:
        if prose:
            chunks.extend(_paragraphs("".join(prose)))
            prose.clear()

    for match in TOKEN_RE.finditer(text):
        kind = match.group(1)
        between = text[pos : match.start()]
        pos = match.end()
        if depth > 0:
            block.append(between)
            block.append(match.group(0))
            if kind == "B":
                depth += 1
            elif kind == "E":
                depth -= 1
                if depth == 0:
                    chunks.append("".join(block).strip())
                    block.clear()
            continue
        prose.append(between)
        if kind == "B":
            flush_prose()
            depth = 1
            block.append(match.group(0))
        elif kind == "D":
            flush_prose()
            chunks.append(match.group(0))
        else:
            prose.append(match.group(0))

    rest = text[pos:]
    if depth > 0:
        block.append(rest)
        chunks.append("".join(block).strip())
    else:
        prose.append(rest)
        flush_prose()
    return "\n".join(chunk for chunk in chunks if chunk)


def _paragraphs(text: str) -> list[str]:
    out = []
    for part in re.split(r"\n\s*\n", text):
        part = _SPACE_RE.sub(" ", part).strip()
        if not part:
            continue
        if _TOKEN_ONLY_RE.match(part):
            out.append(part)
        else:
            out.append(f"<p>{part}</p>")
    return out
