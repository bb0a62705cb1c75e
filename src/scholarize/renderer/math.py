"""Math isolation and rendering.

Every math span is swapped for a placeholder before any pass that could
read ``_``, ``*`` or ``<`` as markup, and only turned into HTML at the end.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Mapping, Protocol

from latex2mathml.converter import convert

from scholarize.errors import Diagnostic, MathRenderFailure
from scholarize.parser.base import LabelTable
from scholarize.parser.macros import DEFAULT_MATH_MACROS, expand_math_macros
from scholarize.parser.mathscan import SPLIT_ENVS, find_math_spans
from scholarize.parser.texutil import read_balanced_braces, read_optional, skip_spaces
from scholarize.placeholders import Placeholders

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"\\label\s*\{([^{}]*)\}")
_TAG_RE = re.compile(r"\\tag\*?\s*\{([^{}]*)\}")
_NONUMBER_RE = re.compile(r"\\(?:nonumber|notag)(?![A-Za-z@])")
_REF_RE = re.compile(r"\\(eqref|ref|autoref|cref|Cref)\*?\s*\{([^{}]*)\}")


@dataclass(frozen=True, slots=True)
class MathResult:
    html: str
    error: str | None = None


class MathRenderer(Protocol):
    def render(self, latex: str, display_mode: bool, macros: Mapping[str, str]) -> MathResult: ...


def error_html(raw: str, message: str) -> str:
    return f'<span class="math-error" title="{html.escape(message, quote=True)}">{html.escape(raw)}</span>'


class MathMLRenderer:
    """Typeset with latex2mathml, expanding the document's macros first.

    latex2mathml has no macro support of its own, so every user macro,
    multi-argument ones included, is substituted before conversion.
    """

    def render(self, latex: str, display_mode: bool, macros: Mapping[str, str]) -> MathResult:
        context = {**DEFAULT_MATH_MACROS, **macros}
        expanded = expand_math_macros(latex, context)
        try:
            mathml = convert(expanded, display="block" if display_mode else "inline")
        except Exception as exc:  # latex2mathml raises a mix of its own and builtin errors
            message = f"{type(exc).__name__}: {exc}"
            return MathResult(html=error_html(latex, message), error=message)
        return MathResult(html=mathml)


def split_align_lines(body: str) -> list[str]:
    """Split an align-style body on top-level ``\\\\`` and drop top-level ``&``.

    Separators nested in braces or inner environments (``cases``,
    ``aligned``, ``matrix``) are left alone.
    """
    lines: list[str] = []
    current: list[str] = []
    depth = 0
    env_depth = 0
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            if body.startswith("\\begin{", i):
                env_depth += 1
            elif body.startswith("\\end{", i):
                env_depth -= 1
            elif body.startswith("\\\\", i) and depth == 0 and env_depth == 0:
                lines.append("".join(current))
                current = []
                _opt, i = read_optional(body, i + 2)
                continue
            current.append(body[i : i + 2])
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == "&" and depth == 0 and env_depth == 0:
            current.append(" ")
            i += 1
            continue
        current.append(ch)
        i += 1
    lines.append("".join(current))
    return lines


def _math_number_text(command: str, key: str, labels: LabelTable) -> str:
    label = labels.get(key)
    number = label.number if label is not None else "?"
    return f"\\text{{({number})}}" if command == "eqref" else f"\\text{{{number}}}"


def clean_math(raw: str, labels: LabelTable) -> tuple[str, list[str], str | None]:
    """Strip numbering commands from a math body.

    Returns ``(latex, label_keys, tag)``; references inside math become their
    numbers.
    """
    keys = [k.strip() for k in _LABEL_RE.findall(raw) if k.strip()]
    tags = _TAG_RE.findall(raw)
    latex = _LABEL_RE.sub("", raw)
    latex = _TAG_RE.sub("", latex)
    latex = _NONUMBER_RE.sub("", latex)
    latex = _REF_RE.sub(lambda m: _math_number_text(m.group(1), m.group(2).strip(), labels), latex)
    return latex.strip(), keys, (tags[0].strip() if tags else None)


def _display_number(keys: list[str], tag: str | None, labels: LabelTable) -> str | None:
    if tag:
        return tag
    for key in keys:
        label = labels.get(key)
        if label is not None and label.kind == "equation":
            return label.number
    return None


def _stash_display(raw: str, placeholders: Placeholders, labels: LabelTable) -> str:
    latex, keys, tag = clean_math(raw, labels)
    if not latex:
        return ""
    span = placeholders.stash_math(
        latex,
        True,
        label=keys[0] if keys else None,
        number=_display_number(keys, tag, labels),
    )
    extra = [_anchor_html(key) for key in keys[1:]]
    prefix = placeholders.stash("".join(extra)) if extra else ""
    return prefix + span.placeholder_id


def _anchor_html(key: str) -> str:
    return f'<span id="{html.escape(key, quote=True)}" class="label-anchor"></span>'


def _strip_env_argument(env: str, body: str) -> str:
    if env.rstrip("*") != "alignat":
        return body
    probe = skip_spaces(body, 0)
    if probe < len(body) and body[probe] == "{":
        _n, end = read_balanced_braces(body, probe)
        return body[end:]
    return body


def isolate_math(text: str, placeholders: Placeholders, labels: LabelTable) -> str:
    """Replace every math span in ``text`` with a placeholder token.

    Align-family environments become one display token per line; display
    tokens are set off by blank lines so they never sit inside a paragraph.
    """
    out: list[str] = []
    i = 0
    for span in find_math_spans(text):
        out.append(text[i : span.start])
        i = span.end
        if not span.display:
            latex, _keys, _tag = clean_math(span.body, labels)
            if latex:
                out.append(placeholders.stash_math(latex, False).placeholder_id)
            continue

        env = (span.env or "").rstrip("*")
        body = _strip_env_argument(span.env or "", span.body)
        if env in SPLIT_ENVS:
            tokens = [_stash_display(line, placeholders, labels) for line in split_align_lines(body)]
        elif env == "multline":
            tokens = [_stash_display(" ".join(split_align_lines(body)), placeholders, labels)]
        else:
            tokens = [_stash_display(body, placeholders, labels)]
        tokens = [t for t in tokens if t]
        if tokens:
            out.append("\n\n" + "\n".join(tokens) + "\n\n")
    out.append(text[i:])
    return "".join(out)


def render_math(
    placeholders: Placeholders,
    renderer: MathRenderer,
    macros: Mapping[str, str],
    *,
    diagnostics: list[Diagnostic] | None = None,
) -> None:
    """Typeset every stashed math span and store the HTML under its token.

    A failing span renders its error fallback; the failure is recorded and
    never raised.
    """
    for token, span in placeholders.math.items():
        try:
            result = renderer.render(span.raw, span.display_mode, macros)
        except Exception as exc:  # pluggable collaborator
            message = f"{type(exc).__name__}: {exc}"
            result = MathResult(html=error_html(span.raw, message), error=message)

        if result.error:
            error = MathRenderFailure(f"{span.raw!r}: {result.error}")
            logger.warning("Math render failed: %s", error)
            if diagnostics is not None:
                diagnostics.append(Diagnostic.from_error("math", error))
        body = result.html or error_html(span.raw, result.error or "empty render")

        raw_attr = html.escape(span.raw, quote=True)
        if not span.display_mode:
            placeholders.values[token] = f'<span class="math-inline" data-raw="{raw_attr}">{body}</span>'
            continue
        number = f'<span class="eq-number">({html.escape(span.number)})</span>' if span.number else ""
        anchor = _anchor_html(span.label) if span.label else ""
        placeholders.values[token] = f'{anchor}<div class="math-display" data-raw="{raw_attr}">{body}{number}</div>'
