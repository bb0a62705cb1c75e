"""Two-pass cross-reference handling.

Pass one walks the body once, left to right, and numbers every ``\\label`` by
the construct that encloses it. Pass two rewrites ``\\ref``-style commands
into links and leftover labels into anchors.
"""

from __future__ import annotations

import html
import logging
import re

from scholarize.errors import Diagnostic, LabelUnresolved
from scholarize.placeholders import Placeholders

from .base import Label, LabelTable
from .mathscan import EQUATION_ENVS
from .sections import SECTION_LEVELS, HeadingNumberer, read_heading

logger = logging.getLogger(__name__)

FIGURE_ENVS = ("figure", "wrapfigure")
TABLE_ENVS = ("table", "wraptable")

_SCAN_RE = re.compile(
    r"\\begin\s*\{(?P<begin>[A-Za-z]+\*?)\}"
    r"|\\end\s*\{(?P<end>[A-Za-z]+\*?)\}"
    r"|\\(?P<heading>section|subsection|subsubsection)(?![A-Za-z@])(?P<star>\*?)"
    r"|\\(?P<appendix>appendix)(?![A-Za-z@])"
    r"|\\label\s*\{(?P<label>[^{}]*)\}"
)
_REF_RE = re.compile(r"\\(eqref|autoref|cref|Cref|ref)(?![A-Za-z@])\*?\s*\{([^{}]*)\}")
_LABEL_RE = re.compile(r"\\label\s*\{([^{}]*)\}")
_WORD_BEFORE_RE = re.compile(r"([A-Za-z§]+)\.?(?:~|\s|\\,|\\ )*$")

SHORT_PREFIX = {"equation": "Eq.", "figure": "Fig.", "table": "Table", "section": "Section"}
LONG_PREFIX = {"equation": "Equation", "figure": "Figure", "table": "Table", "section": "Section"}

_KIND_WORDS = {
    "equation": {"eq", "eqs", "eqn", "eqns", "equation", "equations"},
    "figure": {"fig", "figs", "figure", "figures"},
    "table": {"tab", "tabs", "table", "tables"},
    "section": {"sec", "secs", "section", "sections", "appendix", "appendices", "§"},
}


def _base_env(name: str) -> str:
    return name.rstrip("*")


def collect_labels(body: str) -> LabelTable:
    """Number every label in one deterministic scan.

    Figure and table counters advance on each environment, labelled or not,
    so references agree with rendered captions. Equation numbers advance
    per label inside an equation-family environment. A label inside or
    directly after a heading takes the heading's number. Everything else is
    recorded as ``unknown``.
    """
    labels = LabelTable()
    counters = {"equation": 0, "figure": 0, "table": 0}
    stack: list[tuple[str, int | None]] = []
    numberer = HeadingNumberer()
    heading: tuple[int, str | None] | None = None

    for match in _SCAN_RE.finditer(body):
        if match.group("begin"):
            env = _base_env(match.group("begin"))
            ordinal = None
            if env in FIGURE_ENVS:
                counters["figure"] += 1
                ordinal = counters["figure"]
            elif env in TABLE_ENVS:
                counters["table"] += 1
                ordinal = counters["table"]
            stack.append((env, ordinal))
            continue

        if match.group("end"):
            env = _base_env(match.group("end"))
            for idx in range(len(stack) - 1, -1, -1):
                if stack[idx][0] == env:
                    del stack[idx:]
                    break
            continue

        if match.group("appendix"):
            numberer.start_appendix()
            continue

        if match.group("heading"):
            level = SECTION_LEVELS[match.group("heading")]
            read = read_heading(body, match.end())
            if read is None:
                continue
            number = numberer.next(level, starred=bool(match.group("star")))
            heading = (read[1], number)
            continue

        key = match.group("label").strip()
        if not key:
            continue
        label = _classify(key, match.start(), body, stack, counters, heading)
        if not labels.add(label):
            logger.warning("Duplicate label %r ignored", key)

    logger.debug("Collected %d labels", len(labels))
    return labels


def _classify(
    key: str,
    pos: int,
    body: str,
    stack: list[tuple[str, int | None]],
    counters: dict[str, int],
    heading: tuple[int, str | None] | None,
) -> Label:
    for env, ordinal in reversed(stack):
        if env in EQUATION_ENVS:
            counters["equation"] += 1
            return Label(key, "equation", counters["equation"], str(counters["equation"]))
        if env in FIGURE_ENVS or env in TABLE_ENVS:
            if ordinal is None:
                continue
            kind = "figure" if env in FIGURE_ENVS else "table"
            return Label(key, kind, ordinal, str(ordinal))

    if heading is not None:
        title_end, number = heading
        if number is not None and (pos < title_end or not body[title_end:pos].strip()):
            return Label(key, "section", None, number)
    return Label(key, "unknown", None, "?")


def resolve_references(
    text: str,
    labels: LabelTable,
    placeholders: Placeholders,
    *,
    diagnostics: list[Diagnostic] | None = None,
) -> str:
    """Rewrite references into links and remaining labels into anchors."""

    def ref_repl(match: re.Match[str]) -> str:
        command = match.group(1)
        keys = [k.strip() for k in match.group(2).split(",") if k.strip()]
        word = _WORD_BEFORE_RE.search(text, max(0, match.start() - 40), match.start())
        named_kind = _kind_named_by(word.group(1)) if word else None
        links = [_reference(command, key, labels, named_kind, diagnostics) for key in keys]
        return placeholders.stash(", ".join(links)) if links else ""

    text = _REF_RE.sub(ref_repl, text)
    return _LABEL_RE.sub(lambda m: anchor(m.group(1).strip(), placeholders), text)


def anchor(key: str, placeholders: Placeholders) -> str:
    return placeholders.stash(f'<span id="{html.escape(key, quote=True)}" class="label-anchor"></span>')


def _kind_named_by(word: str) -> str | None:
    lowered = word.lower()
    for kind, words in _KIND_WORDS.items():
        if lowered in words:
            return kind
    return None


def _reference(
    command: str,
    key: str,
    labels: LabelTable,
    named_kind: str | None,
    diagnostics: list[Diagnostic] | None,
) -> str:
    label = labels.get(key)
    if label is None:
        error = LabelUnresolved(f"\\{command}{{{key}}} has no matching \\label")
        logger.warning("%s", error)
        if diagnostics is not None:
            diagnostics.append(Diagnostic.from_error("labels", error))
        return "(?)" if command == "eqref" else "?"

    href = html.escape(key, quote=True)
    if command == "eqref":
        return f'<a class="eq-ref" href="#{href}">({label.number})</a>'

    prefixes = SHORT_PREFIX if command == "ref" else LONG_PREFIX
    prefix = "" if named_kind == label.kind else prefixes.get(label.kind, "")
    text = f"{prefix} {label.number}" if prefix else label.number
    return f'<a class="cross-ref" href="#{href}">{text}</a>'
