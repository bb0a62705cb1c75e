"""User macro extraction and fixed-point expansion."""

from __future__ import annotations

import bisect
import logging
import re
from typing import Iterator, Mapping

from scholarize.errors import Diagnostic, MacroParseError

from .base import Macro, MacroTable
from .mathscan import math_regions
from .texutil import (
    UnbalancedBraces,
    is_escaped,
    is_escaped,
    read_argument,
    read_balanced_braces,
    read_balanced_brackets,
    read_optional,
    replace_command,
    skip_spaces,
)

logger = logging.getLogger(__name__)

_DEFINITION_RE = re.compile(
    r"\\(newcommand|renewcommand|providecommand|DeclareRobustCommand|DeclareMathOperator|def|gdef|edef|let)"
    r"(\*?)(?![A-Za-z@])"
)
_NAME_RE = re.compile(r"\\([A-Za-z@]+|[^A-Za-z@\s])")
_PARAM_RE = re.compile(r"#(\d)")

DEFAULT_MATH_MACROS = {
    "\\R": "\\mathbb{R}",
    "\\N": "\\mathbb{N}",
    "\\Z": "\\mathbb{Z}",
}


def extract_macros(text: str, *, diagnostics: list[Diagnostic] | None = None) -> MacroTable:
    """Collect every macro definition in ``text``.

    A definition that cannot be parsed is dropped on its own; the rest of the
    preamble is still read.
    """
    macros: dict[str, Macro] = {}
    for _start, _end, result, command in _scan_definitions(text):
        if isinstance(result, MacroParseError):
            logger.warning("Skipping macro definition: %s", result)
            if diagnostics is not None:
                diagnostics.append(Diagnostic.from_error("macros", result))
            continue
        if command == "providecommand" and result.name in macros:
            continue
        macros[result.name] = result
    logger.debug("Extracted %d macros", len(macros))
    return MacroTable(macros)


def remove_definitions(text: str) -> str:
    out: list[str] = []
    i = 0
    for start, end, result, _command in _scan_definitions(text):
        if isinstance(result, MacroParseError):
            continue
        out.append(text[i:start])
        i = end
    out.append(text[i:])
    return "".join(out)


def _scan_definitions(text: str) -> Iterator[tuple[int, int, Macro | MacroParseError, str]]:
    pos = 0
    while True:
        match = _DEFINITION_RE.search(text, pos)
        if not match:
            return
        command, star = match.group(1), match.group(2)
        try:
            if command in {"def", "gdef", "edef"}:
                macro, end = _parse_def(text, match.end())
            elif command == "let":
                macro, end = _parse_let(text, match.end())
            elif command == "DeclareMathOperator":
                macro, end = _parse_math_operator(text, match.end(), starred=bool(star))
            else:
                macro, end = _parse_newcommand(text, match.end())
        except MacroParseError as exc:
            yield match.start(), match.end(), exc, command
            pos = match.end()
            continue
        yield match.start(), end, macro, command
        pos = end


def _read_name(text: str, pos: int, command: str) -> tuple[str, int]:
    pos = skip_spaces(text, pos)
    if pos < len(text) and text[pos] == "{":
        inner, end = read_balanced_braces(text, pos)
        match = _NAME_RE.fullmatch(inner.strip())
        if not match:
            raise MacroParseError(command, f"invalid macro name {inner!r}")
        return match.group(1), end
    match = _NAME_RE.match(text, pos)
    if not match:
        raise MacroParseError(command, "missing macro name")
    return match.group(1), match.end()


def _read_body(text: str, pos: int, name: str) -> tuple[str, int]:
    pos = skip_spaces(text, pos)
    if pos >= len(text) or text[pos] != "{":
        raise MacroParseError(name, "missing body")
    try:
        return read_balanced_braces(text, pos, strict=True)
    except UnbalancedBraces as exc:
        raise MacroParseError(name, f"unterminated body ({exc})") from exc


def _parse_newcommand(text: str, pos: int) -> tuple[Macro, int]:
    name, pos = _read_name(text, pos, "newcommand")
    arity = 0
    default = None
    probe = skip_spaces(text, pos)
    if probe < len(text) and text[probe] == "[":
        count, pos = read_balanced_brackets(text, probe)
        if not count.strip().isdigit():
            raise MacroParseError(name, f"invalid argument count {count!r}")
        arity = int(count)
        default, pos = read_optional(text, pos)
    body, end = _read_body(text, pos, name)
    body, math_only = _unwrap_vendor_idioms(body)
    return Macro(name=name, arity=arity, body=body, default=default, math_only=math_only), end


def _parse_def(text: str, pos: int) -> tuple[Macro, int]:
    match = _NAME_RE.match(text, skip_spaces(text, pos))
    if not match:
        raise MacroParseError("def", "missing macro name")
    name = match.group(1)
    brace = text.find("{", match.end())
    if brace == -1:
        raise MacroParseError(name, "missing body")
    params = text[match.end() : brace]
    if params.strip() and not _PARAM_RE.search(params):
        raise MacroParseError(name, f"unsupported parameter text {params.strip()!r}")
    arity = max((int(d) for d in _PARAM_RE.findall(params)), default=0)
    body, end = _read_body(text, brace, name)
    body, math_only = _unwrap_vendor_idioms(body)
    return Macro(name=name, arity=arity, body=body, math_only=math_only), end


def _parse_let(text: str, pos: int) -> tuple[Macro, int]:
    name_match = _NAME_RE.match(text, skip_spaces(text, pos))
    if not name_match:
        raise MacroParseError("let", "missing macro name")
    pos = skip_spaces(text, name_match.end())
    if pos < len(text) and text[pos] == "=":
        pos = skip_spaces(text, pos + 1)
    target = _NAME_RE.match(text, pos)
    if not target:
        raise MacroParseError(name_match.group(1), "missing \\let target")
    return Macro(name=name_match.group(1), arity=0, body=target.group(0)), target.end()


def _parse_math_operator(text: str, pos: int, *, starred: bool) -> tuple[Macro, int]:
    name, pos = _read_name(text, pos, "DeclareMathOperator")
    body, end = _read_body(text, pos, name)
    operator = "\\operatorname*" if starred else "\\operatorname"
    return Macro(name=name, arity=0, body=f"{operator}{{{body}}}", math_only=True), end


def _unwrap_vendor_idioms(body: str) -> tuple[str, bool]:
    def unwrap_mbox(args: list[str], _opts: list[str]) -> str:
        inner = args[0].strip()
        if inner.startswith("\\boldmath"):
            symbol = inner[len("\\boldmath") :].strip()
            if symbol.startswith("{") and symbol.endswith("}"):
                symbol = symbol[1:-1].strip()
            return f"\\boldsymbol{{{symbol.strip('$').strip()}}}"
        return f"\\mbox{{{args[0]}}}"

    body = replace_command(body, "mbox", unwrap_mbox)
    stripped = body.strip()
    if stripped.startswith("\\ensuremath"):
        probe = skip_spaces(stripped, len("\\ensuremath"))
        if probe < len(stripped) and stripped[probe] == "{":
            inner, end = read_balanced_braces(stripped, probe)
            if not stripped[end:].strip():
                return inner, True
    if "\\ensuremath" in body:
        body = replace_command(body, "ensuremath", lambda args, _opts: args[0])
    return body, False


def expand_macros(
    text: str,
    table: MacroTable,
    *,
    max_iterations: int = 16,
    diagnostics: list[Diagnostic] | None = None,
) -> str:
    """Substitute arity-0 and arity-1 macros until no invocation remains.

    Each pass scans left to right without re-reading what it inserted; the
    next pass picks up nested invocations. Recursive definitions are cut off
    after ``max_iterations`` passes or when the text grows past a fixed
    bound, leaving the remaining invocations as they are.
    """
    expandable = table.expandable()
    return _expand_to_fixed_point(
        text,
        expandable,
        max_iterations=max_iterations,
        track_math=any(m.math_only for m in expandable.values()),
        diagnostics=diagnostics,
    )


def expand_math_macros(latex: str, macros: Mapping[str, str], *, max_iterations: int = 8) -> str:
    """Expand a typesetter-style macro map (``"\\name" -> body``) inside math.

    Arity is inferred from the highest ``#n`` in each body, so multi-argument
    macros are substituted too.
    """
    table: dict[str, Macro] = {}
    for raw_name, body in macros.items():
        name = raw_name.lstrip("\\")
        if not name:
            continue
        arity = max((int(d) for d in _PARAM_RE.findall(body)), default=0)
        table[name] = Macro(name=name, arity=arity, body=body)
    return _expand_to_fixed_point(latex, table, max_iterations=max_iterations, track_math=False)


def _expand_to_fixed_point(
    text: str,
    macros: dict[str, Macro],
    *,
    max_iterations: int,
    track_math: bool,
    diagnostics: list[Diagnostic] | None = None,
) -> str:
    if not macros:
        return text
    pattern = _invocation_pattern(macros)
    limit = len(text) * 8 + 65536
    for _ in range(max_iterations):
        text, count = _expand_once(text, pattern, macros, track_math=track_math)
        if count == 0:
            return text
        if len(text) > limit:
            break
    if pattern.search(text):
        message = f"macro expansion stopped after {max_iterations} passes; recursive definitions left unexpanded"
        logger.warning(message)
        if diagnostics is not None:
            diagnostics.append(Diagnostic.from_error("macros", MacroParseError("expansion", message)))
    return text


def _invocation_pattern(macros: Mapping[str, Macro]) -> re.Pattern[str]:
    alternatives = []
    for name in sorted(macros, key=len, reverse=True):
        if re.fullmatch(r"[A-Za-z@]+", name):
            alternatives.append(re.escape(name) + r"(?![A-Za-z@])")
        else:
            alternatives.append(re.escape(name))
    return re.compile(r"\\(?:" + "|".join(alternatives) + ")")


def _expand_once(
    text: str,
    pattern: re.Pattern[str],
    macros: Mapping[str, Macro],
    *,
    track_math: bool,
) -> tuple[str, int]:
    regions = math_regions(text) if track_math else []
    starts = [start for start, _end in regions]
    out: list[str] = []
    count = 0
    i = 0
    for match in pattern.finditer(text):
        if match.start() < i or is_escaped(text, match.start()):
            continue
        macro = macros[match.group(0)[1:]]
        end = match.end()
        if macro.arity == 0:
            replacement = macro.body
            probe = skip_spaces(text, end)
            if text.startswith("{}", probe):
                end = probe + 2
        else:
            args, end = _read_invocation_args(text, end, macro)
            if args is None:
                continue
            replacement = _substitute(macro.body, args)
        if macro.math_only and not _inside(regions, starts, match.start()):
            replacement = f"${replacement}$"
        out.append(text[i : match.start()])
        out.append(replacement)
        i = end
        count += 1
    out.append(text[i:])
    return "".join(out), count


def _read_invocation_args(text: str, pos: int, macro: Macro) -> tuple[list[str] | None, int]:
    args: list[str] = []
    remaining = macro.arity
    if macro.default is not None:
        optional, pos = read_optional(text, pos)
        args.append(optional if optional is not None else macro.default)
        remaining -= 1
    for _ in range(remaining):
        arg = read_argument(text, pos)
        if arg is None:
            return None, pos
        value, pos = arg
        args.append(value)
    return args, pos


def _substitute(body: str, args: list[str]) -> str:
    return _PARAM_RE.sub(lambda m: args[int(m.group(1)) - 1] if 0 < int(m.group(1)) <= len(args) else m.group(0), body)


def _inside(regions: list[tuple[int, int]], starts: list[int], pos: int) -> bool:
    idx = bisect.bisect_right(starts, pos) - 1
    return idx >= 0 and regions[idx][0] <= pos < regions[idx][1]
