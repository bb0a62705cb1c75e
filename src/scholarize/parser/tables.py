"""``tabular`` cell-grid parsing."""

from __future__ import annotations

import re

from .base import TableBlock
from .texutil import read_balanced_braces, read_optional, replace_command, skip_spaces

TABULAR_ENVS = ("tabular", "tabular*", "tabularx", "tabulary", "longtable", "supertabular")
TABLE_ENVS = ("table", "table*", "wraptable")

_WIDTH_ARG_ENVS = ("tabular*", "tabularx", "tabulary")

_RULE_RE = re.compile(
    r"\\(?:hline|toprule|midrule|bottomrule|endhead|endfirsthead|endfoot|endlastfoot|hdashline)(?![A-Za-z@])"
    r"|\\addlinespace(?:\[[^\]]*\])?"
    r"|\\(?:cline|hhline|rowcolor|arrayrulecolor)\s*(?:\[[^\]]*\])?\{[^{}]*\}"
    r"|\\cmidrule\s*(?:\([^)]*\))?\s*(?:\[[^\]]*\])?\{[^{}]*\}"
    r"|\\(?:rule)\s*\{[^{}]*\}\s*\{[^{}]*\}"
)
_TABLE_BEGIN_RE = re.compile(r"\\begin\{(?:table|wraptable)\*?\}")


def skip_column_spec(body: str, env: str) -> int:
    """Offset just past the column specification (and width argument)."""
    _pos_opt, pos = read_optional(body, 0)
    for _ in range(2 if env in _WIDTH_ARG_ENVS else 1):
        probe = skip_spaces(body, pos)
        if probe < len(body) and body[probe] == "{":
            _spec, pos = read_balanced_braces(body, probe)
    return pos


def split_top_level(text: str, sep: str) -> list[str]:
    """Split on ``sep`` (``"\\\\"`` or ``"&"``) outside braces.

    Escaped characters are skipped, so ``\\&`` never splits a row. After a
    ``\\\\`` separator an optional ``[len]`` spacing argument is dropped.
    """
    parts: list[str] = []
    depth = 0
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            if sep == "\\\\" and depth == 0 and text.startswith("\\\\", i):
                parts.append(text[start:i])
                i += 2
                _opt, i = read_optional(text, i)
                start = i
                continue
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return parts


def _strip_cell_wrappers(text: str) -> str:
    text = _RULE_RE.sub("", text)
    text = replace_command(text, "multicolumn", lambda args, opts: args[2], nargs=3)
    text = replace_command(text, "multirow", lambda args, opts: args[2], nargs=3, max_optional=2)
    text = replace_command(text, "makecell", lambda args, opts: args[0].replace("\\\\", " "))
    return text.replace("\\tabularnewline", "\\\\")


def parse_tabular(body: str, env: str = "tabular") -> TableBlock:
    """Parse the inside of a tabular environment into a header and rows.

    Empty rows are dropped and every row is padded to the widest one.
    """
    content = _strip_cell_wrappers(body[skip_column_spec(body, env) :])
    rows: list[list[str]] = []
    for raw_row in split_top_level(content, "\\\\"):
        cells = [" ".join(cell.split()) for cell in split_top_level(raw_row, "&")]
        if any(cells):
            rows.append(cells)
    if not rows:
        return TableBlock()

    width = max(len(row) for row in rows)
    rows = [row + [""] * (width - len(row)) for row in rows]
    return TableBlock(headers=rows[0], rows=rows[1:])


def flatten_tabular(body: str, env: str, line_break: str) -> str:
    """Inline a nested tabular as text lines joined by ``line_break``."""
    block = parse_tabular(body, env)
    lines = [" ".join(c for c in row if c) for row in ([block.headers] if block.headers else []) + block.rows]
    return line_break.join(line for line in lines if line)


def count_table_envs(text: str) -> int:
    return len(_TABLE_BEGIN_RE.findall(text))
