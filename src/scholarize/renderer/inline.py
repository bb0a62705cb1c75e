"""Inline formatting: escaping, text styles, special characters and leftover commands."""

from __future__ import annotations

import html
import re

from scholarize.parser.texutil import (
    UnbalancedBraces,
    convert_accents,
    read_balanced_braces,
    read_optional,
    remove_command,
    replace_command,
    skip_spaces,
)
from scholarize.placeholders import Placeholders

FORMAT_TAGS = {
    "textbf": ("<strong>", "</strong>"),
    "bm": ("<strong>", "</strong>"),
    "textit": ("<em>", "</em>"),
    "emph": ("<em>", "</em>"),
    "textsl": ("<em>", "</em>"),
    "texttt": ("<code>", "</code>"),
    "underline": ("<u>", "</u>"),
    "uline": ("<u>", "</u>"),
    "sout": ("<s>", "</s>"),
    "textsc": ('<span class="small-caps">', "</span>"),
    "textsuperscript": ("<sup>", "</sup>"),
    "textsubscript": ("<sub>", "</sub>"),
}

_OLD_STYLE = {
    "bf": "textbf",
    "bfseries": "textbf",
    "it": "textit",
    "itshape": "textit",
    "em": "emph",
    "sl": "textsl",
    "tt": "texttt",
    "ttfamily": "texttt",
    "sc": "textsc",
    "scshape": "textsc",
}

SYMBOLS = {
    "ldots": "\u2026",
    "dots": "\u2026",
    "textellipsis": "\u2026",
    "S": "\u00a7",
    "P": "\u00b6",
    "dag": "\u2020",
    "dagger": "\u2020",
    "ddag": "\u2021",
    "ddagger": "\u2021",
    "textbullet": "\u2022",
    "textperiodcentered": "\u00b7",
    "copyright": "\u00a9",
    "textcopyright": "\u00a9",
    "textregistered": "\u00ae",
    "texttrademark": "\u2122",
    "pounds": "\u00a3",
    "euro": "\u20ac",
    "textdegree": "\u00b0",
    "textemdash": "\u2014",
    "textendash": "\u2013",
    "textasciitilde": "&#126;",
    "textasciicircum": "^",
    "textbackslash": "&#92;",
    "textbar": "|",
    "textless": "&lt;",
    "textgreater": "&gt;",
    "textunderscore": "&#95;",
    "LaTeX": "LaTeX",
    "TeX": "TeX",
    "BibTeX": "BibTeX",
    "eg": "e.g.",
    "ie": "i.e.",
    "etal": "et al.",
}

# dropped with their arguments
_LAYOUT_COMMANDS = {
    "vspace": 1,
    "hspace": 1,
    "setlength": 2,
    "addtolength": 2,
    "setcounter": 2,
    "addtocounter": 2,
    "rule": 2,
    "phantom": 1,
    "hphantom": 1,
    "vphantom": 1,
    "includegraphics": 1,
    "footnotemark": 0,
    "newpage": 0,
    "clearpage": 0,
    "cleardoublepage": 0,
    "pagebreak": 0,
    "linebreak": 0,
    "centering": 0,
    "raggedright": 0,
    "raggedleft": 0,
    "noindent": 0,
    "indent": 0,
    "par": 0,
    "medskip": 0,
    "smallskip": 0,
    "bigskip": 0,
    "hfill": 0,
    "vfill": 0,
    "tiny": 0,
    "scriptsize": 0,
    "footnotesize": 0,
    "small": 0,
    "normalsize": 0,
    "large": 0,
    "Large": 0,
    "LARGE": 0,
    "huge": 0,
    "Huge": 0,
    "protect": 0,
    "relax": 0,
    "maketitle": 0,
}

# ``(arity, index of the argument that is kept)``
_WRAPPERS = {
    "textcolor": (2, 1),
    "colorbox": (2, 1),
    "fbox": (1, 0),
    "mbox": (1, 0),
    "hbox": (1, 0),
    "parbox": (2, 1),
    "raisebox": (2, 1),
    "scalebox": (2, 1),
    "resizebox": (3, 2),
    "makebox": (1, 0),
    "text": (1, 0),
}

_ENV_ARGS = {"minipage": 1, "multicols": 1, "adjustbox": 1, "tcolorbox": 0, "center": 0, "flushleft": 0, "flushright": 0}

_OLD_STYLE_RE = re.compile(r"\{\\(" + "|".join(sorted(_OLD_STYLE, key=len, reverse=True)) + r")(?![A-Za-z])\s*")
_SYMBOL_RE = re.compile(r"\\(" + "|".join(sorted(SYMBOLS, key=len, reverse=True)) + r")(?![A-Za-z])(?:\{\})?")
_LINE_BREAK_RE = re.compile(r"\\\\\*?(?:\s*\[[^\]]*\])?|\\newline(?![A-Za-z])")
_BEGIN_RE = re.compile(r"\\begin\{([A-Za-z]+\*?)\}")
_END_RE = re.compile(r"\\end\{[A-Za-z]+\*?\}")
_COMMAND_RE = re.compile(r"\\([A-Za-z@]+)\*?")
_CONTROL_SYMBOL_RE = re.compile(r"\\([,;:! /@\-])")
_SKIP_RE = re.compile(r"\\(?:vskip|hskip|kern)\s*-?[0-9.]+\s*[a-z]{2}(?:\s+plus\s+[0-9.]+\s*[a-z]{2})?")

_MAX_NESTING = 8


def format_inline(text: str, placeholders: Placeholders) -> str:
    """Turn the TeX left in a fragment into escaped HTML text.

    Structure, math, references and citations have already been swapped for
    placeholder tokens, so everything here is prose.
    """
    text = html.escape(text, quote=False)
    text = _escape_specials(text)
    text = _LINE_BREAK_RE.sub(lambda m: placeholders.stash("<br>"), text)
    text = _drop_layout(text)
    text = _format_commands(text, placeholders)
    text = convert_accents(text)
    text = _SYMBOL_RE.sub(lambda m: SYMBOLS[m.group(1)], text)
    text = _typography(text)
    text = _strip_environments(text)
    text = _CONTROL_SYMBOL_RE.sub(lambda m: " " if m.group(1) in " ,;:" else "", text)
    text = _unwrap_commands(text)
    text = text.replace("{", "").replace("}", "").replace("\\", "")
    return _collapse_whitespace(text)


def _escape_specials(text: str) -> str:
    for raw, entity in (
        ("\\_", "&#95;"),
        ("\\#", "&#35;"),
        ("\\{", "&#123;"),
        ("\\}", "&#125;"),
        ("\\&amp;", "&amp;"),
        ("\\%", "%"),
        ("\\$", "$"),
    ):
        text = text.replace(raw, entity)
    return text


def _drop_layout(text: str) -> str:
    text = _SKIP_RE.sub("", text)
    for name, nargs in _LAYOUT_COMMANDS.items():
        if nargs:
            text = remove_command(text, name, nargs=nargs)
        else:
            text = re.sub(rf"\\{name}(?![A-Za-z@])\s?", "", text)
    for name, (nargs, keep) in _WRAPPERS.items():
        text = replace_command(text, name, lambda args, _opts, keep=keep: args[keep], nargs=nargs)
    return text


def _format_commands(text: str, placeholders: Placeholders) -> str:
    for _ in range(_MAX_NESTING):
        before = text
        text = _rewrite_old_style(text)
        for name, (opening, closing) in FORMAT_TAGS.items():
            text = replace_command(
                text,
                name,
                lambda args, _opts, o=opening, c=closing: placeholders.stash(o) + args[0] + placeholders.stash(c),
            )
        if text == before:
            break
    return text


def _rewrite_old_style(text: str) -> str:
    """``{\\bf x}`` becomes ``\\textbf{x}`` so it goes through the normal path."""
    out: list[str] = []
    i = 0
    while True:
        match = _OLD_STYLE_RE.search(text, i)
        if not match:
            out.append(text[i:])
            return "".join(out)
        try:
            content, end = read_balanced_braces(text, match.start(), strict=True)
        except UnbalancedBraces:
            out.append(text[i : match.end()])
            i = match.end()
            continue
        inner = content[match.end() - match.start() - 1 :]
        out.append(text[i : match.start()])
        out.append(f"\\{_OLD_STYLE[match.group(1)]}{{{inner}}}")
        i = end


def _typography(text: str) -> str:
    text = text.replace("~", "\u00a0")
    text = text.replace("---", "\u2014").replace("--", "\u2013")
    text = text.replace("``", "\u201c").replace("''", "\u201d")
    return re.sub(r"`", "\u2018", text)


def _strip_environments(text: str) -> str:
    out: list[str] = []
    i = 0
    for match in _BEGIN_RE.finditer(text):
        if match.start() < i:
            continue
        out.append(text[i : match.start()])
        pos = match.end()
        _opt, pos = read_optional(text, pos)
        for _ in range(_ENV_ARGS.get(match.group(1).rstrip("*"), 0)):
            probe = skip_spaces(text, pos)
            if probe < len(text) and text[probe] == "{":
                _arg, pos = read_balanced_braces(text, probe)
        i = pos
    out.append(text[i:])
    return _END_RE.sub("", "".join(out))


def _unwrap_commands(text: str) -> str:
    """Unknown ``\\cmd[opt]{arg}`` keeps ``arg``; an unknown bare ``\\cmd`` disappears."""
    pos = 0
    while True:
        match = _COMMAND_RE.search(text, pos)
        if not match:
            return text
        _opt, after = read_optional(text, match.end())
        if after < len(text) and text[after] == "{":
            content, end = read_balanced_braces(text, after)
            text = text[: match.start()] + content + text[end:]
        else:
            text = text[: match.start()] + text[match.end() :]
        pos = match.start()


def _collapse_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()
