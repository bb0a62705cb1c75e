"""Source resolution: entry-file detection, include inlining, archive unpacking."""

from __future__ import annotations

import gzip
import logging
import re
import tarfile
from pathlib import Path
from zipfile import ZipFile, is_zipfile

from scholarize.errors import Diagnostic, InputResolutionFailure, SourceNotFound

from .base import SourceDocument
from .texutil import find_environment, strip_comments

logger = logging.getLogger(__name__)

_INCLUDE_RE = re.compile(r"\\(input|include|subfile)\s*\{([^{}]+)\}|\\(input)\s+([^\s{}\\]+)")
_IF_RE = re.compile(r"\\(if[a-zA-Z@]*|fi)(?![a-zA-Z@])")

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar", ".gz", ".zip")


def strip_tex_comments(text: str) -> str:
    """Drop ``%`` comments, ``comment`` environments and ``\\iffalse`` blocks."""
    text = strip_comments(text)
    while True:
        span = find_environment(text, "comment")
        if span is None:
            break
        text = text[: span[0]] + text[span[3] :]
    return _strip_iffalse(text)


def _strip_iffalse(text: str) -> str:
    out: list[str] = []
    i = 0
    while True:
        start = text.find("\\iffalse", i)
        if start == -1:
            out.append(text[i:])
            break
        out.append(text[i:start])
        depth = 0
        end = len(text)
        for match in _IF_RE.finditer(text, start):
            if match.group(1) == "fi":
                depth -= 1
                if depth == 0:
                    end = match.end()
                    break
            else:
                depth += 1
        i = end
    return "".join(out)


def find_entry_file(root: Path) -> Path:
    tex_files = sorted(p for p in Path(root).rglob("*.tex") if p.is_file())
    if not tex_files:
        raise SourceNotFound(f"No .tex file found under {root}")

    best_score = -1
    best_path: Path | None = None
    for path in tex_files:
        text = strip_comments(path.read_text(encoding="utf-8", errors="ignore"))
        if "\\documentclass" not in text and "\\begin{document}" not in text:
            continue
        score = text.count("\\begin{document}") * 10 + text.count("\\section")
        if path.name.lower() in {"main.tex", "paper.tex", "ms.tex"}:
            score += 5
        if score > best_score:
            best_score = score
            best_path = path
    if best_path is not None:
        return best_path

    return max(tex_files, key=lambda p: p.stat().st_size)


def resolve_inputs(
    text: str,
    root: Path,
    *,
    diagnostics: list[Diagnostic] | None = None,
    _stack: tuple[Path, ...] = (),
) -> str:
    """Inline ``\\input``/``\\include``/``\\subfile`` targets recursively.

    Paths resolve against the source root, as LaTeX does. Unreadable or
    circular targets leave an HTML comment marker naming the command.
    """
    root = Path(root)

    def repl(match: re.Match[str]) -> str:
        command = match.group(1) or match.group(3)
        name = (match.group(2) or match.group(4)).strip()
        original = f"\\{command}{{{name}}}"
        target = _locate_include(root, name)
        if target is None:
            return _unresolved(original, f"{name} not found", diagnostics)
        if target in _stack:
            return _unresolved(original, f"circular include of {target.name}", diagnostics)
        try:
            content = target.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            return _unresolved(original, str(exc), diagnostics)
        content = strip_tex_comments(content)
        logger.debug("Inlined %s", target)
        return resolve_inputs(content, root, diagnostics=diagnostics, _stack=_stack + (target,))

    return _INCLUDE_RE.sub(repl, text)


def _locate_include(root: Path, name: str) -> Path | None:
    for candidate in (root / name, root / f"{name}.tex"):
        if candidate.is_file():
            return candidate.resolve()
    return None


def _unresolved(original: str, reason: str, diagnostics: list[Diagnostic] | None) -> str:
    logger.warning("Could not resolve %s (%s)", original, reason)
    if diagnostics is not None:
        diagnostics.append(Diagnostic.from_error("source", InputResolutionFailure(f"{original}: {reason}")))
    return f"<!-- unresolved: {original} -->"


def resolve_source(
    root: Path,
    *,
    entry: Path | None = None,
    diagnostics: list[Diagnostic] | None = None,
) -> SourceDocument:
    root = Path(root).resolve()
    entry = Path(entry).resolve() if entry is not None else find_entry_file(root)
    logger.info("Entry file: %s", entry.relative_to(root))
    raw = entry.read_text(encoding="utf-8", errors="ignore")
    text = resolve_inputs(strip_tex_comments(raw), root, diagnostics=diagnostics, _stack=(entry.resolve(),))
    return SourceDocument(entry_path=entry, root=root, text=text)


def split_document(text: str) -> tuple[str, str]:
    """Split into ``(preamble, body)``; without a document environment the whole text is body."""
    begin = text.find("\\begin{document}")
    if begin == -1:
        return "", text
    body_start = begin + len("\\begin{document}")
    end = text.find("\\end{document}", body_start)
    if end == -1:
        end = len(text)
    return text[:begin], text[body_start:end]


def is_tar_archive(path: Path) -> bool:
    try:
        return tarfile.is_tarfile(path)
    except OSError:
        return False


def is_archive(path: Path) -> bool:
    lowered = Path(path).name.lower()
    return any(lowered.endswith(ext) for ext in ARCHIVE_SUFFIXES)


def extract_archive(path: Path, dest: Path) -> Path:
    """Unpack a source archive into ``dest`` and return ``dest``.

    Handles tarballs, zip files and the gzip'd single ``.tex`` payloads
    arXiv serves for one-file submissions.
    """
    path = Path(path)
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)

    if is_zipfile(path):
        with ZipFile(path) as zf:
            zf.extractall(dest)
        return dest

    if is_tar_archive(path):
        with tarfile.open(path, "r:*") as tf:
            tf.extractall(dest, filter="data")
        return dest

    data = path.read_bytes()
    if data[:2] == b"\x1f\x8b":
        data = gzip.decompress(data)
    if data[:4] == b"%PDF":
        raise SourceNotFound(f"{path.name} contains a PDF, not TeX source")
    (dest / "main.tex").write_bytes(data)
    return dest
