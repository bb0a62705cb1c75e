from __future__ import annotations

import html
from pathlib import Path
from typing import Mapping

import pytest

from scholarize.config import Settings
from scholarize.converter import TeXConverter
from scholarize.parser.base import LabelTable
from scholarize.placeholders import Placeholders
from scholarize.renderer.math import MathResult


class FakeMathRenderer:
    """Deterministic stand-in: echoes the LaTeX, fails on ``\\broken``."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, bool, dict[str, str]]] = []

    def render(self, latex: str, display_mode: bool, macros: Mapping[str, str]) -> MathResult:
        self.calls.append((latex, display_mode, dict(macros)))
        if "\\broken" in latex:
            return MathResult(html="", error="unknown command \\broken")
        tag = "mdisplay" if display_mode else "minline"
        return MathResult(html=f"<{tag}>{html.escape(latex)}</{tag}>")


@pytest.fixture
def fake_math() -> FakeMathRenderer:
    return FakeMathRenderer()


@pytest.fixture
def converter(fake_math: FakeMathRenderer) -> TeXConverter:
    return TeXConverter(Settings(), fake_math)


@pytest.fixture
def placeholders() -> Placeholders:
    return Placeholders("t")


@pytest.fixture
def empty_labels() -> LabelTable:
    return LabelTable()


def write_tex(directory: Path, body: str, *, preamble: str = "", name: str = "main.tex") -> Path:
    path = directory / name
    path.write_text(
        "\\documentclass{article}\n" + preamble + "\n\\begin{document}\n" + body + "\n\\end{document}\n",
        encoding="utf-8",
    )
    return path
