"""Parser package."""

from .base import (
    BibEntry,
    Bibliography,
    DocumentStats,
    Figure,
    Footnote,
    FrontMatter,
    Label,
    LabelTable,
    Macro,
    MacroTable,
    MathSpan,
    Parsed,
    PartiallyParsed,
    Section,
    SourceDocument,
    TableBlock,
)

__all__ = [
    "BibEntry",
    "Bibliography",
    "DocumentStats",
    "Figure",
    "Footnote",
    "FrontMatter",
    "Label",
    "LabelTable",
    "Macro",
    "MacroTable",
    "MathSpan",
    "Parsed",
    "PartiallyParsed",
    "Section",
    "SourceDocument",
    "TableBlock",
]
