"""Side-tables and intermediate records produced by the conversion stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Literal, Mapping


@dataclass(frozen=True, slots=True)
class SourceDocument:
    entry_path: Path
    root: Path
    text: str


@dataclass(frozen=True, slots=True)
class Macro:
    name: str
    arity: int
    body: str
    default: str | None = None
    math_only: bool = False


class MacroTable(Mapping[str, Macro]):
    """Read-only view over the macros found in a preamble."""

    def __init__(self, macros: dict[str, Macro] | None = None) -> None:
        self._macros: dict[str, Macro] = dict(macros or {})

    def __getitem__(self, name: str) -> Macro:
        return self._macros[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._macros)

    def __len__(self) -> int:
        return len(self._macros)

    def expandable(self) -> dict[str, Macro]:
        """Macros substituted eagerly into body text (arity 0 and 1)."""
        return {name: m for name, m in self._macros.items() if m.arity <= 1}

    def math_macros(self) -> dict[str, str]:
        """Name -> body mapping in the form math typesetters expect."""
        return {f"\\{name}": m.body for name, m in self._macros.items()}


@dataclass(slots=True)
class Section:
    title: str
    ordinal: int
    raw_content: str
    number: str | None = None
    starred: bool = False
    html: str = ""
    title_html: str = ""


LabelKind = Literal["equation", "figure", "table", "section", "unknown"]


@dataclass(frozen=True, slots=True)
class Label:
    key: str
    kind: LabelKind
    ordinal: int | None
    number: str


class LabelTable(Mapping[str, Label]):
    """Labels keyed by name. A label is recorded once and never replaced."""

    def __init__(self) -> None:
        self._labels: dict[str, Label] = {}

    def add(self, label: Label) -> bool:
        if label.key in self._labels:
            return False
        self._labels[label.key] = label
        return True

    def __getitem__(self, key: str) -> Label:
        return self._labels[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)


@dataclass(frozen=True, slots=True)
class Parsed:
    pass


@dataclass(frozen=True, slots=True)
class PartiallyParsed:
    reason: str


ParseStatus = Parsed | PartiallyParsed


@dataclass(slots=True)
class BibEntry:
    key: str
    authors: str = ""
    title: str = ""
    venue: str = ""
    external_id: str | None = None
    status: ParseStatus = field(default_factory=Parsed)


class Bibliography:
    """Ordered bibliography; an entry's ordinal is its 1-based position."""

    def __init__(self, entries: list[BibEntry] | None = None) -> None:
        self.entries: list[BibEntry] = []
        self._ordinals: dict[str, int] = {}
        seen_titles: dict[str, int] = {}
        for entry in entries or []:
            if entry.key in self._ordinals:
                continue
            title_key = _title_key(entry.title)
            if title_key and title_key in seen_titles:
                self._ordinals[entry.key] = seen_titles[title_key]
                continue
            self.entries.append(entry)
            ordinal = len(self.entries)
            self._ordinals[entry.key] = ordinal
            if title_key:
                seen_titles[title_key] = ordinal

    def ordinal_for(self, key: str) -> int | None:
        return self._ordinals.get(key)

    def entry_for(self, key: str) -> BibEntry | None:
        ordinal = self._ordinals.get(key)
        return self.entries[ordinal - 1] if ordinal else None

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)


def _title_key(title: str) -> str:
    return "".join(ch for ch in title.lower() if ch.isalnum())[:40]


@dataclass(slots=True)
class Figure:
    ordinal: int
    label: str
    caption: str
    images: list[str] = field(default_factory=list)
    width_hint: str | None = None


@dataclass(slots=True)
class TableBlock:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    caption: str = ""


@dataclass(slots=True)
class MathSpan:
    placeholder_id: str
    raw: str
    display_mode: bool
    label: str | None = None
    number: str | None = None


@dataclass(slots=True)
class Footnote:
    id: int
    content: str


@dataclass(slots=True)
class FrontMatter:
    title: str
    authors: list[str] = field(default_factory=list)
    date: str | None = None
    abstract: str = ""


@dataclass(frozen=True, slots=True)
class DocumentStats:
    sections: int
    figures: int
    equations: int
    references: int
