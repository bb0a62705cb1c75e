"""Error taxonomy for the conversion engine.

Only document-level prerequisites (no entry file, unreachable archive) are
fatal. Everything else is raised locally, caught at the smallest unit that
can fail on its own (one macro, one label, one figure, one math span) and
recorded on the run as a :class:`Diagnostic`.
"""

from __future__ import annotations

from dataclasses import dataclass


class ScholarizeError(Exception):
    """Base class for all engine errors."""


class SourceNotFound(ScholarizeError):
    """No usable entry ``.tex`` file exists in the source tree."""


class ArchiveDownloadError(ScholarizeError):
    """The source archive could not be downloaded or unpacked."""


class ExternalProcessTimeout(ScholarizeError):
    """An external process or network call exceeded its timeout."""


class InputResolutionFailure(ScholarizeError):
    """An ``\\input``/``\\include`` target could not be read."""


class MacroParseError(ScholarizeError):
    """A single macro definition could not be parsed."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


class LabelUnresolved(ScholarizeError):
    """A cross-reference names a label that was never defined."""


class FigureAssetMissing(ScholarizeError):
    """A figure references an image file that does not exist."""


class FigureConversionFailure(ScholarizeError):
    """Every converter in the chain failed for an image."""


class MathRenderFailure(ScholarizeError):
    """The math typesetting collaborator reported an error."""


class PipelineOrderError(ScholarizeError):
    """A stage requires a side-table that no earlier stage provides."""


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A recovered failure, kept so reviewers can find degraded output."""

    stage: str
    kind: str
    message: str

    @classmethod
    def from_error(cls, stage: str, error: ScholarizeError) -> "Diagnostic":
        return cls(stage=stage, kind=type(error).__name__, message=str(error))
