"""Ordered stages with declared inputs and outputs."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

from scholarize.errors import PipelineOrderError

logger = logging.getLogger(__name__)

C = TypeVar("C")


@dataclass(frozen=True, slots=True)
class Stage(Generic[C]):
    """One step of a pipeline.

    ``requires`` names the side-tables (or text states) the step reads and
    ``provides`` the ones it leaves behind for later steps.
    """

    name: str
    run: Callable[[C], None]
    requires: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()


class Pipeline(Generic[C]):
    """Runs stages strictly in order against a shared context object.

    The order is checked once, at construction: a stage whose requirement is
    neither given up front nor provided by an earlier stage raises
    :class:`PipelineOrderError`.
    """

    def __init__(self, stages: Iterable[Stage[C]], *, given: Iterable[str] = ()) -> None:
        self.stages: list[Stage[C]] = list(stages)
        self.given = frozenset(given)
        self._check_order()

    def _check_order(self) -> None:
        available = set(self.given)
        seen: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise PipelineOrderError(f"stage {stage.name!r} appears twice")
            seen.add(stage.name)
            missing = [name for name in stage.requires if name not in available]
            if missing:
                raise PipelineOrderError(
                    f"stage {stage.name!r} requires {', '.join(missing)}, which no earlier stage provides"
                )
            available.update(stage.provides)

    @property
    def names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def run(self, context: C) -> C:
        for stage in self.stages:
            started = time.perf_counter()
            stage.run(context)
            logger.debug("stage %s finished in %.1f ms", stage.name, (time.perf_counter() - started) * 1000)
        return context
