"""Deterministic next-milestone selection.

The candidate is a pure function of the *last* Complete key in scan order:
``(p, m+1)`` if it exists, else ``(p+1, 1)`` if it exists, else the workflow is
finished. With nothing complete yet the candidate is ``P01M01``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from wiz.errors import MilestoneNotFoundError
from wiz.state.taskgraph import Milestone, MilestoneKey, MilestoneStatus, TaskGraph, TaskGraphStore

logger = structlog.get_logger(__name__)

FIRST_KEY = MilestoneKey(1, 1)


@dataclass(frozen=True, slots=True)
class Completed:
    """Sentinel: no eligible milestone remains."""

    last_complete: MilestoneKey | None = None

    def __str__(self) -> str:
        return "COMPLETED"


COMPLETED = Completed()

LocatorResult = Milestone | Completed


def last_complete_key(graph: TaskGraph) -> MilestoneKey | None:
    last: MilestoneKey | None = None
    for phase in sorted(graph.phases, key=lambda item: item.number):
        for milestone in sorted(phase.milestones, key=lambda item: item.key):
            if milestone.status == MilestoneStatus.COMPLETE:
                last = milestone.key
    return last


def locate_next(graph: TaskGraph) -> LocatorResult:
    last = last_complete_key(graph)
    if last is None:
        first = graph.get(FIRST_KEY)
        if first is None:
            raise MilestoneNotFoundError(str(FIRST_KEY))
        return first

    candidate = graph.get(last.next_in_phase())
    if candidate is not None:
        return candidate
    candidate = graph.get(last.first_of_next_phase())
    if candidate is not None:
        return candidate
    return Completed(last_complete=last)


class MilestoneLocator:
    def __init__(self, store: TaskGraphStore) -> None:
        self.store = store

    def next(self) -> LocatorResult:
        result = locate_next(self.store.load())
        if isinstance(result, Completed):
            logger.info("locator_completed", last_complete=str(result.last_complete))
        else:
            logger.info("locator_next", milestone=str(result.key), status=result.status.value)
        return result
