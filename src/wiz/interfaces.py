"""Narrow interfaces to the external capabilities a milestone run depends on.

The driver only knows these shapes; agent-backed and command-backed
implementations live in :mod:`wiz.specialists` and :mod:`wiz.checks`, and
tests substitute in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from wiz.state.changeset import Changeset
from wiz.state.taskgraph import Milestone


@dataclass(frozen=True, slots=True)
class ChecksResult:
    passed: bool
    details: str = ""


@dataclass(frozen=True, slots=True)
class CriterionVerdict:
    index: int
    text: str
    verified: bool
    evidence: str = ""


class ExecutionEngine(ABC):
    @abstractmethod
    async def implement(self, milestone: Milestone, context: dict[str, Any]) -> str:
        """Apply the milestone's changes to the working tree; returns a summary."""

    @abstractmethod
    async def fix(self, milestone: Milestone, feedback: str, context: dict[str, Any]) -> str:
        """Apply forward fixes for check failures or reviewer issues."""


class ProjectChecks(ABC):
    @abstractmethod
    async def run(self) -> ChecksResult:
        """Run the whole project's tests and lint."""


class CriteriaVerifier(ABC):
    @abstractmethod
    async def verify(
        self,
        milestone: Milestone,
        index: int,
        criterion: str,
        changeset: Changeset,
    ) -> CriterionVerdict:
        """Independently decide whether one acceptance criterion is satisfied."""
