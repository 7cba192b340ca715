"""Read-only progress report over the task graph.

Nothing here writes to disk, so it is safe to run next to an active
orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wiz.errors import MalformedStateError, MilestoneNotFoundError
from wiz.locator import Completed, locate_next
from wiz.state.resume import ResumeStateManager, ResumeStatus
from wiz.state.taskgraph import MilestoneStatus, TaskGraph


def _percent(complete: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(complete * 100.0 / total, 1)


@dataclass(slots=True)
class PhaseProgress:
    number: int
    title: str
    todo: int = 0
    in_progress: int = 0
    complete: int = 0

    @property
    def total(self) -> int:
        return self.todo + self.in_progress + self.complete

    @property
    def percent(self) -> float:
        return _percent(self.complete, self.total)

    def count(self, status: MilestoneStatus) -> None:
        if status == MilestoneStatus.TODO:
            self.todo += 1
        elif status == MilestoneStatus.IN_PROGRESS:
            self.in_progress += 1
        else:
            self.complete += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.number,
            "title": self.title,
            "todo": self.todo,
            "in_progress": self.in_progress,
            "complete": self.complete,
            "total": self.total,
            "percent": self.percent,
        }


@dataclass(slots=True)
class StatusReport:
    slug: str
    phases: list[PhaseProgress] = field(default_factory=list)
    next_milestone: str | None = None
    next_title: str | None = None
    all_complete: bool = False
    next_note: str | None = None
    interrupted: str | None = None

    @property
    def todo(self) -> int:
        return sum(item.todo for item in self.phases)

    @property
    def in_progress(self) -> int:
        return sum(item.in_progress for item in self.phases)

    @property
    def complete(self) -> int:
        return sum(item.complete for item in self.phases)

    @property
    def total(self) -> int:
        return sum(item.total for item in self.phases)

    @property
    def percent(self) -> float:
        return _percent(self.complete, self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prd": self.slug,
            "phases": [item.to_dict() for item in self.phases],
            "overall": {
                "todo": self.todo,
                "in_progress": self.in_progress,
                "complete": self.complete,
                "total": self.total,
                "percent": self.percent,
            },
            "next_milestone": self.next_milestone,
            "all_complete": self.all_complete,
            "next_note": self.next_note,
            "interrupted": self.interrupted,
        }

    def render(self) -> str:
        lines = [f"PRD: {self.slug}"]
        for item in self.phases:
            lines.append(
                f"  Phase {item.number}: {item.title or '-'}  "
                f"{item.complete}/{item.total} complete ({item.percent:.1f}%), "
                f"{item.in_progress} in progress, {item.todo} todo"
            )
        lines.append(f"Overall: {self.complete}/{self.total} complete ({self.percent:.1f}%)")
        if self.all_complete:
            lines.append("Next: none, all milestones complete")
        elif self.next_milestone:
            lines.append(f"Next: {self.next_milestone} {self.next_title or ''}".rstrip())
        elif self.next_note:
            lines.append(f"Next: none ({self.next_note})")
        if self.interrupted:
            lines.append(f"Interrupted: {self.interrupted} (run `wiz resume`)")
        return "\n".join(lines)


def build_status(graph: TaskGraph, slug: str, resume: ResumeStateManager | None = None) -> StatusReport:
    report = StatusReport(slug=slug)
    for phase in sorted(graph.phases, key=lambda item: item.number):
        progress = PhaseProgress(number=phase.number, title=phase.title)
        for milestone in phase.milestones:
            progress.count(milestone.status)
        report.phases.append(progress)

    try:
        located = locate_next(graph)
    except MilestoneNotFoundError as exc:
        report.next_note = "no milestones defined" if report.total == 0 else str(exc)
    else:
        if isinstance(located, Completed):
            report.all_complete = True
        else:
            report.next_milestone = str(located.key)
            report.next_title = located.title

    if resume is not None:
        try:
            state = resume.read()
        except MalformedStateError:
            report.interrupted = "malformed resume record"
        else:
            if state is not None and state.status == ResumeStatus.IN_PROGRESS:
                report.interrupted = state.milestone_key
    return report
