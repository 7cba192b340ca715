"""Milestone loops behind `wiz next`, `wiz auto` and `wiz resume`."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from wiz.analyst import AnalystDecision, ContinuationAnalystGate
from wiz.context import WorkspaceContext
from wiz.driver import ExecutionDriver, MilestoneRunResult
from wiz.errors import InterruptedRunError, MalformedStateError, WizError
from wiz.locator import Completed, MilestoneLocator
from wiz.state.resume import ResumeState, ResumeStateManager
from wiz.state.taskgraph import Milestone, MilestoneStatus, TaskGraphStore

logger = structlog.get_logger(__name__)


class ResumeChoice(StrEnum):
    RESUME = "resume"
    SKIP = "skip"
    CANCEL = "cancel"


@dataclass(slots=True)
class WorkflowReport:
    executed: list[MilestoneRunResult] = field(default_factory=list)
    completed: bool = False
    halted_at: str | None = None
    questions: tuple[str, ...] = ()
    next_key: str | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def halted(self) -> bool:
        return self.halted_at is not None

    def render(self) -> str:
        lines = [*self.notes]
        for item in self.executed:
            lines.append(f"Completed {item.summary()}")
        if self.halted_at:
            lines.append(f"HALT before {self.halted_at}: human input required.")
            lines.extend(f"  {index}. {question}" for index, question in enumerate(self.questions, start=1))
            lines.append(f"Answer the questions, then run `wiz next` to execute {self.halted_at}.")
        elif self.completed:
            lines.append("All milestones are complete.")
        elif self.next_key:
            lines.append(f"Next milestone: {self.next_key}")
        return "\n".join(lines)


def phase_context(store: TaskGraphStore, milestone: Milestone) -> str:
    phase = store.load().phase(milestone.key.phase)
    if phase is None:
        return ""
    lines = [f"Phase {phase.number}: {phase.title}"]
    for item in phase.milestones:
        lines.append(f"- {item.key} [{item.status.value}] {item.title}")
    return "\n".join(lines)


class Orchestrator:
    """Locate -> execute -> (analyst gate) -> loop, one milestone at a time."""

    def __init__(
        self,
        workspace: WorkspaceContext,
        *,
        store: TaskGraphStore,
        resume: ResumeStateManager,
        driver: ExecutionDriver,
        analyst: ContinuationAnalystGate | None = None,
    ) -> None:
        self.workspace = workspace
        self.store = store
        self.resume = resume
        self.driver = driver
        self.analyst = analyst
        self.locator = MilestoneLocator(store)

    def _ensure_no_interrupted_run(self) -> None:
        try:
            state = self.resume.load()
        except MalformedStateError as exc:
            logger.warning("malformed_resume_state_discarded", error=str(exc))
            self.release_orphaned_milestone()
            return
        if state is not None:
            raise InterruptedRunError(state.milestone_key)

    def release_orphaned_milestone(self) -> str | None:
        """Put an `InProgress` milestone left without a resume record back to `Todo`."""
        located = self.locator.next()
        if isinstance(located, Completed) or located.status != MilestoneStatus.IN_PROGRESS:
            return None
        self.store.set_status(located.key, MilestoneStatus.TODO)
        logger.warning("orphaned_milestone_released", milestone=str(located.key))
        return str(located.key)

    def _set_next(self, report: WorkflowReport) -> None:
        located = self.locator.next()
        if isinstance(located, Completed):
            report.completed = True
        else:
            report.next_key = str(located.key)

    async def run_next(self, count: int = 1) -> WorkflowReport:
        self._ensure_no_interrupted_run()
        report = WorkflowReport()
        for _ in range(max(1, count)):
            located = self.locator.next()
            if isinstance(located, Completed):
                report.completed = True
                return report
            report.executed.append(await self.driver.run(located))
        self._set_next(report)
        return report

    async def _classify(self, milestone: Milestone) -> AnalystDecision:
        if self.analyst is None:
            raise WizError("`wiz auto` needs a milestone analyst.")
        return await self.analyst.classify(milestone, phase_context(self.store, milestone))

    async def run_auto(self, max_milestones: int | None = None) -> WorkflowReport:
        """Run until every milestone is complete, the analyst halts, or the limit is hit.

        The analyst is consulted before every milestone except the first one
        the operator explicitly started.
        """
        self._ensure_no_interrupted_run()
        report = WorkflowReport()
        while True:
            located = self.locator.next()
            if isinstance(located, Completed):
                report.completed = True
                return report
            if max_milestones is not None and len(report.executed) >= max_milestones:
                report.next_key = str(located.key)
                report.notes.append(f"Stopped after {max_milestones} milestone(s) (--max).")
                return report
            if report.executed:
                decision = await self._classify(located)
                if not decision.proceed:
                    report.halted_at = str(located.key)
                    report.questions = decision.questions
                    return report
            report.executed.append(await self.driver.run(located))

    def interrupted(self) -> ResumeState | None:
        state = self.resume.load()
        if state is not None and state.slug != self.workspace.slug:
            raise WizError(
                f"Interrupted milestone {state.milestone_key} belongs to PRD {state.slug!r}, "
                f"not {self.workspace.slug!r}; run `wiz use {state.slug}` first."
            )
        return state

    async def resume_run(self, choice: ResumeChoice) -> WorkflowReport:
        report = WorkflowReport()
        state = self.interrupted()
        if state is None:
            report.notes.append("No interrupted milestone found.")
            self._set_next(report)
            return report

        if choice == ResumeChoice.CANCEL:
            report.notes.append(f"Left interrupted milestone {state.milestone_key} untouched.")
            return report

        if choice == ResumeChoice.SKIP:
            milestone = self.store.get_milestone(state.key)
            if milestone.status == MilestoneStatus.IN_PROGRESS:
                self.store.set_status(state.key, MilestoneStatus.TODO)
            self.resume.clear()
            logger.info("resume_skipped", milestone=state.milestone_key)
            report.notes.append(f"Skipped interrupted milestone {state.milestone_key}.")
            self._set_next(report)
            return report

        milestone = self.store.get_milestone(state.key)
        report.notes.append(f"Resuming {state.milestone_key} (started {state.started_at}).")
        report.executed.append(await self.driver.run(milestone, resuming=True))
        self._set_next(report)
        return report
