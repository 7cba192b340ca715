"""Drive one milestone from located to committed.

Stages run strictly in order. A failure while implementing or verifying stops
the run in place: partial edits stay in the working tree and the resume record
stays ``in_progress`` so the operator can resume, skip or cancel.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from wiz.context import WorkspaceContext
from wiz.errors import ChecksFailedError, CriteriaUnverifiedError, GitError, MilestoneClaimedError
from wiz.interfaces import CriteriaVerifier, CriterionVerdict, ExecutionEngine, ProjectChecks
from wiz.review import ConsensusGate, ConsensusResult, ReviewRound
from wiz.state.changeset import Changeset
from wiz.state.git import GitWorkspace
from wiz.state.resume import ResumeStateManager
from wiz.state.taskgraph import Milestone, MilestoneStatus, TaskGraphStore

logger = structlog.get_logger(__name__)


class Stage(StrEnum):
    LOCATED = "located"
    RESUMING = "resuming"
    IMPLEMENTING = "implementing"
    CRITERIA_VERIFIED = "criteria_verified"
    REVIEWED = "reviewed"
    COMMITTED = "committed"


@dataclass(slots=True)
class MilestoneRunResult:
    key: str
    title: str
    commit: str | None = None
    check_rounds: int = 0
    review: ConsensusResult | None = None
    verdicts: list[CriterionVerdict] = field(default_factory=list)
    stages: list[Stage] = field(default_factory=list)
    already_complete: bool = False

    def summary(self) -> str:
        if self.already_complete:
            return f"{self.key}: {self.title} (already complete)"
        commit = self.commit[:10] if self.commit else "-"
        review = self.review.summary() if self.review else "-"
        return f"{self.key}: {self.title} [commit {commit}; review {review}]"


def mentioned_domains(text: str, domains: Iterable[str]) -> set[str]:
    return {
        domain
        for domain in domains
        if re.search(rf"\b{re.escape(domain)}\b", text, re.IGNORECASE)
    }


def commit_message(
    prefix: str,
    milestone: Milestone,
    *,
    phase_path: str,
    verified: int,
    review: ConsensusResult | None,
) -> tuple[str, str]:
    subject = f"{prefix}({milestone.key}): {milestone.title}"
    review_line = review.summary() if review else "approved before the commit was interrupted"
    body = "\n".join(
        [
            f"Milestone: {milestone.key}",
            f"Phase: {milestone.key.phase} ({phase_path})",
            f"Criteria: {verified}/{len(milestone.criteria)} verified",
            f"Review: {review_line}",
        ]
    )
    return subject, body


class ExecutionDriver:
    def __init__(
        self,
        workspace: WorkspaceContext,
        *,
        store: TaskGraphStore,
        resume: ResumeStateManager,
        git: GitWorkspace,
        engine: ExecutionEngine,
        checks: ProjectChecks,
        verifier: CriteriaVerifier,
        gate: ConsensusGate,
    ) -> None:
        self.workspace = workspace
        self.store = store
        self.resume = resume
        self.git = git
        self.engine = engine
        self.checks = checks
        self.verifier = verifier
        self.gate = gate

    def _engine_context(self, milestone: Milestone, changeset: Changeset | None = None) -> dict[str, Any]:
        registry = self.gate.registry
        domains = mentioned_domains(f"{milestone.title}\n{milestone.body}", registry.domains)
        if changeset is not None:
            domains.update(registry.detect_domains(changeset))
        documents = self.workspace.documents_for(domains)
        return {
            "prd": self.workspace.slug,
            "milestone": str(milestone.key),
            "domains": sorted(domains),
            "context_documents": [
                {"path": self.workspace.relative(doc.path), "description": doc.description, "body": doc.body}
                for doc in documents
            ],
        }

    def _check_start(self, milestone: Milestone, resuming: bool) -> None:
        if not self.git.git_enabled:
            raise GitError(f"Milestone runs require a git repository at {self.workspace.repo_root}.")
        allowed = {MilestoneStatus.TODO}
        if resuming:
            allowed.add(MilestoneStatus.IN_PROGRESS)
        if milestone.status not in allowed:
            raise MilestoneClaimedError(str(milestone.key), milestone.status.value)
        if not resuming and self.workspace.config.workflow.require_clean_worktree:
            dirty = self.git.dirty_paths()
            if dirty:
                raise GitError(
                    "Working tree has uncommitted changes; commit or stash them before "
                    f"starting {milestone.key}: {', '.join(dirty[:10])}"
                )

    async def _run_checks(self, milestone: Milestone, context: dict[str, Any]) -> int:
        max_rounds = max(1, self.workspace.config.workflow.max_check_rounds)
        attempt = 1
        while True:
            result = await self.checks.run()
            if result.passed:
                return attempt
            logger.warning("project_checks_failed", milestone=str(milestone.key), attempt=attempt)
            if attempt >= max_rounds:
                raise ChecksFailedError(
                    f"{milestone.key}: project checks still failing after {max_rounds} round(s).",
                    details=result.details,
                )
            await self.engine.fix(
                milestone,
                f"The project's tests/lint failed. Fix every failure and skip:\n\n{result.details}",
                context,
            )
            attempt += 1

    async def _verify_criteria(self, milestone: Milestone) -> list[CriterionVerdict]:
        changeset = self.git.build_changeset()
        verdicts: list[CriterionVerdict] = []
        for index, criterion in enumerate(milestone.criteria, start=1):
            verdict = await self.verifier.verify(milestone, index, criterion.text, changeset)
            logger.info(
                "criterion_verified",
                milestone=str(milestone.key),
                criterion=index,
                verified=verdict.verified,
            )
            verdicts.append(verdict)
        unverified = [(item.index, item.text) for item in verdicts if not item.verified]
        if unverified:
            raise CriteriaUnverifiedError(str(milestone.key), unverified)
        return verdicts

    def _commit(
        self,
        milestone: Milestone,
        phase_rel: str,
        verified: int,
        review: ConsensusResult | None,
    ) -> str:
        changeset = self.git.build_changeset()
        subject, body = commit_message(
            self.workspace.config.workflow.commit_prefix,
            milestone,
            phase_path=phase_rel,
            verified=verified,
            review=review,
        )
        return self.git.commit([phase_rel, *changeset.all_paths], subject=subject, body=body)

    async def run(self, milestone: Milestone, *, resuming: bool = False) -> MilestoneRunResult:
        key = milestone.key
        log = logger.bind(milestone=str(key))
        result = MilestoneRunResult(key=str(key), title=milestone.title)

        def enter(stage: Stage) -> None:
            result.stages.append(stage)
            log.info("stage", stage=stage.value)

        enter(Stage.LOCATED)
        if resuming and milestone.status == MilestoneStatus.COMPLETE:
            phase_rel = self.workspace.relative(self.store.phase_path(key.phase))
            if self.git.is_dirty(phase_rel):
                # Marked Complete but the commit itself failed.
                log.warning("resume_commit_missing", phase=phase_rel)
                enter(Stage.COMMITTED)
                result.verdicts = [
                    CriterionVerdict(index, item.text, item.checked)
                    for index, item in enumerate(milestone.criteria, start=1)
                ]
                result.commit = self._commit(milestone, phase_rel, len(result.verdicts), None)
            else:
                result.already_complete = True
                log.info("resume_already_complete")
            self.resume.complete(key)
            return result
        self._check_start(milestone, resuming)

        enter(Stage.RESUMING)
        phase_path = self.store.phase_path(key.phase)
        phase_rel = self.workspace.relative(phase_path)
        if not resuming:
            self.resume.create(key, phase_rel)
        self.store.set_status(key, MilestoneStatus.IN_PROGRESS)

        enter(Stage.IMPLEMENTING)
        context = self._engine_context(milestone, self.git.build_changeset() if resuming else None)
        summary = await self.engine.implement(milestone, context)
        log.info("implementation_finished", summary=summary[:200])
        result.check_rounds = await self._run_checks(milestone, context)

        enter(Stage.CRITERIA_VERIFIED)
        current = self.store.get_milestone(key)
        result.verdicts = await self._verify_criteria(current)

        enter(Stage.REVIEWED)

        async def apply_review_fixes(review_round: ReviewRound) -> None:
            fix_context = self._engine_context(current, review_round.changeset)
            await self.engine.fix(current, review_round.render_feedback(), fix_context)
            result.check_rounds += await self._run_checks(current, fix_context)

        result.review = await self.gate.run(self.git.build_changeset, apply_review_fixes)

        enter(Stage.COMMITTED)
        self.store.mark_criteria_complete(key)
        self.store.set_status(key, MilestoneStatus.COMPLETE)
        result.commit = self._commit(current, phase_rel, len(result.verdicts), result.review)
        self.resume.complete(key)
        log.info("milestone_complete", commit=result.commit[:10])
        return result
