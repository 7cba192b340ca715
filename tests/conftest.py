import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from wiz.analyst import ContinuationAnalystGate
from wiz.config import WizConfig
from wiz.context import WorkspaceContext
from wiz.driver import ExecutionDriver
from wiz.interfaces import ChecksResult, CriteriaVerifier, CriterionVerdict, ExecutionEngine, ProjectChecks
from wiz.review import ConsensusGate, Issue, ReviewerRegistry
from wiz.state.changeset import Changeset
from wiz.state.git import GitWorkspace
from wiz.state.resume import ResumeStateManager
from wiz.state.store import JsonStateStore
from wiz.state.taskgraph import Milestone, TaskGraphStore
from wiz.workflow import Orchestrator


STATUS_TEXT = {
    "todo": "🚧 TODO",
    "in_progress": "🏗️ IN PROGRESS",
    "complete": "✅ COMPLETE",
}


def _run(cmd: list[str], cwd: Path) -> str:
    proc = subprocess.run(cmd, cwd=cwd, check=True, text=True, capture_output=True)
    return proc.stdout.strip()


def phase_markdown(number: int, statuses: list[str], title: str = "Foundation") -> str:
    lines = [f"# Phase {number}: {title}", ""]
    for index, status in enumerate(statuses, start=1):
        mark = "x" if status == "complete" else " "
        lines.extend(
            [
                f"### P{number:02d}M{index:02d}: Milestone {number}.{index}",
                "",
                f"**Status:** {STATUS_TEXT[status]}",
                "",
                f"Goal: build part {index} of phase {number}.",
                "",
                "**Acceptance Criteria:**",
                f"- [{mark}] first criterion of P{number:02d}M{index:02d}",
                f"- [{mark}] second criterion of P{number:02d}M{index:02d}",
                "",
            ]
        )
    return "\n".join(lines)


@pytest.fixture
def write_phases() -> Callable[[Path, dict[int, list[str]]], Path]:
    def _write(phases_dir: Path, phases: dict[int, list[str]]) -> Path:
        phases_dir.mkdir(parents=True, exist_ok=True)
        for number, statuses in phases.items():
            (phases_dir / f"phase{number}.md").write_text(
                phase_markdown(number, statuses), encoding="utf-8"
            )
        return phases_dir

    return _write


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    _run(["git", "init"], cwd=repo)
    _run(["git", "config", "user.email", "test@example.com"], cwd=repo)
    _run(["git", "config", "user.name", "Test User"], cwd=repo)
    (repo / "README.md").write_text("seed\n", encoding="utf-8")
    _run(["git", "add", "README.md"], cwd=repo)
    _run(["git", "commit", "-m", "seed"], cwd=repo)
    return repo


class FakeEngine(ExecutionEngine):
    def __init__(self, repo: Path) -> None:
        self.repo = repo
        self.implemented: list[str] = []
        self.feedback: list[str] = []
        self.contexts: list[dict[str, Any]] = []

    async def implement(self, milestone: Milestone, context: dict[str, Any]) -> str:
        self.implemented.append(str(milestone.key))
        self.contexts.append(context)
        name = f"m_{milestone.key.phase}_{milestone.key.milestone}.py"
        (self.repo / name).write_text(f"# {milestone.title}\n", encoding="utf-8")
        return f"wrote {name}"

    async def fix(self, milestone: Milestone, feedback: str, context: dict[str, Any]) -> str:
        self.feedback.append(feedback)
        with (self.repo / f"m_{milestone.key.phase}_{milestone.key.milestone}.py").open(
            "a", encoding="utf-8"
        ) as handle:
            handle.write("# fixed\n")
        return "fixed"


class FakeChecks(ProjectChecks):
    def __init__(self, results: list[bool] | None = None) -> None:
        self.results = list(results or [])
        self.calls = 0

    async def run(self) -> ChecksResult:
        self.calls += 1
        passed = self.results.pop(0) if self.results else True
        return ChecksResult(passed, "ok" if passed else "FAILED test_thing")


class FakeVerifier(CriteriaVerifier):
    def __init__(self, rejected: set[int] | None = None) -> None:
        self.rejected = set(rejected or ())
        self.seen: list[tuple[str, int]] = []

    async def verify(
        self, milestone: Milestone, index: int, criterion: str, changeset: Changeset
    ) -> CriterionVerdict:
        self.seen.append((str(milestone.key), index))
        verified = index not in self.rejected
        return CriterionVerdict(index, criterion, verified, "checked" if verified else "missing")


class FakeReviewer:
    def __init__(self, rounds: list[list[Issue]] | None = None) -> None:
        self.rounds = list(rounds or [])
        self.changesets: list[Changeset] = []

    async def __call__(self, domain: str, changeset: Changeset) -> list[Issue]:
        self.changesets.append(changeset)
        return self.rounds.pop(0) if self.rounds else []


@dataclass
class Harness:
    repo: Path
    workspace: WorkspaceContext
    store: TaskGraphStore
    resume: ResumeStateManager
    git: GitWorkspace
    engine: FakeEngine
    checks: FakeChecks
    verifier: FakeVerifier
    reviewer: FakeReviewer
    driver: ExecutionDriver

    def orchestrator(self, analyst: ContinuationAnalystGate | None = None) -> Orchestrator:
        return Orchestrator(
            self.workspace, store=self.store, resume=self.resume, driver=self.driver, analyst=analyst
        )

    def head(self) -> str:
        return _run(["git", "rev-parse", "HEAD"], cwd=self.repo)


@pytest.fixture
def make_harness(
    git_repo: Path, write_phases: Callable[[Path, dict[int, list[str]]], Path]
) -> Callable[..., Harness]:
    def _make(
        phases: dict[int, list[str]],
        *,
        check_results: list[bool] | None = None,
        rejected: set[int] | None = None,
        reviews: list[list[Issue]] | None = None,
        config: WizConfig | None = None,
    ) -> Harness:
        write_phases(git_repo / ".wiz" / "demo" / "phases", phases)
        (git_repo / ".wiz" / ".gitignore").write_text(
            "resume.json\nworkspace.json\n.lock\n*.tmp\n", encoding="utf-8"
        )
        _run(["git", "add", ".wiz"], cwd=git_repo)
        _run(["git", "commit", "-m", "plan"], cwd=git_repo)

        workspace = WorkspaceContext.load(git_repo, config or WizConfig.default(), slug="demo")
        store = TaskGraphStore(workspace.phases_dir)
        resume = ResumeStateManager(JsonStateStore(workspace.wiz_dir), workspace.slug)
        git = GitWorkspace(git_repo)
        engine = FakeEngine(git_repo)
        checks = FakeChecks(check_results)
        verifier = FakeVerifier(rejected)
        reviewer = FakeReviewer(reviews)
        registry = ReviewerRegistry()
        registry.register("python", reviewer)
        driver = ExecutionDriver(
            workspace,
            store=store,
            resume=resume,
            git=git,
            engine=engine,
            checks=checks,
            verifier=verifier,
            gate=ConsensusGate(registry, max_rounds=workspace.config.review.max_rounds),
        )
        return Harness(
            repo=git_repo,
            workspace=workspace,
            store=store,
            resume=resume,
            git=git,
            engine=engine,
            checks=checks,
            verifier=verifier,
            reviewer=reviewer,
            driver=driver,
        )

    return _make
