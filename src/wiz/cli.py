"""Command line entry point for wiz."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path

import click

from wiz.analyst import ContinuationAnalystGate
from wiz.backends import AgentBackend, ClaudeCodeBackend, CodexBackend, ResilientBackend, RetryPolicy
from wiz.checks import CommandProjectChecks
from wiz.config import BackendName, WizConfig, load_config, save_config
from wiz.context import WorkspaceContext, set_current_prd
from wiz.driver import ExecutionDriver
from wiz.errors import ChecksFailedError, MalformedStateError, WizError
from wiz.logging import setup_logging
from wiz.review import ConsensusGate, ReviewerRegistry
from wiz.specialists import AnalystAgent, ImplementerAgent, ReviewerAgent, VerifierAgent
from wiz.state import GitWorkspace, JsonStateStore, ResumeStateManager, TaskGraphStore
from wiz.status import build_status
from wiz.workflow import Orchestrator, ResumeChoice, WorkflowReport

DEFAULT_CONFIG = "wiz.toml"
STATE_GITIGNORE = "resume.json\nworkspace.json\n.lock\n*.tmp\n"


@dataclass(slots=True)
class Runtime:
    workspace: WorkspaceContext
    store: TaskGraphStore
    resume: ResumeStateManager
    orchestrator: Orchestrator


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _build_single_backend(backend_name: BackendName, repo_root: Path) -> CodexBackend | ClaudeCodeBackend:
    if backend_name == "codex":
        return CodexBackend(working_directory=repo_root)
    return ClaudeCodeBackend(working_directory=repo_root)


def _build_backend(config: WizConfig, repo_root: Path) -> AgentBackend:
    primary_name = config.backend.primary
    fallback_name = config.backend.fallback
    policy = RetryPolicy(
        max_retries=max(0, int(config.backend.max_retries)),
        backoff_seconds=max(0.0, float(config.backend.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.backend.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=primary_name,
        primary_backend=_build_single_backend(primary_name, repo_root),
        fallback_name=fallback_name,
        fallback_backend=_build_single_backend(fallback_name, repo_root),
        retry_policy=policy,
    )


def _build_registry(
    backend: AgentBackend, workspace: WorkspaceContext, git: GitWorkspace
) -> ReviewerRegistry:
    registry = ReviewerRegistry()
    for domain in registry.domains:
        registry.register(
            domain,
            ReviewerAgent(
                domain,
                backend,
                model=workspace.config.agents.reviewer_model,
                prompt_dir=workspace.prompt_dir,
                history_provider=git.recent_log,
            ),
        )
    return registry


def _load_runtime(repo_root: Path, config_path: Path, slug: str | None) -> Runtime:
    config = load_config(config_path)
    workspace = WorkspaceContext.load(repo_root, config, slug=slug)
    store = TaskGraphStore(workspace.phases_dir)
    resume = ResumeStateManager(JsonStateStore(workspace.wiz_dir), workspace.slug)
    git = GitWorkspace(
        workspace.repo_root,
        internal_dir=config.state.dir,
        max_file_bytes=config.review.max_file_bytes,
        exclude_patterns=config.review.exclude_patterns,
    )
    backend = _build_backend(config, workspace.repo_root)
    agents = config.agents
    driver = ExecutionDriver(
        workspace,
        store=store,
        resume=resume,
        git=git,
        engine=ImplementerAgent(backend, model=agents.implementer_model, prompt_dir=workspace.prompt_dir),
        checks=CommandProjectChecks(
            workspace.repo_root,
            test_command=config.project.test_command,
            lint_command=config.project.lint_command,
            fail_on_skipped=config.project.fail_on_skipped,
        ),
        verifier=VerifierAgent(backend, model=agents.verifier_model, prompt_dir=workspace.prompt_dir),
        gate=ConsensusGate(_build_registry(backend, workspace, git), max_rounds=config.review.max_rounds),
    )
    analyst = ContinuationAnalystGate(
        AnalystAgent(backend, model=agents.analyst_model, prompt_dir=workspace.prompt_dir)
    )
    orchestrator = Orchestrator(
        workspace, store=store, resume=resume, driver=driver, analyst=analyst
    )
    return Runtime(workspace=workspace, store=store, resume=resume, orchestrator=orchestrator)


def _runtime(config_value: str, slug: str | None) -> Runtime:
    repo_root = Path.cwd().resolve()
    try:
        return _load_runtime(repo_root, _resolve_config_path(repo_root, config_value), slug)
    except WizError as exc:
        raise _click_error(exc) from exc


def _click_error(exc: WizError) -> click.ClickException:
    message = f"[{exc.code}] {exc}"
    if isinstance(exc, ChecksFailedError) and exc.details:
        message = f"{message}\n{exc.details}"
    return click.ClickException(message)


def _echo_report(report: WorkflowReport) -> None:
    rendered = report.render()
    if rendered:
        click.echo(rendered)


config_option = click.option("--config", "config_value", default=DEFAULT_CONFIG, show_default=True)
slug_option = click.option("--slug", default=None, help="PRD slug under the state directory.")


@click.group()
@click.option("--log-level", default="WARNING", show_default=True)
@click.option("--log-json", is_flag=True, default=False)
def cli(log_level: str, log_json: bool) -> None:
    """Wiz milestone workflow CLI."""
    setup_logging(json_output=log_json, log_level=log_level)


@cli.command("init")
@click.option("--slug", default=None, help="Create an empty PRD with this slug.")
@click.option("--backend", type=click.Choice(["codex", "claude"]), default=None)
@config_option
def init_command(slug: str | None, backend: str | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    try:
        config = load_config(config_path)
    except WizError as exc:
        raise _click_error(exc) from exc
    if backend:
        config.backend.primary = backend  # type: ignore[assignment]
    save_config(config_path, config)

    wiz_dir = repo_root / config.state.dir
    for directory in (wiz_dir, wiz_dir / "context", wiz_dir / "prompts"):
        directory.mkdir(parents=True, exist_ok=True)
    gitignore = wiz_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text(STATE_GITIGNORE, encoding="utf-8")

    click.echo(f"Initialized wiz in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.backend.primary}")
    if slug:
        (wiz_dir / slug / "phases").mkdir(parents=True, exist_ok=True)
        set_current_prd(wiz_dir, slug)
        click.echo(f"PRD: {slug} ({wiz_dir / slug / 'phases'})")


@cli.command("use")
@click.argument("slug")
@config_option
def use_command(slug: str, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    try:
        config = load_config(_resolve_config_path(repo_root, config_value))
        set_current_prd(repo_root / config.state.dir, slug)
    except WizError as exc:
        raise _click_error(exc) from exc
    click.echo(f"Current PRD set to {slug}")


@cli.command("next")
@click.argument("count", type=click.IntRange(min=1), default=1)
@config_option
@slug_option
def next_command(count: int, config_value: str, slug: str | None) -> None:
    runtime = _runtime(config_value, slug)
    try:
        report = asyncio.run(runtime.orchestrator.run_next(count))
    except WizError as exc:
        raise _click_error(exc) from exc
    _echo_report(report)


@cli.command("auto")
@click.option("--max", "max_milestones", type=click.IntRange(min=1), default=None)
@config_option
@slug_option
def auto_command(max_milestones: int | None, config_value: str, slug: str | None) -> None:
    runtime = _runtime(config_value, slug)
    try:
        report = asyncio.run(runtime.orchestrator.run_auto(max_milestones))
    except WizError as exc:
        raise _click_error(exc) from exc
    _echo_report(report)


@cli.command("resume")
@click.option(
    "--choice",
    type=click.Choice([item.value for item in ResumeChoice]),
    default=None,
    help="Skip the interactive prompt.",
)
@config_option
@slug_option
def resume_command(choice: str | None, config_value: str, slug: str | None) -> None:
    runtime = _runtime(config_value, slug)
    try:
        state = runtime.orchestrator.interrupted()
    except MalformedStateError as exc:
        click.echo(f"Discarded malformed resume record: {exc}")
        try:
            released = runtime.orchestrator.release_orphaned_milestone()
        except WizError as release_exc:
            raise _click_error(release_exc) from release_exc
        if released:
            click.echo(f"Reset {released} from In Progress to Todo; run `wiz next` to start it again.")
        return
    except WizError as exc:
        raise _click_error(exc) from exc

    if state is None:
        click.echo("No interrupted milestone found.")
        return

    click.echo(
        f"Interrupted milestone: {state.milestone_key} "
        f"(phase {state.phase_number}, {state.phase_file_path}, started {state.started_at})"
    )
    if choice is None:
        choice = click.prompt(
            "Resume, skip or cancel?",
            type=click.Choice([item.value for item in ResumeChoice]),
            default=ResumeChoice.CANCEL.value,
        )
    try:
        report = asyncio.run(runtime.orchestrator.resume_run(ResumeChoice(choice)))
    except WizError as exc:
        raise _click_error(exc) from exc
    _echo_report(report)


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, default=False)
@config_option
@slug_option
def status_command(as_json: bool, config_value: str, slug: str | None) -> None:
    runtime = _runtime(config_value, slug)
    try:
        report = build_status(runtime.store.load(), runtime.workspace.slug, runtime.resume)
    except WizError as exc:
        raise _click_error(exc) from exc
    if as_json:
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        return
    click.echo(report.render())
