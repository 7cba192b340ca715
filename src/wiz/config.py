from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

from wiz.errors import ConfigError

BackendName = Literal["codex", "claude"]


@dataclass(slots=True)
class ProjectConfig:
    name: str = "my-project"
    test_command: str = "pytest -q"
    lint_command: str = ""
    fail_on_skipped: bool = True


@dataclass(slots=True)
class BackendConfig:
    primary: BackendName = "claude"
    fallback: BackendName = "codex"
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 900.0


@dataclass(slots=True)
class AgentsConfig:
    implementer_model: str = "claude-sonnet-4-5"
    reviewer_model: str = "claude-sonnet-4-5"
    verifier_model: str = "claude-sonnet-4-5"
    analyst_model: str = "claude-sonnet-4-5"


@dataclass(slots=True)
class ReviewConfig:
    max_rounds: int = 10
    max_file_bytes: int = 200_000
    exclude_patterns: list[str] = field(
        default_factory=lambda: ["*.lock", "package-lock.json", "go.sum", "*.min.js"]
    )


@dataclass(slots=True)
class WorkflowConfig:
    max_check_rounds: int = 3
    require_clean_worktree: bool = True
    commit_prefix: str = "feat"


@dataclass(slots=True)
class StateConfig:
    dir: str = ".wiz"


@dataclass(slots=True)
class WizConfig:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    state: StateConfig = field(default_factory=StateConfig)

    SECTIONS = ("project", "backend", "agents", "review", "workflow", "state")

    @classmethod
    def default(cls) -> WizConfig:
        return cls()

    @staticmethod
    def _section(section_cls: type, name: str, payload: Any) -> Any:
        if payload is None:
            return section_cls()
        if not isinstance(payload, dict):
            raise ConfigError(f"Config section [{name}] must be a table.")
        known = {item.name for item in fields(section_cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigError(f"Unknown keys in config section [{name}]: {', '.join(unknown)}")
        return section_cls(**payload)

    @classmethod
    def from_dict(cls, data: dict) -> WizConfig:
        return cls(
            project=cls._section(ProjectConfig, "project", data.get("project")),
            backend=cls._section(BackendConfig, "backend", data.get("backend")),
            agents=cls._section(AgentsConfig, "agents", data.get("agents")),
            review=cls._section(ReviewConfig, "review", data.get("review")),
            workflow=cls._section(WorkflowConfig, "workflow", data.get("workflow")),
            state=cls._section(StateConfig, "state", data.get("state")),
        )

    def to_dict(self) -> dict:
        return {
            "project": {
                "name": self.project.name,
                "test_command": self.project.test_command,
                "lint_command": self.project.lint_command,
                "fail_on_skipped": self.project.fail_on_skipped,
            },
            "backend": {
                "primary": self.backend.primary,
                "fallback": self.backend.fallback,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
            },
            "agents": {
                "implementer_model": self.agents.implementer_model,
                "reviewer_model": self.agents.reviewer_model,
                "verifier_model": self.agents.verifier_model,
                "analyst_model": self.agents.analyst_model,
            },
            "review": {
                "max_rounds": self.review.max_rounds,
                "max_file_bytes": self.review.max_file_bytes,
                "exclude_patterns": list(self.review.exclude_patterns),
            },
            "workflow": {
                "max_check_rounds": self.workflow.max_check_rounds,
                "require_clean_worktree": self.workflow.require_clean_worktree,
                "commit_prefix": self.workflow.commit_prefix,
            },
            "state": {
                "dir": self.state.dir,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: WizConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in WizConfig.SECTIONS:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> WizConfig:
    if not path.exists():
        return WizConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return WizConfig.from_dict(data)


def save_config(path: Path, config: WizConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
