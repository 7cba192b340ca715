from __future__ import annotations

import asyncio
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from wiz.interfaces import ChecksResult, ProjectChecks

logger = structlog.get_logger(__name__)

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`]|[$]\()")
SKIPPED_PATTERN = re.compile(r"\b(\d+)\s+skipped\b", re.IGNORECASE)
OUTPUT_TAIL_CHARS = 2000


@dataclass(slots=True)
class CommandResult:
    command: str
    exit_code: int
    stdout_tail: str
    stderr_tail: str
    used_shell: bool

    @property
    def skipped(self) -> int:
        output = f"{self.stdout_tail}\n{self.stderr_tail}"
        return sum(int(match) for match in SKIPPED_PATTERN.findall(output))

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout_tail": self.stdout_tail,
            "stderr_tail": self.stderr_tail,
            "used_shell": self.used_shell,
        }


def run_command(command: str, cwd: Path) -> CommandResult:
    command_text = command.strip()
    if not command_text:
        return CommandResult(command, 1, "", "Command is empty.", False)

    used_shell = bool(SHELL_REQUIRED_PATTERN.search(command_text))
    command_payload: str | list[str] = command_text
    if not used_shell:
        try:
            command_payload = shlex.split(command_text)
        except ValueError:
            used_shell = True
            command_payload = command_text

    try:
        proc = subprocess.run(
            command_payload,
            cwd=cwd,
            shell=used_shell,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        return CommandResult(command, 127, "", str(exc), used_shell)
    return CommandResult(
        command=command,
        exit_code=proc.returncode,
        stdout_tail=proc.stdout.strip()[-OUTPUT_TAIL_CHARS:],
        stderr_tail=proc.stderr.strip()[-OUTPUT_TAIL_CHARS:],
        used_shell=used_shell,
    )


class CommandProjectChecks(ProjectChecks):
    """Whole-project tests and lint via the configured shell commands."""

    def __init__(
        self,
        repo_root: Path,
        *,
        test_command: str,
        lint_command: str = "",
        fail_on_skipped: bool = True,
    ) -> None:
        self.repo_root = repo_root
        self.test_command = test_command
        self.lint_command = lint_command
        self.fail_on_skipped = fail_on_skipped

    def _evaluate(self, label: str, result: CommandResult) -> str | None:
        if result.exit_code != 0:
            return (
                f"{label} command `{result.command}` failed with exit code {result.exit_code}.\n"
                f"{result.stdout_tail}\n{result.stderr_tail}".strip()
            )
        if self.fail_on_skipped and result.skipped:
            return (
                f"{label} command `{result.command}` reported {result.skipped} skipped test(s); "
                "zero skips are required.\n"
                f"{result.stdout_tail}".strip()
            )
        return None

    async def run(self) -> ChecksResult:
        commands = [("test", self.test_command)]
        if self.lint_command.strip():
            commands.append(("lint", self.lint_command))

        failures: list[str] = []
        for label, command in commands:
            result = await asyncio.to_thread(run_command, command, self.repo_root)
            logger.info(
                "project_check",
                check=label,
                exit_code=result.exit_code,
                skipped=result.skipped,
            )
            failure = self._evaluate(label, result)
            if failure:
                failures.append(failure)
        if failures:
            return ChecksResult(passed=False, details="\n\n".join(failures))
        return ChecksResult(passed=True, details="all project checks passed")
