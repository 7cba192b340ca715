"""Git plumbing: worktree changesets, dirty checks and milestone commits."""

from __future__ import annotations

import fnmatch
import subprocess
from dataclasses import dataclass
from pathlib import Path

import structlog

from wiz.errors import GitError
from wiz.state.changeset import ChangedFile, Changeset

logger = structlog.get_logger(__name__)

BINARY_SNIFF_BYTES = 8000


@dataclass(frozen=True, slots=True)
class StatusEntry:
    code: str
    path: str
    original_path: str | None = None

    @property
    def change_type(self) -> str:
        if self.code == "??" or "A" in self.code:
            return "added"
        if "D" in self.code:
            return "deleted"
        if "R" in self.code:
            return "renamed"
        return "modified"


class GitWorkspace:
    def __init__(
        self,
        repo_root: Path,
        *,
        internal_dir: str = ".wiz",
        max_file_bytes: int = 200_000,
        exclude_patterns: list[str] | None = None,
    ) -> None:
        self.repo_root = repo_root.resolve()
        self.internal_dir = internal_dir.strip("/").replace("\\", "/")
        self.max_file_bytes = max_file_bytes
        self.exclude_patterns = list(exclude_patterns or [])
        self._git_enabled = self._is_git_repo()

    @property
    def git_enabled(self) -> bool:
        return self._git_enabled

    def _is_git_repo(self) -> bool:
        proc = subprocess.run(
            ["git", "--no-pager", "rev-parse", "--is-inside-work-tree"],
            cwd=self.repo_root,
            text=True,
            capture_output=True,
        )
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def _run_git(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        if not self.git_enabled:
            raise GitError(f"No git repository found at {self.repo_root}.")
        proc = subprocess.run(
            ["git", "--no-pager", *args],
            cwd=self.repo_root,
            text=True,
            capture_output=True,
        )
        if check and proc.returncode != 0:
            raise GitError(proc.stderr.strip() or proc.stdout.strip())
        return proc

    def _has_head(self) -> bool:
        return self._run_git(["rev-parse", "--verify", "--quiet", "HEAD"], check=False).returncode == 0

    def _is_internal_path(self, path: str) -> bool:
        normalized = path.replace("\\", "/")
        return normalized == self.internal_dir or normalized.startswith(f"{self.internal_dir}/")

    def _is_excluded_pattern(self, path: str) -> bool:
        normalized = path.replace("\\", "/")
        name = normalized.rsplit("/", maxsplit=1)[-1]
        return any(
            fnmatch.fnmatch(normalized, pattern) or fnmatch.fnmatch(name, pattern)
            for pattern in self.exclude_patterns
        )

    def status_entries(self) -> list[StatusEntry]:
        if not self.git_enabled:
            return []
        proc = self._run_git(["status", "--porcelain", "-z", "--untracked-files=all"])
        tokens = proc.stdout.split("\0")
        entries: list[StatusEntry] = []
        index = 0
        while index < len(tokens):
            token = tokens[index]
            index += 1
            if len(token) < 4:
                continue
            code, path = token[:2], token[3:]
            original: str | None = None
            if "R" in code or "C" in code:
                original = tokens[index] if index < len(tokens) else None
                index += 1
            entries.append(StatusEntry(code=code, path=path, original_path=original))
        return entries

    def dirty_paths(self) -> list[str]:
        return sorted(
            entry.path for entry in self.status_entries() if not self._is_internal_path(entry.path)
        )

    def is_dirty(self, path: str) -> bool:
        """True when ``path`` differs from HEAD or is untracked."""
        if not self.git_enabled:
            return False
        proc = self._run_git(["status", "--porcelain", "--untracked-files=all", "--", path])
        return bool(proc.stdout.strip())

    def _reviewable(self, path: Path) -> bool:
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return True
        if size > self.max_file_bytes:
            return False
        with path.open("rb") as handle:
            head = handle.read(BINARY_SNIFF_BYTES)
        return b"\0" not in head

    def _file_diff(self, entry: StatusEntry) -> str:
        absolute = self.repo_root / entry.path
        if entry.code == "??" or not self._has_head():
            if not absolute.exists():
                return ""
            return absolute.read_text(encoding="utf-8", errors="replace")
        proc = self._run_git(["diff", "HEAD", "--", entry.path], check=False)
        if proc.returncode != 0:
            return ""
        return proc.stdout

    def build_changeset(self) -> Changeset:
        files: list[ChangedFile] = []
        excluded: list[str] = []
        for entry in sorted(self.status_entries(), key=lambda item: item.path):
            if self._is_internal_path(entry.path):
                continue
            if self._is_excluded_pattern(entry.path) or not self._reviewable(
                self.repo_root / entry.path
            ):
                excluded.append(entry.path)
                continue
            files.append(
                ChangedFile(
                    path=entry.path,
                    change_type=entry.change_type,
                    diff=self._file_diff(entry),
                )
            )
        return Changeset(files=tuple(files), excluded=tuple(excluded))

    def commit(self, paths: list[str], *, subject: str, body: str) -> str:
        if not self.git_enabled:
            raise GitError("Committing a milestone requires a git repository.")
        unique = sorted({path.replace("\\", "/") for path in paths})
        if not unique:
            raise GitError("Nothing to commit: no paths were given.")
        self._run_git(["add", "-A", "--", *unique])
        self._run_git(["commit", "-m", subject, "-m", body])
        commit_hash = self._run_git(["rev-parse", "HEAD"]).stdout.strip()
        logger.info("milestone_committed", commit=commit_hash[:10], files=len(unique))
        return commit_hash

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self.repo_root).as_posix()

    def recent_log(self, limit: int = 10) -> str:
        if not self.git_enabled or not self._has_head():
            return ""
        return self._run_git(["log", f"-{limit}", "--oneline", "--no-decorate"]).stdout.strip()
