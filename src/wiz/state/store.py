"""Locked JSON state files under the state directory."""

from __future__ import annotations

import json
import os
import tempfile
import time
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from wiz.errors import MalformedStateError, WizError


class StateLockError(WizError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="STATE_LOCKED")


class JsonStateStore:
    """Versioned JSON documents under the state directory.

    Each namespace is one file holding an envelope
    ``{schema_version, revision, updated_at, data}``. Writes go through a
    lock file and temp-file + ``os.replace``.
    """

    NAMESPACES = {"resume", "workspace"}
    SCHEMA_VERSION = 1

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.lock_file = self.state_dir / ".lock"

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).replace(microsecond=0).isoformat()

    @staticmethod
    def _validate_namespace(namespace: str) -> None:
        if namespace not in JsonStateStore.NAMESPACES:
            raise WizError(f"Unsupported state namespace: {namespace}")

    def path_for(self, namespace: str) -> Path:
        self._validate_namespace(namespace)
        return self.state_dir / f"{namespace}.json"

    @contextmanager
    def _state_lock(self, timeout_seconds: float = 3.0):
        self.state_dir.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > timeout_seconds:
                    raise StateLockError(
                        f"Timed out waiting for state lock {self.lock_file}."
                    ) from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass

    def exists(self, namespace: str) -> bool:
        return self.path_for(namespace).exists()

    def _read_raw_json(self, namespace: str) -> Any:
        path = self.path_for(namespace)
        if not path.exists():
            return None
        content = path.read_text(encoding="utf-8").strip()
        if not content:
            raise MalformedStateError(f"State file {path} is empty.", path=str(path))
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise MalformedStateError(
                f"State file {path} is not valid JSON: {exc}", path=str(path)
            ) from exc

    def _write_raw_json(self, namespace: str, payload: Any) -> None:
        path = self.path_for(namespace)
        path.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def get_envelope(self, namespace: str) -> dict[str, Any] | None:
        raw = self._read_raw_json(namespace)
        if raw is None:
            return None
        path = self.path_for(namespace)
        if not isinstance(raw, dict) or "data" not in raw:
            raise MalformedStateError(f"State file {path} has no data envelope.", path=str(path))
        try:
            schema_version = int(raw.get("schema_version") or 0)
            revision = int(raw.get("revision") or 0)
        except (TypeError, ValueError) as exc:
            raise MalformedStateError(
                f"State file {path} has an invalid envelope header.", path=str(path)
            ) from exc
        if schema_version != self.SCHEMA_VERSION:
            raise MalformedStateError(
                f"State file {path} has unsupported schema_version {schema_version}.",
                path=str(path),
            )
        return {
            "schema_version": schema_version,
            "revision": revision,
            "updated_at": raw.get("updated_at"),
            "data": raw["data"],
        }

    def get_json(self, namespace: str) -> Any:
        envelope = self.get_envelope(namespace)
        if envelope is None:
            return None
        return envelope["data"]

    def set_json(self, namespace: str, data: Any) -> None:
        with self._state_lock():
            try:
                current = self.get_envelope(namespace)
            except MalformedStateError:
                current = None
            revision = int(current["revision"]) if current else 0
            envelope = {
                "schema_version": self.SCHEMA_VERSION,
                "revision": revision + 1,
                "updated_at": self._utcnow_iso(),
                "data": data,
            }
            self._write_raw_json(namespace, envelope)

    def update_json(self, namespace: str, updater: Callable[[Any], Any]) -> Any:
        with self._state_lock():
            current = self.get_envelope(namespace)
            updated = updater(current["data"] if current else None)
            envelope = {
                "schema_version": self.SCHEMA_VERSION,
                "revision": (int(current["revision"]) if current else 0) + 1,
                "updated_at": self._utcnow_iso(),
                "data": updated,
            }
            self._write_raw_json(namespace, envelope)
            return updated

    def delete(self, namespace: str) -> bool:
        path = self.path_for(namespace)
        with self._state_lock():
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True
