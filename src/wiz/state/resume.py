"""Durable record of the in-flight milestone.

The record is written before any code mutation starts, so an interrupted run
can be detected on the next invocation and offered back to the operator.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from wiz.errors import MalformedStateError
from wiz.state.store import JsonStateStore
from wiz.state.taskgraph import MilestoneKey

logger = structlog.get_logger(__name__)

NAMESPACE = "resume"


class ResumeStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


@dataclass(frozen=True, slots=True)
class ResumeState:
    slug: str
    milestone_key: str
    phase_number: int
    phase_file_path: str
    status: ResumeStatus
    started_at: str
    completed_at: str | None = None

    @property
    def key(self) -> MilestoneKey:
        return MilestoneKey.parse(self.milestone_key)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> ResumeState:
        if not isinstance(payload, dict):
            raise MalformedStateError("Resume record is not an object.")
        required = ("slug", "milestone_key", "phase_number", "phase_file_path", "status", "started_at")
        missing = [name for name in required if name not in payload]
        if missing:
            raise MalformedStateError(f"Resume record is missing fields: {', '.join(missing)}")
        try:
            MilestoneKey.parse(str(payload["milestone_key"]))
            status = ResumeStatus(str(payload["status"]))
            phase_number = int(payload["phase_number"])
            datetime.fromisoformat(str(payload["started_at"]))
            completed_at = payload.get("completed_at")
            if completed_at is not None:
                datetime.fromisoformat(str(completed_at))
        except (TypeError, ValueError) as exc:
            raise MalformedStateError(f"Resume record failed validation: {exc}") from exc
        return cls(
            slug=str(payload["slug"]),
            milestone_key=str(payload["milestone_key"]),
            phase_number=phase_number,
            phase_file_path=str(payload["phase_file_path"]),
            status=status,
            started_at=str(payload["started_at"]),
            completed_at=None if completed_at is None else str(completed_at),
        )


class ResumeStateManager:
    def __init__(self, store: JsonStateStore, slug: str) -> None:
        self.store = store
        self.slug = slug

    def create(self, key: MilestoneKey, phase_file_path: str) -> ResumeState:
        state = ResumeState(
            slug=self.slug,
            milestone_key=str(key),
            phase_number=key.phase,
            phase_file_path=phase_file_path,
            status=ResumeStatus.IN_PROGRESS,
            started_at=_utcnow_iso(),
        )
        self.store.set_json(NAMESPACE, state.to_dict())
        logger.info("resume_state_created", milestone=str(key), slug=self.slug)
        return state

    def complete(self, key: MilestoneKey) -> ResumeState:
        def _updater(payload: Any) -> dict[str, Any]:
            current = ResumeState.from_dict(payload)
            if current.milestone_key != str(key):
                raise MalformedStateError(
                    f"Resume record tracks {current.milestone_key}, not {key}."
                )
            updated = dict(current.to_dict())
            updated["status"] = ResumeStatus.COMPLETE.value
            updated["completed_at"] = _utcnow_iso()
            return updated

        payload = self.store.update_json(NAMESPACE, _updater)
        logger.info("resume_state_completed", milestone=str(key))
        return ResumeState.from_dict(payload)

    def read(self) -> ResumeState | None:
        """Return the raw record without stale/malformed handling."""
        payload = self.store.get_json(NAMESPACE)
        if payload is None:
            return None
        return ResumeState.from_dict(payload)

    def load(self) -> ResumeState | None:
        """Return the interrupted milestone record, if any.

        A malformed record is cleared and re-raised; a record already marked
        complete is stale and is cleared silently.
        """
        try:
            state = self.read()
        except MalformedStateError as exc:
            self.clear()
            logger.warning("resume_state_malformed_cleared", error=str(exc))
            raise
        if state is None:
            return None
        if state.status == ResumeStatus.COMPLETE:
            self.clear()
            logger.info("resume_state_stale_cleared", milestone=state.milestone_key)
            return None
        return state

    def clear(self) -> bool:
        return self.store.delete(NAMESPACE)
