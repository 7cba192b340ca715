"""Exception hierarchy for wiz.

Every error carries a stable ``code`` so the CLI can report which invariant
was violated without parsing messages.
"""

from __future__ import annotations


class WizError(RuntimeError):
    """Base exception for all wiz errors."""

    def __init__(self, message: str, *, code: str = "WIZ_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ConfigError(WizError):
    def __init__(self, message: str, *, code: str = "CONFIG_ERROR") -> None:
        super().__init__(message, code=code)


class NotFoundError(WizError):
    """A milestone, phase, slug or file is missing. Fatal, never retried."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code)


class MilestoneNotFoundError(NotFoundError):
    def __init__(self, key: str, path: str | None = None) -> None:
        where = f" in {path}" if path else ""
        super().__init__(f"Milestone {key} not found{where}.", code="MILESTONE_NOT_FOUND")
        self.key = key
        self.path = path


class PhaseNotFoundError(NotFoundError):
    def __init__(self, phase_number: int, path: str | None = None) -> None:
        where = f" ({path})" if path else ""
        super().__init__(f"Phase {phase_number} not found{where}.", code="PHASE_NOT_FOUND")
        self.phase_number = phase_number


class MalformedStateError(WizError):
    """A task graph or resume record failed structural validation."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message, code="MALFORMED_STATE")
        self.path = path


class InvalidTransitionError(WizError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_TRANSITION")


class MilestoneClaimedError(WizError):
    """The located milestone is not Todo and cannot be started fresh."""

    def __init__(self, key: str, status: str) -> None:
        super().__init__(
            f"Milestone {key} is already {status}; refusing to start it again.",
            code="MILESTONE_CLAIMED",
        )
        self.key = key
        self.status = status


class InterruptedRunError(WizError):
    def __init__(self, key: str) -> None:
        super().__init__(
            f"Milestone {key} was interrupted. Run `wiz resume` to resume, skip or cancel it.",
            code="INTERRUPTED_RUN",
        )
        self.key = key


class ChecksFailedError(WizError):
    """Project tests/lint did not pass cleanly. Blocks commit."""

    def __init__(self, message: str, *, details: str = "") -> None:
        super().__init__(message, code="CHECKS_FAILED")
        self.details = details


class CriteriaUnverifiedError(WizError):
    def __init__(self, key: str, unverified: list[tuple[int, str]]) -> None:
        listed = "; ".join(f"criterion {index} unchecked: {text}" for index, text in unverified)
        super().__init__(f"{key}: {listed}", code="CRITERIA_UNVERIFIED")
        self.key = key
        self.unverified = unverified


class ReviewerError(WizError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="REVIEWER_ERROR")


class ReviewEscalationError(WizError):
    """Consensus was not reached within the configured number of rounds."""

    def __init__(self, message: str, *, rejections: dict[str, int] | None = None) -> None:
        super().__init__(message, code="REVIEW_ESCALATED")
        self.rejections = dict(rejections or {})


class AnalystContractError(WizError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="ANALYST_CONTRACT")


class GitError(WizError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="GIT_ERROR")
