from wiz.state.changeset import ChangedFile, Changeset
from wiz.state.git import GitWorkspace
from wiz.state.resume import ResumeState, ResumeStateManager, ResumeStatus
from wiz.state.store import JsonStateStore
from wiz.state.taskgraph import (
    AcceptanceCriterion,
    Milestone,
    MilestoneKey,
    MilestoneStatus,
    MutationResult,
    Phase,
    TaskGraph,
    TaskGraphStore,
)

__all__ = [
    "AcceptanceCriterion",
    "ChangedFile",
    "Changeset",
    "GitWorkspace",
    "JsonStateStore",
    "Milestone",
    "MilestoneKey",
    "MilestoneStatus",
    "MutationResult",
    "Phase",
    "ResumeState",
    "ResumeStateManager",
    "ResumeStatus",
    "TaskGraph",
    "TaskGraphStore",
]
