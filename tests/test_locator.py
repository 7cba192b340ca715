from pathlib import Path

import pytest

from wiz.errors import MilestoneNotFoundError
from wiz.locator import Completed, MilestoneLocator, locate_next
from wiz.state.taskgraph import MilestoneKey, MilestoneStatus, TaskGraphStore, load_task_graph


def _next(tmp_path: Path, write_phases, phases: dict[int, list[str]]):
    return MilestoneLocator(TaskGraphStore(write_phases(tmp_path / "phases", phases))).next()


def test_next_after_last_complete_in_phase(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["complete", "todo"]})

    assert not isinstance(result, Completed)
    assert result.key == MilestoneKey(1, 2)


def test_rolls_over_to_next_phase(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["todo", "todo", "complete"], 2: ["todo"]})

    assert not isinstance(result, Completed)
    assert result.key == MilestoneKey(2, 1)


def test_nothing_complete_starts_at_first_milestone(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["todo", "todo"], 2: ["todo"]})

    assert not isinstance(result, Completed)
    assert result.key == MilestoneKey(1, 1)


def test_everything_complete_returns_completed(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["complete", "complete"], 2: ["complete"]})

    assert isinstance(result, Completed)
    assert result.last_complete == MilestoneKey(2, 1)


def test_last_in_final_phase_without_successor_is_completed(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["todo", "todo", "complete"]})

    assert isinstance(result, Completed)


def test_missing_first_milestone_is_fatal(tmp_path: Path) -> None:
    phases_dir = tmp_path / "phases"
    phases_dir.mkdir()
    (phases_dir / "phase2.md").write_text(
        "# Phase 2: Later\n\n### P02M01: Only\n\n**Status:** 🚧 TODO\n", encoding="utf-8"
    )

    with pytest.raises(MilestoneNotFoundError):
        MilestoneLocator(TaskGraphStore(phases_dir)).next()


def test_later_completion_overrides_earlier(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["complete", "todo", "complete", "todo"], 2: ["todo"]})

    assert not isinstance(result, Completed)
    assert result.key == MilestoneKey(1, 4)


def test_candidate_is_returned_regardless_of_status(tmp_path: Path, write_phases) -> None:
    result = _next(tmp_path, write_phases, {1: ["complete", "in_progress"]})

    assert not isinstance(result, Completed)
    assert result.status == MilestoneStatus.IN_PROGRESS


def test_locator_is_deterministic(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["complete", "todo"], 2: ["todo"]})
    locator = MilestoneLocator(TaskGraphStore(phases_dir))

    keys = {locator.next().key for _ in range(5)}

    assert keys == {MilestoneKey(1, 2)}
    assert locate_next(load_task_graph(phases_dir)).key == MilestoneKey(1, 2)
