from pathlib import Path

import pytest

from wiz.errors import (
    InvalidTransitionError,
    MalformedStateError,
    MilestoneNotFoundError,
    PhaseNotFoundError,
)
from wiz.state.taskgraph import (
    MilestoneKey,
    MilestoneStatus,
    MutationResult,
    TaskGraphStore,
    load_task_graph,
    parse_status,
    render_status,
)


def test_milestone_key_parse_and_render() -> None:
    key = MilestoneKey.parse("p01m09")

    assert key == MilestoneKey(1, 9)
    assert str(key) == "P01M09"
    assert key.next_in_phase() == MilestoneKey(1, 10)
    assert key.first_of_next_phase() == MilestoneKey(2, 1)
    assert MilestoneKey(1, 10) > MilestoneKey(1, 9)
    with pytest.raises(ValueError):
        MilestoneKey.parse("M01P01")


def test_status_markers_round_trip_through_enum() -> None:
    for status in MilestoneStatus:
        assert parse_status(f"**Status:** {render_status(status)}") == status
    assert parse_status("**Status:** 🏗 IN PROGRESS") == MilestoneStatus.IN_PROGRESS
    assert parse_status("no marker here") is None


def test_load_task_graph_parses_phases_in_numeric_order(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(
        tmp_path / "phases",
        {1: ["complete", "in_progress"], 2: ["todo"], 10: ["todo", "todo"]},
    )

    graph = load_task_graph(phases_dir)

    assert [phase.number for phase in graph.phases] == [1, 2, 10]
    assert graph.phases[0].title == "Foundation"
    first = graph.get(MilestoneKey(1, 1))
    assert first is not None
    assert first.title == "Milestone 1.1"
    assert first.status == MilestoneStatus.COMPLETE
    assert first.all_criteria_checked
    second = graph.get(MilestoneKey(1, 2))
    assert second is not None
    assert second.status == MilestoneStatus.IN_PROGRESS
    assert [item.checked for item in second.criteria] == [False, False]
    assert second.criteria[0].text == "first criterion of P01M02"
    assert len(graph.milestones()) == 5


def test_mark_criteria_complete_is_scoped_and_idempotent(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["todo", "todo"]})
    store = TaskGraphStore(phases_dir)

    assert store.mark_criteria_complete(MilestoneKey(1, 1)) == 2
    after_first = (phases_dir / "phase1.md").read_bytes()
    assert store.mark_criteria_complete(MilestoneKey(1, 1)) == 0

    assert (phases_dir / "phase1.md").read_bytes() == after_first
    graph = store.load()
    assert graph.get(MilestoneKey(1, 1)).all_criteria_checked
    assert not any(item.checked for item in graph.get(MilestoneKey(1, 2)).criteria)


def test_set_status_only_touches_the_marker(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["todo", "todo"]})
    store = TaskGraphStore(phases_dir)
    before = (phases_dir / "phase1.md").read_text(encoding="utf-8")

    result = store.set_status(MilestoneKey(1, 2), MilestoneStatus.IN_PROGRESS)

    after = (phases_dir / "phase1.md").read_text(encoding="utf-8")
    assert result == MutationResult.UPDATED
    assert after == before.replace(
        "### P01M02: Milestone 1.2\n\n**Status:** 🚧 TODO",
        "### P01M02: Milestone 1.2\n\n**Status:** 🏗️ IN PROGRESS",
    )
    assert store.get_milestone(MilestoneKey(1, 1)).status == MilestoneStatus.TODO


def test_set_status_complete_twice_is_already_in_state(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["in_progress"]})
    store = TaskGraphStore(phases_dir)

    assert store.set_status(MilestoneKey(1, 1), MilestoneStatus.COMPLETE) == MutationResult.UPDATED
    before = (phases_dir / "phase1.md").read_bytes()
    result = store.set_status(MilestoneKey(1, 1), MilestoneStatus.COMPLETE)

    assert result == MutationResult.ALREADY_IN_STATE
    assert (phases_dir / "phase1.md").read_bytes() == before


def test_complete_milestone_is_never_reverted(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["complete"]})
    store = TaskGraphStore(phases_dir)

    with pytest.raises(InvalidTransitionError):
        store.set_status(MilestoneKey(1, 1), MilestoneStatus.TODO)
    assert store.get_milestone(MilestoneKey(1, 1)).status == MilestoneStatus.COMPLETE


def test_missing_milestone_and_phase_are_not_found(tmp_path: Path, write_phases) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["todo"]})
    store = TaskGraphStore(phases_dir)

    with pytest.raises(MilestoneNotFoundError):
        store.find_milestone_section(MilestoneKey(1, 2))
    with pytest.raises(MilestoneNotFoundError):
        store.mark_criteria_complete(MilestoneKey(1, 2))
    with pytest.raises(PhaseNotFoundError):
        store.set_status(MilestoneKey(3, 1), MilestoneStatus.COMPLETE)


def test_section_ends_at_next_heading(tmp_path: Path) -> None:
    phases_dir = tmp_path / "phases"
    phases_dir.mkdir()
    (phases_dir / "phase1.md").write_text(
        "# Phase 1: Setup\n\n"
        "### P01M01: Scaffold\n\n**Status:** 🚧 TODO\n\n- [ ] repo exists\n\n"
        "## Notes\n\n- [ ] not a criterion of P01M01\n",
        encoding="utf-8",
    )
    store = TaskGraphStore(phases_dir)

    section = store.find_milestone_section(MilestoneKey(1, 1))
    store.mark_criteria_complete(MilestoneKey(1, 1))

    assert "## Notes" not in section.text
    text = (phases_dir / "phase1.md").read_text(encoding="utf-8")
    assert "- [x] repo exists" in text
    assert "- [ ] not a criterion of P01M01" in text


def test_fenced_code_does_not_split_sections(tmp_path: Path) -> None:
    phases_dir = tmp_path / "phases"
    phases_dir.mkdir()
    (phases_dir / "phase1.md").write_text(
        "# Phase 1: Setup\n\n"
        "### P01M01: Script\n\n**Status:** 🚧 TODO\n\n"
        "```bash\n# comment that looks like a heading\n- [ ] not a checkbox\n```\n\n"
        "- [ ] script runs\n",
        encoding="utf-8",
    )
    store = TaskGraphStore(phases_dir)

    milestone = store.get_milestone(MilestoneKey(1, 1))
    store.mark_criteria_complete(MilestoneKey(1, 1))

    assert [item.text for item in milestone.criteria] == ["script runs"]
    text = (phases_dir / "phase1.md").read_text(encoding="utf-8")
    assert "- [ ] not a checkbox" in text
    assert "- [x] script runs" in text


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("### P01M01: A\n\n**Status:** 🚧 TODO\n\n### P01M01: B\n\n**Status:** 🚧 TODO\n", "Duplicate"),
        ("### P01M02: A\n\n**Status:** 🚧 TODO\n", "contiguously"),
        ("### P02M01: A\n\n**Status:** 🚧 TODO\n", "declared in phase file"),
        ("### P01M01: A\n\nno marker\n", "no status marker"),
    ],
)
def test_structural_validation(tmp_path: Path, content: str, message: str) -> None:
    phases_dir = tmp_path / "phases"
    phases_dir.mkdir()
    (phases_dir / "phase1.md").write_text(f"# Phase 1: Bad\n\n{content}", encoding="utf-8")

    with pytest.raises(MalformedStateError, match=message):
        load_task_graph(phases_dir)


def test_failed_write_leaves_original_file(tmp_path: Path, write_phases, monkeypatch) -> None:
    phases_dir = write_phases(tmp_path / "phases", {1: ["todo"]})
    store = TaskGraphStore(phases_dir)
    before = (phases_dir / "phase1.md").read_bytes()

    def broken_replace(src: str, dst: str) -> None:
        _ = src, dst
        raise OSError("disk full")

    monkeypatch.setattr("wiz.state.taskgraph.os.replace", broken_replace)

    with pytest.raises(OSError):
        store.set_status(MilestoneKey(1, 1), MilestoneStatus.IN_PROGRESS)
    assert (phases_dir / "phase1.md").read_bytes() == before
    assert [path.name for path in phases_dir.iterdir()] == ["phase1.md"]
