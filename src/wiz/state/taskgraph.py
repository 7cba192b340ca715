"""Phase/milestone task graph and its markdown encoding.

This is the only module that knows how statuses and acceptance criteria are
spelled on disk. Everything else works with :class:`MilestoneStatus`,
:class:`MilestoneKey` and the parsed :class:`TaskGraph`.

Mutations are scoped to the addressed milestone's section and are written with
temp-file + ``os.replace`` so readers never observe a half-written file.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import structlog

from wiz.errors import (
    InvalidTransitionError,
    MalformedStateError,
    MilestoneNotFoundError,
    NotFoundError,
    PhaseNotFoundError,
)

logger = structlog.get_logger(__name__)

KEY_PATTERN = re.compile(r"^P(\d+)M(\d+)$")
MILESTONE_HEADING_PATTERN = re.compile(r"^###\s+(P(\d+)M(\d+))\b[:\s]*(.*?)\s*$")
SECTION_BOUNDARY_PATTERN = re.compile(r"^#{1,3}\s")
PHASE_HEADING_PATTERN = re.compile(r"^#\s+Phase\s+(\d+)\s*:?\s*(.*?)\s*$", re.IGNORECASE)
PHASE_FILE_PATTERN = re.compile(r"^phase(\d+)\.md$")
CRITERION_PATTERN = re.compile(r"^(\s*[-*]\s+\[)([ xX])(\]\s+)(.*?)\s*$")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")


class MilestoneStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


STATUS_MARKERS: dict[MilestoneStatus, str] = {
    MilestoneStatus.TODO: "🚧 TODO",
    MilestoneStatus.IN_PROGRESS: "🏗️ IN PROGRESS",
    MilestoneStatus.COMPLETE: "✅ COMPLETE",
}

# Variation selector on the construction glyph is optional in hand-edited files.
_MARKER_PATTERNS: dict[MilestoneStatus, re.Pattern[str]] = {
    MilestoneStatus.TODO: re.compile(r"🚧\s*TODO"),
    MilestoneStatus.IN_PROGRESS: re.compile(r"🏗️?\s*IN PROGRESS"),
    MilestoneStatus.COMPLETE: re.compile(r"✅\s*COMPLETE"),
}


class MutationResult(StrEnum):
    UPDATED = "updated"
    ALREADY_IN_STATE = "already_in_state"


def parse_status(line: str) -> MilestoneStatus | None:
    for status, pattern in _MARKER_PATTERNS.items():
        if pattern.search(line):
            return status
    return None


def render_status(status: MilestoneStatus) -> str:
    return STATUS_MARKERS[status]


@dataclass(frozen=True, slots=True, order=True)
class MilestoneKey:
    phase: int
    milestone: int

    @classmethod
    def parse(cls, token: str) -> MilestoneKey:
        match = KEY_PATTERN.match(token.strip().upper())
        if not match:
            raise ValueError(f"Invalid milestone key: {token!r} (expected e.g. P01M09)")
        return cls(int(match.group(1)), int(match.group(2)))

    def next_in_phase(self) -> MilestoneKey:
        return MilestoneKey(self.phase, self.milestone + 1)

    def first_of_next_phase(self) -> MilestoneKey:
        return MilestoneKey(self.phase + 1, 1)

    def __str__(self) -> str:
        return f"P{self.phase:02d}M{self.milestone:02d}"


@dataclass(slots=True)
class AcceptanceCriterion:
    text: str
    checked: bool = False


@dataclass(slots=True)
class Section:
    """Line span of one milestone inside its phase file (``end`` exclusive)."""

    key: MilestoneKey
    start: int
    end: int
    lines: list[str]

    @property
    def text(self) -> str:
        return "".join(self.lines)


@dataclass(slots=True)
class Milestone:
    key: MilestoneKey
    title: str
    status: MilestoneStatus
    criteria: list[AcceptanceCriterion] = field(default_factory=list)
    body: str = ""

    @property
    def all_criteria_checked(self) -> bool:
        return all(item.checked for item in self.criteria)


@dataclass(slots=True)
class Phase:
    number: int
    title: str
    path: Path
    milestones: list[Milestone] = field(default_factory=list)

    def get(self, key: MilestoneKey) -> Milestone | None:
        for milestone in self.milestones:
            if milestone.key == key:
                return milestone
        return None


@dataclass(slots=True)
class TaskGraph:
    phases: list[Phase] = field(default_factory=list)

    def phase(self, number: int) -> Phase | None:
        for phase in self.phases:
            if phase.number == number:
                return phase
        return None

    def get(self, key: MilestoneKey) -> Milestone | None:
        phase = self.phase(key.phase)
        if phase is None:
            return None
        return phase.get(key)

    def milestones(self) -> list[Milestone]:
        return [milestone for phase in self.phases for milestone in phase.milestones]


def _read_lines(path: Path) -> list[str]:
    try:
        return path.read_text(encoding="utf-8").splitlines(keepends=True)
    except FileNotFoundError as exc:
        raise NotFoundError(f"Phase file not found: {path}") from exc


def _fenced_lines(lines: list[str]) -> set[int]:
    fenced: set[int] = set()
    inside = False
    for index, raw_line in enumerate(lines):
        if FENCE_PATTERN.match(raw_line):
            fenced.add(index)
            inside = not inside
        elif inside:
            fenced.add(index)
    return fenced


def _section_spans(lines: list[str]) -> list[tuple[MilestoneKey, str, int, int]]:
    headings: list[tuple[int, MilestoneKey, str]] = []
    boundaries: list[int] = []
    fenced = _fenced_lines(lines)
    for index, raw_line in enumerate(lines):
        if index in fenced:
            continue
        line = raw_line.rstrip("\r\n")
        if SECTION_BOUNDARY_PATTERN.match(line):
            boundaries.append(index)
        match = MILESTONE_HEADING_PATTERN.match(line)
        if match:
            key = MilestoneKey(int(match.group(2)), int(match.group(3)))
            headings.append((index, key, match.group(4).strip()))

    spans: list[tuple[MilestoneKey, str, int, int]] = []
    for start, key, title in headings:
        end = next((item for item in boundaries if item > start), len(lines))
        spans.append((key, title, start, end))
    return spans


def find_milestone_section(path: Path, key: MilestoneKey) -> Section:
    lines = _read_lines(path)
    for span_key, _title, start, end in _section_spans(lines):
        if span_key == key:
            return Section(key=key, start=start, end=end, lines=lines[start:end])
    raise MilestoneNotFoundError(str(key), str(path))


def _parse_section(section: Section, title: str, path: Path) -> Milestone:
    status: MilestoneStatus | None = None
    criteria: list[AcceptanceCriterion] = []
    fenced = _fenced_lines(section.lines)
    for index, raw_line in enumerate(section.lines):
        if index == 0 or index in fenced:
            continue
        line = raw_line.rstrip("\r\n")
        if status is None:
            status = parse_status(line)
        match = CRITERION_PATTERN.match(line)
        if match:
            criteria.append(
                AcceptanceCriterion(text=match.group(4), checked=match.group(2) in {"x", "X"})
            )
    if status is None:
        raise MalformedStateError(
            f"Milestone {section.key} in {path} has no status marker.", path=str(path)
        )
    return Milestone(
        key=section.key,
        title=title,
        status=status,
        criteria=criteria,
        body="".join(section.lines),
    )


def phase_number_from_path(path: Path) -> int | None:
    match = PHASE_FILE_PATTERN.match(path.name)
    if not match:
        return None
    return int(match.group(1))


def parse_phase_file(path: Path, number: int | None = None) -> Phase:
    lines = _read_lines(path)
    phase_number = number if number is not None else phase_number_from_path(path)
    if phase_number is None:
        raise MalformedStateError(f"Cannot derive phase number from {path.name}.", path=str(path))

    title = ""
    for raw_line in lines:
        heading = PHASE_HEADING_PATTERN.match(raw_line.rstrip("\r\n"))
        if heading:
            title = heading.group(2)
            break

    phase = Phase(number=phase_number, title=title, path=path)
    seen: set[MilestoneKey] = set()
    for key, milestone_title, start, end in _section_spans(lines):
        if key.phase != phase_number:
            raise MalformedStateError(
                f"Milestone {key} is declared in phase file {path.name} (phase {phase_number}).",
                path=str(path),
            )
        if key in seen:
            raise MalformedStateError(f"Duplicate milestone {key} in {path}.", path=str(path))
        seen.add(key)
        section = Section(key=key, start=start, end=end, lines=lines[start:end])
        phase.milestones.append(_parse_section(section, milestone_title, path))

    phase.milestones.sort(key=lambda item: item.key)
    numbers = [item.key.milestone for item in phase.milestones]
    if numbers != list(range(1, len(numbers) + 1)):
        raise MalformedStateError(
            f"Milestones in {path.name} must be numbered contiguously from 1, got {numbers}.",
            path=str(path),
        )
    return phase


def list_phase_files(phases_dir: Path) -> list[tuple[int, Path]]:
    if not phases_dir.is_dir():
        raise NotFoundError(f"Phases directory not found: {phases_dir}")
    numbered: list[tuple[int, Path]] = []
    for path in phases_dir.iterdir():
        number = phase_number_from_path(path)
        if number is not None and path.is_file():
            numbered.append((number, path))
    return sorted(numbered)


def load_task_graph(phases_dir: Path) -> TaskGraph:
    graph = TaskGraph()
    for number, path in list_phase_files(phases_dir):
        graph.phases.append(parse_phase_file(path, number))
    return graph


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class TaskGraphStore:
    """Read/write access to the phase files of one PRD."""

    def __init__(self, phases_dir: Path) -> None:
        self.phases_dir = phases_dir

    def phase_path(self, phase_number: int) -> Path:
        for number, path in list_phase_files(self.phases_dir):
            if number == phase_number:
                return path
        raise PhaseNotFoundError(phase_number, str(self.phases_dir))

    def load(self) -> TaskGraph:
        return load_task_graph(self.phases_dir)

    def get_milestone(self, key: MilestoneKey) -> Milestone:
        path = self.phase_path(key.phase)
        section = find_milestone_section(path, key)
        heading = MILESTONE_HEADING_PATTERN.match(section.lines[0].rstrip("\r\n"))
        title = heading.group(4).strip() if heading else ""
        return _parse_section(section, title, path)

    def find_milestone_section(self, key: MilestoneKey) -> Section:
        return find_milestone_section(self.phase_path(key.phase), key)

    def mark_criteria_complete(self, key: MilestoneKey) -> int:
        """Check every criterion of ``key``; returns how many were newly checked."""
        path = self.phase_path(key.phase)
        lines = _read_lines(path)
        section = find_milestone_section(path, key)
        fenced = _fenced_lines(section.lines)
        changed = 0
        for offset, raw_line in enumerate(section.lines):
            if offset in fenced:
                continue
            line = raw_line.rstrip("\r\n")
            match = CRITERION_PATTERN.match(line)
            if match and match.group(2) == " ":
                ending = raw_line[len(line):]
                lines[section.start + offset] = (
                    line[: match.start(2)] + "x" + line[match.end(2):] + ending
                )
                changed += 1
        if changed:
            _atomic_write(path, "".join(lines))
        logger.info("criteria_marked", milestone=str(key), newly_checked=changed)
        return changed

    def set_status(self, key: MilestoneKey, status: MilestoneStatus) -> MutationResult:
        path = self.phase_path(key.phase)
        lines = _read_lines(path)
        section = find_milestone_section(path, key)
        fenced = _fenced_lines(section.lines)
        for offset in range(1, len(section.lines)):
            if offset in fenced:
                continue
            index = section.start + offset
            raw_line = lines[index]
            current = parse_status(raw_line)
            if current is None:
                continue
            if current == status:
                logger.warning("status_already_set", milestone=str(key), status=status.value)
                return MutationResult.ALREADY_IN_STATE
            if current == MilestoneStatus.COMPLETE:
                raise InvalidTransitionError(
                    f"Milestone {key} is Complete; refusing to change it to {status.value}."
                )
            lines[index] = _MARKER_PATTERNS[current].sub(render_status(status), raw_line, count=1)
            _atomic_write(path, "".join(lines))
            logger.info(
                "status_updated", milestone=str(key), previous=current.value, status=status.value
            )
            return MutationResult.UPDATED
        raise MalformedStateError(f"Milestone {key} in {path} has no status marker.", path=str(path))
