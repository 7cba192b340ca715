from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ChangedFile:
    path: str
    change_type: str
    diff: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "change_type": self.change_type, "diff": self.diff}


@dataclass(frozen=True, slots=True)
class Changeset:
    """Every reviewable file touched since the milestone started.

    ``excluded`` lists touched paths that are committed but never shown to
    reviewers (binary or oversized artifacts).
    """

    files: tuple[ChangedFile, ...] = ()
    excluded: tuple[str, ...] = field(default_factory=tuple)

    @property
    def paths(self) -> list[str]:
        return [item.path for item in self.files]

    @property
    def all_paths(self) -> list[str]:
        return sorted({*self.paths, *self.excluded})

    def is_empty(self) -> bool:
        return not self.files and not self.excluded

    def render(self) -> str:
        blocks: list[str] = []
        for item in self.files:
            blocks.append(f"=== {item.change_type}: {item.path} ===\n{item.diff.rstrip()}\n")
        if self.excluded:
            blocks.append(
                "=== excluded from review (binary/large) ===\n" + "\n".join(self.excluded) + "\n"
            )
        return "\n".join(blocks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [item.to_dict() for item in self.files],
            "excluded": list(self.excluded),
        }
