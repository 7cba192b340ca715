"""Per-invocation workspace context and local context documents.

A :class:`WorkspaceContext` is built once by the CLI and handed to every
component that needs paths or configuration. The "current PRD" pointer is an
explicit record in the state store, read once while building the context.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from wiz.config import WizConfig
from wiz.errors import NotFoundError
from wiz.state.store import JsonStateStore

logger = structlog.get_logger(__name__)

WORKSPACE_NAMESPACE = "workspace"
FRONTMATTER_DELIMITER = "---"


@dataclass(frozen=True, slots=True)
class ContextDocument:
    path: Path
    description: str
    tags: tuple[str, ...] = ()
    languages: tuple[str, ...] = ()
    applies_to: tuple[str, ...] = ()
    body: str = ""

    def applies_to_domains(self, domains: Iterable[str]) -> bool:
        if not self.languages:
            return True
        wanted = {item.lower() for item in domains}
        return any(language.lower() in wanted for language in self.languages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path.as_posix(),
            "description": self.description,
            "tags": list(self.tags),
            "languages": list(self.languages),
            "applies_to": list(self.applies_to),
            "body": self.body,
        }


def _string_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(item) for item in value)
    return (str(value),)


def split_frontmatter(text: str) -> tuple[dict[str, Any], str] | None:
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        return None
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONTMATTER_DELIMITER:
            metadata = yaml.safe_load("".join(lines[1:index]))
            if not isinstance(metadata, dict):
                return None
            return metadata, "".join(lines[index + 1 :])
    return None


def load_context_documents(context_dir: Path) -> list[ContextDocument]:
    if not context_dir.is_dir():
        return []
    documents: list[ContextDocument] = []
    for path in sorted(context_dir.rglob("*.md")):
        try:
            parsed = split_frontmatter(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            logger.warning("context_document_invalid_frontmatter", path=str(path), error=str(exc))
            continue
        if parsed is None:
            continue
        metadata, body = parsed
        description = str(metadata.get("description") or "").strip()
        if not description:
            continue
        documents.append(
            ContextDocument(
                path=path,
                description=description,
                tags=_string_tuple(metadata.get("tags")),
                languages=_string_tuple(metadata.get("languages")),
                applies_to=_string_tuple(metadata.get("applies_to")),
                body=body.strip(),
            )
        )
    logger.debug("context_documents_loaded", count=len(documents))
    return documents


def _slug_exists(wiz_dir: Path, slug: str) -> bool:
    return (wiz_dir / slug / "phases").is_dir()


def available_slugs(wiz_dir: Path) -> list[str]:
    if not wiz_dir.is_dir():
        return []
    return sorted(
        child.name for child in wiz_dir.iterdir() if child.is_dir() and _slug_exists(wiz_dir, child.name)
    )


def read_current_prd(wiz_dir: Path) -> str | None:
    payload = JsonStateStore(wiz_dir).get_json(WORKSPACE_NAMESPACE)
    if not isinstance(payload, dict):
        return None
    slug = payload.get("current_prd")
    return slug if isinstance(slug, str) and slug else None


def set_current_prd(wiz_dir: Path, slug: str) -> None:
    if not _slug_exists(wiz_dir, slug):
        raise NotFoundError(f"PRD {slug!r} has no phases directory at {wiz_dir / slug / 'phases'}.")
    JsonStateStore(wiz_dir).set_json(WORKSPACE_NAMESPACE, {"current_prd": slug})
    logger.info("current_prd_set", slug=slug)


def resolve_slug(wiz_dir: Path, explicit: str | None = None) -> str:
    if explicit:
        if not _slug_exists(wiz_dir, explicit):
            raise NotFoundError(f"PRD {explicit!r} has no phases directory under {wiz_dir}.")
        return explicit

    pointer = read_current_prd(wiz_dir)
    if pointer:
        if not _slug_exists(wiz_dir, pointer):
            raise NotFoundError(
                f"Current PRD {pointer!r} no longer exists under {wiz_dir}; run `wiz use <slug>`."
            )
        return pointer

    candidates = available_slugs(wiz_dir)
    if len(candidates) == 1:
        return candidates[0]
    if not candidates:
        raise NotFoundError(f"No PRD with a phases directory found under {wiz_dir}.")
    raise NotFoundError(
        f"Several PRDs found ({', '.join(candidates)}); pass --slug or run `wiz use <slug>`."
    )


@dataclass(frozen=True, slots=True)
class WorkspaceContext:
    repo_root: Path
    wiz_dir: Path
    slug: str
    phases_dir: Path
    config: WizConfig
    context_documents: tuple[ContextDocument, ...] = field(default_factory=tuple)

    @classmethod
    def load(
        cls,
        repo_root: Path,
        config: WizConfig,
        *,
        slug: str | None = None,
    ) -> WorkspaceContext:
        repo_root = repo_root.resolve()
        wiz_dir = repo_root / config.state.dir
        resolved = resolve_slug(wiz_dir, slug)
        return cls(
            repo_root=repo_root,
            wiz_dir=wiz_dir,
            slug=resolved,
            phases_dir=wiz_dir / resolved / "phases",
            config=config,
            context_documents=tuple(load_context_documents(wiz_dir / "context")),
        )

    @property
    def prompt_dir(self) -> Path:
        return self.wiz_dir / "prompts"

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self.repo_root).as_posix()

    def documents_for(self, domains: Iterable[str]) -> list[ContextDocument]:
        domain_list = list(domains)
        return [doc for doc in self.context_documents if doc.applies_to_domains(domain_list)]
