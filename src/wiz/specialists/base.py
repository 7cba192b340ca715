from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from wiz.backends.base import AgentBackend
from wiz.errors import ConfigError

logger = structlog.get_logger(__name__)

TOOL_POLICY_ALLOWLIST = {
    "read_file",
    "write_file",
    "edit_file",
    "run_command",
    "search",
}
READ_ONLY_TOOLS = ["read_file", "search"]


@dataclass(slots=True)
class SpecialistResponse:
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class SpecialistAgent:
    role: str = "specialist"
    fallback_prompt: str = "You are a software specialist."

    def __init__(
        self,
        backend: AgentBackend,
        *,
        model: str | None = None,
        prompt_dir: Path | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.prompt_dir = prompt_dir
        self.system_prompt = self._load_system_prompt()

    @property
    def prompt_file(self) -> str:
        return f"{self.role}.md"

    def _load_system_prompt(self) -> str:
        if self.prompt_dir is not None:
            override = self.prompt_dir / self.prompt_file
            if override.is_file():
                logger.debug("prompt_override_loaded", role=self.role, path=str(override))
                return override.read_text(encoding="utf-8").strip()
        return self.fallback_prompt.strip()

    @staticmethod
    def _normalize_allowed_tools(allowed_tools: list[str] | None) -> list[str] | None:
        if not allowed_tools:
            return None
        normalized = sorted({str(tool).strip() for tool in allowed_tools if str(tool).strip()})
        unknown = [tool for tool in normalized if tool not in TOOL_POLICY_ALLOWLIST]
        if unknown:
            raise ConfigError(
                "Tool policy rejected unknown tools for specialist run: " + ", ".join(unknown)
            )
        return normalized

    async def run(
        self,
        instruction: str,
        context: dict[str, Any],
        allowed_tools: list[str] | None = None,
    ) -> SpecialistResponse:
        run_context = dict(context)
        if self.model:
            run_context["model"] = self.model
        normalized_tools = self._normalize_allowed_tools(allowed_tools)

        chunks: list[str] = []
        async for chunk in self.backend.execute(
            system_prompt=self.system_prompt,
            user_prompt=instruction,
            context=run_context,
            tools=normalized_tools,
        ):
            chunks.append(chunk)
        return SpecialistResponse(
            role=self.role,
            content="".join(chunks).strip(),
            metadata={
                "instruction": instruction,
                "tool_mode": bool(normalized_tools),
                "allowed_tools": list(normalized_tools or []),
            },
        )
