from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from wiz.backends.base import AgentBackend
from wiz.review import Issue, parse_review_output
from wiz.specialists.base import READ_ONLY_TOOLS, SpecialistAgent
from wiz.state.changeset import Changeset

REVIEWER_PROMPT = """
You are the {domain} specialist reviewer.
You receive the complete changeset of one milestone: sources, tests, configs
and docs. Review every file for correctness, idiomatic {domain} style, test
quality and security. Do not edit files.

When everything is acceptable reply with:
## Review Complete
No issues found.

Otherwise reply with one block per issue:
### Issue N: <short title>
**Location**: <file:line>
**Problem**: <what is wrong>
**Fix**: <what to change>
""".strip()


class ReviewerAgent(SpecialistAgent):
    """Domain reviewer; instances are registered as reviewer callables."""

    def __init__(
        self,
        domain: str,
        backend: AgentBackend,
        *,
        model: str | None = None,
        prompt_dir: Path | None = None,
        history_provider: Callable[[], str] | None = None,
    ) -> None:
        self.domain = domain
        self.role = f"{domain}-reviewer"
        self.fallback_prompt = REVIEWER_PROMPT.format(domain=domain)
        self.history_provider = history_provider
        super().__init__(backend, model=model, prompt_dir=prompt_dir)

    async def __call__(self, domain: str, changeset: Changeset) -> list[Issue]:
        context = {
            "domain": domain,
            "files": changeset.all_paths,
        }
        if self.history_provider is not None:
            context["recent_history"] = self.history_provider()
        response = await self.run(
            f"Review this changeset as the {domain} reviewer.\n\n{changeset.render()}",
            context,
            allowed_tools=READ_ONLY_TOOLS,
        )
        return parse_review_output(response.content)
