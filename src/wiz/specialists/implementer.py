from __future__ import annotations

from typing import Any

from wiz.interfaces import ExecutionEngine
from wiz.specialists.base import SpecialistAgent
from wiz.state.taskgraph import Milestone

IMPLEMENTER_TOOLS = ["edit_file", "read_file", "run_command", "search", "write_file"]


def render_milestone(milestone: Milestone) -> str:
    criteria = "\n".join(
        f"{index}. {'[x]' if item.checked else '[ ]'} {item.text}"
        for index, item in enumerate(milestone.criteria, start=1)
    )
    return (
        f"Milestone {milestone.key}: {milestone.title}\n\n"
        f"{milestone.body.strip()}\n\n"
        f"Acceptance criteria:\n{criteria or '(none listed)'}"
    )


class ImplementerAgent(SpecialistAgent, ExecutionEngine):
    role = "implementer"
    fallback_prompt = """
You are the implementing engineer for one milestone of a phased plan.
Change the working tree so that every acceptance criterion is satisfied.
Follow the repository's existing conventions and keep the whole project's
tests and linters passing, including code you did not touch.
Never commit, never revert unrelated work, never edit files under .wiz/.
Finish with a short summary of what changed.
""".strip()

    async def implement(self, milestone: Milestone, context: dict[str, Any]) -> str:
        response = await self.run(
            f"Implement the following milestone.\n\n{render_milestone(milestone)}",
            context,
            allowed_tools=IMPLEMENTER_TOOLS,
        )
        return response.content

    async def fix(self, milestone: Milestone, feedback: str, context: dict[str, Any]) -> str:
        response = await self.run(
            (
                f"Apply forward fixes for milestone {milestone.key}: {milestone.title}.\n"
                "Do not revert the existing changes; resolve every item below.\n\n"
                f"{feedback}"
            ),
            context,
            allowed_tools=IMPLEMENTER_TOOLS,
        )
        return response.content
