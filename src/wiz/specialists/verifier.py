from __future__ import annotations

import json
import re

from wiz.interfaces import CriteriaVerifier, CriterionVerdict
from wiz.specialists.base import READ_ONLY_TOOLS, SpecialistAgent
from wiz.specialists.implementer import render_milestone
from wiz.state.changeset import Changeset
from wiz.state.taskgraph import Milestone

VERDICT_LINE_PATTERN = re.compile(r"^\s*(VERIFIED|UNVERIFIED)\s*:\s*(.*?)\s*$", re.IGNORECASE)


def parse_verifier_output(content: str) -> tuple[bool, str]:
    """Return ``(verified, evidence)``; anything unreadable is unverified."""
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not (line.startswith("{") and line.endswith("}")):
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict) and isinstance(payload.get("verified"), bool):
            return payload["verified"], str(payload.get("evidence", ""))

    for raw_line in content.splitlines():
        match = VERDICT_LINE_PATTERN.match(raw_line)
        if match:
            return match.group(1).upper() == "VERIFIED", match.group(2)
    return False, "verifier output had no verdict"


class VerifierAgent(SpecialistAgent, CriteriaVerifier):
    role = "verifier"
    fallback_prompt = """
You are an independent acceptance verifier. You did not write this change and
you must not trust any summary of it. Inspect the repository and the changeset
yourself and decide whether the single acceptance criterion you are given is
satisfied. Do not edit files.

Reply with exactly one JSON line:
{"verified": true|false, "evidence": "<files, tests or commands that prove it>"}
""".strip()

    async def verify(
        self,
        milestone: Milestone,
        index: int,
        criterion: str,
        changeset: Changeset,
    ) -> CriterionVerdict:
        response = await self.run(
            (
                f"Criterion {index} of milestone {milestone.key}: {criterion}\n\n"
                f"{render_milestone(milestone)}\n\nChangeset:\n{changeset.render()}"
            ),
            {"milestone": str(milestone.key), "criterion_index": index},
            allowed_tools=READ_ONLY_TOOLS,
        )
        verified, evidence = parse_verifier_output(response.content)
        return CriterionVerdict(index=index, text=criterion, verified=verified, evidence=evidence)
