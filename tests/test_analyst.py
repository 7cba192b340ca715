import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from wiz.analyst import (
    UNREADABLE_QUESTION,
    AnalystDecision,
    ContinuationAnalystGate,
    Decision,
    parse_analyst_output,
)
from wiz.backends.base import AgentBackend
from wiz.errors import AnalystContractError
from wiz.specialists import AnalystAgent
from wiz.state.taskgraph import AcceptanceCriterion, Milestone, MilestoneKey, MilestoneStatus

PROCEED_OUTPUT = """## Analysis Result: PROCEED

**Decision**: PROCEED ✅

**Rationale**: Requirements are clear and unambiguous.

**Reasoning**:
- Requirements are well-defined
"""

HALT_OUTPUT = """## Analysis Result: HALT

**Decision**: HALT ⚠️

**Rationale**: Human input is required before proceeding with this milestone.

**Questions for Human**:
1. What authentication mechanism should be used? (OAuth, JWT, or basic auth?)
2. Should this integrate with existing systems or be standalone?

**Reasoning**:
- Requires architectural decisions
1. not a question
"""


class CannedBackend(AgentBackend):
    def __init__(self, output: str) -> None:
        self.output = output
        self.prompts: list[str] = []

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
        tools: list[str] | None = None,
    ) -> AsyncIterator[str]:
        _ = system_prompt, context, tools
        self.prompts.append(user_prompt)
        yield self.output


def _milestone() -> Milestone:
    return Milestone(
        key=MilestoneKey(1, 2),
        title="Add login",
        status=MilestoneStatus.TODO,
        criteria=[AcceptanceCriterion("users can log in")],
        body="### P01M02: Add login\n\nGoal: login.\n",
    )


def test_parse_proceed() -> None:
    decision = parse_analyst_output(PROCEED_OUTPUT)

    assert decision == AnalystDecision(Decision.PROCEED)
    assert decision.proceed


def test_parse_halt_extracts_numbered_questions_only() -> None:
    decision = parse_analyst_output(HALT_OUTPUT)

    assert decision.decision == Decision.HALT
    assert decision.questions == (
        "What authentication mechanism should be used? (OAuth, JWT, or basic auth?)",
        "Should this integrate with existing systems or be standalone?",
    )


def test_contradictory_output_resolves_to_halt() -> None:
    decision = parse_analyst_output("**Decision**: PROCEED\n\n**Decision**: HALT\n")

    assert decision.decision == Decision.HALT
    assert decision.questions == (UNREADABLE_QUESTION,)


def test_unreadable_output_resolves_to_halt() -> None:
    decision = parse_analyst_output("Looks fine to me, probably.")

    assert not decision.proceed
    assert decision.questions


def test_halt_without_questions_violates_contract() -> None:
    with pytest.raises(AnalystContractError):
        parse_analyst_output("**Decision**: HALT\n\n**Reasoning**:\n- unclear\n")
    with pytest.raises(AnalystContractError):
        AnalystDecision(Decision.HALT, ())


def test_gate_classifies_with_phase_context() -> None:
    backend = CannedBackend(HALT_OUTPUT)
    gate = ContinuationAnalystGate(AnalystAgent(backend))

    decision = asyncio.run(gate.classify(_milestone(), "Phase 1: Auth\n- P01M01 [complete] Setup"))

    assert decision.decision == Decision.HALT
    assert len(decision.questions) == 2
    assert "P01M02: Add login" in backend.prompts[0]
    assert "P01M01 [complete] Setup" in backend.prompts[0]
    assert "users can log in" in backend.prompts[0]


def test_gate_is_recomputed_for_every_call() -> None:
    backend = CannedBackend(PROCEED_OUTPUT)
    gate = ContinuationAnalystGate(AnalystAgent(backend))

    first = asyncio.run(gate.classify(_milestone(), ""))
    backend.output = HALT_OUTPUT
    second = asyncio.run(gate.classify(_milestone(), ""))

    assert first.proceed
    assert not second.proceed
    assert len(backend.prompts) == 2
