"""Continuation gate: is the next milestone safe to run unattended?

The decision is recomputed for every milestone and never touches the task
graph. Anything short of a clear PROCEED resolves to HALT.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

import structlog

from wiz.errors import AnalystContractError
from wiz.specialists.base import SpecialistAgent
from wiz.specialists.implementer import render_milestone
from wiz.state.taskgraph import Milestone

logger = structlog.get_logger(__name__)

DECISION_PATTERN = re.compile(r"\*{0,2}Decision\*{0,2}\s*:?\s*\*{0,2}\s*(PROCEED|HALT)\b", re.IGNORECASE)
RESULT_PATTERN = re.compile(r"Analysis Result\s*:?\s*(PROCEED|HALT)\b", re.IGNORECASE)
QUESTIONS_START_PATTERN = re.compile(r"Questions for Human", re.IGNORECASE)
QUESTIONS_END_PATTERN = re.compile(r"^\s*\*{0,2}(Reasoning|Rationale|Confidence)\b", re.IGNORECASE)
NUMBERED_PATTERN = re.compile(r"^\s*\d+[.)]\s+(.+?)\s*$")

UNREADABLE_QUESTION = (
    "The milestone analyst did not return a clear decision. "
    "Should this milestone run unattended?"
)


class Decision(StrEnum):
    PROCEED = "PROCEED"
    HALT = "HALT"


@dataclass(frozen=True, slots=True)
class AnalystDecision:
    decision: Decision
    questions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.decision == Decision.HALT and not self.questions:
            raise AnalystContractError("Analyst returned HALT without any questions for the operator.")

    @property
    def proceed(self) -> bool:
        return self.decision == Decision.PROCEED


def _extract_questions(content: str) -> list[str]:
    questions: list[str] = []
    in_section = False
    for raw_line in content.splitlines():
        if not in_section:
            if QUESTIONS_START_PATTERN.search(raw_line):
                in_section = True
            continue
        if QUESTIONS_END_PATTERN.match(raw_line):
            break
        match = NUMBERED_PATTERN.match(raw_line)
        if match:
            questions.append(match.group(1))
    return questions


def parse_analyst_output(content: str) -> AnalystDecision:
    verdicts = {match.group(1).upper() for match in DECISION_PATTERN.finditer(content)}
    verdicts.update(match.group(1).upper() for match in RESULT_PATTERN.finditer(content))
    questions = _extract_questions(content)

    if verdicts == {Decision.PROCEED.value}:
        return AnalystDecision(Decision.PROCEED)
    if verdicts == {Decision.HALT.value}:
        return AnalystDecision(Decision.HALT, tuple(questions))

    # Missing or contradictory verdicts never proceed.
    logger.warning("analyst_output_unreadable", verdicts=sorted(verdicts))
    return AnalystDecision(Decision.HALT, tuple(questions) or (UNREADABLE_QUESTION,))


class ContinuationAnalystGate:
    def __init__(self, agent: SpecialistAgent) -> None:
        self.agent = agent

    async def classify(self, milestone: Milestone, phase_context: str) -> AnalystDecision:
        response = await self.agent.run(
            (
                "Classify the next milestone as PROCEED or HALT.\n\n"
                f"{render_milestone(milestone)}\n\nPhase context:\n{phase_context}"
            ),
            {"milestone": str(milestone.key)},
        )
        decision = parse_analyst_output(response.content)
        logger.info(
            "analyst_decision",
            milestone=str(milestone.key),
            decision=decision.decision.value,
            questions=len(decision.questions),
        )
        return decision
