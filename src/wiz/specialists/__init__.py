from wiz.specialists.analyst import AnalystAgent
from wiz.specialists.base import SpecialistAgent, SpecialistResponse
from wiz.specialists.implementer import ImplementerAgent
from wiz.specialists.reviewer import ReviewerAgent
from wiz.specialists.verifier import VerifierAgent

__all__ = [
    "AnalystAgent",
    "ImplementerAgent",
    "ReviewerAgent",
    "SpecialistAgent",
    "SpecialistResponse",
    "VerifierAgent",
]
