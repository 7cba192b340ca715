"""Reviewer consensus: fan out to every implicated domain, require unanimity.

Each round re-detects domains from the *current* full changeset and awaits every
reviewer before aggregating (wait-all, no short-circuit on the first rejection).
A rejected round hands all findings to the fixer and the gate starts over from
domain detection. The number of rounds is bounded; running out escalates.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import re
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from wiz.errors import ReviewEscalationError, ReviewerError
from wiz.state.changeset import Changeset

logger = structlog.get_logger(__name__)

ISSUE_HEADING_PATTERN = re.compile(r"^#{2,4}\s*Issue\b\s*\d*\s*[:.-]?\s*(.*?)\s*$", re.IGNORECASE)
ISSUE_FIELD_PATTERN = re.compile(
    r"^\s*(?:[-*]\s*)?\*\*(Location|Problem|Fix)\*\*\s*:?\s*(.*?)\s*$", re.IGNORECASE
)
APPROVAL_PATTERN = re.compile(r"review complete|no issues found", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Issue:
    title: str
    location: str = ""
    problem: str = ""
    fix: str = ""

    def render(self) -> str:
        parts = [self.title]
        if self.location:
            parts.append(f"  location: {self.location}")
        if self.problem:
            parts.append(f"  problem: {self.problem}")
        if self.fix:
            parts.append(f"  fix: {self.fix}")
        return "\n".join(parts)


def _extract_json_objects(raw_text: str) -> list[dict[str, Any]]:
    payloads: list[dict[str, Any]] = []
    for raw_line in raw_text.splitlines():
        line = raw_line.strip()
        if not (line.startswith("{") and line.endswith("}")):
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            payloads.append(parsed)
    return payloads


def _issue_from_payload(item: Any) -> Issue:
    if isinstance(item, dict):
        return Issue(
            title=str(item.get("title") or item.get("problem") or "Issue"),
            location=str(item.get("location", "")),
            problem=str(item.get("problem", "")),
            fix=str(item.get("fix", "")),
        )
    return Issue(title=str(item))


def _parse_markdown_issues(content: str) -> list[Issue]:
    issues: list[Issue] = []
    current: dict[str, str] | None = None
    for raw_line in content.splitlines():
        heading = ISSUE_HEADING_PATTERN.match(raw_line.strip())
        if heading:
            if current is not None:
                issues.append(Issue(**current))
            current = {"title": heading.group(1) or "Issue", "location": "", "problem": "", "fix": ""}
            continue
        if current is None:
            continue
        field_match = ISSUE_FIELD_PATTERN.match(raw_line)
        if field_match:
            current[field_match.group(1).lower()] = field_match.group(2)
    if current is not None:
        issues.append(Issue(**current))
    return issues


def parse_review_output(content: str) -> list[Issue]:
    """Turn reviewer output into issues; an empty list is an approval.

    Output that is neither structured JSON, issue blocks, nor an explicit
    approval counts as one issue so it can never pass as a silent approval.
    """
    structured = [payload for payload in _extract_json_objects(content) if "issues" in payload]
    if structured:
        issues: list[Issue] = []
        for payload in structured:
            items = payload["issues"]
            if not isinstance(items, list):
                items = [items]
            issues.extend(_issue_from_payload(item) for item in items)
        return issues

    issues = _parse_markdown_issues(content)
    if issues:
        return issues
    if APPROVAL_PATTERN.search(content):
        return []
    excerpt = content.strip()[:500] or "(empty output)"
    return [Issue(title="Unreadable review output", problem=excerpt)]


@dataclass(frozen=True, slots=True)
class DomainRule:
    domain: str
    patterns: tuple[str, ...]

    def matches(self, path: str) -> bool:
        normalized = path.replace("\\", "/")
        name = normalized.rsplit("/", maxsplit=1)[-1]
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.patterns)


DEFAULT_DOMAIN_RULES: tuple[DomainRule, ...] = (
    DomainRule("go", ("*.go",)),
    DomainRule("typescript", ("*.ts", "*.tsx", "*.js", "*.jsx")),
    DomainRule("python", ("*.py",)),
    DomainRule("csharp", ("*.cs",)),
    DomainRule("java", ("*.java",)),
    DomainRule(
        "docker",
        (
            "Dockerfile",
            "Dockerfile.*",
            "*.dockerfile",
            "docker-compose.*",
            "compose.yml",
            "compose.yaml",
            ".dockerignore",
        ),
    ),
)

ReviewerFn = Callable[[str, Changeset], Awaitable[list[Issue]]]


class ReviewerRegistry:
    """Domain -> reviewer strategy map; adding a domain is one ``register`` call."""

    def __init__(self, rules: Iterable[DomainRule] = DEFAULT_DOMAIN_RULES) -> None:
        self._rules: dict[str, DomainRule] = {rule.domain: rule for rule in rules}
        self._reviewers: dict[str, ReviewerFn] = {}

    @property
    def domains(self) -> list[str]:
        return list(self._rules)

    def register(
        self,
        domain: str,
        reviewer: ReviewerFn,
        patterns: Iterable[str] | None = None,
    ) -> None:
        if patterns is not None:
            self._rules[domain] = DomainRule(domain, tuple(patterns))
        elif domain not in self._rules:
            raise ReviewerError(f"Domain {domain!r} has no path patterns; pass patterns=.")
        self._reviewers[domain] = reviewer

    def reviewer_for(self, domain: str) -> ReviewerFn:
        reviewer = self._reviewers.get(domain)
        if reviewer is None:
            raise ReviewerError(f"No reviewer registered for detected domain {domain!r}.")
        return reviewer

    def detect_domains(self, changeset: Changeset) -> list[str]:
        detected = {
            rule.domain
            for path in changeset.all_paths
            for rule in self._rules.values()
            if rule.matches(path)
        }
        return sorted(detected)


def detect_domains(changeset: Changeset, rules: Iterable[DomainRule] = DEFAULT_DOMAIN_RULES) -> list[str]:
    return ReviewerRegistry(rules).detect_domains(changeset)


class ReviewOutcome(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


def aggregate(findings: dict[str, list[Issue]]) -> ReviewOutcome:
    if all(not issues for issues in findings.values()):
        return ReviewOutcome.APPROVED
    return ReviewOutcome.REJECTED


@dataclass(slots=True)
class ReviewRound:
    number: int
    changeset: Changeset
    findings: dict[str, list[Issue]] = field(default_factory=dict)

    @property
    def domains(self) -> list[str]:
        return sorted(self.findings)

    @property
    def rejecting_domains(self) -> list[str]:
        return sorted(domain for domain, issues in self.findings.items() if issues)

    @property
    def outcome(self) -> ReviewOutcome:
        return aggregate(self.findings)

    def render_feedback(self) -> str:
        blocks: list[str] = []
        for domain in self.rejecting_domains:
            issues = self.findings[domain]
            lines = [f"## {domain} reviewer ({len(issues)} issue(s))"]
            lines.extend(f"{index}. {issue.render()}" for index, issue in enumerate(issues, start=1))
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)


@dataclass(frozen=True, slots=True)
class ConsensusResult:
    outcome: ReviewOutcome
    rounds: int
    domains: tuple[str, ...]

    def summary(self) -> str:
        if not self.domains:
            return "skipped (no reviewable domains)"
        return f"approved by {', '.join(self.domains)} after {self.rounds} round(s)"


ChangesetProvider = Callable[[], Changeset]
Fixer = Callable[[ReviewRound], Awaitable[None]]


class ConsensusGate:
    def __init__(self, registry: ReviewerRegistry, *, max_rounds: int = 10) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.registry = registry
        self.max_rounds = max_rounds

    async def review_round(self, changeset: Changeset, number: int) -> ReviewRound:
        domains = self.registry.detect_domains(changeset)
        reviewers = [self.registry.reviewer_for(domain) for domain in domains]
        results = await asyncio.gather(
            *(reviewer(domain, changeset) for domain, reviewer in zip(domains, reviewers)),
            return_exceptions=True,
        )
        review_round = ReviewRound(number=number, changeset=changeset)
        failures: list[tuple[str, BaseException]] = []
        for domain, result in zip(domains, results):
            if isinstance(result, BaseException):
                failures.append((domain, result))
                continue
            review_round.findings[domain] = list(result)
        if failures:
            domain, error = failures[0]
            if not isinstance(error, Exception):
                raise error
            names = ", ".join(name for name, _ in failures)
            raise ReviewerError(f"Reviewer call failed for domain(s) {names}: {error}") from error
        return review_round

    async def run(self, changeset_provider: ChangesetProvider, fixer: Fixer) -> ConsensusResult:
        rejections: Counter[str] = Counter()
        for number in range(1, self.max_rounds + 1):
            changeset = changeset_provider()
            review_round = await self.review_round(changeset, number)
            if not review_round.domains:
                logger.info("review_skipped", round=number, reason="no_domains")
                return ConsensusResult(ReviewOutcome.APPROVED, rounds=number, domains=())

            outcome = review_round.outcome
            logger.info(
                "review_round",
                round=number,
                domains=review_round.domains,
                rejected_by=review_round.rejecting_domains,
                outcome=outcome.value,
            )
            if outcome == ReviewOutcome.APPROVED:
                return ConsensusResult(outcome, rounds=number, domains=tuple(review_round.domains))

            rejections.update(review_round.rejecting_domains)
            if number == self.max_rounds:
                break
            await fixer(review_round)

        listed = "; ".join(
            f"domain {domain} rejected changeset {count} time(s)"
            for domain, count in sorted(rejections.items())
        )
        raise ReviewEscalationError(
            f"No reviewer consensus after {self.max_rounds} round(s): {listed}",
            rejections=dict(rejections),
        )
