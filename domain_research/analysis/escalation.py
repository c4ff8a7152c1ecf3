"""Escalation policy: when a cheap research pass needs a second, richer pass.

Each research call evaluates an ordered list of steps exactly once. A step
pairs a trigger predicate with an async action that makes at most one extra
provider-router call; a failing action is logged and the state it was given
is kept.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from domain_research.analysis.llm_client import AllProvidersFailed
from domain_research.analysis.providers import ProviderError
from domain_research.models import ResearchRecord

logger = logging.getLogger(__name__)

S = TypeVar("S")

MIN_FEATURES = 3
COVERAGE_POINTS = 12


def should_escalate(record: ResearchRecord) -> bool:
    """Escalate lite -> master on low confidence or thin core fields."""
    return (
        record.confidence == "low"
        or not record.about
        or not record.niche
        or len(record.features) < MIN_FEATURES
    )


def needs_competitor_recovery(competitors: Sequence[object], min_competitors: int) -> bool:
    return len(competitors) < min_competitors


@dataclass
class CoverageReport:
    score: int
    missing: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return COVERAGE_POINTS


def coverage_score(record: ResearchRecord) -> CoverageReport:
    """Score a record against the 12-point coverage checklist."""
    checks = [
        ("about", bool(record.about)),
        ("usp", bool(record.usp)),
        ("icp", bool(record.icp)),
        ("industry", bool(record.industry)),
        ("features", len(record.features) >= MIN_FEATURES),
        ("integrations", bool(record.integrations)),
        ("pricing", bool(record.pricing)),
        ("compliance", bool(record.compliance)),
        ("reviews", bool(record.reviews)),
        ("caseStudies/notableCustomers", bool(record.case_studies or record.notable_customers)),
        ("teamSize/funding", bool(record.team_size or record.funding)),
        ("support/contact", bool(record.support or record.contact)),
    ]
    missing = [name for name, ok in checks if not ok]
    return CoverageReport(score=len(checks) - len(missing), missing=missing)


def is_under_covered(record: ResearchRecord, threshold: int) -> bool:
    return coverage_score(record).score < threshold


@dataclass
class EscalationStep(Generic[S]):
    """One (trigger, action) pair in the escalation sequence."""
    name: str
    trigger: Callable[[S], bool]
    action: Callable[[S], Awaitable[S]]


async def run_escalation_steps(steps: Sequence[EscalationStep[S]], state: S) -> tuple[S, list[str]]:
    """Evaluate each step once, in order. Returns (state, names of steps that ran).

    A step counts as run only if its action completed; failures degrade to the
    state held before that step.
    """
    ran: list[str] = []
    for step in steps:
        if not step.trigger(state):
            logger.debug("Escalation step '%s' not triggered", step.name)
            continue
        logger.info("Escalation step '%s' triggered", step.name)
        try:
            state = await step.action(state)
            ran.append(step.name)
        except (AllProvidersFailed, ProviderError) as e:
            logger.warning("Escalation step '%s' failed, keeping previous result: %s", step.name, e)
        except Exception:
            logger.exception("Escalation step '%s' raised unexpectedly, keeping previous result", step.name)
    return state, ran
