"""
What-if scenario explorer.

Previews the effect of tests before running them: single-test outcome
ranges, ranking of candidate tests by information value, and multi-test
scenarios with best/worst/expected projections.

Scenarios are immutable values. Every mutator returns a new scenario whose
projection is recomputed by replaying the whole assumed-test list from the
starting confidence, never patched incrementally.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from brennerbot.loop.confidence import (
    DEFAULT_CONFIDENCE_CONFIG,
    BatchEvidenceItem,
    ConfidenceUpdate,
    ConfidenceUpdateConfig,
    TestInput,
    compute_batch_confidence_update,
    compute_confidence_update,
)
from brennerbot.loop.schemas import EvidenceResult

logger = logging.getLogger(__name__)

Rating = Literal[1, 2, 3, 4, 5]

# Returned when a test cannot move confidence upward at all.
UNBOUNDED_RATIO = math.inf
# JSON rendering of UNBOUNDED_RATIO; JSON has no infinity.
UNBOUNDED_RATIO_LABEL = "unbounded"

# Minimum information value (percentage points) for each star rating.
RECOMMENDATION_THRESHOLDS: dict[int, float] = {
    5: 25.0,
    4: 18.0,
    3: 12.0,
    2: 6.0,
}

RECOMMENDATION_LABELS: dict[int, str] = {
    1: "Low Value",
    2: "Some Value",
    3: "Moderate Value",
    4: "High Value",
    5: "Critical Test",
}

HIGH_CONFIDENCE_TIER = 70.0
LOW_CONFIDENCE_TIER = 30.0


class CandidateTest(BaseModel):
    """A test that could be run next."""

    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    discriminative_power: int


class AssumedTestResult(BaseModel):
    """A test with an assumed outcome inside a scenario."""

    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    discriminative_power: int
    assumed_result: EvidenceResult


class SingleTestAnalysis(BaseModel):
    """Outcome range of one test from a given confidence."""

    model_config = ConfigDict(frozen=True)

    current_confidence: float
    discriminative_power: int
    if_supports: ConfidenceUpdate
    if_challenges: ConfidenceUpdate
    if_neutral: ConfidenceUpdate
    max_impact: float
    information_value: float
    asymmetry_ratio: float

    @field_serializer("asymmetry_ratio", when_used="json")
    def _serialize_ratio(self, value: float) -> float | str:
        return UNBOUNDED_RATIO_LABEL if math.isinf(value) else value


class RankedTest(BaseModel):
    """A candidate test annotated with its analysis and star rating."""

    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    discriminative_power: int
    analysis: SingleTestAnalysis
    recommendation_rating: Rating

    @property
    def information_value(self) -> float:
        return self.analysis.information_value

    @property
    def max_impact(self) -> float:
        return self.analysis.max_impact

    @property
    def asymmetry_ratio(self) -> float:
        return self.analysis.asymmetry_ratio


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    reason: str


class RankingSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tests: int = 0
    high_value_tests: int = 0
    low_value_tests: int = 0
    average_information_value: float = 0.0


class TestRanking(BaseModel):
    """Candidate tests ranked by information value."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    current_confidence: float
    ranked_tests: tuple[RankedTest, ...] = ()
    recommendation: Recommendation | None = None
    summary: RankingSummary = Field(default_factory=RankingSummary)


class WhatIfScenario(BaseModel):
    """A named bundle of assumed test results from a starting confidence."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    session_id: str
    hypothesis_id: str
    starting_confidence: float
    assumed_tests: tuple[AssumedTestResult, ...] = ()
    projected_confidence: float
    confidence_delta: float
    created_at: datetime
    config: ConfidenceUpdateConfig = Field(default_factory=ConfidenceUpdateConfig)


class ProjectedOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence: float
    delta: float
    explanation: str = ""


class ImpactfulTest(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    max_impact: float


class ScenarioAnalysis(BaseModel):
    """Best, worst and expected projections of a scenario."""

    model_config = ConfigDict(frozen=True)

    scenario: WhatIfScenario
    best_case: ProjectedOutcome
    worst_case: ProjectedOutcome
    expected_case: ProjectedOutcome
    most_impactful_test: ImpactfulTest | None = None


# ============================================================================
# Single test analysis
# ============================================================================


def _asymmetry_ratio(support_delta: float, challenge_delta: float) -> float:
    support = abs(support_delta)
    challenge = abs(challenge_delta)
    if support == 0.0:
        return 1.0 if challenge == 0.0 else UNBOUNDED_RATIO
    return challenge / support


def analyze_single_test(
    current_confidence: float,
    test: TestInput | CandidateTest | AssumedTestResult,
    config: ConfidenceUpdateConfig | None = None,
) -> SingleTestAnalysis:
    """
    Compute both hypothetical outcomes of a test.

    ``information_value`` is the distance between the two outcomes
    (``|delta_if_supports| + |delta_if_challenges|``). ``asymmetry_ratio`` is
    ``|delta_if_challenges| / |delta_if_supports|``; it is UNBOUNDED_RATIO
    when supporting evidence cannot move confidence but challenging evidence
    can, and 1.0 when neither can.
    """
    config = config or DEFAULT_CONFIDENCE_CONFIG
    test_input = TestInput(discriminative_power=test.discriminative_power)

    if_supports = compute_confidence_update(current_confidence, test_input, EvidenceResult.SUPPORTS, config)
    if_challenges = compute_confidence_update(current_confidence, test_input, EvidenceResult.CHALLENGES, config)
    if_neutral = compute_confidence_update(current_confidence, test_input, EvidenceResult.NEUTRAL, config)

    return SingleTestAnalysis(
        current_confidence=if_supports.previous_confidence,
        discriminative_power=test_input.discriminative_power,
        if_supports=if_supports,
        if_challenges=if_challenges,
        if_neutral=if_neutral,
        max_impact=max(abs(if_supports.delta), abs(if_challenges.delta)),
        information_value=abs(if_supports.delta) + abs(if_challenges.delta),
        asymmetry_ratio=_asymmetry_ratio(if_supports.delta, if_challenges.delta),
    )


def calculate_recommendation_rating(information_value: float) -> Rating:
    """Map an information value onto a 1-5 star rating."""
    for rating in (5, 4, 3, 2):
        if information_value >= RECOMMENDATION_THRESHOLDS[rating]:
            return rating  # type: ignore[return-value]
    return 1


# ============================================================================
# Ranking
# ============================================================================


def _recommendation_reason(top: RankedTest) -> str:
    value = top.information_value
    if top.recommendation_rating >= 4:
        return (
            f"This test has high discriminative power ({top.discriminative_power}★) "
            f"with {value:.1f}% information value. Running it first will maximize learning."
        )
    if top.recommendation_rating == 3:
        return (
            f"This test offers moderate value ({value:.1f}%). "
            "Consider whether a more discriminative test could be designed."
        )
    return (
        "All available tests have low information value. "
        "Consider designing more discriminative tests before proceeding."
    )


def rank_candidate_tests(
    current_confidence: float,
    tests: Sequence[CandidateTest],
    config: ConfidenceUpdateConfig | None = None,
) -> TestRanking:
    """
    Rank candidate tests by information value, highest first.

    Ties keep their input order. An empty list yields an empty ranking with
    no recommendation.
    """
    if not tests:
        return TestRanking(current_confidence=current_confidence)

    ranked_unsorted: list[RankedTest] = []
    for test in tests:
        analysis = analyze_single_test(current_confidence, test, config)
        ranked_unsorted.append(
            RankedTest(
                test_id=test.test_id,
                test_name=test.test_name,
                discriminative_power=test.discriminative_power,
                analysis=analysis,
                recommendation_rating=calculate_recommendation_rating(analysis.information_value),
            )
        )

    ranked = sorted(ranked_unsorted, key=lambda t: t.information_value, reverse=True)
    top = ranked[0]
    logger.debug(f"Ranked {len(ranked)} tests; top={top.test_id} value={top.information_value:.1f}")

    total_value = sum(t.information_value for t in ranked)
    return TestRanking(
        current_confidence=current_confidence,
        ranked_tests=tuple(ranked),
        recommendation=Recommendation(
            test_id=top.test_id,
            test_name=top.test_name,
            reason=_recommendation_reason(top),
        ),
        summary=RankingSummary(
            total_tests=len(ranked),
            high_value_tests=sum(1 for t in ranked if t.recommendation_rating >= 4),
            low_value_tests=sum(1 for t in ranked if t.recommendation_rating <= 2),
            average_information_value=total_value / len(ranked),
        ),
    )


# ============================================================================
# Scenarios
# ============================================================================


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value <= 0:
        return "0"
    out: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_scenario_id(now: datetime | None = None) -> str:
    """Collision-resistant scenario id: time component plus random component."""
    millis = int(now.timestamp() * 1000) if now else time.time_ns() // 1_000_000
    return f"WIF-{_to_base36(millis)}-{uuid4().hex[:12]}"


def calculate_scenario_outcome(
    starting_confidence: float,
    assumed_tests: Iterable[AssumedTestResult],
    config: ConfidenceUpdateConfig | None = None,
) -> tuple[float, float]:
    """Replay assumed tests from the start; returns ``(projected, delta)``."""
    items = [
        BatchEvidenceItem(
            test=TestInput(discriminative_power=t.discriminative_power),
            result=t.assumed_result,
        )
        for t in assumed_tests
    ]
    batch = compute_batch_confidence_update(starting_confidence, items, config)
    return batch.final_confidence, batch.total_delta


def _with_tests(scenario: WhatIfScenario, assumed_tests: Sequence[AssumedTestResult]) -> WhatIfScenario:
    projected, delta = calculate_scenario_outcome(scenario.starting_confidence, assumed_tests, scenario.config)
    return scenario.model_copy(
        update={
            "assumed_tests": tuple(assumed_tests),
            "projected_confidence": projected,
            "confidence_delta": delta,
        }
    )


def create_scenario(
    *,
    name: str,
    session_id: str,
    hypothesis_id: str,
    starting_confidence: float,
    assumed_tests: Sequence[AssumedTestResult] = (),
    config: ConfidenceUpdateConfig | None = None,
    now: datetime | None = None,
) -> WhatIfScenario:
    """Create a scenario and compute its projection."""
    config = config or DEFAULT_CONFIDENCE_CONFIG
    now = now or datetime.now(timezone.utc)
    projected, delta = calculate_scenario_outcome(starting_confidence, assumed_tests, config)
    return WhatIfScenario(
        id=generate_scenario_id(now),
        name=name,
        session_id=session_id,
        hypothesis_id=hypothesis_id,
        starting_confidence=starting_confidence,
        assumed_tests=tuple(assumed_tests),
        projected_confidence=projected,
        confidence_delta=delta,
        created_at=now,
        config=config,
    )


def add_test(scenario: WhatIfScenario, test: AssumedTestResult) -> WhatIfScenario:
    """Return a copy of ``scenario`` with ``test`` appended."""
    return _with_tests(scenario, [*scenario.assumed_tests, test])


def remove_test(scenario: WhatIfScenario, test_id: str) -> WhatIfScenario:
    """Return a copy of ``scenario`` without the tests matching ``test_id``."""
    return _with_tests(scenario, [t for t in scenario.assumed_tests if t.test_id != test_id])


def update_test_result(
    scenario: WhatIfScenario,
    test_id: str,
    result: EvidenceResult,
) -> WhatIfScenario:
    """Return a copy of ``scenario`` with a new assumed result for ``test_id``."""
    return _with_tests(
        scenario,
        [
            t.model_copy(update={"assumed_result": EvidenceResult(result)}) if t.test_id == test_id else t
            for t in scenario.assumed_tests
        ],
    )


def _expected_explanation(starting_confidence: float) -> str:
    if starting_confidence >= HIGH_CONFIDENCE_TIER:
        return (
            "With high starting confidence, supporting evidence will have modest impact while "
            "challenging evidence could significantly reduce confidence."
        )
    if starting_confidence <= LOW_CONFIDENCE_TIER:
        return (
            "With low starting confidence, challenging evidence will have modest additional impact "
            "while supporting evidence could significantly raise confidence."
        )
    return (
        "With moderate confidence, both outcomes will have meaningful impact. "
        "The asymmetry favors disconfirmation."
    )


def analyze_scenario(scenario: WhatIfScenario) -> ScenarioAnalysis:
    """
    Project a scenario three ways.

    Best case forces every test to support, worst case forces every test to
    challenge, expected case uses the assumed results.
    """
    forced_support = [t.model_copy(update={"assumed_result": EvidenceResult.SUPPORTS}) for t in scenario.assumed_tests]
    forced_challenge = [
        t.model_copy(update={"assumed_result": EvidenceResult.CHALLENGES}) for t in scenario.assumed_tests
    ]
    best, best_delta = calculate_scenario_outcome(scenario.starting_confidence, forced_support, scenario.config)
    worst, worst_delta = calculate_scenario_outcome(scenario.starting_confidence, forced_challenge, scenario.config)
    expected, expected_delta = calculate_scenario_outcome(
        scenario.starting_confidence, scenario.assumed_tests, scenario.config
    )

    most_impactful: ImpactfulTest | None = None
    for test in scenario.assumed_tests:
        impact = analyze_single_test(scenario.starting_confidence, test, scenario.config).max_impact
        if most_impactful is None or impact > most_impactful.max_impact:
            most_impactful = ImpactfulTest(test_id=test.test_id, test_name=test.test_name, max_impact=impact)

    return ScenarioAnalysis(
        scenario=scenario,
        best_case=ProjectedOutcome(confidence=best, delta=best_delta),
        worst_case=ProjectedOutcome(confidence=worst, delta=worst_delta),
        expected_case=ProjectedOutcome(
            confidence=expected,
            delta=expected_delta,
            explanation=_expected_explanation(scenario.starting_confidence),
        ),
        most_impactful_test=most_impactful,
    )


def _preset(
    name: str,
    session_id: str,
    hypothesis_id: str,
    current_confidence: float,
    tests_with_results: Iterable[tuple[CandidateTest, EvidenceResult]],
    config: ConfidenceUpdateConfig | None,
    now: datetime | None,
) -> WhatIfScenario:
    assumed = [
        AssumedTestResult(
            test_id=test.test_id,
            test_name=test.test_name,
            discriminative_power=test.discriminative_power,
            assumed_result=result,
        )
        for test, result in tests_with_results
    ]
    return create_scenario(
        name=name,
        session_id=session_id,
        hypothesis_id=hypothesis_id,
        starting_confidence=current_confidence,
        assumed_tests=assumed,
        config=config,
        now=now,
    )


def create_best_case_scenario(
    session_id: str,
    hypothesis_id: str,
    current_confidence: float,
    tests: Sequence[CandidateTest],
    config: ConfidenceUpdateConfig | None = None,
    now: datetime | None = None,
) -> WhatIfScenario:
    return _preset(
        "Best Case",
        session_id,
        hypothesis_id,
        current_confidence,
        ((t, EvidenceResult.SUPPORTS) for t in tests),
        config,
        now,
    )


def create_worst_case_scenario(
    session_id: str,
    hypothesis_id: str,
    current_confidence: float,
    tests: Sequence[CandidateTest],
    config: ConfidenceUpdateConfig | None = None,
    now: datetime | None = None,
) -> WhatIfScenario:
    return _preset(
        "Worst Case",
        session_id,
        hypothesis_id,
        current_confidence,
        ((t, EvidenceResult.CHALLENGES) for t in tests),
        config,
        now,
    )


def create_mixed_scenario(
    session_id: str,
    hypothesis_id: str,
    current_confidence: float,
    tests_with_results: Sequence[tuple[CandidateTest, EvidenceResult]],
    config: ConfidenceUpdateConfig | None = None,
    now: datetime | None = None,
) -> WhatIfScenario:
    return _preset("Custom Scenario", session_id, hypothesis_id, current_confidence, tests_with_results, config, now)


# ============================================================================
# Display helpers
# ============================================================================


def format_information_value(value: float) -> str:
    if value >= 30:
        label = "Very High"
    elif value >= 20:
        label = "High"
    elif value >= 10:
        label = "Moderate"
    else:
        label = "Low"
    return f"±{value:.0f}% ({label})"


def recommendation_stars(rating: int) -> str:
    return "★" * rating + "☆" * (5 - rating)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def summarize_scenario(scenario: WhatIfScenario) -> str:
    """One-line summary, e.g. ``2 tests (1 support, 1 challenge): 50% → 43% (-7.0%)``."""
    results = [t.assumed_result for t in scenario.assumed_tests]
    supports = results.count(EvidenceResult.SUPPORTS)
    challenges = results.count(EvidenceResult.CHALLENGES)
    eliminations = results.count(EvidenceResult.ELIMINATES)
    inconclusive = len(results) - supports - challenges - eliminations

    parts: list[str] = []
    if supports:
        parts.append(_plural(supports, "support"))
    if challenges:
        parts.append(_plural(challenges, "challenge"))
    if eliminations:
        parts.append(_plural(eliminations, "elimination"))
    if inconclusive:
        parts.append(f"{inconclusive} inconclusive")

    delta = scenario.confidence_delta
    delta_str = f"+{delta:.1f}%" if delta >= 0 else f"{delta:.1f}%"
    return (
        f"{_plural(len(results), 'test')} ({', '.join(parts)}): "
        f"{scenario.starting_confidence:.0f}% → {scenario.projected_confidence:.0f}% ({delta_str})"
    )
