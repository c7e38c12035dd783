"""
Personal analytics aggregator.

Reduces a list of sessions into a dashboard report: counts, score averages,
operator usage, hypothesis outcomes, daily trends, heuristic insights and
achievements. Each part is an independent pure reduction over the same
input; sessions are never modified.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from brennerbot.loop.hypothesis import calculate_falsifiability_score, calculate_specificity_score
from brennerbot.loop.schemas import (
    EvolutionTrigger,
    HypothesisCard,
    HypothesisOutcome,
    InputValidationError,
    OperatorType,
    Session,
)

logger = logging.getLogger(__name__)

NO_HISTORY_INSIGHT = "No local Brenner Loop sessions found yet. Start one to build your analytics history."


class AnalyticsThresholds(BaseModel):
    """Confidence cut-offs for outcome classification."""

    falsified_below: float = Field(default=20.0, ge=0.0, le=100.0)
    robust_above: float = Field(default=80.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _check_order(self) -> "AnalyticsThresholds":
        if self.falsified_below > self.robust_above:
            raise ValueError("falsified_below must not exceed robust_above")
        return self


class ObjectionStats(BaseModel):
    """Objection counts tracked outside this engine."""

    addressed: int = Field(default=0, ge=0)
    accepted: int = Field(default=0, ge=0)


class TrendPoint(BaseModel):
    date: str = Field(..., description="YYYY-MM-DD (UTC)")
    sessions_created: int = 0
    sessions_completed: int = 0
    average_falsifiability_score: float = 0.0
    average_specificity_score: float = 0.0


class TrendData(BaseModel):
    window_days: int
    points: list[TrendPoint] = Field(default_factory=list)


class Achievement(BaseModel):
    id: str
    title: str
    description: str
    unlocked: bool


class PersonalAnalytics(BaseModel):
    """Recomputable analytics snapshot over a user's sessions."""

    user_id: str
    computed_at: datetime

    sessions_total: int
    sessions_completed: int
    completion_rate: float

    hypotheses_tested: int
    hypotheses_with_competitors: int
    tests_recorded: int

    average_falsifiability_score: float
    average_specificity_score: float
    average_session_duration_minutes: float

    operators_used_distribution: dict[OperatorType, int]

    hypotheses_falsified: int
    hypotheses_robust: int
    hypotheses_abandoned: int

    objections_addressed: int
    objections_accepted: int
    revisions_after_evidence: int

    trends_over_30_days: TrendData
    trends_over_90_days: TrendData

    insights: list[str]
    achievements: list[Achievement]


# ============================================================================
# Helpers
# ============================================================================


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _clamp_score(value: float) -> float:
    if value != value or value in (float("inf"), float("-inf")):
        return 0.0
    return max(0.0, min(100.0, value))


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp into an aware UTC datetime, or None if unparsable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def coerce_sessions(sessions: Iterable[Session | Mapping[str, Any]]) -> list[Session]:
    """
    Validate raw session mappings into Session models.

    Raises:
        InputValidationError: Naming the first offending field.
    """
    coerced: list[Session] = []
    for index, raw in enumerate(sessions):
        if isinstance(raw, Session):
            coerced.append(raw)
            continue
        if not isinstance(raw, Mapping):
            raise InputValidationError("sessions", f"item {index} is a {type(raw).__name__}, not a session")
        try:
            coerced.append(Session.model_validate(raw))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or "sessions"
            raise InputValidationError(location, f"session {index}: {first.get('msg', 'invalid')}") from e
    return coerced


def _session_scores(session: Session) -> tuple[float, float] | None:
    primary = session.primary_hypothesis
    if primary is None:
        return None
    return (
        _clamp_score(calculate_falsifiability_score(primary)),
        _clamp_score(calculate_specificity_score(primary)),
    )


def _duration_minutes(session: Session) -> float | None:
    created = parse_timestamp(session.created_at)
    updated = parse_timestamp(session.updated_at)
    if created is None or updated is None:
        return None
    return max(0.0, (updated - created).total_seconds() / 60.0)


def classify_hypothesis_outcome(
    card: HypothesisCard,
    session: Session,
    thresholds: AnalyticsThresholds | None = None,
) -> HypothesisOutcome:
    """
    Classify one hypothesis of a session.

    Archived cards are abandoned. Otherwise confidence below
    ``falsified_below`` is falsified; above ``robust_above`` is robust only
    once the session is complete; everything else is in progress.
    """
    thresholds = thresholds or AnalyticsThresholds()
    if card.id in session.archived_hypothesis_ids:
        return HypothesisOutcome.ABANDONED

    confidence = _clamp_score(card.confidence)
    if confidence < thresholds.falsified_below:
        return HypothesisOutcome.FALSIFIED
    if confidence > thresholds.robust_above and session.is_complete:
        return HypothesisOutcome.ROBUST
    return HypothesisOutcome.IN_PROGRESS


def count_outcomes(
    sessions: Sequence[Session],
    thresholds: AnalyticsThresholds | None = None,
) -> dict[HypothesisOutcome, int]:
    counts = {outcome: 0 for outcome in HypothesisOutcome}
    for session in sessions:
        for card in session.hypothesis_cards.values():
            counts[classify_hypothesis_outcome(card, session, thresholds)] += 1
    return counts


def operator_usage(sessions: Sequence[Session]) -> dict[OperatorType, int]:
    """Number of sessions in which each operator was applied at least once."""
    distribution = {operator: 0 for operator in OperatorType}
    for session in sessions:
        for operator in OperatorType:
            if session.operator_applications.used(operator):
                distribution[operator] += 1
    return distribution


def count_revisions_after_evidence(sessions: Sequence[Session]) -> int:
    return sum(
        1
        for session in sessions
        for event in session.hypothesis_evolution
        if event.trigger is EvolutionTrigger.EVIDENCE
    )


# ============================================================================
# Trends
# ============================================================================


def build_trend_data(
    *,
    sessions: Sequence[Session],
    window_days: int,
    now: datetime,
) -> TrendData:
    """
    Build one point per UTC day from ``today - window_days + 1`` to today.

    Sessions are bucketed by the UTC day of ``created_at``; sessions with
    unparsable timestamps or outside the window are skipped. Empty days are
    still reported, with zero counts and zero averages.
    """
    if window_days < 1:
        raise InputValidationError("window_days", f"must be >= 1, got {window_days}")

    end = parse_timestamp(now).date()  # type: ignore[union-attr]
    start = end - timedelta(days=window_days - 1)

    by_day: dict[date, list[Session]] = {}
    for session in sessions:
        created = parse_timestamp(session.created_at)
        if created is None:
            continue
        day = created.date()
        if start <= day <= end:
            by_day.setdefault(day, []).append(session)

    points: list[TrendPoint] = []
    for offset in range(window_days):
        day = start + timedelta(days=offset)
        bucket = by_day.get(day, [])
        scores = [s for s in (_session_scores(session) for session in bucket) if s is not None]
        points.append(
            TrendPoint(
                date=day.isoformat(),
                sessions_created=len(bucket),
                sessions_completed=sum(1 for session in bucket if session.is_complete),
                average_falsifiability_score=_mean([f for f, _ in scores]),
                average_specificity_score=_mean([s for _, s in scores]),
            )
        )
    return TrendData(window_days=window_days, points=points)


# ============================================================================
# Insights and achievements
# ============================================================================


def build_insights(
    *,
    sessions_total: int,
    completion_rate: float,
    average_falsifiability: float,
    operators_used_distribution: Mapping[OperatorType, int],
    hypotheses_with_competitors: int,
) -> list[str]:
    """Heuristic coaching messages triggered by threshold breaches."""
    if sessions_total == 0:
        return [NO_HISTORY_INSIGHT]

    insights: list[str] = []
    if completion_rate < 0.4:
        insights.append(
            "Low completion rate: consider shorter session templates or skipping non-essential phases early."
        )
    if average_falsifiability < 30:
        insights.append(
            "Your falsification criteria are often underspecified. "
            "Add 2-3 concrete 'impossible if true' conditions."
        )
    if operators_used_distribution.get(OperatorType.SCALE_CHECK, 0) / sessions_total < 0.25:
        insights.append(
            "Scale Check is underused. Add at least one order-of-magnitude constraint in important sessions."
        )
    if hypotheses_with_competitors / sessions_total < 0.5:
        insights.append(
            "Third alternatives are underused. Add at least one competing hypothesis before designing tests."
        )
    return insights


def build_achievements(
    *,
    sessions_total: int,
    sessions_completed: int,
    operators_used_distribution: Mapping[OperatorType, int],
    hypotheses_falsified: int,
    hypotheses_robust: int,
) -> list[Achievement]:
    """The full achievement catalog, each flagged locked or unlocked."""
    operators_used = sum(1 for operator in OperatorType if operators_used_distribution.get(operator, 0) > 0)

    return [
        Achievement(
            id="first-session",
            title="First Session",
            description="Complete your first Brenner Loop session.",
            unlocked=sessions_completed >= 1,
        ),
        Achievement(
            id="five-sessions",
            title="Consistency",
            description="Complete five sessions.",
            unlocked=sessions_completed >= 5,
        ),
        Achievement(
            id="operator-explorer",
            title="Operator Explorer",
            description="Use at least three different operators across your sessions.",
            unlocked=operators_used >= 3,
        ),
        Achievement(
            id="full-operator-stack",
            title="Full Stack",
            description="Use all four operators at least once.",
            unlocked=operators_used == len(OperatorType),
        ),
        Achievement(
            id="staying-power",
            title="Staying Power",
            description="Create at least ten sessions.",
            unlocked=sessions_total >= 10,
        ),
        Achievement(
            id="falsifier",
            title="Falsifier",
            description="Falsify five hypotheses.",
            unlocked=hypotheses_falsified >= 5,
        ),
        Achievement(
            id="robust-results",
            title="Survivor",
            description="Carry three hypotheses through a completed session with high confidence.",
            unlocked=hypotheses_robust >= 3,
        ),
    ]


# ============================================================================
# Entry point
# ============================================================================


def compute_personal_analytics(
    sessions: Iterable[Session | Mapping[str, Any]],
    *,
    user_id: str = "local",
    now: datetime | None = None,
    objection_stats: ObjectionStats | None = None,
    thresholds: AnalyticsThresholds | None = None,
) -> PersonalAnalytics:
    """
    Compute the analytics report for a list of sessions.

    Args:
        sessions: Session models or raw session mappings.
        user_id: Owner of the sessions.
        now: Reference time for trend windows (defaults to the current time).
        objection_stats: Objection counts tracked elsewhere; zero if omitted.
        thresholds: Outcome classification cut-offs.

    Returns:
        The analytics snapshot.

    Raises:
        InputValidationError: If a raw session is malformed.
    """
    now = parse_timestamp(now) or datetime.now(timezone.utc)
    objection_stats = objection_stats or ObjectionStats()
    thresholds = thresholds or AnalyticsThresholds()
    items = coerce_sessions(sessions)

    sessions_total = len(items)
    sessions_completed = sum(1 for s in items if s.is_complete)
    completion_rate = sessions_completed / sessions_total if sessions_total else 0.0

    hypotheses_tested = sum(len(s.hypothesis_cards) for s in items)
    hypotheses_with_competitors = sum(1 for s in items if s.alternative_hypothesis_ids)
    tests_recorded = sum(len(s.test_ids) for s in items)

    scores = [score for score in (_session_scores(s) for s in items) if score is not None]
    skipped = sessions_total - len(scores)
    if skipped:
        logger.debug(f"{skipped} session(s) without a resolvable primary hypothesis excluded from score averages")
    average_falsifiability = _mean([f for f, _ in scores])
    average_specificity = _mean([s for _, s in scores])

    durations = [d for d in (_duration_minutes(s) for s in items) if d is not None]
    distribution = operator_usage(items)
    outcomes = count_outcomes(items, thresholds)

    return PersonalAnalytics(
        user_id=user_id,
        computed_at=now,
        sessions_total=sessions_total,
        sessions_completed=sessions_completed,
        completion_rate=completion_rate,
        hypotheses_tested=hypotheses_tested,
        hypotheses_with_competitors=hypotheses_with_competitors,
        tests_recorded=tests_recorded,
        average_falsifiability_score=average_falsifiability,
        average_specificity_score=average_specificity,
        average_session_duration_minutes=_mean(durations),
        operators_used_distribution=distribution,
        hypotheses_falsified=outcomes[HypothesisOutcome.FALSIFIED],
        hypotheses_robust=outcomes[HypothesisOutcome.ROBUST],
        hypotheses_abandoned=outcomes[HypothesisOutcome.ABANDONED],
        objections_addressed=objection_stats.addressed,
        objections_accepted=objection_stats.accepted,
        revisions_after_evidence=count_revisions_after_evidence(items),
        trends_over_30_days=build_trend_data(sessions=items, window_days=30, now=now),
        trends_over_90_days=build_trend_data(sessions=items, window_days=90, now=now),
        insights=build_insights(
            sessions_total=sessions_total,
            completion_rate=completion_rate,
            average_falsifiability=average_falsifiability,
            operators_used_distribution=distribution,
            hypotheses_with_competitors=hypotheses_with_competitors,
        ),
        achievements=build_achievements(
            sessions_total=sessions_total,
            sessions_completed=sessions_completed,
            operators_used_distribution=distribution,
            hypotheses_falsified=outcomes[HypothesisOutcome.FALSIFIED],
            hypotheses_robust=outcomes[HypothesisOutcome.ROBUST],
        ),
    )
