"""
Tests for the personal analytics aggregator.
"""

from datetime import datetime, timezone

import pytest

from brennerbot.loop.analytics import (
    NO_HISTORY_INSIGHT,
    AnalyticsThresholds,
    ObjectionStats,
    build_trend_data,
    classify_hypothesis_outcome,
    compute_personal_analytics,
)
from brennerbot.loop.schemas import (
    EvolutionTrigger,
    HypothesisCard,
    HypothesisEvolution,
    HypothesisOutcome,
    InputValidationError,
    OperatorApplication,
    OperatorApplications,
    OperatorType,
    Session,
    SessionPhase,
)

NOW = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


def make_card(card_id: str, confidence: float = 50.0, well_formed: bool = True) -> HypothesisCard:
    if not well_formed:
        return HypothesisCard(id=card_id, statement="Something happens", confidence=confidence)
    return HypothesisCard(
        id=card_id,
        statement="Spaced repetition improves long-term retention of vocabulary",
        mechanism="Distributed practice increases memory consolidation during sleep",
        domain=["cognition"],
        predictions_if_true=["Spaced group recalls 20% more at 30 days"],
        predictions_if_false=["No difference between groups at 30 days"],
        impossible_if_true=[
            "Massed group outperforms spaced group at 30 days",
            "Effect disappears after controlling for total study time of 2 hours",
            "Recall difference below 1% in a 200-person sample",
        ],
        confidence=confidence,
    )


def make_session(
    session_id: str,
    *,
    created_at: str = "2026-01-31T10:00:00+00:00",
    updated_at: str = "2026-01-31T10:30:00+00:00",
    phase: SessionPhase = SessionPhase.INTAKE,
    cards: list[HypothesisCard] | None = None,
    alternatives: list[str] | None = None,
    archived: list[str] | None = None,
    operators: list[OperatorType] | None = None,
    evolution: list[HypothesisEvolution] | None = None,
    test_ids: list[str] | None = None,
) -> Session:
    cards = cards if cards is not None else [make_card(f"HC-{session_id}-001-v1")]
    applications = OperatorApplications()
    for operator in operators or []:
        applications.for_operator(operator).append(OperatorApplication(operator=operator))
    return Session(
        id=session_id,
        created_at=created_at,
        updated_at=updated_at,
        phase=phase,
        primary_hypothesis_id=cards[0].id if cards else "",
        hypothesis_cards={card.id: card for card in cards},
        alternative_hypothesis_ids=alternatives or [],
        archived_hypothesis_ids=archived or [],
        operator_applications=applications,
        hypothesis_evolution=evolution or [],
        test_ids=test_ids or [],
    )


class TestEmptyHistory:
    """Analytics with no sessions."""

    def test_empty_report(self) -> None:
        report = compute_personal_analytics([], now=NOW)

        assert report.sessions_total == 0
        assert report.completion_rate == 0.0
        assert report.average_falsifiability_score == 0.0
        assert report.average_session_duration_minutes == 0.0
        assert report.insights == [NO_HISTORY_INSIGHT]
        assert all(count == 0 for count in report.operators_used_distribution.values())
        assert len(report.achievements) == 7
        assert not any(a.unlocked for a in report.achievements)

    def test_empty_trends_are_full_length(self) -> None:
        report = compute_personal_analytics([], now=NOW)

        assert len(report.trends_over_30_days.points) == 30
        assert len(report.trends_over_90_days.points) == 90
        assert all(p.sessions_created == 0 for p in report.trends_over_30_days.points)
        assert all(p.average_falsifiability_score == 0.0 for p in report.trends_over_30_days.points)


class TestCounts:
    """Counts, averages and distributions."""

    def test_completion_and_counts(self) -> None:
        sessions = [
            make_session("S1", phase=SessionPhase.COMPLETE, test_ids=["T1", "T2"]),
            make_session(
                "S2",
                cards=[make_card("HC-S2-001-v1"), make_card("HC-S2-002-v1")],
                alternatives=["HC-S2-002-v1"],
                test_ids=["T3"],
            ),
        ]
        report = compute_personal_analytics(sessions, now=NOW)

        assert report.sessions_total == 2
        assert report.sessions_completed == 1
        assert report.completion_rate == pytest.approx(0.5)
        assert report.hypotheses_tested == 3
        assert report.hypotheses_with_competitors == 1
        assert report.tests_recorded == 3

    def test_score_averages_use_primary_hypothesis(self) -> None:
        sessions = [
            make_session("S1"),
            make_session("S2", cards=[make_card("HC-S2-001-v1", well_formed=False)]),
        ]
        report = compute_personal_analytics(sessions, now=NOW)

        assert report.average_falsifiability_score == pytest.approx(50.0)
        assert 0.0 <= report.average_specificity_score <= 100.0

    def test_unresolvable_primary_is_excluded_from_averages(self) -> None:
        broken = make_session("S2").model_copy(update={"primary_hypothesis_id": "HC-missing-001-v1"})
        report = compute_personal_analytics([make_session("S1"), broken], now=NOW)

        assert report.average_falsifiability_score == pytest.approx(100.0)

    def test_durations_skip_unparsable_timestamps(self) -> None:
        sessions = [
            make_session("S1", updated_at="2026-01-31T10:30:00+00:00"),
            make_session("S2", updated_at="2026-01-31T11:00:00Z"),
            make_session("S3", created_at="not a date"),
        ]
        report = compute_personal_analytics(sessions, now=NOW)

        assert report.average_session_duration_minutes == pytest.approx(45.0)

    def test_operator_usage_counts_sessions(self) -> None:
        sessions = [
            make_session("S1", operators=[OperatorType.SCALE_CHECK, OperatorType.SCALE_CHECK]),
            make_session("S2", operators=[OperatorType.SCALE_CHECK, OperatorType.LEVEL_SPLIT]),
        ]
        report = compute_personal_analytics(sessions, now=NOW)

        assert report.operators_used_distribution[OperatorType.SCALE_CHECK] == 2
        assert report.operators_used_distribution[OperatorType.LEVEL_SPLIT] == 1
        assert report.operators_used_distribution[OperatorType.OBJECT_TRANSPOSE] == 0

    def test_revisions_after_evidence(self) -> None:
        evolution = [
            HypothesisEvolution(from_version_id="a", to_version_id="b", trigger=EvolutionTrigger.EVIDENCE),
            HypothesisEvolution(from_version_id="b", to_version_id="c", trigger=EvolutionTrigger.MANUAL),
            HypothesisEvolution(from_version_id="c", to_version_id="d", trigger=EvolutionTrigger.EVIDENCE),
        ]
        report = compute_personal_analytics([make_session("S1", evolution=evolution)], now=NOW)

        assert report.revisions_after_evidence == 2

    def test_objection_stats_pass_through(self) -> None:
        report = compute_personal_analytics(
            [make_session("S1")],
            now=NOW,
            objection_stats=ObjectionStats(addressed=4, accepted=1),
        )
        assert report.objections_addressed == 4
        assert report.objections_accepted == 1

    def test_input_is_not_mutated(self) -> None:
        sessions = [make_session("S1", phase=SessionPhase.COMPLETE)]
        before = [s.model_dump() for s in sessions]

        compute_personal_analytics(sessions, now=NOW)

        assert [s.model_dump() for s in sessions] == before


class TestOutcomes:
    """Hypothesis outcome classification."""

    def test_robust_requires_complete_session(self) -> None:
        card = make_card("HC-S1-001-v1", confidence=90.0)
        open_session = make_session("S1", cards=[card])
        done_session = make_session("S1", cards=[card], phase=SessionPhase.COMPLETE)

        assert classify_hypothesis_outcome(card, open_session) is HypothesisOutcome.IN_PROGRESS
        assert classify_hypothesis_outcome(card, done_session) is HypothesisOutcome.ROBUST

    def test_low_confidence_is_falsified(self) -> None:
        card = make_card("HC-S1-001-v1", confidence=10.0)
        assert classify_hypothesis_outcome(card, make_session("S1", cards=[card])) is HypothesisOutcome.FALSIFIED

    def test_archived_is_abandoned_not_falsified(self) -> None:
        primary = make_card("HC-S1-001-v1")
        dropped = make_card("HC-S1-002-v1", confidence=5.0)
        session = make_session("S1", cards=[primary, dropped], archived=[dropped.id], phase=SessionPhase.COMPLETE)

        report = compute_personal_analytics([session], now=NOW)

        assert report.hypotheses_abandoned == 1
        assert report.hypotheses_falsified == 0

    def test_custom_thresholds(self) -> None:
        card = make_card("HC-S1-001-v1", confidence=30.0)
        session = make_session("S1", cards=[card])
        thresholds = AnalyticsThresholds(falsified_below=35.0, robust_above=90.0)

        assert classify_hypothesis_outcome(card, session, thresholds) is HypothesisOutcome.FALSIFIED

    def test_counts_in_report(self) -> None:
        sessions = [
            make_session("S1", cards=[make_card("HC-S1-001-v1", confidence=95.0)], phase=SessionPhase.COMPLETE),
            make_session("S2", cards=[make_card("HC-S2-001-v1", confidence=95.0)]),
            make_session("S3", cards=[make_card("HC-S3-001-v1", confidence=2.0)]),
        ]
        report = compute_personal_analytics(sessions, now=NOW)

        assert report.hypotheses_robust == 1
        assert report.hypotheses_falsified == 1


class TestTrends:
    """Daily trend buckets."""

    def test_window_bounds(self) -> None:
        trend = build_trend_data(sessions=[], window_days=30, now=NOW)

        assert trend.window_days == 30
        assert trend.points[0].date == "2026-01-02"
        assert trend.points[-1].date == "2026-01-31"

    def test_sessions_are_bucketed_by_utc_day(self) -> None:
        sessions = [
            make_session("S1", created_at="2026-01-31T01:00:00+00:00", phase=SessionPhase.COMPLETE),
            make_session("S2", created_at="2026-01-30T23:30:00-02:00"),
            make_session("S3", created_at="2026-01-01T09:00:00+00:00"),
            make_session("S4", created_at="2025-12-01T09:00:00+00:00"),
        ]
        report = compute_personal_analytics(sessions, now=NOW)
        last_30 = report.trends_over_30_days.points
        last_90 = report.trends_over_90_days.points

        assert last_30[-1].sessions_created == 2
        assert last_30[-1].sessions_completed == 1
        assert last_30[-1].average_falsifiability_score == pytest.approx(100.0)
        assert sum(p.sessions_created for p in last_30) == 2
        assert sum(p.sessions_created for p in last_90) == 4

    def test_invalid_window(self) -> None:
        with pytest.raises(InputValidationError):
            build_trend_data(sessions=[], window_days=0, now=NOW)


class TestInsightsAndAchievements:
    """Heuristic insights and the achievement catalog."""

    def test_insights_for_weak_habits(self) -> None:
        sessions = [make_session(f"S{i}", cards=[make_card(f"HC-S{i}-001-v1", well_formed=False)]) for i in range(3)]
        report = compute_personal_analytics(sessions, now=NOW)

        assert any("Low completion rate" in text for text in report.insights)
        assert any("falsification criteria" in text for text in report.insights)
        assert any("Scale Check" in text for text in report.insights)
        assert any("Third alternatives" in text for text in report.insights)

    def test_no_insights_for_good_habits(self) -> None:
        sessions = [
            make_session(
                f"S{i}",
                phase=SessionPhase.COMPLETE,
                cards=[make_card(f"HC-S{i}-001-v1"), make_card(f"HC-S{i}-002-v1")],
                alternatives=[f"HC-S{i}-002-v1"],
                operators=[OperatorType.SCALE_CHECK],
            )
            for i in range(2)
        ]
        report = compute_personal_analytics(sessions, now=NOW)

        assert report.insights == []

    def test_achievements_unlock(self) -> None:
        all_operators = list(OperatorType)
        sessions = [make_session(f"S{i}", phase=SessionPhase.COMPLETE, operators=all_operators) for i in range(5)]
        report = compute_personal_analytics(sessions, now=NOW)
        unlocked = {a.id for a in report.achievements if a.unlocked}

        assert {"first-session", "five-sessions", "operator-explorer", "full-operator-stack"} <= unlocked
        assert "staying-power" not in unlocked


class TestRawInput:
    """Raw mappings are validated into sessions."""

    def test_camel_case_mapping_is_accepted(self) -> None:
        raw = {
            "id": "S1",
            "createdAt": "2026-01-31T10:00:00Z",
            "updatedAt": "2026-01-31T10:20:00Z",
            "phase": "complete",
            "primaryHypothesisId": "HC-S1-001-v1",
            "hypothesisCards": {
                "HC-S1-001-v1": {"id": "HC-S1-001-v1", "statement": "X causes Y", "confidence": 85},
            },
            "hypothesisEvolution": [{"fromVersion": "a", "toVersion": "b", "trigger": "evidence"}],
        }
        report = compute_personal_analytics([raw], now=NOW)

        assert report.sessions_completed == 1
        assert report.hypotheses_robust == 1
        assert report.revisions_after_evidence == 1
        assert report.average_session_duration_minutes == pytest.approx(20.0)

    def test_missing_id_names_the_field(self) -> None:
        with pytest.raises(InputValidationError) as exc_info:
            compute_personal_analytics([{"phase": "intake"}], now=NOW)
        assert exc_info.value.field == "id"

    def test_non_mapping_is_rejected(self) -> None:
        with pytest.raises(InputValidationError):
            compute_personal_analytics(["not a session"], now=NOW)  # type: ignore[list-item]
