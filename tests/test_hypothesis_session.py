"""
Tests for hypothesis cards and session lifecycle helpers.
"""

from datetime import datetime, timezone

import pytest

from brennerbot.loop.hypothesis import (
    calculate_falsifiability_score,
    calculate_specificity_score,
    create_hypothesis_card,
    evolve_hypothesis,
)
from brennerbot.loop.schemas import (
    EvolutionTrigger,
    HypothesisCard,
    InputValidationError,
    OperatorType,
    SessionPhase,
    generate_hypothesis_card_id,
    parse_hypothesis_card_id,
)
from brennerbot.loop.session import (
    PhaseTransitionError,
    add_hypothesis,
    archive_hypothesis,
    create_session,
    record_operator_application,
    record_test,
    revise_hypothesis,
    set_primary_hypothesis,
    transition_phase,
    validate_session,
)

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class TestHypothesisCards:
    """Tests for card ids, scoring and evolution."""

    def test_card_id_roundtrip(self) -> None:
        card_id = generate_hypothesis_card_id("RS20260105", 1, 2)
        assert card_id == "HC-RS20260105-001-v2"
        assert parse_hypothesis_card_id(card_id) == ("RS20260105", 1, 2)

    def test_invalid_card_id(self) -> None:
        with pytest.raises(InputValidationError):
            parse_hypothesis_card_id("not-a-card")

    def test_create_card_generates_id(self) -> None:
        card = create_hypothesis_card(statement="  X causes Y  ", session_id="S1", sequence=3, now=NOW)

        assert card.id == "HC-S1-003-v1"
        assert card.statement == "X causes Y"
        assert card.version == 1
        assert card.created_at == NOW

    def test_create_card_requires_statement(self) -> None:
        with pytest.raises(InputValidationError) as exc_info:
            create_hypothesis_card(statement="   ", session_id="S1")
        assert exc_info.value.field == "statement"

    def test_falsifiability_score(self) -> None:
        vague = HypothesisCard(id="HC-S1-001-v1", statement="X matters")
        sharp = HypothesisCard(
            id="HC-S1-002-v1",
            statement="X matters",
            impossible_if_true=["Y rises by more than 10%", "Z is unchanged"],
            predictions_if_false=["Y is flat"],
        )

        assert calculate_falsifiability_score(vague) == 0.0
        assert calculate_falsifiability_score(sharp) == pytest.approx(75.0)

    def test_duplicate_conditions_count_once(self) -> None:
        card = HypothesisCard(id="HC-S1-001-v1", statement="X", impossible_if_true=["Y falls", "y falls", " "])
        assert calculate_falsifiability_score(card) == pytest.approx(25.0)

    def test_specificity_score_is_bounded(self) -> None:
        card = HypothesisCard(
            id="HC-S1-001-v1",
            statement="Sleep deprivation lowers working memory span by about 20 percent",
            mechanism=" ".join(["word"] * 40),
            domain=["neuroscience"],
            predictions_if_true=["a", "b", "c", "d"],
        )
        assert calculate_specificity_score(card) == 100.0

    def test_evolve_creates_next_version(self) -> None:
        card = create_hypothesis_card(statement="X causes Y", session_id="S1", now=NOW)
        evolved, event = evolve_hypothesis(
            card,
            {"statement": "X causes Y in adults"},
            reason="Level split",
            trigger=EvolutionTrigger.LEVEL_SPLIT,
            now=NOW,
        )

        assert evolved.id == "HC-S1-001-v2"
        assert evolved.version == 2
        assert evolved.parent_version == card.id
        assert card.statement == "X causes Y"
        assert event.from_version_id == card.id
        assert event.to_version_id == evolved.id
        assert event.trigger is EvolutionTrigger.LEVEL_SPLIT

    def test_evolve_rejects_identity_changes(self) -> None:
        card = create_hypothesis_card(statement="X causes Y", session_id="S1")
        with pytest.raises(InputValidationError):
            evolve_hypothesis(card, {"id": "HC-S1-009-v1"}, reason="nope")


class TestSessionLifecycle:
    """Tests for session helpers."""

    @pytest.fixture
    def session(self):
        base = create_session("S1", research_question="Why?", now=NOW)
        card = create_hypothesis_card(statement="X causes Y", session_id="S1", now=NOW)
        return add_hypothesis(base, card, now=NOW)

    def test_first_card_becomes_primary(self, session) -> None:
        assert session.primary_hypothesis_id == "HC-S1-001-v1"
        assert session.alternative_hypothesis_ids == []

    def test_helpers_do_not_mutate_input(self, session) -> None:
        before = session.model_dump()
        alternative = create_hypothesis_card(statement="Z causes Y", session_id="S1", sequence=2)

        updated = add_hypothesis(session, alternative)

        assert session.model_dump() == before
        assert updated.alternative_hypothesis_ids == [alternative.id]

    def test_phases_only_advance(self, session) -> None:
        advanced = transition_phase(session, SessionPhase.EXCLUSION_TEST)
        assert advanced.phase is SessionPhase.EXCLUSION_TEST

        with pytest.raises(PhaseTransitionError):
            transition_phase(advanced, SessionPhase.SHARPENING)

    def test_revision_can_loop_back(self, session) -> None:
        revision = transition_phase(session, SessionPhase.REVISION)
        assert transition_phase(revision, SessionPhase.SHARPENING).phase is SessionPhase.SHARPENING

    def test_complete_is_terminal(self, session) -> None:
        done = transition_phase(session, SessionPhase.COMPLETE)
        assert done.is_complete
        with pytest.raises(PhaseTransitionError):
            transition_phase(done, SessionPhase.REVISION)

    def test_primary_cannot_be_archived(self, session) -> None:
        with pytest.raises(InputValidationError):
            archive_hypothesis(session, session.primary_hypothesis_id)

    def test_archive_and_promote(self, session) -> None:
        alternative = create_hypothesis_card(statement="Z causes Y", session_id="S1", sequence=2)
        with_alt = add_hypothesis(session, alternative)

        promoted = set_primary_hypothesis(with_alt, alternative.id)
        assert promoted.primary_hypothesis_id == alternative.id
        assert promoted.alternative_hypothesis_ids == ["HC-S1-001-v1"]

        archived = archive_hypothesis(promoted, "HC-S1-001-v1")
        assert archived.archived_hypothesis_ids == ["HC-S1-001-v1"]
        assert archived.alternative_hypothesis_ids == []
        assert "HC-S1-001-v1" in archived.hypothesis_cards
        assert validate_session(archived) == []

        with pytest.raises(InputValidationError):
            set_primary_hypothesis(archived, "HC-S1-001-v1")

    def test_revise_repoints_primary(self, session) -> None:
        revised = revise_hypothesis(
            session,
            "HC-S1-001-v1",
            {"confidence": 30.0},
            reason="Knockout result",
            trigger=EvolutionTrigger.EVIDENCE,
        )

        assert revised.primary_hypothesis_id == "HC-S1-001-v2"
        assert "HC-S1-001-v1" in revised.hypothesis_cards
        assert revised.hypothesis_evolution[-1].trigger is EvolutionTrigger.EVIDENCE

    def test_record_operator_and_test(self, session) -> None:
        updated = record_operator_application(session, OperatorType.SCALE_CHECK, summary="Order of magnitude check")
        updated = record_test(updated, "T1")
        updated = record_test(updated, "T1")

        assert updated.operator_applications.used(OperatorType.SCALE_CHECK)
        assert not session.operator_applications.used(OperatorType.SCALE_CHECK)
        assert updated.test_ids == ["T1"]

    def test_validate_session_reports_dangling_ids(self, session) -> None:
        broken = session.model_copy(update={"alternative_hypothesis_ids": ["HC-S1-404-v1"]})
        issues = validate_session(broken)
        assert any("HC-S1-404-v1" in issue for issue in issues)
