"""
Session lifecycle helpers.

Every helper returns a new Session and leaves its argument untouched, so
callers can hold on to earlier snapshots (undo, optimistic UI, concurrent
readers) safely.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from brennerbot.loop.hypothesis import evolve_hypothesis
from brennerbot.loop.schemas import (
    PHASE_ORDER,
    EvolutionTrigger,
    HypothesisCard,
    InputValidationError,
    OperatorApplication,
    OperatorType,
    Session,
    SessionPhase,
)

logger = logging.getLogger(__name__)

# Phases a revision may loop back into.
REVISION_REENTRY_PHASES = frozenset(
    {
        SessionPhase.SHARPENING,
        SessionPhase.LEVEL_SPLIT,
        SessionPhase.EXCLUSION_TEST,
        SessionPhase.OBJECT_TRANSPOSE,
        SessionPhase.SCALE_CHECK,
        SessionPhase.AGENT_DISPATCH,
        SessionPhase.EVIDENCE_GATHERING,
    }
)


class PhaseTransitionError(ValueError):
    """Raised when a session is moved to a phase it cannot reach."""

    def __init__(self, current: SessionPhase, target: SessionPhase) -> None:
        super().__init__(f"cannot move session from {current.value!r} to {target.value!r}")
        self.current = current
        self.target = target


def _stamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def _updated(session: Session, now: datetime | None, **changes: Any) -> Session:
    updated = session.model_copy(update={**changes, "updated_at": _stamp(now)})
    return updated.model_copy(deep=True)


def create_session(
    session_id: str,
    *,
    research_question: str = "",
    now: datetime | None = None,
) -> Session:
    """Create an empty session in the intake phase."""
    if not session_id:
        raise InputValidationError("id", "session id must not be empty")
    stamp = _stamp(now)
    return Session(
        id=session_id,
        created_at=stamp,
        updated_at=stamp,
        phase=SessionPhase.INTAKE,
        research_question=research_question,
    )


def can_transition(current: SessionPhase, target: SessionPhase) -> bool:
    """Check whether ``current`` may move to ``target``."""
    if current is SessionPhase.COMPLETE:
        return False
    if current is SessionPhase.REVISION and target in REVISION_REENTRY_PHASES:
        return True
    return PHASE_ORDER.index(target) > PHASE_ORDER.index(current)


def transition_phase(session: Session, target: SessionPhase, *, now: datetime | None = None) -> Session:
    """
    Move a session to a later phase.

    Phases only advance, except that ``revision`` may loop back into the
    sharpening/operator/evidence phases. ``complete`` is terminal.

    Raises:
        PhaseTransitionError: If the move is not allowed.
    """
    if not can_transition(session.phase, target):
        raise PhaseTransitionError(session.phase, target)
    logger.debug(f"Session {session.id}: {session.phase.value} -> {target.value}")
    return _updated(session, now, phase=target)


def add_hypothesis(
    session: Session,
    card: HypothesisCard,
    *,
    primary: bool = False,
    now: datetime | None = None,
) -> Session:
    """
    Add a hypothesis card to a session.

    The first card added becomes primary even if ``primary`` is False;
    later cards become alternatives unless ``primary`` is set, in which case
    the previous primary is demoted to an alternative.
    """
    if card.id in session.hypothesis_cards:
        raise InputValidationError("id", f"hypothesis {card.id!r} already in session {session.id!r}")

    cards = {**session.hypothesis_cards, card.id: card.model_copy(update={"session_id": session.id})}
    alternatives = list(session.alternative_hypothesis_ids)
    primary_id = session.primary_hypothesis_id

    if primary or session.primary_hypothesis is None:
        if session.primary_hypothesis is not None:
            alternatives.append(primary_id)
        primary_id = card.id
    else:
        alternatives.append(card.id)

    return _updated(
        session,
        now,
        hypothesis_cards=cards,
        primary_hypothesis_id=primary_id,
        alternative_hypothesis_ids=alternatives,
    )


def set_primary_hypothesis(session: Session, card_id: str, *, now: datetime | None = None) -> Session:
    """Promote an existing, non-archived card to primary."""
    if card_id not in session.hypothesis_cards:
        raise InputValidationError("primary_hypothesis_id", f"{card_id!r} is not in session {session.id!r}")
    if card_id in session.archived_hypothesis_ids:
        raise InputValidationError("primary_hypothesis_id", f"{card_id!r} is archived")

    alternatives = [h for h in session.alternative_hypothesis_ids if h != card_id]
    if session.primary_hypothesis is not None and session.primary_hypothesis_id != card_id:
        alternatives.append(session.primary_hypothesis_id)
    return _updated(session, now, primary_hypothesis_id=card_id, alternative_hypothesis_ids=alternatives)


def archive_hypothesis(session: Session, card_id: str, *, now: datetime | None = None) -> Session:
    """
    Archive (soft-delete) a hypothesis.

    The card stays in ``hypothesis_cards`` for audit. The primary hypothesis
    cannot be archived; promote another card first.
    """
    if card_id not in session.hypothesis_cards:
        raise InputValidationError("id", f"{card_id!r} is not in session {session.id!r}")
    if card_id == session.primary_hypothesis_id:
        raise InputValidationError("id", "the primary hypothesis cannot be archived")
    if card_id in session.archived_hypothesis_ids:
        return session

    return _updated(
        session,
        now,
        alternative_hypothesis_ids=[h for h in session.alternative_hypothesis_ids if h != card_id],
        archived_hypothesis_ids=[*session.archived_hypothesis_ids, card_id],
    )


def record_operator_application(
    session: Session,
    operator: OperatorType,
    *,
    summary: str = "",
    hypothesis_id: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Session:
    """Append an operator application record."""
    updated = _updated(session, now)
    updated.operator_applications.for_operator(operator).append(
        OperatorApplication(
            operator=operator,
            hypothesis_id=hypothesis_id or session.primary_hypothesis_id or None,
            applied_at=now or datetime.now(timezone.utc),
            summary=summary,
            details=details or {},
        )
    )
    return updated


def record_test(session: Session, test_id: str, *, now: datetime | None = None) -> Session:
    """Record a test id against the session (idempotent)."""
    if test_id in session.test_ids:
        return session
    return _updated(session, now, test_ids=[*session.test_ids, test_id])


def revise_hypothesis(
    session: Session,
    card_id: str,
    changes: dict[str, Any],
    *,
    reason: str,
    trigger: EvolutionTrigger = EvolutionTrigger.MANUAL,
    now: datetime | None = None,
) -> Session:
    """
    Create a new version of a hypothesis and point the session at it.

    The old version stays in ``hypothesis_cards``; primary/alternative ids
    are repointed to the new version and an evolution event is appended.
    """
    card = session.hypothesis_cards.get(card_id)
    if card is None:
        raise InputValidationError("id", f"{card_id!r} is not in session {session.id!r}")

    evolved, event = evolve_hypothesis(card, changes, reason=reason, trigger=trigger, now=now)
    if evolved.id in session.hypothesis_cards:
        raise InputValidationError("id", f"version {evolved.id!r} already exists")

    primary_id = evolved.id if session.primary_hypothesis_id == card_id else session.primary_hypothesis_id
    alternatives = [evolved.id if h == card_id else h for h in session.alternative_hypothesis_ids]

    return _updated(
        session,
        now,
        hypothesis_cards={**session.hypothesis_cards, evolved.id: evolved},
        primary_hypothesis_id=primary_id,
        alternative_hypothesis_ids=alternatives,
        hypothesis_evolution=[*session.hypothesis_evolution, event],
    )


def validate_session(session: Session) -> list[str]:
    """
    Check session invariants.

    Returns:
        Human-readable violations (empty when the session is consistent).
    """
    issues: list[str] = []
    if session.primary_hypothesis_id and session.primary_hypothesis is None:
        issues.append(f"primary hypothesis {session.primary_hypothesis_id!r} does not resolve")
    for card_id in session.alternative_hypothesis_ids:
        if card_id not in session.hypothesis_cards:
            issues.append(f"alternative hypothesis {card_id!r} does not resolve")
    for card_id in session.archived_hypothesis_ids:
        if card_id not in session.hypothesis_cards:
            issues.append(f"archived hypothesis {card_id!r} is missing from hypothesis_cards")
        if card_id in session.alternative_hypothesis_ids:
            issues.append(f"archived hypothesis {card_id!r} is still listed as an alternative")
        if card_id == session.primary_hypothesis_id:
            issues.append(f"primary hypothesis {card_id!r} is archived")
    return issues
