"""Hypothesis card construction, scoring and versioned evolution.

Falsifiability and specificity are derived scores: they are recomputed from
the card every time and never stored on it.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from brennerbot.loop.schemas import (
    EvolutionTrigger,
    HypothesisCard,
    HypothesisEvolution,
    InputValidationError,
    generate_hypothesis_card_id,
    parse_hypothesis_card_id,
)

_NUMBER_RE = re.compile(r"\d")

# Fields that may change between versions; identity and lineage are managed here.
_EVOLVABLE_FIELDS = frozenset(
    {
        "statement",
        "mechanism",
        "domain",
        "predictions_if_true",
        "predictions_if_false",
        "impossible_if_true",
        "confounds",
        "assumptions",
        "confidence",
    }
)


def _non_empty(items: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for item in items:
        cleaned = (item or "").strip()
        if cleaned and cleaned.lower() not in seen:
            unique.append(cleaned)
            seen.add(cleaned.lower())
    return unique


def _is_concrete(condition: str) -> bool:
    return bool(_NUMBER_RE.search(condition)) or len(condition.split()) >= 8


def calculate_falsifiability_score(card: HypothesisCard) -> float:
    """
    Score how falsifiable a hypothesis is (0-100).

    25 points per distinct falsification condition (up to three), 15 when
    predictions-if-false are stated, 10 when any condition is concrete.
    """
    conditions = _non_empty(card.impossible_if_true)
    if not conditions:
        return 0.0

    score = 25.0 * min(len(conditions), 3)
    if _non_empty(card.predictions_if_false):
        score += 15.0
    if any(_is_concrete(c) for c in conditions):
        score += 10.0
    return min(100.0, score)


def calculate_specificity_score(card: HypothesisCard) -> float:
    """Score how specific the claim and its mechanism are (0-100)."""
    score = 0.0

    mechanism_words = len((card.mechanism or "").split())
    score += min(40.0, 2.0 * mechanism_words)

    predictions = _non_empty(card.predictions_if_true)
    score += min(30.0, 10.0 * len(predictions))

    if len((card.statement or "").split()) >= 8:
        score += 10.0
    if _non_empty(card.domain):
        score += 10.0

    quantitative_text = " ".join([card.statement or "", *predictions])
    if _NUMBER_RE.search(quantitative_text) or "%" in quantitative_text:
        score += 10.0

    return min(100.0, score)


def create_hypothesis_card(
    *,
    statement: str,
    session_id: str | None = None,
    sequence: int = 1,
    card_id: str | None = None,
    now: datetime | None = None,
    **fields: Any,
) -> HypothesisCard:
    """
    Create a version-1 hypothesis card.

    Args:
        statement: The claim.
        session_id: Owning session; required unless ``card_id`` is given.
        sequence: Sequence of the hypothesis within its session.
        card_id: Explicit id (skips generation).
        now: Creation timestamp (defaults to the current UTC time).
        **fields: Any other HypothesisCard fields.

    Returns:
        The new card.
    """
    if not (statement or "").strip():
        raise InputValidationError("statement", "must not be empty")
    if card_id is None:
        if not session_id:
            raise InputValidationError("session_id", "required to generate a card id")
        card_id = generate_hypothesis_card_id(session_id, sequence, 1)

    now = now or datetime.now(timezone.utc)
    return HypothesisCard(
        id=card_id,
        version=1,
        statement=statement.strip(),
        session_id=session_id,
        created_at=now,
        updated_at=now,
        **fields,
    )


def next_version_id(card: HypothesisCard) -> str:
    """Id of the version following ``card``."""
    try:
        session_id, sequence, _ = parse_hypothesis_card_id(card.id)
    except InputValidationError:
        return f"{card.id}-v{card.version + 1}"
    return generate_hypothesis_card_id(session_id, sequence, card.version + 1)


def evolve_hypothesis(
    card: HypothesisCard,
    changes: dict[str, Any],
    *,
    reason: str,
    trigger: EvolutionTrigger = EvolutionTrigger.MANUAL,
    now: datetime | None = None,
) -> tuple[HypothesisCard, HypothesisEvolution]:
    """
    Produce the next version of a card.

    The input card is left untouched; the returned card carries
    ``parent_version`` pointing at it.

    Returns:
        ``(new_card, evolution_event)``
    """
    unknown = set(changes) - _EVOLVABLE_FIELDS
    if unknown:
        raise InputValidationError(sorted(unknown)[0], "cannot be changed when evolving a hypothesis")

    now = now or datetime.now(timezone.utc)
    evolved = card.model_copy(
        deep=True,
        update={
            **changes,
            "id": next_version_id(card),
            "version": card.version + 1,
            "parent_version": card.id,
            "evolution_reason": reason,
            "created_at": now,
            "updated_at": now,
        },
    )
    event = HypothesisEvolution(
        from_version_id=card.id,
        to_version_id=evolved.id,
        reason=reason,
        trigger=trigger,
        timestamp=now,
    )
    return evolved, event
