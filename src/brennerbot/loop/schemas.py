"""
Pydantic schemas for the Brenner Loop.

Defines hypothesis cards, sessions, operator applications, evolution events
and the closed enumerations shared by the confidence, what-if and analytics
engines.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now_utc().isoformat()


class InputValidationError(ValueError):
    """Raised when input is rejected at an engine boundary."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class BrennerModel(BaseModel):
    """Base model accepting both snake_case and the web app's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SessionPhase(str, Enum):
    """Phases of a Brenner Loop session, in canonical order."""

    INTAKE = "intake"
    SHARPENING = "sharpening"
    LEVEL_SPLIT = "level_split"
    EXCLUSION_TEST = "exclusion_test"
    OBJECT_TRANSPOSE = "object_transpose"
    SCALE_CHECK = "scale_check"
    AGENT_DISPATCH = "agent_dispatch"
    EVIDENCE_GATHERING = "evidence_gathering"
    SYNTHESIS = "synthesis"
    REVISION = "revision"
    COMPLETE = "complete"


PHASE_ORDER: tuple[SessionPhase, ...] = tuple(SessionPhase)


class OperatorType(str, Enum):
    """Structured reasoning operators applied during a session."""

    LEVEL_SPLIT = "level_split"
    EXCLUSION_TEST = "exclusion_test"
    OBJECT_TRANSPOSE = "object_transpose"
    SCALE_CHECK = "scale_check"


class EvidenceResult(str, Enum):
    """Observed or hypothetical outcome of a test."""

    SUPPORTS = "supports"
    CHALLENGES = "challenges"
    NEUTRAL = "neutral"
    ELIMINATES = "eliminates"


class EvolutionTrigger(str, Enum):
    """What caused a hypothesis to be revised."""

    EVIDENCE = "evidence"
    LEVEL_SPLIT = "level_split"
    EXCLUSION_TEST = "exclusion_test"
    OBJECT_TRANSPOSE = "object_transpose"
    SCALE_CHECK = "scale_check"
    AGENT_FEEDBACK = "agent_feedback"
    MANUAL = "manual"


class HypothesisOutcome(str, Enum):
    """Analytics classification of a hypothesis."""

    FALSIFIED = "falsified"
    ROBUST = "robust"
    IN_PROGRESS = "in_progress"
    ABANDONED = "abandoned"


class HypothesisCard(BrennerModel):
    """A versioned, falsifiable claim under test."""

    id: str = Field(..., min_length=1, description="HC-<session>-<seq>-v<version>")
    version: int = Field(default=1, ge=1, description="Version number of this card")
    statement: str = Field(..., description="The claim itself")
    mechanism: str = Field(default="", description="Proposed causal mechanism")
    domain: list[str] = Field(default_factory=list, description="Category tags")
    predictions_if_true: list[str] = Field(default_factory=list)
    predictions_if_false: list[str] = Field(default_factory=list)
    impossible_if_true: list[str] = Field(
        default_factory=list,
        description="Observations that would falsify the hypothesis",
    )
    confounds: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    confidence: float = Field(default=50.0, description="Confidence 0-100")
    created_at: datetime = Field(default_factory=_now_utc)
    updated_at: datetime = Field(default_factory=_now_utc)
    session_id: str | None = Field(default=None, description="Owning session")
    parent_version: str | None = Field(default=None, description="Card id this version evolved from")
    evolution_reason: str | None = Field(default=None)
    created_by: str | None = Field(default=None)


class OperatorApplication(BrennerModel):
    """A single recorded application of an operator."""

    operator: OperatorType
    hypothesis_id: str | None = None
    applied_at: datetime = Field(default_factory=_now_utc)
    summary: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class OperatorApplications(BrennerModel):
    """Per-operator lists of application records."""

    level_split: list[OperatorApplication] = Field(default_factory=list)
    exclusion_test: list[OperatorApplication] = Field(default_factory=list)
    object_transpose: list[OperatorApplication] = Field(default_factory=list)
    scale_check: list[OperatorApplication] = Field(default_factory=list)

    def for_operator(self, operator: OperatorType) -> list[OperatorApplication]:
        """Return the application list recorded for ``operator``."""
        if operator is OperatorType.LEVEL_SPLIT:
            return self.level_split
        if operator is OperatorType.EXCLUSION_TEST:
            return self.exclusion_test
        if operator is OperatorType.OBJECT_TRANSPOSE:
            return self.object_transpose
        if operator is OperatorType.SCALE_CHECK:
            return self.scale_check
        raise InputValidationError("operator", f"unknown operator {operator!r}")

    def used(self, operator: OperatorType) -> bool:
        return len(self.for_operator(operator)) > 0


class HypothesisEvolution(BrennerModel):
    """A revision event linking two versions of a hypothesis."""

    from_version_id: str = Field(
        ...,
        validation_alias=AliasChoices("from_version_id", "fromVersionId", "fromVersion"),
    )
    to_version_id: str = Field(
        ...,
        validation_alias=AliasChoices("to_version_id", "toVersionId", "toVersion"),
    )
    reason: str = ""
    trigger: EvolutionTrigger = EvolutionTrigger.MANUAL
    timestamp: datetime = Field(default_factory=_now_utc)


class Session(BrennerModel):
    """The unit of a research investigation."""

    id: str = Field(..., min_length=1, description="Session identifier")
    created_at: str = Field(default_factory=_now_iso, description="ISO timestamp")
    updated_at: str = Field(default_factory=_now_iso, description="ISO timestamp")
    phase: SessionPhase = SessionPhase.INTAKE
    research_question: str = ""
    primary_hypothesis_id: str = ""
    hypothesis_cards: dict[str, HypothesisCard] = Field(default_factory=dict)
    alternative_hypothesis_ids: list[str] = Field(default_factory=list)
    archived_hypothesis_ids: list[str] = Field(default_factory=list)
    test_ids: list[str] = Field(default_factory=list)
    operator_applications: OperatorApplications = Field(default_factory=OperatorApplications)
    hypothesis_evolution: list[HypothesisEvolution] = Field(default_factory=list)

    @property
    def primary_hypothesis(self) -> HypothesisCard | None:
        """The primary hypothesis card, or None if it does not resolve."""
        if not self.primary_hypothesis_id:
            return None
        return self.hypothesis_cards.get(self.primary_hypothesis_id)

    @property
    def is_complete(self) -> bool:
        return self.phase is SessionPhase.COMPLETE


_CARD_ID_RE = re.compile(r"^HC-(?P<session>.+)-(?P<seq>\d{3,})-v(?P<version>\d+)$")


def generate_hypothesis_card_id(session_id: str, sequence: int, version: int = 1) -> str:
    """
    Build a stable hypothesis card id.

    Args:
        session_id: Owning session id.
        sequence: Sequence number of the hypothesis within the session.
        version: Version of the card.

    Returns:
        Id of the form ``HC-<session>-<seq>-v<version>``.
    """
    if not session_id:
        raise InputValidationError("session_id", "must not be empty")
    if sequence < 1:
        raise InputValidationError("sequence", f"must be >= 1, got {sequence}")
    if version < 1:
        raise InputValidationError("version", f"must be >= 1, got {version}")
    return f"HC-{session_id}-{sequence:03d}-v{version}"


def parse_hypothesis_card_id(card_id: str) -> tuple[str, int, int]:
    """Split a card id into ``(session_id, sequence, version)``."""
    match = _CARD_ID_RE.match(card_id or "")
    if not match:
        raise InputValidationError("id", f"not a hypothesis card id: {card_id!r}")
    return match.group("session"), int(match.group("seq")), int(match.group("version"))
