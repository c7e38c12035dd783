"""Queue of discriminative tests awaiting execution.

Queue operations take and return plain lists of items; nothing is mutated in
place. Predictions are locked before a test is run so they cannot be edited
after the result is known.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from brennerbot.loop.confidence import validate_discriminative_power
from brennerbot.loop.schemas import EvidenceResult, InputValidationError
from brennerbot.loop.what_if import CandidateTest


class QueuePriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SOMEDAY = "someday"


class QueueStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class QueueSource(str, Enum):
    EXCLUSION_TEST = "exclusion_test"
    AGENT = "agent"
    MANUAL = "manual"


_PRIORITY_BY_POWER = {
    5: QueuePriority.URGENT,
    4: QueuePriority.HIGH,
    3: QueuePriority.MEDIUM,
    2: QueuePriority.LOW,
    1: QueuePriority.SOMEDAY,
}

_LOCKED_FIELDS = frozenset({"prediction_if_true", "prediction_if_false"})
_PROTECTED_FIELDS = frozenset({"id", "session_id", "hypothesis_id", "added_at", "predictions_locked_at"})


class ProposedTest(BaseModel):
    """A discriminative test proposed for a hypothesis."""

    id: str
    name: str
    description: str = ""
    discriminative_power: int
    falsification_condition: str = ""
    support_condition: str = ""
    rationale: str = ""


class ExperimentQueueItem(BaseModel):
    """A proposed test queued against a hypothesis."""

    id: str
    session_id: str
    hypothesis_id: str
    test: ProposedTest
    discriminative_power: int
    status: QueueStatus = QueueStatus.QUEUED
    priority: QueuePriority = QueuePriority.MEDIUM
    prediction_if_true: str = ""
    prediction_if_false: str = ""
    predictions_locked_at: datetime | None = None
    result: EvidenceResult | None = None
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: QueueSource = QueueSource.MANUAL

    @property
    def predictions_locked(self) -> bool:
        return self.predictions_locked_at is not None


class QueueStats(BaseModel):
    total: int = 0
    by_priority: dict[QueuePriority, int] = Field(default_factory=lambda: {p: 0 for p in QueuePriority})
    by_status: dict[QueueStatus, int] = Field(default_factory=lambda: {s: 0 for s in QueueStatus})


def priority_from_power(power: int) -> QueuePriority:
    """Map discriminative power (1-5) onto a queue priority."""
    return _PRIORITY_BY_POWER[validate_discriminative_power(power)]


def queue_item_id(session_id: str, test_id: str) -> str:
    """Stable queue id for a test within a session."""
    return f"TQ-{session_id}-{test_id}"


def add_tests_to_queue(
    items: Sequence[ExperimentQueueItem],
    *,
    session_id: str,
    hypothesis_id: str,
    tests: Sequence[ProposedTest],
    source: QueueSource = QueueSource.MANUAL,
    now: datetime | None = None,
) -> list[ExperimentQueueItem]:
    """
    Queue tests, skipping any already queued under the same stable id.

    Returns:
        The full updated queue.
    """
    now = now or datetime.now(timezone.utc)
    queue = list(items)
    existing = {item.id for item in queue}

    for test in tests:
        item_id = queue_item_id(session_id, test.id)
        if item_id in existing:
            continue
        power = validate_discriminative_power(test.discriminative_power)
        queue.append(
            ExperimentQueueItem(
                id=item_id,
                session_id=session_id,
                hypothesis_id=hypothesis_id,
                test=test,
                discriminative_power=power,
                priority=priority_from_power(power),
                prediction_if_true=test.support_condition,
                prediction_if_false=test.falsification_condition,
                added_at=now,
                source=source,
            )
        )
        existing.add(item_id)
    return queue


def _replace(items: Sequence[ExperimentQueueItem], item_id: str, **changes: Any) -> list[ExperimentQueueItem]:
    if not any(item.id == item_id for item in items):
        raise InputValidationError("id", f"no queued test {item_id!r}")
    return [
        ExperimentQueueItem.model_validate({**item.model_dump(), **changes}) if item.id == item_id else item
        for item in items
    ]


def lock_predictions(
    items: Sequence[ExperimentQueueItem],
    item_id: str,
    *,
    now: datetime | None = None,
) -> list[ExperimentQueueItem]:
    """Lock the predictions of a queued test (idempotent)."""
    target = next((item for item in items if item.id == item_id), None)
    if target is not None and target.predictions_locked:
        return list(items)
    return _replace(items, item_id, predictions_locked_at=now or datetime.now(timezone.utc))


def update_queue_item(
    items: Sequence[ExperimentQueueItem],
    item_id: str,
    updates: dict[str, Any],
) -> list[ExperimentQueueItem]:
    """
    Apply field updates to a queued test.

    Prediction edits are dropped once predictions are locked; identity
    fields can never be changed.
    """
    target = next((item for item in items if item.id == item_id), None)
    if target is None:
        raise InputValidationError("id", f"no queued test {item_id!r}")

    protected = _PROTECTED_FIELDS & set(updates)
    if protected:
        raise InputValidationError(sorted(protected)[0], "cannot be updated")

    changes = dict(updates)
    if target.predictions_locked:
        for name in _LOCKED_FIELDS:
            changes.pop(name, None)
    if "discriminative_power" in changes:
        power = validate_discriminative_power(changes["discriminative_power"])
        changes["priority"] = priority_from_power(power)
    if not changes:
        return list(items)
    return _replace(items, item_id, **changes)


def queue_stats(items: Sequence[ExperimentQueueItem]) -> QueueStats:
    stats = QueueStats(total=len(items))
    for item in items:
        stats.by_priority[item.priority] += 1
        stats.by_status[item.status] += 1
    return stats


def to_candidate_test(item: ExperimentQueueItem) -> CandidateTest:
    """Adapt a queued test for ranking."""
    return CandidateTest(
        test_id=item.id,
        test_name=item.test.name,
        discriminative_power=item.discriminative_power,
    )


def pending_candidates(items: Sequence[ExperimentQueueItem]) -> list[CandidateTest]:
    """Candidate tests for every item that has not been run or skipped."""
    return [
        to_candidate_test(item)
        for item in items
        if item.status in (QueueStatus.QUEUED, QueueStatus.IN_PROGRESS)
    ]
