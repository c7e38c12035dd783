"""
Tests for the experiment queue.
"""

from datetime import datetime, timezone

import pytest

from brennerbot.loop.experiment_queue import (
    ProposedTest,
    QueuePriority,
    QueueSource,
    QueueStatus,
    add_tests_to_queue,
    lock_predictions,
    pending_candidates,
    priority_from_power,
    queue_stats,
    update_queue_item,
)
from brennerbot.loop.schemas import EvidenceResult, InputValidationError
from brennerbot.loop.what_if import rank_candidate_tests

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _proposed(test_id: str, power: int) -> ProposedTest:
    return ProposedTest(
        id=test_id,
        name=f"Test {test_id}",
        discriminative_power=power,
        support_condition="Effect above 10%",
        falsification_condition="No effect",
    )


@pytest.fixture
def queue():
    return add_tests_to_queue(
        [],
        session_id="S1",
        hypothesis_id="HC-S1-001-v1",
        tests=[_proposed("T1", 5), _proposed("T2", 2)],
        source=QueueSource.EXCLUSION_TEST,
        now=NOW,
    )


def test_priority_from_power() -> None:
    assert priority_from_power(5) is QueuePriority.URGENT
    assert priority_from_power(1) is QueuePriority.SOMEDAY
    with pytest.raises(InputValidationError):
        priority_from_power(0)


def test_add_tests_uses_stable_ids_and_deduplicates(queue) -> None:
    assert [item.id for item in queue] == ["TQ-S1-T1", "TQ-S1-T2"]
    assert queue[0].priority is QueuePriority.URGENT
    assert queue[0].prediction_if_true == "Effect above 10%"

    again = add_tests_to_queue(queue, session_id="S1", hypothesis_id="HC-S1-001-v1", tests=[_proposed("T1", 5)])
    assert len(again) == 2


def test_invalid_power_is_rejected() -> None:
    with pytest.raises(InputValidationError):
        add_tests_to_queue([], session_id="S1", hypothesis_id="H", tests=[_proposed("T9", 7)])


def test_locked_predictions_cannot_be_edited(queue) -> None:
    locked = lock_predictions(queue, "TQ-S1-T1", now=NOW)
    assert locked[0].predictions_locked
    assert not queue[0].predictions_locked

    edited = update_queue_item(
        locked,
        "TQ-S1-T1",
        {"prediction_if_true": "Changed after the fact", "status": "completed", "result": "supports"},
    )
    assert edited[0].prediction_if_true == "Effect above 10%"
    assert edited[0].status is QueueStatus.COMPLETED
    assert edited[0].result is EvidenceResult.SUPPORTS


def test_lock_is_idempotent(queue) -> None:
    first = lock_predictions(queue, "TQ-S1-T1", now=NOW)
    second = lock_predictions(first, "TQ-S1-T1", now=datetime(2026, 2, 1, tzinfo=timezone.utc))
    assert second[0].predictions_locked_at == NOW


def test_protected_fields(queue) -> None:
    with pytest.raises(InputValidationError) as exc_info:
        update_queue_item(queue, "TQ-S1-T1", {"session_id": "other"})
    assert exc_info.value.field == "session_id"


def test_unknown_item(queue) -> None:
    with pytest.raises(InputValidationError):
        update_queue_item(queue, "TQ-S1-missing", {"status": "skipped"})


def test_power_update_recomputes_priority(queue) -> None:
    updated = update_queue_item(queue, "TQ-S1-T2", {"discriminative_power": 4})
    assert updated[1].priority is QueuePriority.HIGH


def test_stats_and_pending_candidates(queue) -> None:
    updated = update_queue_item(queue, "TQ-S1-T2", {"status": "skipped"})
    stats = queue_stats(updated)

    assert stats.total == 2
    assert stats.by_status[QueueStatus.QUEUED] == 1
    assert stats.by_status[QueueStatus.SKIPPED] == 1
    assert stats.by_priority[QueuePriority.URGENT] == 1

    candidates = pending_candidates(updated)
    assert [c.test_id for c in candidates] == ["TQ-S1-T1"]
    ranking = rank_candidate_tests(50.0, candidates)
    assert ranking.recommendation is not None
    assert ranking.recommendation.test_id == "TQ-S1-T1"
