"""
Side-by-side hypothesis comparison.

Compares two hypothesis cards field by field and, given a matrix of test
results per hypothesis, finds the tests that discriminate between them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from brennerbot.loop.schemas import BrennerModel, EvidenceResult, HypothesisCard, InputValidationError

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("statement", "mechanism")
LIST_FIELDS = (
    "domain",
    "predictions_if_true",
    "predictions_if_false",
    "impossible_if_true",
    "confounds",
    "assumptions",
)
DEFAULT_COMPARISON_FIELDS = (*TEXT_FIELDS, *LIST_FIELDS, "confidence")

_WORD_RE = re.compile(r"\w+")


class ArenaStatus(str, Enum):
    """Standing of a hypothesis among its competitors."""

    ACTIVE = "active"
    CHAMPION = "champion"
    SUSPENDED = "suspended"
    ELIMINATED = "eliminated"


class Favors(str, Enum):
    """Which hypothesis a shared test favours."""

    A = "a"
    B = "b"
    TIE = "tie"
    PENDING = "pending"


class MatrixTest(BrennerModel):
    id: str
    name: str
    applied_at: datetime | None = None


class MatrixRow(BrennerModel):
    """One hypothesis and its result on each test."""

    hypothesis_id: str
    statement: str = ""
    status: ArenaStatus = ArenaStatus.ACTIVE
    score: float = 0.0
    test_results: dict[str, EvidenceResult] = Field(default_factory=dict)
    confidence: float = 50.0


class ComparisonMatrix(BrennerModel):
    """Competing hypotheses against a shared list of tests."""

    arena_id: str
    question: str = ""
    tests: list[MatrixTest] = Field(default_factory=list)
    rows: list[MatrixRow] = Field(default_factory=list)

    def row(self, hypothesis_id: str) -> MatrixRow:
        for row in self.rows:
            if row.hypothesis_id == hypothesis_id:
                return row
        raise InputValidationError("hypothesis_id", f"{hypothesis_id!r} is not in matrix {self.arena_id!r}")


class FieldComparison(BaseModel):
    """How one field differs between two cards."""

    model_config = ConfigDict(frozen=True)

    field: str
    value_a: Any
    value_b: Any
    similarity: float = Field(..., ge=0.0, le=1.0)
    identical: bool
    shared: tuple[str, ...] = ()
    only_in_a: tuple[str, ...] = ()
    only_in_b: tuple[str, ...] = ()


class PredictionConflictRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_id: str
    test_name: str
    result_a: EvidenceResult | None
    result_b: EvidenceResult | None
    discriminating: bool
    favors: Favors


class EvidenceSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    discriminating: int = 0
    favors_a: int = 0
    favors_b: int = 0
    ties: int = 0
    pending: int = 0


def _resolve_field(name: str) -> str:
    if name in HypothesisCard.model_fields:
        return name
    for field_name, info in HypothesisCard.model_fields.items():
        if info.alias == name:
            return field_name
    raise InputValidationError("field", f"unknown hypothesis field {name!r}")


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def _jaccard(a: set[str], b: set[str]) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def _normalize_item(item: str) -> str:
    return " ".join(item.lower().split())


def _compare_lists(field: str, a: list[str], b: list[str]) -> FieldComparison:
    items_a = {_normalize_item(item): item for item in a if item.strip()}
    items_b = {_normalize_item(item): item for item in b if item.strip()}
    words_a = set().union(*(_words(item) for item in items_a)) if items_a else set()
    words_b = set().union(*(_words(item) for item in items_b)) if items_b else set()
    return FieldComparison(
        field=field,
        value_a=a,
        value_b=b,
        similarity=_jaccard(words_a, words_b),
        identical=items_a.keys() == items_b.keys(),
        shared=tuple(items_a[key] for key in items_a if key in items_b),
        only_in_a=tuple(items_a[key] for key in items_a if key not in items_b),
        only_in_b=tuple(items_b[key] for key in items_b if key not in items_a),
    )


def compare_field(a: HypothesisCard, b: HypothesisCard, field: str) -> FieldComparison:
    """
    Compare one field of two cards.

    Text fields use word-set overlap, list fields use word overlap across
    their items plus an item-level diff, and confidence uses
    ``1 - |a - b| / 100``.
    """
    name = _resolve_field(field)
    value_a = getattr(a, name)
    value_b = getattr(b, name)

    if name in LIST_FIELDS:
        return _compare_lists(name, value_a, value_b)
    if name == "confidence":
        similarity = max(0.0, 1.0 - abs(value_a - value_b) / 100.0)
        return FieldComparison(
            field=name, value_a=value_a, value_b=value_b, similarity=similarity, identical=value_a == value_b
        )
    if name in TEXT_FIELDS:
        text_a = value_a or ""
        text_b = value_b or ""
        return FieldComparison(
            field=name,
            value_a=text_a,
            value_b=text_b,
            similarity=_jaccard(_words(text_a), _words(text_b)),
            identical=_normalize_item(text_a) == _normalize_item(text_b),
        )
    raise InputValidationError("field", f"field {field!r} cannot be compared")


def build_comparison_results(
    a: HypothesisCard,
    b: HypothesisCard,
    fields: Sequence[str] = DEFAULT_COMPARISON_FIELDS,
) -> list[FieldComparison]:
    """Compare two cards over ``fields`` (snake_case or camelCase names)."""
    return [compare_field(a, b, field) for field in fields]


def _result_rank(result: EvidenceResult) -> int:
    if result is EvidenceResult.ELIMINATES:
        return 0
    if result is EvidenceResult.CHALLENGES:
        return 1
    if result is EvidenceResult.NEUTRAL:
        return 2
    if result is EvidenceResult.SUPPORTS:
        return 3
    raise InputValidationError("result", f"unknown evidence result {result!r}")


def build_prediction_conflict_matrix(
    matrix: ComparisonMatrix,
    hypothesis_a_id: str,
    hypothesis_b_id: str,
) -> list[PredictionConflictRow]:
    """
    Pair the results of two hypotheses on every test of the matrix.

    A test discriminates when both hypotheses have a result and the results
    differ. It favours the hypothesis whose result is better for it
    (supports > neutral > challenges > eliminates). A missing result is
    pending.
    """
    row_a = matrix.row(hypothesis_a_id)
    row_b = matrix.row(hypothesis_b_id)

    rows: list[PredictionConflictRow] = []
    for test in matrix.tests:
        result_a = row_a.test_results.get(test.id)
        result_b = row_b.test_results.get(test.id)
        if result_a is None or result_b is None:
            favors = Favors.PENDING
        elif _result_rank(result_a) > _result_rank(result_b):
            favors = Favors.A
        elif _result_rank(result_b) > _result_rank(result_a):
            favors = Favors.B
        else:
            favors = Favors.TIE
        rows.append(
            PredictionConflictRow(
                test_id=test.id,
                test_name=test.name,
                result_a=result_a,
                result_b=result_b,
                discriminating=favors in (Favors.A, Favors.B),
                favors=favors,
            )
        )

    logger.debug(f"Compared {hypothesis_a_id} and {hypothesis_b_id} over {len(rows)} test(s)")
    return rows


def build_evidence_summary(rows: Sequence[PredictionConflictRow]) -> EvidenceSummary:
    return EvidenceSummary(
        total=len(rows),
        discriminating=sum(row.discriminating for row in rows),
        favors_a=sum(row.favors is Favors.A for row in rows),
        favors_b=sum(row.favors is Favors.B for row in rows),
        ties=sum(row.favors is Favors.TIE for row in rows),
        pending=sum(row.favors is Favors.PENDING for row in rows),
    )
