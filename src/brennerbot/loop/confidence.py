"""
Confidence update engine.

Moves a hypothesis's confidence (0-100) in response to evidence weighted by
the discriminative power (1-5) of the test that produced it.

Update rule, for running confidence ``c`` and power scale ``s = power / 5``:

    supports:    +support_weight * s * (max - c)
    challenges:  -challenge_weight * asymmetry_factor * s * (c - min)
    eliminates:  challenges delta * elimination_factor
    neutral:     0

followed by clamping to ``[min, max]``. Support is scaled by the remaining
headroom and disconfirmation by the confidence at stake, so a confident
hypothesis gains little from another confirmation and loses a lot to a
single strong challenge. With the default coefficients a challenge moves a
50% hypothesis 1.5x as far as a support of equal power.

All functions are pure: the configuration is passed explicitly on every
call and no module-level state is read.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from brennerbot.loop.schemas import EvidenceResult, InputValidationError

MIN_DISCRIMINATIVE_POWER = 1
MAX_DISCRIMINATIVE_POWER = 5


class ConfidenceUpdateConfig(BaseModel):
    """Tunable coefficients of the confidence update rule."""

    model_config = ConfigDict(frozen=True)

    support_weight: float = Field(
        default=0.30,
        ge=0.0,
        le=1.0,
        description="Fraction of remaining headroom a power-5 support closes",
    )
    challenge_weight: float = Field(
        default=0.30,
        ge=0.0,
        le=1.0,
        description="Base fraction of current confidence a power-5 challenge removes",
    )
    asymmetry_factor: float = Field(
        default=1.5,
        gt=0.0,
        description="Multiplier applied to challenges; > 1 favours disconfirmation",
    )
    elimination_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Extra multiplier for 'eliminates' over 'challenges'",
    )
    min_confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    max_confidence: float = Field(default=100.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ConfidenceUpdateConfig":
        if self.min_confidence >= self.max_confidence:
            raise ValueError("min_confidence must be lower than max_confidence")
        return self


DEFAULT_CONFIDENCE_CONFIG = ConfidenceUpdateConfig()


class TestInput(BaseModel):
    """The part of a test the confidence engine needs."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    discriminative_power: int = Field(..., description="1-5 rating of how discriminating the test is")


class ConfidenceUpdate(BaseModel):
    """Result of applying one piece of evidence."""

    model_config = ConfigDict(frozen=True)

    previous_confidence: float
    final_confidence: float
    delta: float
    result: EvidenceResult
    discriminative_power: int


class BatchEvidenceItem(BaseModel):
    """One step of a batch update."""

    model_config = ConfigDict(frozen=True)

    test: TestInput
    result: EvidenceResult


class BatchConfidenceUpdate(BaseModel):
    """Result of applying an ordered list of evidence."""

    model_config = ConfigDict(frozen=True)

    initial_confidence: float
    final_confidence: float
    total_delta: float
    steps: tuple[ConfidenceUpdate, ...] = ()

    @property
    def deltas(self) -> list[float]:
        return [step.delta for step in self.steps]


def validate_discriminative_power(power: object) -> int:
    """
    Reject discriminative powers outside 1-5.

    Raises:
        InputValidationError: For non-integers or out-of-range values.
    """
    if isinstance(power, bool) or not isinstance(power, int):
        raise InputValidationError(
            "discriminative_power",
            f"must be an integer between {MIN_DISCRIMINATIVE_POWER} and {MAX_DISCRIMINATIVE_POWER}, got {power!r}",
        )
    if not MIN_DISCRIMINATIVE_POWER <= power <= MAX_DISCRIMINATIVE_POWER:
        raise InputValidationError(
            "discriminative_power",
            f"must be between {MIN_DISCRIMINATIVE_POWER} and {MAX_DISCRIMINATIVE_POWER}, got {power}",
        )
    return power


def clamp_confidence(value: float, config: ConfidenceUpdateConfig = DEFAULT_CONFIDENCE_CONFIG) -> float:
    """
    Clamp a confidence value into the configured bounds.

    Raises:
        InputValidationError: If ``value`` is NaN.
    """
    if math.isnan(value):
        raise InputValidationError("current_confidence", "must be a number, got NaN")
    return max(config.min_confidence, min(config.max_confidence, float(value)))


def evidence_delta(
    confidence: float,
    power: int,
    result: EvidenceResult,
    config: ConfidenceUpdateConfig,
) -> float:
    """Raw (unclamped) delta for one piece of evidence at ``confidence``."""
    scale = power / MAX_DISCRIMINATIVE_POWER
    headroom = config.max_confidence - confidence
    at_stake = confidence - config.min_confidence

    if result is EvidenceResult.SUPPORTS:
        return config.support_weight * scale * headroom
    if result is EvidenceResult.CHALLENGES:
        return -config.challenge_weight * config.asymmetry_factor * scale * at_stake
    if result is EvidenceResult.ELIMINATES:
        return -config.challenge_weight * config.asymmetry_factor * config.elimination_factor * scale * at_stake
    if result is EvidenceResult.NEUTRAL:
        return 0.0
    raise InputValidationError("result", f"unknown evidence result {result!r}")


def _coerce_result(result: EvidenceResult | str) -> EvidenceResult:
    try:
        return EvidenceResult(result)
    except ValueError as e:
        raise InputValidationError("result", f"unknown evidence result {result!r}") from e


def compute_confidence_update(
    current_confidence: float,
    test: TestInput,
    result: EvidenceResult | str,
    config: ConfidenceUpdateConfig | None = None,
) -> ConfidenceUpdate:
    """
    Apply one piece of evidence to a confidence value.

    Args:
        current_confidence: Confidence before the evidence; clamped into
            bounds if upstream data is out of range.
        test: Test carrying the discriminative power (1-5).
        result: Outcome of the test.
        config: Coefficients (defaults documented on ConfidenceUpdateConfig).

    Returns:
        The clamped final confidence and the delta actually applied.

    Raises:
        InputValidationError: On an invalid power, result or NaN confidence.
    """
    config = config or DEFAULT_CONFIDENCE_CONFIG
    power = validate_discriminative_power(test.discriminative_power)
    outcome = _coerce_result(result)
    start = clamp_confidence(current_confidence, config)

    final = clamp_confidence(start + evidence_delta(start, power, outcome, config), config)
    return ConfidenceUpdate(
        previous_confidence=start,
        final_confidence=final,
        delta=final - start,
        result=outcome,
        discriminative_power=power,
    )


def compute_batch_confidence_update(
    current_confidence: float,
    items: Sequence[BatchEvidenceItem],
    config: ConfidenceUpdateConfig | None = None,
) -> BatchConfidenceUpdate:
    """
    Apply evidence sequentially.

    Each step is computed from the running (clamped) confidence, so the order
    of ``items`` matters.

    Returns:
        Final confidence, total delta (final - initial) and per-step updates.
    """
    config = config or DEFAULT_CONFIDENCE_CONFIG
    initial = clamp_confidence(current_confidence, config)

    running = initial
    steps: list[ConfidenceUpdate] = []
    for item in items:
        step = compute_confidence_update(running, item.test, item.result, config)
        steps.append(step)
        running = step.final_confidence

    return BatchConfidenceUpdate(
        initial_confidence=initial,
        final_confidence=running,
        total_delta=running - initial,
        steps=tuple(steps),
    )
