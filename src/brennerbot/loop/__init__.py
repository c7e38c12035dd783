"""
Brenner Loop engines.

Pure, synchronous engines over the session data model: confidence updates,
what-if scenario exploration, personal analytics, hypothesis lifecycle and
the experiment queue, plus side-by-side hypothesis comparison.
"""

from brennerbot.loop.analytics import (
    Achievement,
    AnalyticsThresholds,
    ObjectionStats,
    PersonalAnalytics,
    TrendData,
    TrendPoint,
    build_trend_data,
    classify_hypothesis_outcome,
    compute_personal_analytics,
)
from brennerbot.loop.comparison import (
    ComparisonMatrix,
    EvidenceSummary,
    FieldComparison,
    PredictionConflictRow,
    build_comparison_results,
    build_evidence_summary,
    build_prediction_conflict_matrix,
)
from brennerbot.loop.confidence import (
    DEFAULT_CONFIDENCE_CONFIG,
    BatchConfidenceUpdate,
    BatchEvidenceItem,
    ConfidenceUpdate,
    ConfidenceUpdateConfig,
    TestInput,
    compute_batch_confidence_update,
    compute_confidence_update,
)
from brennerbot.loop.schemas import (
    EvidenceResult,
    EvolutionTrigger,
    HypothesisCard,
    HypothesisEvolution,
    HypothesisOutcome,
    InputValidationError,
    OperatorType,
    Session,
    SessionPhase,
)
from brennerbot.loop.session import PhaseTransitionError
from brennerbot.loop.what_if import (
    AssumedTestResult,
    CandidateTest,
    ScenarioAnalysis,
    SingleTestAnalysis,
    TestRanking,
    WhatIfScenario,
    add_test,
    analyze_scenario,
    analyze_single_test,
    create_scenario,
    rank_candidate_tests,
    remove_test,
    update_test_result,
)

__all__ = [
    # Schemas
    "EvidenceResult",
    "EvolutionTrigger",
    "HypothesisCard",
    "HypothesisEvolution",
    "HypothesisOutcome",
    "InputValidationError",
    "OperatorType",
    "PhaseTransitionError",
    "Session",
    "SessionPhase",
    # Confidence
    "DEFAULT_CONFIDENCE_CONFIG",
    "BatchConfidenceUpdate",
    "BatchEvidenceItem",
    "ConfidenceUpdate",
    "ConfidenceUpdateConfig",
    "TestInput",
    "compute_batch_confidence_update",
    "compute_confidence_update",
    # What-if
    "AssumedTestResult",
    "CandidateTest",
    "ScenarioAnalysis",
    "SingleTestAnalysis",
    "TestRanking",
    "WhatIfScenario",
    "add_test",
    "analyze_scenario",
    "analyze_single_test",
    "create_scenario",
    "rank_candidate_tests",
    "remove_test",
    "update_test_result",
    # Analytics
    "Achievement",
    "AnalyticsThresholds",
    "ObjectionStats",
    "PersonalAnalytics",
    "TrendData",
    "TrendPoint",
    "build_trend_data",
    "classify_hypothesis_outcome",
    "compute_personal_analytics",
    # Comparison
    "ComparisonMatrix",
    "EvidenceSummary",
    "FieldComparison",
    "PredictionConflictRow",
    "build_comparison_results",
    "build_evidence_summary",
    "build_prediction_conflict_matrix",
]
