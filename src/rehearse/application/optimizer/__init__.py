"""
Optimizer Package

Milestone checks, calibration metrics and the bounded weight search.
"""

from .metrics import (
    MetricsCalculator,
    PerformanceMetrics,
    PredictionAnalysis,
    calibration_score,
    expected_calibration_error,
)
from .optimizer import (
    OptimizationCandidate,
    OptimizationCheck,
    OptimizationResult,
    Optimizer,
    check_needed,
    milestone_after,
    optimization_priority,
    rank_candidates,
    replay,
)
from .service import OptimizationReport, OptimizationService

__all__ = [
    "MetricsCalculator",
    "PerformanceMetrics",
    "PredictionAnalysis",
    "calibration_score",
    "expected_calibration_error",
    "OptimizationCandidate",
    "OptimizationCheck",
    "OptimizationResult",
    "Optimizer",
    "check_needed",
    "milestone_after",
    "optimization_priority",
    "rank_candidates",
    "replay",
    "OptimizationReport",
    "OptimizationService",
]
