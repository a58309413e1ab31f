"""
Metrics over a review log: performance summaries and calibration.

This is a pure computation module with no I/O.
"""

from dataclasses import dataclass, field

from rehearse.application.scheduling.memory_model import retrievability
from rehearse.domain.constants import CALIBRATION_BINS, MIN_PREDICTABLE_REVIEWS
from rehearse.domain.models import Rating, ReviewEvent


@dataclass
class PerformanceMetrics:
    """
    Summary of a learner's review log.

    correct_rate counts Good and Easy answers. retention_rate counts every
    non-Again answer among reviews that had a scheduled interval.
    """

    total_reviews: int = 0
    correct_rate: float = 0.0
    average_response_time_ms: float = 0.0
    rating_distribution: dict[str, int] = field(default_factory=lambda: {r.name.lower(): 0 for r in Rating})
    retention_rate: float = 0.0
    stability_trend: float = 0.0  # relative change, older half -> newer half
    difficulty_trend: float = 0.0
    learning_efficiency: float = 0.0  # mean positive stability gain per review


@dataclass
class PredictionAnalysis:
    """How well stored stabilities predicted the observed outcomes."""

    sample_size: int = 0
    average_error: float = 0.0
    bias: float = 0.0  # > 0 means the model was overconfident
    ece: float = 1.0
    calibration: float = 0.0
    consistency: float = 0.0


def expected_calibration_error(
    predictions: list[float],
    outcomes: list[int],
    bins: int = CALIBRATION_BINS,
) -> float:
    """
    Binned ECE: sum over bins of |bin| / n * |mean predicted - observed rate|.
    """
    if len(predictions) != len(outcomes):
        raise ValueError("predictions and outcomes must have the same length")
    n = len(predictions)
    if n == 0:
        return 1.0

    counts = [0] * bins
    p_sums = [0.0] * bins
    y_sums = [0.0] * bins
    for p, y in zip(predictions, outcomes):
        idx = min(int(p * bins), bins - 1)
        counts[idx] += 1
        p_sums[idx] += p
        y_sums[idx] += y

    ece = 0.0
    for count, p_sum, y_sum in zip(counts, p_sums, y_sums):
        if count:
            ece += count / n * abs(p_sum / count - y_sum / count)
    return ece


def calibration_score(
    predictions: list[float],
    outcomes: list[int],
    bins: int = CALIBRATION_BINS,
    min_samples: int = MIN_PREDICTABLE_REVIEWS,
) -> float:
    """1 - ECE, or 0.0 when there are too few predictions to judge."""
    if len(predictions) < min_samples:
        return 0.0
    return max(0.0, 1.0 - expected_calibration_error(predictions, outcomes, bins))


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _variance(values: list[float]) -> float:
    if not values:
        return 0.0
    m = _mean(values)
    return sum((v - m) ** 2 for v in values) / len(values)


class MetricsCalculator:
    """
    Computes derived metrics from a list of ReviewEvents.

    Stateless and side-effect free.
    """

    def __init__(self, bins: int = CALIBRATION_BINS, min_samples: int = MIN_PREDICTABLE_REVIEWS):
        self.bins = bins
        self.min_samples = min_samples

    def performance(self, events: list[ReviewEvent]) -> PerformanceMetrics:
        metrics = PerformanceMetrics(total_reviews=len(events))
        if not events:
            return metrics

        metrics.correct_rate = sum(1 for e in events if e.rating >= Rating.GOOD) / len(events)
        metrics.average_response_time_ms = _mean([float(e.response_time_ms) for e in events])
        for e in events:
            metrics.rating_distribution[e.rating.name.lower()] += 1

        midpoint = len(events) // 2
        older, newer = events[:midpoint], events[midpoint:]
        if older and newer:
            metrics.stability_trend = self._relative_change(
                [e.stability_after for e in older], [e.stability_after for e in newer]
            )
            metrics.difficulty_trend = self._relative_change(
                [e.difficulty_after for e in older], [e.difficulty_after for e in newer]
            )

        scheduled = [e for e in events if e.elapsed_days > 0 and e.scheduled_days > 0]
        if scheduled:
            metrics.retention_rate = sum(1 for e in scheduled if e.success) / len(scheduled)

        if len(events) > 1:
            gains = [max(0.0, e.stability_after - e.stability_before) for e in events]
            metrics.learning_efficiency = _mean(gains)

        return metrics

    def prediction(self, events: list[ReviewEvent]) -> PredictionAnalysis:
        """
        Compare retrievability predicted from the stored pre-review stability
        against whether the learner actually recalled the card.
        """
        predictable = [e for e in events if e.elapsed_days > 0 and e.stability_before > 0]
        analysis = PredictionAnalysis(sample_size=len(predictable))
        if len(predictable) < self.min_samples:
            return analysis

        predictions = [retrievability(e.elapsed_days, e.stability_before) for e in predictable]
        outcomes = [1 if e.success else 0 for e in predictable]
        errors = [abs(p - y) for p, y in zip(predictions, outcomes)]

        analysis.average_error = _mean(errors)
        analysis.bias = _mean([p - y for p, y in zip(predictions, outcomes)])
        analysis.ece = expected_calibration_error(predictions, outcomes, self.bins)
        analysis.calibration = max(0.0, 1.0 - analysis.ece)
        analysis.consistency = 1 / (1 + _variance(errors))
        return analysis

    @staticmethod
    def _relative_change(before: list[float], after: list[float]) -> float:
        base = _mean(before)
        if base == 0:
            return 0.0
        return (_mean(after) - base) / base
