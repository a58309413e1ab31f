"""
Conservative FSRS weight optimizer.

Fits the 17 FSRS-4.5 weights to a learner's review log by coordinate search
on the log loss of replayed recall predictions. Every weight may move at most
`max_delta` (a fraction of its current value) per invocation, and the result
is rebuilt through full ParameterSet validation. Out-of-bounds candidates are
rejected, never clamped.

Pure computation: nothing here touches storage.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field

from pydantic import ValidationError

from rehearse.application.scheduling import memory_model as mm
from rehearse.domain.constants import (
    CALIBRATION_BINS,
    FULL_CONFIDENCE_REVIEWS,
    MAX_WEIGHT_DELTA,
    MIN_PREDICTABLE_REVIEWS,
    MIN_REVIEWS_FOR_OPTIMIZATION,
    OPTIMIZATION_MILESTONES,
    OPTIMIZATION_STEP_AFTER_MILESTONES,
)
from rehearse.domain.errors import InsufficientData, InvariantViolation
from rehearse.domain.models import CardState, ReviewEvent
from rehearse.domain.params import ParameterSet

from .metrics import MetricsCalculator, PerformanceMetrics, PredictionAnalysis, calibration_score

logger = logging.getLogger(__name__)

# Clip predictions away from 0/1 so log loss stays finite
_EPS = 1e-6
# Reviews closer together than this are short-term steps and are not scored
MIN_SCORED_ELAPSED_DAYS = 1.0


@dataclass(frozen=True)
class OptimizationCheck:
    should: bool
    reason: str
    next_milestone: int


@dataclass(frozen=True)
class OptimizationResult:
    """
    Candidate parameters plus how much to trust them.

    baseline_loss / candidate_loss are mean log losses over the scored
    reviews. changes maps "wN" to (old, new) for every weight that moved.
    prediction grades the stabilities stored in the history itself, i.e.
    how well the parameters that produced them have been predicting.
    """

    candidate: ParameterSet
    confidence: float
    sample_size: int
    scored_reviews: int
    baseline_loss: float
    candidate_loss: float
    calibration: float
    changes: dict[str, tuple[float, float]] = field(default_factory=dict)
    metrics: PerformanceMetrics | None = None
    prediction: PredictionAnalysis | None = None

    @property
    def improved(self) -> bool:
        return bool(self.changes) and self.candidate_loss < self.baseline_loss


@dataclass(frozen=True)
class OptimizationCandidate:
    """A learner considered for a batch optimization run."""

    user_id: str
    total_reviews: int
    days_since_update: float = 0.0
    reason: str = ""


def milestone_after(count: int) -> int:
    """Smallest milestone strictly greater than `count`."""
    for m in OPTIMIZATION_MILESTONES:
        if m > count:
            return m
    last = OPTIMIZATION_MILESTONES[-1]
    steps = (count - last) // OPTIMIZATION_STEP_AFTER_MILESTONES + 1
    return last + steps * OPTIMIZATION_STEP_AFTER_MILESTONES


def check_needed(
    review_count: int,
    last_optimized_at_count: int = 0,
    min_reviews: int = MIN_REVIEWS_FOR_OPTIMIZATION,
) -> OptimizationCheck:
    """
    Decide whether a learner has crossed a milestone since the last run.

    Milestones are 50, 100, 250, 500, 1000, 2000 reviews and every 1000
    after that.
    """
    next_milestone = milestone_after(review_count)

    if review_count < min_reviews:
        return OptimizationCheck(
            should=False,
            reason=f"Need {min_reviews - review_count} more reviews (have {review_count}, need {min_reviews})",
            next_milestone=next_milestone,
        )

    crossed = milestone_after(last_optimized_at_count)
    if last_optimized_at_count < crossed <= review_count:
        return OptimizationCheck(
            should=True,
            reason=f"Reached milestone of {crossed} reviews",
            next_milestone=next_milestone,
        )

    return OptimizationCheck(
        should=False,
        reason=f"No new milestone since last optimization at {last_optimized_at_count} reviews",
        next_milestone=next_milestone,
    )


def optimization_priority(candidate: OptimizationCandidate) -> float:
    """More reviews, older parameters and exact milestones rank first."""
    priority = min(candidate.total_reviews / 100, 5.0)
    priority += min(candidate.days_since_update / 10, 3.0)
    if candidate.total_reviews in OPTIMIZATION_MILESTONES:
        priority += 10.0
    return priority


def rank_candidates(candidates: list[OptimizationCandidate]) -> list[OptimizationCandidate]:
    return sorted(candidates, key=optimization_priority, reverse=True)


def _log_loss(p: float, y: int) -> float:
    p = min(max(p, _EPS), 1 - _EPS)
    return -(y * math.log(p) + (1 - y) * math.log(1 - p))


def group_by_card(history: list[ReviewEvent]) -> list[list[ReviewEvent]]:
    """Split a review log into per-card chronological sequences."""
    by_card: dict[tuple[str, str | None], list[ReviewEvent]] = defaultdict(list)
    for event in sorted(history, key=lambda e: (e.reviewed_at, e.sequence)):
        by_card[(event.card_id, event.deck_id)].append(event)
    return list(by_card.values())


def replay(sequences: list[list[ReviewEvent]], params: ParameterSet) -> tuple[list[float], list[int]]:
    """
    Re-run each card's reviews through the memory model under `params`.

    Returns predicted retrievability and observed recall (1/0) for every
    review at least a day after the previous one.
    """
    predictions: list[float] = []
    outcomes: list[int] = []

    for events in sequences:
        stability = 0.0
        difficulty = 0.0
        for i, event in enumerate(events):
            if stability <= 0:
                if i == 0 and event.state_before != CardState.NEW and event.stability_before > 0:
                    stability = mm.clamp_stability(event.stability_before, params)
                    difficulty = mm.clamp_difficulty(event.difficulty_before, params)
                else:
                    stability = mm.initial_stability(event.rating, params)
                    difficulty = mm.initial_difficulty(event.rating, params)
                    continue

            if event.elapsed_days >= MIN_SCORED_ELAPSED_DAYS:
                predictions.append(mm.retrievability(event.elapsed_days, stability))
                outcomes.append(1 if event.success else 0)

            stability = mm.next_stability(stability, difficulty, event.rating, event.elapsed_days, params)
            difficulty = mm.next_difficulty(difficulty, event.rating, params)

    return predictions, outcomes


class Optimizer:
    """
    Bounded coordinate search over the FSRS weights.

    Each pass visits w0..w16 in order and tries a handful of moves inside
    `current * (1 +/- max_delta)`, keeping whichever lowers the loss.
    """

    def __init__(
        self,
        min_reviews: int = MIN_REVIEWS_FOR_OPTIMIZATION,
        max_delta: float = MAX_WEIGHT_DELTA,
        full_confidence_reviews: int = FULL_CONFIDENCE_REVIEWS,
        passes: int = 2,
        bins: int = CALIBRATION_BINS,
        min_predictable: int = MIN_PREDICTABLE_REVIEWS,
    ):
        if not 0 < max_delta < 1:
            raise ValueError(f"max_delta must lie in (0, 1), got {max_delta}")
        self.min_reviews = min_reviews
        self.max_delta = max_delta
        self.full_confidence_reviews = full_confidence_reviews
        self.passes = passes
        self.bins = bins
        self.min_predictable = min_predictable
        self.metrics = MetricsCalculator(bins=bins, min_samples=min_predictable)

    def check_needed(self, review_count: int, last_optimized_at_count: int = 0) -> OptimizationCheck:
        return check_needed(review_count, last_optimized_at_count, self.min_reviews)

    def optimize(self, history: list[ReviewEvent], current: ParameterSet) -> OptimizationResult:
        """
        Fit a candidate ParameterSet to `history`.

        Raises:
            InsufficientData: fewer than `min_reviews` events.
            InvariantViolation: the candidate failed validation or moved a
                weight further than `max_delta`.
        """
        if len(history) < self.min_reviews:
            raise InsufficientData(have=len(history), need=self.min_reviews)

        sequences = group_by_card(history)
        baseline = self._loss(sequences, current)
        logger.info(f"Optimizing over {len(history)} reviews ({len(sequences)} cards), baseline loss {baseline:.4f}")

        original = list(current.weights)
        best = list(original)
        best_loss = baseline
        moves = (-1.0, -0.5, 0.5, 1.0)

        for _ in range(self.passes):
            improved = False
            for i, w in enumerate(original):
                if w == 0:
                    continue
                for m in moves:
                    trial = list(best)
                    trial[i] = w * (1 + m * self.max_delta)
                    trial_params = self._try_params(current, trial)
                    if trial_params is None:
                        continue
                    loss = self._loss(sequences, trial_params)
                    if loss < best_loss - 1e-12:
                        best, best_loss = trial, loss
                        improved = True
            if not improved:
                break

        candidate = current.with_weights(best)
        self._assert_bounded(original, list(candidate.weights))

        predictions, outcomes = replay(sequences, candidate)
        calibration = calibration_score(predictions, outcomes, self.bins, self.min_predictable)
        volume = min(len(history) / self.full_confidence_reviews, 1.0)
        confidence = (volume + calibration) / 2

        changes = {
            f"w{i}": (old, new) for i, (old, new) in enumerate(zip(original, candidate.weights)) if old != new
        }
        logger.info(
            f"Candidate loss {best_loss:.4f} (baseline {baseline:.4f}), "
            f"{len(changes)} weights moved, confidence {confidence:.2f}"
        )

        return OptimizationResult(
            candidate=candidate,
            confidence=confidence,
            sample_size=len(history),
            scored_reviews=len(predictions),
            baseline_loss=baseline,
            candidate_loss=best_loss,
            calibration=calibration,
            changes=changes,
            metrics=self.metrics.performance(history),
            prediction=self.metrics.prediction(history),
        )

    def _loss(self, sequences: list[list[ReviewEvent]], params: ParameterSet) -> float:
        predictions, outcomes = replay(sequences, params)
        if not predictions:
            return 0.0
        return sum(_log_loss(p, y) for p, y in zip(predictions, outcomes)) / len(predictions)

    @staticmethod
    def _try_params(current: ParameterSet, weights: list[float]) -> ParameterSet | None:
        try:
            return current.with_weights(weights)
        except (InvariantViolation, ValidationError) as e:
            logger.debug(f"Rejected trial weights: {e}")
            return None

    def _assert_bounded(self, original: list[float], candidate: list[float]) -> None:
        for i, (old, new) in enumerate(zip(original, candidate)):
            if abs(new - old) > abs(old) * self.max_delta + 1e-12:
                raise InvariantViolation(
                    f"w{i} moved from {old} to {new}, more than {self.max_delta:.0%} of its current value"
                )
