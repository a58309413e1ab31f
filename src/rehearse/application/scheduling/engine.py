"""
Scheduling engine: the card state machine on top of the memory model.

New -> Learning -> Review <-> Relearning. Buried and Suspended cards are
never rated. Learning steps are minute offsets, review intervals are days.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from rehearse.domain.errors import CardNotSchedulable, InvariantViolation
from rehearse.domain.models import CardMemoryState, CardState, Rating, utcnow
from rehearse.domain.params import ParameterSet

from . import memory_model as mm

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class SchedulingResult:
    """
    Outcome of rating one card.

    retrievability is the modeled recall probability at the moment of the
    review, or None for a card that had no memory state yet.
    """

    card: CardMemoryState
    interval: timedelta
    retrievability: float | None

    @property
    def due_at(self) -> datetime | None:
        return self.card.due_at


@dataclass(frozen=True)
class _Transition:
    state: CardState
    step: int
    lapses: int
    interval: timedelta


def _days(n: float) -> timedelta:
    return timedelta(days=n)


def _minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


def elapsed_days_since(card: CardMemoryState, now: datetime) -> float:
    """Days since the previous review, or since creation for a never-reviewed card."""
    anchor = card.last_reviewed_at or card.created_at
    return max(0.0, (now - anchor).total_seconds() / SECONDS_PER_DAY)


class SchedulingEngine:
    """
    Applies a rating to a CardMemoryState and returns the next state.

    Synchronous and side-effect free. One engine is bound to one
    ParameterSet; swapping parameters means building a new engine.
    """

    def __init__(self, params: ParameterSet | None = None):
        self.params = params or ParameterSet.default()

    def review(
        self,
        card: CardMemoryState,
        rating: Rating | int,
        now: datetime | None = None,
    ) -> SchedulingResult:
        """
        Rate `card` at `now`.

        Raises:
            InvalidRating: rating outside Again..Easy.
            CardNotSchedulable: card is Buried or Suspended.
            InvariantViolation: the computed state broke a bound.
        """
        rating = Rating.parse(rating)
        if not card.state.schedulable:
            raise CardNotSchedulable(card.card_id, card.state.value)

        now = now or utcnow()
        params = self.params
        elapsed = elapsed_days_since(card, now)

        if card.state == CardState.NEW or card.stability <= 0:
            retrievability = None
            stability = mm.initial_stability(rating, params)
            difficulty = mm.initial_difficulty(rating, params)
        else:
            retrievability = mm.retrievability(elapsed, card.stability)
            stability = mm.next_stability(card.stability, card.difficulty, rating, elapsed, params)
            difficulty = mm.next_difficulty(card.difficulty, rating, params)

        move = self._transition(card, rating, stability)

        try:
            updated = replace(
                card,
                state=move.state,
                stability=stability,
                difficulty=difficulty,
                due_at=now + move.interval,
                elapsed_days=elapsed,
                scheduled_days=move.interval.total_seconds() / SECONDS_PER_DAY,
                reps=card.reps + 1,
                lapses=move.lapses,
                step=move.step,
                last_reviewed_at=now,
            )
            self._validate(updated, now)
        except InvariantViolation as e:
            logger.error(f"Rejected computed state for card {card.card_id} ({card.state.value} + {rating.name}): {e}")
            raise

        logger.debug(
            f"Card {card.card_id}: {card.state.value} -> {updated.state.value} "
            f"(S={stability:.3f}, D={difficulty:.3f}, due in {move.interval})"
        )
        return SchedulingResult(card=updated, interval=move.interval, retrievability=retrievability)

    def preview(self, card: CardMemoryState, now: datetime | None = None) -> dict[Rating, SchedulingResult]:
        """Outcome of every possible rating, computed against the same `now`."""
        now = now or utcnow()
        return {rating: self.review(card, rating, now) for rating in Rating}

    def current_retrievability(self, card: CardMemoryState, now: datetime | None = None) -> float | None:
        if card.state == CardState.NEW or card.stability <= 0:
            return None
        return mm.retrievability(elapsed_days_since(card, now or utcnow()), card.stability)

    def _transition(self, card: CardMemoryState, rating: Rating, stability: float) -> _Transition:
        """
        Next state, step, lapses and delay for a rating.

        Only a Review lapse (Review -> Relearning) is scheduled with the FSRS
        interval; Again while already Relearning waits for the next relearning step.
        """
        params = self.params
        lapses = card.lapses

        if card.state == CardState.NEW:
            if rating == Rating.EASY:
                return _Transition(CardState.REVIEW, 0, lapses, _days(params.easy_interval_days))
            return _Transition(CardState.LEARNING, 0, lapses, _minutes(params.learning_steps[0]))

        if card.state == CardState.LEARNING:
            steps = params.learning_steps
            if rating == Rating.EASY:
                return _Transition(CardState.REVIEW, 0, lapses, _days(params.easy_interval_days))
            next_step = card.step + 1
            if rating == Rating.AGAIN:
                if next_step >= len(steps):
                    next_step = 0
                return _Transition(CardState.LEARNING, next_step, lapses, _minutes(steps[next_step]))
            if next_step >= len(steps):
                return _Transition(CardState.REVIEW, 0, lapses, _days(params.graduating_interval_days))
            return _Transition(CardState.LEARNING, next_step, lapses, _minutes(steps[next_step]))

        review_interval = _days(mm.next_interval(stability, params))

        if card.state == CardState.REVIEW:
            if rating == Rating.AGAIN:
                return _Transition(CardState.RELEARNING, 0, lapses + 1, review_interval)
            return _Transition(CardState.REVIEW, 0, lapses, review_interval)

        # Relearning
        steps = params.relearning_steps
        if rating == Rating.EASY:
            return _Transition(CardState.REVIEW, 0, lapses, review_interval)
        next_step = card.step + 1
        if rating == Rating.AGAIN:
            if next_step >= len(steps):
                next_step = 0
            return _Transition(CardState.RELEARNING, next_step, lapses + 1, _minutes(steps[next_step]))
        if next_step >= len(steps):
            return _Transition(CardState.REVIEW, 0, lapses, review_interval)
        return _Transition(CardState.RELEARNING, next_step, lapses, _minutes(steps[next_step]))

    def _validate(self, card: CardMemoryState, now: datetime) -> None:
        params = self.params
        if not params.min_stability <= card.stability <= params.max_stability:
            raise InvariantViolation(
                f"stability {card.stability} outside [{params.min_stability}, {params.max_stability}]"
            )
        if not params.min_difficulty <= card.difficulty <= params.max_difficulty:
            raise InvariantViolation(
                f"difficulty {card.difficulty} outside [{params.min_difficulty}, {params.max_difficulty}]"
            )
        if card.due_at is None or card.due_at <= now:
            raise InvariantViolation(f"due_at {card.due_at} is not after the review time {now}")
