"""
Optimization Service: application layer orchestrator.

Pulls review history from the history port, runs the optimizer off the event
loop and decides whether to apply the candidate to the parameter store.
"""

import asyncio
import logging
from dataclasses import dataclass

from rehearse.domain.constants import MIN_CONFIDENCE_TO_APPLY, OPTIMIZER_HISTORY_WINDOW
from rehearse.domain.params import ParameterSet
from rehearse.domain.ports import ParameterStore, ReviewHistorySource

from .optimizer import OptimizationCheck, OptimizationResult, Optimizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationReport:
    result: OptimizationResult
    applied: bool
    reason: str


class OptimizationService:
    """
    Background optimization for one or more learners.

    Depends on the ReviewHistorySource and ParameterStore abstractions, not
    concrete adapters. Keeps the parameters it replaced so an application can
    be rolled back if downstream metrics regress.
    """

    def __init__(
        self,
        history: ReviewHistorySource,
        store: ParameterStore,
        optimizer: Optimizer | None = None,
        history_window: int = OPTIMIZER_HISTORY_WINDOW,
        min_confidence_to_apply: float = MIN_CONFIDENCE_TO_APPLY,
    ):
        self._history = history
        self._store = store
        self._optimizer = optimizer or Optimizer()
        self.history_window = history_window
        self.min_confidence_to_apply = min_confidence_to_apply
        self._previous: dict[tuple[str, str | None], ParameterSet] = {}
        self._last_optimized_at: dict[str, int] = {}

    async def check(self, user_id: str) -> OptimizationCheck:
        count = await self._history.count_reviews(user_id)
        return self._optimizer.check_needed(count, self._last_optimized_at.get(user_id, 0))

    async def optimize_user(self, user_id: str, deck_id: str | None = None, apply: bool = True) -> OptimizationReport:
        """
        Fit parameters for `user_id` and, if confident enough, store them.

        Raises:
            InsufficientData: the learner does not have enough reviews yet.
        """
        events = await self._history.get_review_history(user_id, self.history_window)
        current = await self._store.load(user_id, deck_id)

        # CPU-bound search runs in a worker thread so rating is never blocked
        result = await asyncio.to_thread(self._optimizer.optimize, events, current)

        if not apply:
            return OptimizationReport(result=result, applied=False, reason="Dry run")
        if not result.changes:
            return OptimizationReport(result=result, applied=False, reason="No weight changes improved the fit")
        if result.confidence < self.min_confidence_to_apply:
            logger.info(
                f"Not applying parameters for {user_id}: confidence {result.confidence:.2f} "
                f"< {self.min_confidence_to_apply:.2f}"
            )
            return OptimizationReport(
                result=result,
                applied=False,
                reason=f"Confidence {result.confidence:.2f} below {self.min_confidence_to_apply:.2f}",
            )

        await self._store.save(user_id, result.candidate, deck_id)
        self._previous[(user_id, deck_id)] = current
        self._last_optimized_at[user_id] = await self._history.count_reviews(user_id)
        logger.info(f"Applied optimized parameters for {user_id} ({len(result.changes)} weights changed)")
        return OptimizationReport(result=result, applied=True, reason="Applied")

    async def rollback(self, user_id: str, deck_id: str | None = None) -> ParameterSet | None:
        """Restore the parameters replaced by the last applied optimization."""
        previous = self._previous.pop((user_id, deck_id), None)
        if previous is None:
            logger.warning(f"No optimization to roll back for {user_id}")
            return None
        await self._store.save(user_id, previous, deck_id)
        logger.info(f"Rolled back parameters for {user_id}")
        return previous
