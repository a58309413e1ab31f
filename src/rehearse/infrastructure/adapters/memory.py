"""
In-memory reference adapters for every port.

Useful for tests, the local server and single-process embedding. The batch
sink here is the authoritative quota gate and applies each session id at
most once.
"""

import logging
from collections import defaultdict
from datetime import date, datetime

from rehearse.application.session.quota import QuotaPolicy
from rehearse.domain.errors import DailyLimitRejected
from rehearse.domain.models import (
    BatchAck,
    BatchWriteRequest,
    CardMemoryState,
    CardState,
    ReviewEvent,
)
from rehearse.domain.params import ParameterSet
from rehearse.domain.ports import (
    BatchSink,
    CardSource,
    ParameterStore,
    QuotaOracle,
    ReviewHistorySource,
)

logger = logging.getLogger(__name__)


class InMemoryCardSource(CardSource):
    def __init__(self, cards: list[CardMemoryState] | None = None):
        self.cards: dict[tuple[str, str], CardMemoryState] = {}
        for card in cards or []:
            self.put(card)

    def put(self, card: CardMemoryState) -> None:
        self.cards[(card.user_id, card.card_id)] = card

    def _for_user(self, user_id: str) -> list[CardMemoryState]:
        return [c for (uid, _), c in self.cards.items() if uid == user_id]

    async def get_due_cards(self, user_id: str, now: datetime, limit: int) -> list[CardMemoryState]:
        due = [
            c
            for c in self._for_user(user_id)
            if c.state.schedulable and c.state != CardState.NEW and c.due_at is not None and c.due_at <= now
        ]
        due.sort(key=lambda c: c.due_at)
        return due[:limit]

    async def get_new_cards(self, user_id: str, limit: int) -> list[CardMemoryState]:
        new = [c for c in self._for_user(user_id) if c.state == CardState.NEW]
        new.sort(key=lambda c: c.created_at)
        return new[:limit]


class InMemoryReviewLog(ReviewHistorySource):
    """Append-only review log, also used as optimizer input."""

    def __init__(self, events: list[ReviewEvent] | None = None):
        self.events: list[ReviewEvent] = list(events or [])

    def append(self, events: list[ReviewEvent] | tuple[ReviewEvent, ...]) -> None:
        self.events.extend(events)

    async def get_review_history(self, user_id: str, limit: int) -> list[ReviewEvent]:
        mine = sorted((e for e in self.events if e.user_id == user_id), key=lambda e: (e.reviewed_at, e.sequence))
        return mine[-limit:] if limit > 0 else []

    async def count_reviews(self, user_id: str) -> int:
        return sum(1 for e in self.events if e.user_id == user_id)

    def reviews_on(self, user_id: str, day: date) -> int:
        """Cards completed on `day`, counting each card once per session."""
        return len(
            {(e.session_id, e.card_id) for e in self.events if e.user_id == user_id and e.reviewed_at.date() == day}
        )


class InMemoryQuotaOracle(QuotaOracle):
    """Remaining allowance = tier limit minus cards already completed today."""

    def __init__(
        self,
        log: InMemoryReviewLog,
        policy: QuotaPolicy | None = None,
        tiers: dict[str, str] | None = None,
        today: date | None = None,
    ):
        self.log = log
        self.policy = policy or QuotaPolicy()
        self.tiers = dict(tiers or {})
        self.today = today

    def tier_of(self, user_id: str) -> str:
        return self.tiers.get(user_id, "free")

    def _today(self) -> date:
        return self.today or date.today()

    def reviews_today(self, user_id: str) -> int:
        return self.log.reviews_on(user_id, self._today())

    async def remaining_reviews(self, user_id: str) -> int:
        return self.policy.quota(self.tier_of(user_id), self.reviews_today(user_id)).remaining


class InMemoryBatchSink(BatchSink):
    """
    Applies batches to a card source and review log.

    Each session id is applied at most once; replays are acknowledged as
    duplicates. When a quota oracle is attached, a batch that would exceed
    the remaining allowance is rejected as a whole.
    """

    def __init__(
        self,
        cards: InMemoryCardSource | None = None,
        log: InMemoryReviewLog | None = None,
        quota: InMemoryQuotaOracle | None = None,
    ):
        self.cards = cards or InMemoryCardSource()
        self.log = log or InMemoryReviewLog()
        self.quota = quota
        self.applied: dict[str, BatchWriteRequest] = {}

    async def write_batch(self, request: BatchWriteRequest) -> BatchAck:
        if request.session_id in self.applied:
            logger.info(f"Batch {request.session_id} already applied; ignoring replay")
            return BatchAck(session_id=request.session_id, applied=False, duplicate=True)

        if self.quota is not None:
            remaining = await self.quota.remaining_reviews(request.user_id)
            # Same unit as the session pre-check: re-queued Again ratings are free
            if request.card_count > remaining:
                raise DailyLimitRejected(
                    f"Batch {request.session_id} has {request.card_count} cards, {remaining} remaining today"
                )

        for state in request.states:
            self.cards.put(state)
        self.log.append(request.events)
        self.applied[request.session_id] = request
        return BatchAck(session_id=request.session_id, applied=True)


class InMemoryParameterStore(ParameterStore):
    """Keeps every saved ParameterSet so callers can inspect or roll back."""

    def __init__(self, default: ParameterSet | None = None):
        self.default = default or ParameterSet.default()
        self.history: dict[tuple[str, str | None], list[ParameterSet]] = defaultdict(list)

    async def load(self, user_id: str, deck_id: str | None = None) -> ParameterSet:
        versions = self.history.get((user_id, deck_id))
        if versions:
            return versions[-1]
        if deck_id is not None:
            # Fall back to the user's global parameters
            return await self.load(user_id)
        return self.default

    async def save(self, user_id: str, params: ParameterSet, deck_id: str | None = None) -> None:
        self.history[(user_id, deck_id)].append(params)

    async def rollback(self, user_id: str, deck_id: str | None = None) -> ParameterSet:
        versions = self.history.get((user_id, deck_id))
        if versions:
            versions.pop()
        return await self.load(user_id, deck_id)
