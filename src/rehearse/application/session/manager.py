"""
Session manager: bounded review sessions with local caching and one
idempotent batch flush.

One SessionManager owns one session at a time and is not safe for
concurrent use. Callers pin it to a single task; only `open_session` and
`flush` await collaborators.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from rehearse.application.scheduling.engine import SchedulingEngine
from rehearse.domain.constants import DEFAULT_SESSION_CAPACITY, MAX_RESPONSE_TIME_MS
from rehearse.domain.errors import (
    CardNotInSession,
    DailyLimitReached,
    InvalidResponseTime,
    SessionIncomplete,
)
from rehearse.domain.models import (
    BatchAck,
    BatchWriteRequest,
    CardMemoryState,
    CardState,
    Rating,
    ReviewEvent,
    utcnow,
)
from rehearse.domain.ports import BatchSink, CardSource, QuotaOracle

from .cache import SessionCache
from .queue import SessionQueue, SessionStatus, interleave
from .quota import DailyQuota

logger = logging.getLogger(__name__)

RECYCLING_STATES = (CardState.LEARNING, CardState.RELEARNING)


@dataclass(frozen=True)
class RatingOutcome:
    """
    Result of one `rate` call.

    recycled is True when the card went back to the tail of the queue.
    completed is True when this rating completed the card.
    """

    card: CardMemoryState
    event: ReviewEvent
    recycled: bool
    completed: bool
    session_complete: bool


@dataclass(frozen=True)
class SessionProgress:
    completed: int
    total: int

    @property
    def percentage(self) -> float:
        return round(100 * self.completed / self.total, 1) if self.total else 0.0


def validate_response_time(response_time_ms: int) -> int:
    if isinstance(response_time_ms, bool) or not isinstance(response_time_ms, int):
        raise InvalidResponseTime(f"Response time must be an integer number of ms, got {response_time_ms!r}")
    if response_time_ms <= 0:
        raise InvalidResponseTime(f"Response time must be positive, got {response_time_ms}")
    if response_time_ms > MAX_RESPONSE_TIME_MS:
        raise InvalidResponseTime(f"Response time {response_time_ms}ms exceeds {MAX_RESPONSE_TIME_MS}ms")
    return response_time_ms


class SessionManager:
    """
    Presents a bounded queue, collects ratings and emits one batch.

    A card rated Again that is still in Learning or Relearning goes back to
    the tail of the queue; every other rating completes the card. The
    session is complete once every distinct card has been completed.
    """

    def __init__(
        self,
        engine: SchedulingEngine,
        cache: SessionCache | None = None,
        capacity: int = DEFAULT_SESSION_CAPACITY,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.engine = engine
        self.cache = cache
        self.capacity = capacity
        self.session: SessionQueue | None = None
        self._flush_lock = asyncio.Lock()
        self._last_request: BatchWriteRequest | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self,
        due_cards: list[CardMemoryState],
        new_cards: list[CardMemoryState],
        capacity: int | None = None,
        quota: DailyQuota | int | None = None,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> SessionQueue:
        """
        Build a new session from due and new cards.

        Args:
            due_cards: Cards already due, most overdue first.
            new_cards: Never-reviewed cards.
            capacity: Session size; defaults to the manager's capacity.
            quota: Remaining daily allowance, as a DailyQuota or a plain count.
                None skips the pre-check.
            user_id: Learner id; taken from the cards when omitted.

        Raises:
            DailyLimitReached: the quota pre-check shows nothing remaining.
            ValueError: there are no cards to study.
        """
        if self.session is not None and self.session.status == SessionStatus.ACTIVE:
            raise RuntimeError(f"Session {self.session.session_id} is still in progress")

        limit = capacity if capacity is not None else self.capacity
        if limit < 1:
            raise ValueError(f"capacity must be positive, got {limit}")

        if isinstance(quota, DailyQuota):
            if quota.exhausted:
                raise DailyLimitReached(tier=quota.tier, reviews_today=quota.reviews_today, limit=quota.limit)
            limit = min(limit, quota.remaining)
        elif quota is not None:
            if quota <= 0:
                raise DailyLimitReached()
            limit = min(limit, quota)

        cards = interleave(due_cards, new_cards, limit)
        if not cards:
            raise ValueError("No cards available for a session")

        owner = user_id or cards[0].user_id
        self.session = SessionQueue.create(owner, cards, now)
        self._last_request = None
        self._persist()
        logger.info(f"Started {self.session.session_id} for {owner} with {len(cards)} cards")
        return self.session

    async def open_session(
        self,
        user_id: str,
        card_source: CardSource,
        quota_oracle: QuotaOracle | None = None,
        now: datetime | None = None,
        capacity: int | None = None,
    ) -> SessionQueue:
        """Fetch cards and remaining allowance from collaborators, then start."""
        now = now or utcnow()
        limit = capacity if capacity is not None else self.capacity

        remaining = None
        if quota_oracle is not None:
            remaining = await quota_oracle.remaining_reviews(user_id)
            if remaining <= 0:
                raise DailyLimitReached()
            limit = min(limit, remaining)

        due, new = await asyncio.gather(
            card_source.get_due_cards(user_id, now, limit),
            card_source.get_new_cards(user_id, limit),
        )
        return self.start_session(due, new, capacity=limit, quota=remaining, user_id=user_id, now=now)

    @classmethod
    def resume(
        cls,
        session_id: str,
        engine: SchedulingEngine,
        cache: SessionCache,
        capacity: int = DEFAULT_SESSION_CAPACITY,
    ) -> "SessionManager | None":
        """Rebuild a manager from a cached session, or None if it is gone or expired."""
        payload = cache.load(session_id)
        if payload is None:
            return None
        manager = cls(engine, cache=cache, capacity=capacity)
        manager.session = SessionQueue.from_dict(payload)
        logger.info(f"Resumed {session_id} ({len(manager.session.completed)}/{manager.session.total} done)")
        return manager

    def close(self) -> None:
        """Release the cache's storage. Call once the manager is no longer needed."""
        if self.cache is not None:
            self.cache.close()

    def discard(self) -> None:
        """Abandon the session for good and drop its cache entry."""
        session = self._require_session()
        session.status = SessionStatus.DISCARDED
        if self.cache is not None:
            self.cache.remove(session.session_id)
        logger.info(f"Discarded {session.session_id}")

    # ------------------------------------------------------------------
    # Rating
    # ------------------------------------------------------------------

    def rate(
        self,
        card_id: str,
        rating: Rating | int,
        response_time_ms: int,
        now: datetime | None = None,
    ) -> RatingOutcome:
        """
        Apply a rating to a card in the session.

        Raises:
            CardNotInSession: unknown card or card already completed.
            InvalidRating / InvalidResponseTime: bad input.
        """
        session = self._require_session()
        if session.status != SessionStatus.ACTIVE:
            raise RuntimeError(f"Session {session.session_id} is {session.status.value}")

        rating = Rating.parse(rating)
        validate_response_time(response_time_ms)
        if card_id not in session.states:
            raise CardNotInSession(card_id)
        if card_id in session.completed:
            raise CardNotInSession(card_id, "already completed")

        now = now or utcnow()
        before = session.states[card_id]
        result = self.engine.review(before, rating, now)
        after = result.card

        event = ReviewEvent(
            session_id=session.session_id,
            user_id=session.user_id,
            card_id=card_id,
            deck_id=before.deck_id,
            rating=rating,
            response_time_ms=response_time_ms,
            reviewed_at=now,
            state_before=before.state,
            state_after=after.state,
            stability_before=before.stability,
            stability_after=after.stability,
            difficulty_before=before.difficulty,
            difficulty_after=after.difficulty,
            elapsed_days=after.elapsed_days,
            scheduled_days=after.scheduled_days,
            lapses_before=before.lapses,
            sequence=len(session.events),
        )

        session.states[card_id] = after
        session.events.append(event)
        session.history.setdefault(card_id, []).append(rating)
        if card_id in session.pending:
            session.pending.remove(card_id)

        recycled = rating == Rating.AGAIN and after.state in RECYCLING_STATES
        if recycled:
            session.pending.append(card_id)
        else:
            session.completed.add(card_id)

        self._persist()
        return RatingOutcome(
            card=after,
            event=event,
            recycled=recycled,
            completed=not recycled,
            session_complete=session.is_complete(),
        )

    def next_card(self) -> CardMemoryState | None:
        session = self._require_session()
        if not session.pending:
            return None
        return session.states[session.pending[0]]

    def progress(self) -> SessionProgress:
        session = self._require_session()
        return SessionProgress(completed=len(session.completed), total=session.total)

    def is_complete(self) -> bool:
        return self.session is not None and self.session.is_complete()

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def build_request(self) -> BatchWriteRequest:
        """Serialize the finished session. Repeated calls return the same request."""
        session = self._require_session()
        if not session.is_complete():
            raise SessionIncomplete(
                f"Session {session.session_id} has {session.total - len(session.completed)} cards left"
            )
        if self._last_request is None:
            self._last_request = BatchWriteRequest(
                session_id=session.session_id,
                user_id=session.user_id,
                events=tuple(session.events),
                states=tuple(session.states[cid] for cid in session.cards),
            )
        return self._last_request

    async def flush(self, sink: BatchSink) -> BatchAck:
        """
        Send the whole session to `sink` as one batch.

        The cache entry is cleared only after the sink acknowledges. On any
        failure the session stays active and cached so the caller can retry
        with the same session id.

        Raises:
            SessionIncomplete: not every card has been completed.
            RuntimeError: another flush is already running.
        """
        if self._flush_lock.locked():
            raise RuntimeError("A flush is already in progress for this session")

        async with self._flush_lock:
            request = self.build_request()
            session = self._require_session()
            try:
                ack = await sink.write_batch(request)
            except Exception as e:
                logger.warning(f"Flush of {session.session_id} failed, session kept for retry: {e}")
                raise

            session.status = SessionStatus.FLUSHED
            if self.cache is not None:
                self.cache.remove(session.session_id)
            logger.info(
                f"Flushed {session.session_id}: {request.review_count} reviews"
                f"{' (duplicate)' if ack.duplicate else ''}"
            )
            return ack

    # ------------------------------------------------------------------

    def _require_session(self) -> SessionQueue:
        if self.session is None:
            raise RuntimeError("No session has been started")
        return self.session

    def _persist(self) -> None:
        if self.cache is not None and self.session is not None:
            self.cache.save(self.session.session_id, self.session.to_dict())
