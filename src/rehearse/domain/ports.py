"""
Ports (interfaces) for the collaborators around the scheduling core.

These define the contracts that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import BatchAck, BatchWriteRequest, CardMemoryState, ReviewEvent
from .params import ParameterSet


class CardSource(ABC):
    """
    Supplies cards for a session. The core only requests, never queries storage.
    """

    @abstractmethod
    async def get_due_cards(self, user_id: str, now: datetime, limit: int) -> list[CardMemoryState]:
        """
        Fetch cards whose due_at <= now, most overdue first.

        Args:
            user_id: The learner.
            now: Reference time for due selection.
            limit: Maximum number of cards to return.
        """
        pass

    @abstractmethod
    async def get_new_cards(self, user_id: str, limit: int) -> list[CardMemoryState]:
        """Fetch up to `limit` New cards for the learner."""
        pass


class BatchSink(ABC):
    """
    Accepts finished sessions.

    Implementations must apply a given session_id at most once and are the
    authoritative daily-quota gate (raising DailyLimitRejected).
    """

    @abstractmethod
    async def write_batch(self, request: BatchWriteRequest) -> BatchAck:
        pass


class ParameterStore(ABC):
    """Provides and replaces the user's ParameterSet (optionally per deck)."""

    @abstractmethod
    async def load(self, user_id: str, deck_id: str | None = None) -> ParameterSet:
        pass

    @abstractmethod
    async def save(self, user_id: str, params: ParameterSet, deck_id: str | None = None) -> None:
        """Atomically replace the stored ParameterSet."""
        pass


class QuotaOracle(ABC):
    """Reports the remaining daily review allowance for a principal."""

    @abstractmethod
    async def remaining_reviews(self, user_id: str) -> int:
        pass


class ReviewHistorySource(ABC):
    """Review log used as optimizer input."""

    @abstractmethod
    async def get_review_history(self, user_id: str, limit: int) -> list[ReviewEvent]:
        """
        Fetch the most recent `limit` review events.

        Returns:
            ReviewEvents sorted by reviewed_at ascending.
        """
        pass

    @abstractmethod
    async def count_reviews(self, user_id: str) -> int:
        pass


class StorageBackend(ABC):
    """
    Key/value store used by the session cache.

    Backends are synchronous. Failures raise StorageUnavailable.
    """

    name: str = "storage"

    @abstractmethod
    def probe(self) -> bool:
        """Return True if the backend is usable. Must not raise."""
        pass

    @abstractmethod
    def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def close(self) -> None:
        """Release anything the backend holds. Most backends hold nothing."""
        pass
