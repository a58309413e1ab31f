"""
Local session cache over an ordered chain of storage backends.

The first backend whose probe succeeds is used. A read or write failure at
runtime steps down to the next backend in the chain; the cache never moves
back up. Entries carry their save time, expire after a TTL and are capped,
evicting the oldest first.
"""

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from rehearse.domain.constants import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL_HOURS,
    SESSION_CACHE_PREFIX,
)
from rehearse.domain.errors import StorageUnavailable
from rehearse.domain.models import utcnow
from rehearse.domain.ports import StorageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionCache:
    """
    Session payload cache with storage fallback.

    Not thread-safe; owned by a single SessionManager.
    """

    def __init__(
        self,
        backends: list[StorageBackend],
        ttl: timedelta = timedelta(hours=DEFAULT_CACHE_TTL_HOURS),
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        prefix: str = SESSION_CACHE_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not backends:
            raise ValueError("SessionCache needs at least one storage backend")
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._chain = list(backends)
        self.ttl = ttl
        self.max_entries = max_entries
        self.prefix = prefix
        self._clock = clock
        self._index = self._select(0)

    @property
    def backend(self) -> StorageBackend:
        return self._chain[self._index]

    def _select(self, start: int) -> int:
        for i in range(start, len(self._chain)):
            backend = self._chain[i]
            if backend.probe():
                logger.debug(f"Session cache using '{backend.name}' storage")
                return i
            logger.warning(f"Storage backend '{backend.name}' failed its probe")
        raise StorageUnavailable("No usable storage backend for the session cache")

    def _call(self, op: Callable[[StorageBackend], T]) -> T:
        while True:
            backend = self.backend
            try:
                return op(backend)
            except StorageUnavailable as e:
                logger.warning(f"Storage backend '{backend.name}' failed ({e}); falling back")
                self._index = self._select(self._index + 1)

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def _expired(self, saved_at: datetime) -> bool:
        return self._clock() - saved_at > self.ttl

    def _read(self, key: str) -> tuple[datetime, Any] | None:
        raw = self._call(lambda b: b.get(key))
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
            return datetime.fromisoformat(envelope["saved_at"]), envelope["payload"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Dropping unreadable cache entry {key}: {e}")
            self._call(lambda b: b.remove(key))
            return None

    def save(self, session_id: str, payload: dict[str, Any]) -> None:
        key = self._key(session_id)
        data = json.dumps({"saved_at": self._clock().isoformat(), "payload": payload})
        self._call(lambda b: b.set(key, data))
        self.evict()

    def load(self, session_id: str) -> dict[str, Any] | None:
        """Return the cached payload, or None if missing or expired."""
        key = self._key(session_id)
        entry = self._read(key)
        if entry is None:
            return None
        saved_at, payload = entry
        if self._expired(saved_at):
            logger.info(f"Cache entry for {session_id} expired")
            self._call(lambda b: b.remove(key))
            return None
        return payload

    def remove(self, session_id: str) -> None:
        key = self._key(session_id)
        self._call(lambda b: b.remove(key))

    def session_ids(self) -> list[str]:
        keys = self._call(lambda b: b.keys())
        return [k[len(self.prefix):] for k in keys if k.startswith(self.prefix)]

    def _entries(self) -> list[tuple[datetime, str]]:
        entries = []
        for session_id in self.session_ids():
            entry = self._read(self._key(session_id))
            if entry is not None:
                entries.append((entry[0], session_id))
        return entries

    def purge_expired(self) -> int:
        removed = 0
        for saved_at, session_id in self._entries():
            if self._expired(saved_at):
                self.remove(session_id)
                removed += 1
        return removed

    def evict(self) -> int:
        """Drop expired entries, then the oldest ones until within the cap."""
        removed = self.purge_expired()
        entries = sorted(self._entries())
        overflow = len(entries) - self.max_entries
        for _, session_id in entries[: max(0, overflow)]:
            logger.info(f"Evicting cached session {session_id}")
            self.remove(session_id)
            removed += 1
        return removed

    def clear(self) -> None:
        for session_id in self.session_ids():
            self.remove(session_id)

    def close(self) -> None:
        """Close every backend in the chain. Volatile entries are gone afterwards."""
        for backend in self._chain:
            backend.close()

    def __enter__(self) -> "SessionCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
