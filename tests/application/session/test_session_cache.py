from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from rehearse.application.session import SessionCache
from rehearse.domain.errors import StorageUnavailable
from rehearse.infrastructure.storage import MemoryStorage, VolatileFileStorage


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class BrokenStorage(MemoryStorage):
    """Passes its probe, then fails every write."""

    name = "broken"

    def set(self, key, value):
        raise StorageUnavailable("disk full")


class UnprobeableStorage(MemoryStorage):
    name = "unprobeable"

    def probe(self):
        return False


@pytest.fixture
def clock(now):
    return Clock(now)


def test_save_and_load(clock):
    cache = SessionCache([MemoryStorage()], clock=clock)
    cache.save("s1", {"cards": ["a", "b"]})
    assert cache.load("s1") == {"cards": ["a", "b"]}
    assert cache.session_ids() == ["s1"]


def test_missing_entry_loads_as_none(memory_cache):
    assert memory_cache.load("nope") is None


def test_expired_entries_are_dropped(clock):
    storage = MemoryStorage()
    cache = SessionCache([storage], ttl=timedelta(hours=24), clock=clock)
    cache.save("s1", {"n": 1})

    clock.advance(hours=23)
    assert cache.load("s1") == {"n": 1}

    clock.advance(hours=2)
    assert cache.load("s1") is None
    assert storage.keys() == []


def test_oldest_entries_are_evicted_over_the_cap(clock):
    cache = SessionCache([MemoryStorage()], max_entries=2, clock=clock)
    for session_id in ("s1", "s2", "s3"):
        cache.save(session_id, {"id": session_id})
        clock.advance(minutes=5)

    assert sorted(cache.session_ids()) == ["s2", "s3"]


def test_purge_expired(clock):
    cache = SessionCache([MemoryStorage()], ttl=timedelta(hours=1), clock=clock)
    cache.save("old", {})
    clock.advance(hours=2)
    cache.save("fresh", {})
    assert cache.session_ids() == ["fresh"]
    assert cache.purge_expired() == 0


def test_corrupt_entry_is_removed():
    storage = MemoryStorage()
    cache = SessionCache([storage])
    storage.set("session:bad", "{not json")
    assert cache.load("bad") is None
    assert storage.get("session:bad") is None


def test_first_probing_backend_is_selected():
    fallback = MemoryStorage()
    cache = SessionCache([UnprobeableStorage(), fallback])
    assert cache.backend is fallback


def test_runtime_failure_steps_down_and_stays_down():
    broken, fallback = BrokenStorage(), MemoryStorage()
    cache = SessionCache([broken, fallback])
    assert cache.backend is broken

    cache.save("s1", {"n": 1})

    assert cache.backend is fallback
    assert fallback.get("session:s1") is not None
    cache.save("s2", {"n": 2})
    assert cache.backend is fallback


def test_no_usable_backend():
    with pytest.raises(StorageUnavailable):
        SessionCache([UnprobeableStorage()])


def test_exhausting_the_chain_raises():
    cache = SessionCache([BrokenStorage()])
    with pytest.raises(StorageUnavailable):
        cache.save("s1", {})


def test_invalid_construction():
    with pytest.raises(ValueError):
        SessionCache([])
    with pytest.raises(ValueError):
        SessionCache([MemoryStorage()], max_entries=0)


def test_clear(memory_cache):
    memory_cache.save("a", {})
    memory_cache.save("b", {})
    memory_cache.clear()
    assert memory_cache.session_ids() == []


def test_close_closes_every_backend():
    first, second = MemoryStorage(), MemoryStorage()
    first.close = MagicMock()
    second.close = MagicMock()

    with SessionCache([first, second]) as cache:
        cache.save("a", {})

    first.close.assert_called_once_with()
    second.close.assert_called_once_with()


def test_volatile_entries_are_removed_on_close():
    volatile = VolatileFileStorage()
    cache = SessionCache([volatile, MemoryStorage()])
    cache.save("a", {"n": 1})
    assert cache.backend is volatile
    assert volatile.root.exists()

    cache.close()

    assert not volatile.root.exists()
