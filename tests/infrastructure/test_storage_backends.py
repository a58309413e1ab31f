import pytest

from rehearse.domain.errors import StorageUnavailable
from rehearse.infrastructure.storage import (
    DurableFileStorage,
    MemoryStorage,
    VolatileFileStorage,
    build_storage_chain,
)


@pytest.fixture(params=["memory", "durable"])
def backend(request, tmp_path):
    if request.param == "memory":
        return MemoryStorage()
    return DurableFileStorage(tmp_path / "store")


def test_round_trip(backend):
    assert backend.probe() is True
    backend.set("session:abc", '{"n": 1}')
    assert backend.get("session:abc") == '{"n": 1}'
    assert backend.keys() == ["session:abc"]

    backend.remove("session:abc")
    assert backend.get("session:abc") is None
    assert backend.keys() == []


def test_remove_missing_key_is_a_no_op(backend):
    backend.probe()
    backend.remove("never-set")


def test_clear(backend):
    backend.probe()
    for key in ("a", "b", "c"):
        backend.set(key, "x")
    backend.clear()
    assert backend.keys() == []


def test_file_keys_survive_odd_characters(tmp_path):
    storage = DurableFileStorage(tmp_path)
    storage.probe()
    storage.set("session:a/b c", "payload")
    assert storage.keys() == ["session:a/b c"]
    assert storage.get("session:a/b c") == "payload"


def test_probe_leaves_no_residue(tmp_path):
    storage = DurableFileStorage(tmp_path / "fresh")
    assert storage.probe() is True
    assert storage.keys() == []


def test_probe_fails_when_root_is_a_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    storage = DurableFileStorage(blocker)
    assert storage.probe() is False


def test_write_failure_raises_storage_unavailable(tmp_path):
    storage = DurableFileStorage(tmp_path / "missing" / "deeper")
    with pytest.raises(StorageUnavailable):
        storage.set("k", "v")


def test_volatile_storage_lives_in_its_own_temp_dir():
    storage = VolatileFileStorage()
    try:
        assert storage.probe() is True
        assert storage.root.name.startswith("rehearse-")
        storage.set("k", "v")
        assert storage.get("k") == "v"
    finally:
        storage.close()
    assert not storage.root.exists()


def test_build_storage_chain(tmp_path):
    chain = build_storage_chain(["durable", "memory"], tmp_path)
    assert [b.name for b in chain] == ["durable", "memory"]
    assert chain[0].root == tmp_path / "sessions"


def test_build_storage_chain_rejects_unknown_tier(tmp_path):
    with pytest.raises(ValueError):
        build_storage_chain(["cloud"], tmp_path)
