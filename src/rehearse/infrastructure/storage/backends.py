"""
Storage backends for the session cache.

Three tiers, from most to least preferred:
- VolatileFileStorage: a private temp directory that lives as long as the process
- DurableFileStorage: JSON files under the configured cache directory
- MemoryStorage: a plain dict, always available

File backends store one file per key and translate OSError into
StorageUnavailable so the cache can fall back to the next tier.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from urllib.parse import quote, unquote

from rehearse.domain.constants import STORAGE_PROBE_KEY
from rehearse.domain.errors import StorageUnavailable
from rehearse.domain.ports import StorageBackend

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class MemoryStorage(StorageBackend):
    """In-process dict. Last resort: nothing survives a restart."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, str] = {}

    def probe(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class FileStorage(StorageBackend):
    """One UTF-8 file per key inside `root`."""

    name = "file"

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{_SUFFIX}"

    def probe(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.set(STORAGE_PROBE_KEY, "ok")
            ok = self.get(STORAGE_PROBE_KEY) == "ok"
            self.remove(STORAGE_PROBE_KEY)
            return ok
        except (OSError, StorageUnavailable) as e:
            logger.debug(f"Probe of {self.name} storage at {self.root} failed: {e}")
            return False

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageUnavailable(f"Cannot read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {path}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot remove {key}: {e}") from e

    def keys(self) -> list[str]:
        try:
            return [unquote(p.name[: -len(_SUFFIX)]) for p in self.root.glob(f"*{_SUFFIX}")]
        except OSError as e:
            raise StorageUnavailable(f"Cannot list {self.root}: {e}") from e

    def clear(self) -> None:
        for key in self.keys():
            self.remove(key)


class DurableFileStorage(FileStorage):
    name = "durable"


class VolatileFileStorage(FileStorage):
    """
    Temp-directory storage scoped to this process.

    The directory is created lazily on probe and removed by `close`. A new
    process gets a new directory, so entries never survive a restart; only
    DurableFileStorage does.
    """

    name = "volatile"

    def __init__(self, root: Path | None = None):
        super().__init__(root or Path(tempfile.gettempdir()))
        self._fixed = root is not None
        self._created = False

    def probe(self) -> bool:
        if not self._fixed and not self._created:
            try:
                self.root = Path(tempfile.mkdtemp(prefix="rehearse-"))
            except OSError as e:
                logger.debug(f"Cannot create temp directory: {e}")
                return False
            self._created = True
        return super().probe()

    def close(self) -> None:
        if self._created:
            shutil.rmtree(self.root, ignore_errors=True)
            self._created = False
            logger.debug(f"Removed volatile storage at {self.root}")


def build_storage_chain(tiers: list[str], cache_dir: Path) -> list[StorageBackend]:
    """Instantiate backends for the configured tier names, in order."""
    factories = {
        "volatile": lambda: VolatileFileStorage(),
        "durable": lambda: DurableFileStorage(Path(cache_dir) / "sessions"),
        "memory": lambda: MemoryStorage(),
    }
    chain = []
    for tier in tiers:
        if tier not in factories:
            raise ValueError(f"Unknown storage tier '{tier}'")
        chain.append(factories[tier]())
    return chain
