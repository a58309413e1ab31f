from .backends import (
    DurableFileStorage,
    FileStorage,
    MemoryStorage,
    VolatileFileStorage,
    build_storage_chain,
)

__all__ = [
    "DurableFileStorage",
    "FileStorage",
    "MemoryStorage",
    "VolatileFileStorage",
    "build_storage_chain",
]
