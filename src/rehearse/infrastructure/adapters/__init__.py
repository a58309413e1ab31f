"""
Adapters implementing the domain ports.
"""

from .history_file import HistoryFileError, ReviewHistoryFile, dump_history, load_history, parse_history
from .memory import (
    InMemoryBatchSink,
    InMemoryCardSource,
    InMemoryParameterStore,
    InMemoryQuotaOracle,
    InMemoryReviewLog,
)
from .params_file import dump_params, load_params

__all__ = [
    "HistoryFileError",
    "ReviewHistoryFile",
    "dump_history",
    "load_history",
    "parse_history",
    "InMemoryBatchSink",
    "InMemoryCardSource",
    "InMemoryParameterStore",
    "InMemoryQuotaOracle",
    "InMemoryReviewLog",
    "dump_params",
    "load_params",
]
