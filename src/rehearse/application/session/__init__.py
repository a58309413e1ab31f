"""
Session Package

Bounded review sessions: queue building, local caching, quota pre-checks
and the batch flush.
"""

from .cache import SessionCache
from .manager import RatingOutcome, SessionManager, SessionProgress, validate_response_time
from .queue import SessionQueue, SessionStatus, interleave, new_session_id
from .quota import DailyQuota, QuotaPolicy

__all__ = [
    "SessionCache",
    "RatingOutcome",
    "SessionManager",
    "SessionProgress",
    "validate_response_time",
    "SessionQueue",
    "SessionStatus",
    "interleave",
    "new_session_id",
    "DailyQuota",
    "QuotaPolicy",
]
