# Domain Package
from .errors import (
    CardNotInSession,
    CardNotSchedulable,
    DailyLimitReached,
    DailyLimitRejected,
    InsufficientData,
    InvalidRating,
    InvariantViolation,
    RehearseError,
)
from .models import BatchAck, BatchWriteRequest, CardMemoryState, CardState, Rating, ReviewEvent
from .params import ParameterSet

__all__ = [
    "Rating",
    "CardState",
    "CardMemoryState",
    "ReviewEvent",
    "BatchWriteRequest",
    "BatchAck",
    "ParameterSet",
    "RehearseError",
    "InvalidRating",
    "CardNotSchedulable",
    "CardNotInSession",
    "DailyLimitReached",
    "DailyLimitRejected",
    "InsufficientData",
    "InvariantViolation",
]
