"""
Scheduling Package

Memory model formulas and the card state machine built on them.
"""

from . import memory_model
from .engine import SchedulingEngine, SchedulingResult, elapsed_days_since

__all__ = [
    "memory_model",
    "SchedulingEngine",
    "SchedulingResult",
    "elapsed_days_since",
]
