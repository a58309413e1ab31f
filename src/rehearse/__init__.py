"""rehearse: FSRS spaced-repetition scheduling, parameter fitting and review sessions."""

from rehearse.consts import VERSION

__version__ = VERSION
