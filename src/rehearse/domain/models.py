"""
Domain models for card memory state and review events.

These are pure data structures with no I/O or external dependencies.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from .constants import DIFFICULTY_CEILING, DIFFICULTY_FLOOR
from .errors import InvalidRating, InvariantViolation


class Rating(IntEnum):
    """Button pressed by the learner. Ordinals are part of the contract."""

    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3

    @classmethod
    def parse(cls, value: Any) -> "Rating":
        """Coerce an int or a name ("good", "GOOD") into a Rating."""
        if isinstance(value, Rating):
            return value
        if isinstance(value, bool):
            raise InvalidRating(value)
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidRating(value) from None
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise InvalidRating(value) from None
        raise InvalidRating(value)


class CardState(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"
    BURIED = "buried"
    SUSPENDED = "suspended"

    @property
    def schedulable(self) -> bool:
        return self not in (CardState.BURIED, CardState.SUSPENDED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class CardMemoryState:
    """
    FSRS memory state for one (user, card, deck) triple.

    Attributes:
        stability: Days until recall probability decays to the reference threshold.
        difficulty: Intrinsic hardness in [1, 10]. Zero while the card is New.
        due_at: Next due timestamp. None while New.
        elapsed_days: Days between the two most recent reviews.
        scheduled_days: Interval assigned by the most recent review (fractional
            for learning steps).
        step: Index of the learning/relearning step currently applied.
    """

    card_id: str
    user_id: str
    deck_id: str | None = None
    state: CardState = CardState.NEW
    stability: float = 0.0
    difficulty: float = 0.0
    due_at: datetime | None = None
    elapsed_days: float = 0.0
    scheduled_days: float = 0.0
    reps: int = 0
    lapses: int = 0
    step: int = 0
    last_reviewed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not isinstance(self.state, CardState):
            object.__setattr__(self, "state", CardState(self.state))

        if not math.isfinite(self.stability) or self.stability < 0:
            raise InvariantViolation(f"Card {self.card_id}: stability must be >= 0, got {self.stability}")
        if self.reps < 0 or self.lapses < 0 or self.step < 0:
            raise InvariantViolation(f"Card {self.card_id}: reps, lapses and step must be non-negative")
        if self.elapsed_days < 0 or self.scheduled_days < 0:
            raise InvariantViolation(f"Card {self.card_id}: elapsed/scheduled days must be non-negative")

        if self.state != CardState.NEW and self.reps > 0:
            if not DIFFICULTY_FLOOR <= self.difficulty <= DIFFICULTY_CEILING:
                raise InvariantViolation(
                    f"Card {self.card_id}: difficulty {self.difficulty} outside "
                    f"[{DIFFICULTY_FLOOR}, {DIFFICULTY_CEILING}]"
                )

    @classmethod
    def new(
        cls,
        card_id: str,
        user_id: str,
        deck_id: str | None = None,
        created_at: datetime | None = None,
    ) -> "CardMemoryState":
        """A freshly added card: New, zero stability, no due date."""
        return cls(
            card_id=card_id,
            user_id=user_id,
            deck_id=deck_id,
            created_at=created_at or utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "user_id": self.user_id,
            "deck_id": self.deck_id,
            "state": self.state.value,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "due_at": _iso(self.due_at),
            "elapsed_days": self.elapsed_days,
            "scheduled_days": self.scheduled_days,
            "reps": self.reps,
            "lapses": self.lapses,
            "step": self.step,
            "last_reviewed_at": _iso(self.last_reviewed_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CardMemoryState":
        return cls(
            card_id=str(data["card_id"]),
            user_id=str(data["user_id"]),
            deck_id=data.get("deck_id"),
            state=CardState(data.get("state", CardState.NEW.value)),
            stability=float(data.get("stability", 0.0)),
            difficulty=float(data.get("difficulty", 0.0)),
            due_at=_dt(data.get("due_at")),
            elapsed_days=float(data.get("elapsed_days", 0.0)),
            scheduled_days=float(data.get("scheduled_days", 0.0)),
            reps=int(data.get("reps", 0)),
            lapses=int(data.get("lapses", 0)),
            step=int(data.get("step", 0)),
            last_reviewed_at=_dt(data.get("last_reviewed_at")),
            created_at=_dt(data.get("created_at")) or utcnow(),
        )


@dataclass(frozen=True)
class ReviewEvent:
    """
    Immutable record of one rating, with full before/after snapshots.

    elapsed_days and scheduled_days are the realized values at review time.
    sequence is the position of the event inside its session.
    """

    session_id: str
    user_id: str
    card_id: str
    rating: Rating
    response_time_ms: int
    reviewed_at: datetime
    state_before: CardState
    state_after: CardState
    stability_before: float
    stability_after: float
    difficulty_before: float
    difficulty_after: float
    elapsed_days: float
    scheduled_days: float
    lapses_before: int = 0
    deck_id: str | None = None
    sequence: int = 0

    @property
    def success(self) -> bool:
        return self.rating != Rating.AGAIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "card_id": self.card_id,
            "deck_id": self.deck_id,
            "rating": int(self.rating),
            "response_time_ms": self.response_time_ms,
            "reviewed_at": _iso(self.reviewed_at),
            "state_before": self.state_before.value,
            "state_after": self.state_after.value,
            "stability_before": self.stability_before,
            "stability_after": self.stability_after,
            "difficulty_before": self.difficulty_before,
            "difficulty_after": self.difficulty_after,
            "elapsed_days": self.elapsed_days,
            "scheduled_days": self.scheduled_days,
            "lapses_before": self.lapses_before,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewEvent":
        return cls(
            session_id=str(data.get("session_id", "")),
            user_id=str(data.get("user_id", "")),
            card_id=str(data["card_id"]),
            deck_id=data.get("deck_id"),
            rating=Rating.parse(data["rating"]),
            response_time_ms=int(data.get("response_time_ms", 1)),
            reviewed_at=_dt(data["reviewed_at"]),
            state_before=CardState(data.get("state_before", CardState.REVIEW.value)),
            state_after=CardState(data.get("state_after", CardState.REVIEW.value)),
            stability_before=float(data.get("stability_before", 0.0)),
            stability_after=float(data.get("stability_after", 0.0)),
            difficulty_before=float(data.get("difficulty_before", 0.0)),
            difficulty_after=float(data.get("difficulty_after", 0.0)),
            elapsed_days=float(data.get("elapsed_days", 0.0)),
            scheduled_days=float(data.get("scheduled_days", 0.0)),
            lapses_before=int(data.get("lapses_before", 0)),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass(frozen=True)
class BatchWriteRequest:
    """
    One atomic write for a finished session.

    session_id doubles as the idempotency key: the sink must apply a given
    session at most once.
    """

    session_id: str
    user_id: str
    events: tuple[ReviewEvent, ...]
    states: tuple[CardMemoryState, ...]
    created_at: datetime = field(default_factory=utcnow)

    @property
    def review_count(self) -> int:
        return len(self.events)

    @property
    def card_count(self) -> int:
        """Distinct cards completed in the session; the unit daily quotas count."""
        return len({e.card_id for e in self.events})

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "events": [e.to_dict() for e in self.events],
            "states": [s.to_dict() for s in self.states],
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class BatchAck:
    """Acknowledgement from the batch sink."""

    session_id: str
    applied: bool
    duplicate: bool = False
