"""
Session queue for one bounded review session.

Builds the presentation order by:
1. Alternating due and new cards, due first
2. Dropping duplicates (a card listed twice is shown once)
3. Capping at the session capacity
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ulid import ULID

from rehearse.domain.models import CardMemoryState, Rating, ReviewEvent, utcnow

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    FLUSHED = "flushed"
    DISCARDED = "discarded"


def new_session_id() -> str:
    return f"session_{ULID()}"


def interleave(
    due_cards: list[CardMemoryState],
    new_cards: list[CardMemoryState],
    limit: int,
) -> list[CardMemoryState]:
    """
    Merge due and new cards into one ordered list of at most `limit` cards.

    Due and new cards alternate starting with a due card; once one list runs
    out the other fills the remaining slots.
    """
    if limit <= 0:
        return []

    merged: list[CardMemoryState] = []
    seen: set[str] = set()
    due_iter, new_iter = iter(due_cards), iter(new_cards)
    sources = [due_iter, new_iter]
    exhausted = [False, False]
    turn = 0

    while len(merged) < limit and not all(exhausted):
        if exhausted[turn]:
            turn = 1 - turn
            continue
        card = next(sources[turn], None)
        if card is None:
            exhausted[turn] = True
            turn = 1 - turn
            continue
        if card.card_id in seen:
            # Keep the same turn so a duplicate does not cost this source its slot
            continue
        seen.add(card.card_id)
        merged.append(card)
        turn = 1 - turn

    return merged


@dataclass
class SessionQueue:
    """
    Mutable state of one session, owned by a single SessionManager.

    cards holds every distinct card id in presentation order. pending is
    what is still to be shown and may list a re-queued card again at the
    tail. A session is complete once every id in cards is in completed.
    """

    session_id: str
    user_id: str
    cards: list[str]
    pending: list[str]
    states: dict[str, CardMemoryState]
    history: dict[str, list[Rating]] = field(default_factory=dict)
    completed: set[str] = field(default_factory=set)
    events: list[ReviewEvent] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.ACTIVE

    @classmethod
    def create(cls, user_id: str, cards: list[CardMemoryState], now: datetime | None = None) -> "SessionQueue":
        ids = [c.card_id for c in cards]
        return cls(
            session_id=new_session_id(),
            user_id=user_id,
            cards=ids,
            pending=list(ids),
            states={c.card_id: c for c in cards},
            history={cid: [] for cid in ids},
            created_at=now or utcnow(),
        )

    @property
    def total(self) -> int:
        return len(self.cards)

    def is_complete(self) -> bool:
        return bool(self.cards) and self.completed.issuperset(self.cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "cards": list(self.cards),
            "pending": list(self.pending),
            "states": {cid: s.to_dict() for cid, s in self.states.items()},
            "history": {cid: [int(r) for r in ratings] for cid, ratings in self.history.items()},
            "completed": sorted(self.completed),
            "events": [e.to_dict() for e in self.events],
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionQueue":
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            cards=list(data["cards"]),
            pending=list(data["pending"]),
            states={cid: CardMemoryState.from_dict(s) for cid, s in data["states"].items()},
            history={cid: [Rating(r) for r in ratings] for cid, ratings in data.get("history", {}).items()},
            completed=set(data.get("completed", [])),
            events=[ReviewEvent.from_dict(e) for e in data.get("events", [])],
            created_at=datetime.fromisoformat(data["created_at"]),
            status=SessionStatus(data.get("status", SessionStatus.ACTIVE.value)),
        )
