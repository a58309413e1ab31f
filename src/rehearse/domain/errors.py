"""
Error taxonomy for the scheduling core.

MemoryModel and SchedulingEngine errors are contract violations and are never
retried. Quota errors come in two flavours: the advisory local pre-check
(DailyLimitReached) and the authoritative rejection from persistence
(DailyLimitRejected).
"""


class RehearseError(Exception):
    """Base class for every error raised by rehearse."""


class InvalidRating(RehearseError, ValueError):
    """A rating outside {Again, Hard, Good, Easy}."""

    def __init__(self, rating: object):
        self.rating = rating
        super().__init__(f"Invalid rating: {rating!r}. Must be 0-3 (Again, Hard, Good, Easy).")


class InvalidResponseTime(RehearseError, ValueError):
    """A response time that is not a positive number of milliseconds."""


class CardNotSchedulable(RehearseError):
    """A rating event was issued against a Buried or Suspended card."""

    def __init__(self, card_id: str, state: str):
        self.card_id = card_id
        self.state = state
        super().__init__(f"Card {card_id} is {state} and cannot be rated.")


class CardNotInSession(RehearseError):
    """The card is not in the session queue, or it was already completed."""

    def __init__(self, card_id: str, reason: str = "not in session"):
        self.card_id = card_id
        self.reason = reason
        super().__init__(f"Card {card_id}: {reason}")


class DailyLimitReached(RehearseError):
    """Local, advisory quota pre-check found no remaining reviews for today."""

    def __init__(self, tier: str | None = None, reviews_today: int | None = None, limit: int | None = None):
        self.tier = tier
        self.reviews_today = reviews_today
        self.limit = limit
        detail = f" ({reviews_today}/{limit} for tier '{tier}')" if limit is not None else ""
        super().__init__(f"Daily review limit reached{detail}")


class DailyLimitRejected(RehearseError):
    """The persistence collaborator refused a batch because the quota is exhausted."""


class InsufficientData(RehearseError):
    """Not enough review history to fit parameters."""

    def __init__(self, have: int, need: int):
        self.have = have
        self.need = need
        super().__init__(f"Need at least {need} reviews, have {have}")


class InvariantViolation(RehearseError):
    """A computed ParameterSet or CardMemoryState broke one of its bounds."""


class SessionIncomplete(RehearseError):
    """Flush was requested before every card in the session was completed."""


class StorageUnavailable(RehearseError):
    """A local storage backend failed its probe or a read/write."""
