"""
Daily review quota per user tier.

Everything here is an advisory pre-check for fast feedback. The batch sink
re-validates the quota at write time and is the only authoritative gate.
"""

import logging
from dataclasses import dataclass

from rehearse.domain.constants import TIER_DAILY_LIMITS
from rehearse.domain.errors import DailyLimitReached

logger = logging.getLogger(__name__)

DEFAULT_TIER = "free"


@dataclass(frozen=True)
class DailyQuota:
    tier: str
    limit: int
    reviews_today: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.reviews_today)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0


class QuotaPolicy:
    """Maps a tier name to its daily review limit."""

    def __init__(self, limits: dict[str, int] | None = None):
        self.limits = dict(limits or TIER_DAILY_LIMITS)
        if DEFAULT_TIER not in self.limits:
            raise ValueError(f"Quota limits must define the '{DEFAULT_TIER}' tier")

    def limit_for(self, tier: str) -> int:
        if tier not in self.limits:
            logger.warning(f"Unknown tier '{tier}', applying '{DEFAULT_TIER}' limit")
            return self.limits[DEFAULT_TIER]
        return self.limits[tier]

    def quota(self, tier: str, reviews_today: int) -> DailyQuota:
        return DailyQuota(tier=tier, limit=self.limit_for(tier), reviews_today=max(0, reviews_today))

    def check(self, tier: str, reviews_today: int) -> DailyQuota:
        """Return the quota, raising DailyLimitReached when nothing is left."""
        quota = self.quota(tier, reviews_today)
        if quota.exhausted:
            raise DailyLimitReached(tier=quota.tier, reviews_today=quota.reviews_today, limit=quota.limit)
        return quota
