"""
Quota admission control.

Compares a user's request counts against the tier limit table and owns
the counter updates that follow an admitted call.

Admission order:
1. Read check - reject users already at their daily or monthly limit
2. Reservation - atomic store-level increment-if-below-limit right before
   the provider call, closing the check-then-increment race
3. Release - hand the reservation back if no provider produced a result
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ai_cost_router.storage.models import ProfileStore

from .catalog import Tier
from .errors import QuotaExceededError
from .profile_cache import ProfileCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierLimits:
    """Request limits for one subscription tier."""
    daily: int
    monthly: int

    def __post_init__(self):
        if self.daily <= 0:
            raise ValueError("daily limit must be > 0")
        if self.monthly <= 0:
            raise ValueError("monthly limit must be > 0")


TIER_LIMITS: Dict[Tier, TierLimits] = {
    Tier.FREE: TierLimits(daily=5, monthly=150),
    Tier.PRO: TierLimits(daily=50, monthly=1500),
    Tier.TEAM: TierLimits(daily=500, monthly=15000),
    Tier.ENTERPRISE: TierLimits(daily=200, monthly=6000),
}


@dataclass(frozen=True)
class QuotaState:
    """Derived view of a user's standing against their tier limits."""
    tier: Tier
    daily_count: int
    daily_limit: int
    monthly_count: Optional[int] = None
    monthly_limit: Optional[int] = None

    @property
    def remaining_today(self) -> int:
        return max(0, self.daily_limit - self.daily_count)

    @property
    def exceeded_period(self) -> Optional[str]:
        """Which limit rejects the next request, daily checked first."""
        if self.daily_count >= self.daily_limit:
            return "daily"
        if self.monthly_count is not None and self.monthly_limit is not None:
            if self.monthly_count >= self.monthly_limit:
                return "monthly"
        return None

    @property
    def exceeded_limit(self) -> Optional[int]:
        period = self.exceeded_period
        if period == "daily":
            return self.daily_limit
        if period == "monthly":
            return self.monthly_limit
        return None

    @property
    def allowed(self) -> bool:
        return self.exceeded_period is None


class QuotaGuard:
    """Tier-limit checks plus counter maintenance for admitted requests."""

    def __init__(
        self,
        store: ProfileStore,
        profile_cache: ProfileCache,
        limits: Optional[Mapping[Tier, TierLimits]] = None,
    ):
        self._store = store
        self._profiles = profile_cache
        self._limits: Dict[Tier, TierLimits] = dict(TIER_LIMITS)
        if limits:
            self._limits.update(limits)

    def limits_for(self, tier: Tier) -> TierLimits:
        return self._limits.get(Tier.parse(tier), self._limits[Tier.FREE])

    def state(self, tier: Tier, daily_count: int, monthly_count: Optional[int] = None) -> QuotaState:
        limits = self.limits_for(tier)
        return QuotaState(
            tier=Tier.parse(tier),
            daily_count=daily_count,
            daily_limit=limits.daily,
            monthly_count=monthly_count,
            monthly_limit=limits.monthly if monthly_count is not None else None,
        )

    def check_quota(self, tier: Tier, daily_count: int, monthly_count: Optional[int] = None) -> bool:
        """Pure comparison against the tier table.

        Args:
            tier: Subscription tier
            daily_count: Requests already made today
            monthly_count: Requests in the rolling month, if known

        Returns:
            True when another request may be admitted
        """
        return self.state(tier, daily_count, monthly_count).allowed

    async def increment_usage(self, user_id: str) -> int:
        """Persist +1 and refresh the cached count in place.

        The cache entry keeps its original timestamp, so a profile changed
        elsewhere is still refetched on schedule.

        Returns:
            The new daily count
        """
        new_count = await self._store.increment_daily_count(user_id)
        self._profiles.update_count(user_id, new_count)
        return new_count

    async def try_consume(self, user_id: str, tier: Tier) -> int:
        """Atomically reserve one request against today's limit.

        Returns:
            The new daily count

        Raises:
            QuotaExceededError: If the limit was reached, possibly by a
                concurrent request from the same user
        """
        limits = self.limits_for(tier)
        new_count = await self._store.try_increment(user_id, limits.daily)
        if new_count is None:
            self._profiles.update_count(user_id, limits.daily)
            logger.info("Quota reservation refused for user %s (tier=%s)", user_id, Tier.parse(tier).value)
            raise QuotaExceededError(
                "Daily AI request limit reached. Upgrade for more requests.",
                tier=Tier.parse(tier).value,
                limit=limits.daily,
                period="daily",
            )
        self._profiles.update_count(user_id, new_count)
        return new_count

    async def release(self, user_id: str) -> int:
        """Give back a reservation whose request produced no result."""
        new_count = await self._store.decrement_daily_count(user_id)
        self._profiles.update_count(user_id, new_count)
        return new_count
