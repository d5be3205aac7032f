"""
Read-through cache of user profiles.

Holds {tier, daily request count} per user with a TTL. A count also expires
at the UTC day boundary, since stores reset it then. Misses go to the
profile store through a keyed single-flight so a burst of requests for one
user costs exactly one store read.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional

from ai_cost_router.storage.models import ProfileStore, utc_today

from .catalog import Tier
from .singleflight import SingleFlight

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CachedProfile:
    """Profile snapshot handed to quota and routing decisions."""
    user_id: str
    tier: Tier
    daily_count: int


@dataclass
class _Entry:
    tier: Tier
    daily_count: int
    count_date: date
    cached_at: float
    ttl: float

    def is_fresh(self, now: float, today: date) -> bool:
        return self.count_date == today and (now - self.cached_at) < self.ttl


class ProfileCache:
    """TTL-bound single-flight read-through cache over a ProfileStore.

    Expired entries of every user are swept after each store fetch, which
    bounds growth without a background timer. Hosting processes may also
    call ``sweep()`` on their own schedule.
    """

    def __init__(
        self,
        store: ProfileStore,
        ttl_seconds: float = DEFAULT_PROFILE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = utc_today,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._today = today
        self._entries: Dict[str, _Entry] = {}
        self._flight = SingleFlight()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    async def get_profile(self, user_id: str) -> CachedProfile:
        """Return the cached profile, fetching it once on a miss.

        Raises:
            ProfileNotFoundError: If the store has no profile for the user
        """
        cached = self._fresh(user_id)
        if cached is not None:
            return cached
        return await self._flight.do(user_id, lambda: self._fetch(user_id))

    async def _fetch(self, user_id: str) -> CachedProfile:
        # Another leader may have filled the entry between our miss and now
        cached = self._fresh(user_id)
        if cached is not None:
            return cached
        try:
            record = await self._store.get_profile(user_id)
            entry = _Entry(
                tier=Tier.parse(record.tier),
                daily_count=record.daily_count,
                count_date=self._today(),
                cached_at=self._clock(),
                ttl=self._ttl,
            )
            self._entries[user_id] = entry
            logger.debug("Profile cached for user %s (tier=%s)", user_id, entry.tier.value)
            return CachedProfile(user_id=user_id, tier=entry.tier, daily_count=entry.daily_count)
        finally:
            self.sweep()

    def _fresh(self, user_id: str) -> Optional[CachedProfile]:
        entry = self._entries.get(user_id)
        if entry is None or not entry.is_fresh(self._clock(), self._today()):
            return None
        return CachedProfile(user_id=user_id, tier=entry.tier, daily_count=entry.daily_count)

    def invalidate(self, user_id: str) -> bool:
        """Drop a user's entry so the next call refetches.

        Returns:
            True if an entry was removed
        """
        removed = self._entries.pop(user_id, None) is not None
        if removed:
            logger.info("Profile cache invalidated for user %s", user_id)
        return removed

    def update_count(self, user_id: str, daily_count: int) -> bool:
        """Refresh a cached count in place.

        ``cached_at`` is left untouched, so the entry still expires on its
        original schedule and a stale tier is not kept alive by traffic.

        Returns:
            True if the user had a cached entry
        """
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        entry.daily_count = daily_count
        entry.count_date = self._today()
        return True

    def sweep(self) -> int:
        """Remove expired entries of all users, including counts from an earlier day.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        today = self._today()
        expired = [uid for uid, entry in self._entries.items() if not entry.is_fresh(now, today)]
        for uid in expired:
            del self._entries[uid]
        return len(expired)

    def stats(self) -> Dict[str, object]:
        """Cache size and per-entry timestamps for monitoring."""
        entries: List[Dict[str, object]] = [
            {"user_id": uid, "cached_at": entry.cached_at, "ttl": entry.ttl}
            for uid, entry in self._entries.items()
        ]
        return {"size": len(self._entries), "in_flight": self._flight.in_flight, "entries": entries}
