"""
In-process store implementations.

Used by tests and single-process deployments. Each read-modify-write runs
without an ``await`` in the middle, which makes it atomic on the event loop.
"""

from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from ai_cost_router.core.errors import ProfileNotFoundError

from .models import ProfileRecord, UsageRecord, utc_today


class InMemoryProfileStore:
    """Profile store backed by a dict, with UTC-day counter reset."""

    def __init__(self, today: Callable[[], date] = utc_today):
        self._today = today
        self._profiles: Dict[str, Dict[str, object]] = {}
        self.fetch_count = 0

    def add(self, user_id: str, tier: str = "free", daily_count: int = 0) -> None:
        self._profiles[user_id] = {"tier": tier, "daily_count": daily_count, "count_date": self._today()}

    def _current(self, user_id: str) -> Dict[str, object]:
        profile = self._profiles.get(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)
        today = self._today()
        if profile["count_date"] != today:
            profile["daily_count"] = 0
            profile["count_date"] = today
        return profile

    async def get_profile(self, user_id: str) -> ProfileRecord:
        self.fetch_count += 1
        profile = self._current(user_id)
        return ProfileRecord(user_id=user_id, tier=str(profile["tier"]), daily_count=int(profile["daily_count"]))

    async def increment_daily_count(self, user_id: str) -> int:
        profile = self._current(user_id)
        profile["daily_count"] = int(profile["daily_count"]) + 1
        return int(profile["daily_count"])

    async def try_increment(self, user_id: str, limit: int) -> Optional[int]:
        profile = self._current(user_id)
        if int(profile["daily_count"]) >= limit:
            return None
        profile["daily_count"] = int(profile["daily_count"]) + 1
        return int(profile["daily_count"])

    async def decrement_daily_count(self, user_id: str) -> int:
        profile = self._current(user_id)
        profile["daily_count"] = max(0, int(profile["daily_count"]) - 1)
        return int(profile["daily_count"])

    async def upsert_profile(self, user_id: str, tier: str) -> ProfileRecord:
        if user_id in self._profiles:
            self._profiles[user_id]["tier"] = tier
        else:
            self.add(user_id, tier)
        profile = self._current(user_id)
        return ProfileRecord(user_id=user_id, tier=tier, daily_count=int(profile["daily_count"]))


class InMemoryUsageStore:
    """Append-only list of usage records."""

    def __init__(self) -> None:
        self.records: List[UsageRecord] = []

    async def log_usage(self, record: UsageRecord) -> None:
        self.records.append(record)

    def _matching(self, user_id: Optional[str], since: datetime) -> List[UsageRecord]:
        return [
            r for r in self.records
            if (user_id is None or r.user_id == user_id) and r.timestamp >= since
        ]

    async def sum_cost(self, user_id: str, since: datetime, model: Optional[str] = None) -> int:
        return sum(
            r.cost_cents for r in self._matching(user_id, since)
            if model is None or r.model == model
        )

    async def count_requests(self, user_id: str, since: datetime) -> int:
        return sum(1 for r in self._matching(user_id, since) if not r.cache_hit)

    async def fetch_records(self, user_id: Optional[str], since: datetime, limit: int = 1000) -> List[UsageRecord]:
        matching = sorted(self._matching(user_id, since), key=lambda r: r.timestamp, reverse=True)
        return matching[:limit]
