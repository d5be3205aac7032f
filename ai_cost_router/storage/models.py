"""
Data models for storage layer.

Defines the persisted records and the store interfaces the dispatcher is
given at construction time.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List, Optional, Protocol


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Quota day. Daily counters reset at midnight UTC."""
    return utc_now().date()


@dataclass(frozen=True)
class ProfileRecord:
    """Quota-relevant slice of a user profile."""
    user_id: str
    tier: str
    daily_count: int


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one completed request.

    Append-only events that form the ledger of AI costs. Cache hits are
    recorded too, with zero tokens and zero cost.
    """
    user_id: str
    feature: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_cents: int
    latency_ms: float
    cache_hit: bool
    timestamp: datetime
    fallback_used: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ProfileStore(Protocol):
    """Profile persistence consumed by the profile cache and quota guard."""

    async def get_profile(self, user_id: str) -> ProfileRecord:
        """Raises ProfileNotFoundError when the user is unknown."""
        ...

    async def increment_daily_count(self, user_id: str) -> int:
        """Unconditionally add one to today's count; returns the new count."""
        ...

    async def try_increment(self, user_id: str, limit: int) -> Optional[int]:
        """Atomically add one if today's count is below limit.

        Returns the new count, or None when the limit is already reached.
        """
        ...

    async def decrement_daily_count(self, user_id: str) -> int:
        """Return one unit of today's count, never going below zero."""
        ...

    async def upsert_profile(self, user_id: str, tier: str) -> ProfileRecord:
        ...


class UsageStore(Protocol):
    """Append-only usage log plus the aggregates budget decisions need."""

    async def log_usage(self, record: UsageRecord) -> None:
        ...

    async def sum_cost(self, user_id: str, since: datetime, model: Optional[str] = None) -> int:
        """Total cost in cents since a timestamp, optionally for one model."""
        ...

    async def count_requests(self, user_id: str, since: datetime) -> int:
        """Number of non-cache-hit requests since a timestamp."""
        ...

    async def fetch_records(self, user_id: Optional[str], since: datetime, limit: int = 1000) -> List[UsageRecord]:
        """Records newest first."""
        ...
