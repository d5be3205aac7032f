"""
Usage ledger and rolling spend aggregates.

Appends one UsageRecord per completed request and turns the log into the
budget figures the model selector downgrades on. Ledger writes are
best-effort: a failing store is logged and the response still goes out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from ai_cost_router.storage.models import UsageRecord, UsageStore, utc_now

from .catalog import MODEL_CATALOG, ModelId

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_BUDGET_CENTS = 1500  # $15 per user per month


class Period(Enum):
    """Rolling aggregation windows, in days."""
    DAY = 1
    WEEK = 7
    MONTH = 30

    @property
    def delta(self) -> timedelta:
        return timedelta(days=self.value)


@dataclass(frozen=True)
class BudgetState:
    """Spend headroom for one user."""
    monthly_remaining_cents: int
    credits_remaining_cents: Dict[ModelId, int] = field(default_factory=dict)

    @classmethod
    def unconstrained(cls) -> "BudgetState":
        return cls(
            monthly_remaining_cents=10**9,
            credits_remaining_cents={
                model: descriptor.free_credit_cents
                for model, descriptor in MODEL_CATALOG.items()
                if descriptor.is_credit_funded
            },
        )

    @classmethod
    def exhausted(cls) -> "BudgetState":
        return cls(monthly_remaining_cents=0, credits_remaining_cents={})

    def credit_remaining(self, model: ModelId) -> int:
        return self.credits_remaining_cents.get(model, 0)

    @property
    def has_monthly_allowance(self) -> bool:
        return self.monthly_remaining_cents > 0


@dataclass(frozen=True)
class UsageSummary:
    """Aggregates over one rolling window."""
    period: Period
    total_requests: int
    total_cost_cents: int
    cache_hit_rate: float
    model_breakdown: Dict[str, Dict[str, int]]
    daily_average_requests: float
    daily_average_cost_cents: float


class UsageLedger:
    """Cost tracker over an append-only UsageStore."""

    def __init__(
        self,
        store: UsageStore,
        monthly_budget_cents: int = DEFAULT_MONTHLY_BUDGET_CENTS,
        free_credits_cents: Optional[Dict[ModelId, int]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._monthly_budget = monthly_budget_cents
        if free_credits_cents is None:
            free_credits_cents = {
                model: descriptor.free_credit_cents
                for model, descriptor in MODEL_CATALOG.items()
                if descriptor.is_credit_funded
            }
        self._free_credits = dict(free_credits_cents)
        self._clock = clock
        self.failed_writes = 0

    @property
    def monthly_budget_cents(self) -> int:
        return self._monthly_budget

    def window_start(self, period: Period) -> datetime:
        return self._clock() - period.delta

    async def record(self, record: UsageRecord) -> bool:
        """Append a record without ever raising.

        Returns:
            True if the store accepted the record
        """
        try:
            await self._store.log_usage(record)
            return True
        except Exception:
            self.failed_writes += 1
            logger.exception(
                "Failed to log usage for user %s (model=%s, cache_hit=%s)",
                record.user_id, record.model, record.cache_hit,
            )
            return False

    async def budget_state(self, user_id: str) -> BudgetState:
        """Monthly allowance and free credits left for a user.

        If the store cannot be read the budget is treated as exhausted,
        which routes to free models rather than risking unbounded spend.
        """
        since = self.window_start(Period.MONTH)
        try:
            spent = await self._store.sum_cost(user_id, since)
            credits = {}
            for model, allowance in self._free_credits.items():
                model_spent = await self._store.sum_cost(user_id, since, model=model.value)
                credits[model] = max(0, allowance - model_spent)
        except Exception:
            logger.exception("Budget lookup failed for user %s, assuming exhausted budget", user_id)
            return BudgetState.exhausted()
        return BudgetState(
            monthly_remaining_cents=max(0, self._monthly_budget - spent),
            credits_remaining_cents=credits,
        )

    async def count_requests(self, user_id: str, period: Period = Period.MONTH) -> Optional[int]:
        """Real calls in the window, or None when the store is unavailable."""
        try:
            return await self._store.count_requests(user_id, self.window_start(period))
        except Exception:
            logger.exception("Request count lookup failed for user %s", user_id)
            return None

    async def summary(self, user_id: Optional[str], period: Period = Period.MONTH) -> UsageSummary:
        """Totals, cache-hit rate and per-model breakdown for a window."""
        records = await self._store.fetch_records(user_id, self.window_start(period), limit=100_000)

        breakdown: Dict[str, Dict[str, int]] = {}
        for record in records:
            bucket = breakdown.setdefault(record.model, {"count": 0, "cost_cents": 0, "tokens": 0})
            bucket["count"] += 1
            bucket["cost_cents"] += record.cost_cents
            bucket["tokens"] += record.total_tokens

        total = len(records)
        total_cost = sum(record.cost_cents for record in records)
        hits = sum(1 for record in records if record.cache_hit)
        return UsageSummary(
            period=period,
            total_requests=total,
            total_cost_cents=total_cost,
            cache_hit_rate=(hits / total) if total else 0.0,
            model_breakdown=breakdown,
            daily_average_requests=total / period.value,
            daily_average_cost_cents=total_cost / period.value,
        )
