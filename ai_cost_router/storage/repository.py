"""
Repository pattern for data access.

SQLite-backed profile and usage stores. The sync functions do the SQL;
the store classes expose them to the async dispatcher through worker
threads so a slow disk never stalls the event loop.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from ai_cost_router.core.errors import ProfileNotFoundError

from .db import DEFAULT_DB_PATH, get_connection
from .models import ProfileRecord, UsageRecord, utc_today

_USAGE_COLUMNS = (
    "timestamp, user_id, feature, model, input_tokens, output_tokens, "
    "cost_cents, latency_ms, cache_hit, fallback_used"
)


def _iso(moment: datetime) -> str:
    """UTC ISO-8601 text so timestamps compare lexicographically."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the profile and usage tables if they don't exist.

    ``usage_record`` is an append-only ledger. No UPDATE or DELETE is ever
    issued against it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS profile (
                user_id TEXT PRIMARY KEY,
                tier TEXT NOT NULL DEFAULT 'free',
                daily_count INTEGER NOT NULL DEFAULT 0,
                count_date TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                user_id TEXT NOT NULL,
                feature TEXT NOT NULL,
                model TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                cost_cents INTEGER NOT NULL,
                latency_ms REAL NOT NULL,
                cache_hit INTEGER NOT NULL DEFAULT 0,
                fallback_used INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_usage_user_time ON usage_record(user_id, timestamp)"
        )
    finally:
        conn.close()


def insert_usage_record(record: UsageRecord, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single usage record to the ledger.

    Args:
        record: The usage record to store
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute(
            f"INSERT INTO usage_record ({_USAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                _iso(record.timestamp),
                record.user_id,
                record.feature,
                record.model,
                record.input_tokens,
                record.output_tokens,
                record.cost_cents,
                record.latency_ms,
                int(record.cache_hit),
                int(record.fallback_used),
            ),
        )
    finally:
        conn.close()


def fetch_usage_records(
    user_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 1000,
    db_path: str = DEFAULT_DB_PATH,
) -> List[UsageRecord]:
    """Fetch usage records newest first, optionally filtered.

    Args:
        user_id: Optional filter for a specific user
        since: Optional lower bound on timestamp
        limit: Maximum number of records to return
        db_path: Path to SQLite database file

    Returns:
        List of usage records ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_USAGE_COLUMNS} FROM usage_record"
        params: list = []
        conditions = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(_iso(since))

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        return [
            UsageRecord(
                timestamp=datetime.fromisoformat(row[0]),
                user_id=row[1],
                feature=row[2],
                model=row[3],
                input_tokens=row[4],
                output_tokens=row[5],
                cost_cents=row[6],
                latency_ms=row[7],
                cache_hit=bool(row[8]),
                fallback_used=bool(row[9]),
            )
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()


def sum_usage_cost(
    user_id: str,
    since: datetime,
    model: Optional[str] = None,
    db_path: str = DEFAULT_DB_PATH,
) -> int:
    """Total cost in cents for a user since a timestamp."""
    conn = get_connection(db_path)
    try:
        query = "SELECT SUM(cost_cents) FROM usage_record WHERE user_id = ? AND timestamp >= ?"
        params: list = [user_id, _iso(since)]
        if model:
            query += " AND model = ?"
            params.append(model)
        row = conn.execute(query, params).fetchone()
        return int(row[0] or 0)
    finally:
        conn.close()


def count_usage_requests(user_id: str, since: datetime, db_path: str = DEFAULT_DB_PATH) -> int:
    """Number of real (non-cache-hit) calls for a user since a timestamp."""
    conn = get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT COUNT(*) FROM usage_record WHERE user_id = ? AND timestamp >= ? AND cache_hit = 0",
            (user_id, _iso(since)),
        ).fetchone()
        return int(row[0] or 0)
    finally:
        conn.close()


class SqliteUsageStore:
    """UsageStore over the ``usage_record`` table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    async def log_usage(self, record: UsageRecord) -> None:
        await asyncio.to_thread(insert_usage_record, record, self.db_path)

    async def sum_cost(self, user_id: str, since: datetime, model: Optional[str] = None) -> int:
        return await asyncio.to_thread(sum_usage_cost, user_id, since, model, self.db_path)

    async def count_requests(self, user_id: str, since: datetime) -> int:
        return await asyncio.to_thread(count_usage_requests, user_id, since, self.db_path)

    async def fetch_records(self, user_id: Optional[str], since: datetime, limit: int = 1000) -> List[UsageRecord]:
        return await asyncio.to_thread(fetch_usage_records, user_id, since, limit, self.db_path)


class SqliteProfileStore:
    """ProfileStore over the ``profile`` table.

    Counter updates run inside ``BEGIN IMMEDIATE`` so the check and the
    increment are one atomic step even with several processes on one file.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, today: Callable[[], date] = utc_today):
        self.db_path = db_path
        self._today = today

    def _read(self, conn, user_id: str) -> ProfileRecord:
        row = conn.execute(
            "SELECT tier, daily_count, count_date FROM profile WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            raise ProfileNotFoundError(user_id)
        tier, daily_count, count_date = row
        if count_date != self._today().isoformat():
            daily_count = 0
        return ProfileRecord(user_id=user_id, tier=tier, daily_count=int(daily_count))

    def _get_profile(self, user_id: str) -> ProfileRecord:
        conn = get_connection(self.db_path)
        try:
            return self._read(conn, user_id)
        finally:
            conn.close()

    def _adjust(self, user_id: str, delta: int, limit: Optional[int] = None) -> Optional[int]:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(conn, user_id).daily_count
                if limit is not None and current >= limit:
                    conn.execute("ROLLBACK")
                    return None
                updated = max(0, current + delta)
                conn.execute(
                    "UPDATE profile SET daily_count = ?, count_date = ? WHERE user_id = ?",
                    (updated, self._today().isoformat(), user_id),
                )
                conn.execute("COMMIT")
                return updated
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def _upsert(self, user_id: str, tier: str) -> ProfileRecord:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO profile (user_id, tier, daily_count, count_date)
                VALUES (?, ?, 0, ?)
                ON CONFLICT(user_id) DO UPDATE SET tier = excluded.tier
                """,
                (user_id, tier, self._today().isoformat()),
            )
            return self._read(conn, user_id)
        finally:
            conn.close()

    async def get_profile(self, user_id: str) -> ProfileRecord:
        return await asyncio.to_thread(self._get_profile, user_id)

    async def increment_daily_count(self, user_id: str) -> int:
        return await asyncio.to_thread(self._adjust, user_id, 1)

    async def try_increment(self, user_id: str, limit: int) -> Optional[int]:
        return await asyncio.to_thread(self._adjust, user_id, 1, limit)

    async def decrement_daily_count(self, user_id: str) -> int:
        return await asyncio.to_thread(self._adjust, user_id, -1)

    async def upsert_profile(self, user_id: str, tier: str) -> ProfileRecord:
        return await asyncio.to_thread(self._upsert, user_id, tier)
