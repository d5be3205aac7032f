# ai_cost_router/demo/seed_demo_data.py

import asyncio
from datetime import timedelta

from ai_cost_router.storage.models import UsageRecord, utc_now
from ai_cost_router.storage.repository import SqliteProfileStore, initialize_schema, insert_usage_record

initialize_schema()

store = SqliteProfileStore()
asyncio.run(store.upsert_profile("demo-free", "free"))
asyncio.run(store.upsert_profile("demo-pro", "pro"))

now = utc_now()
records = [
    UsageRecord(
        user_id="demo-pro",
        feature="strategic_briefing",
        model="claude-3.5-haiku",
        input_tokens=1200,
        output_tokens=800,
        cost_cents=0,
        latency_ms=2150.0,
        cache_hit=False,
        timestamp=now - timedelta(days=2),
    ),
    UsageRecord(
        user_id="demo-pro",
        feature="research_with_sources",
        model="perplexity-sonar",
        input_tokens=90_000,
        output_tokens=210_000,
        cost_cents=150,  # spike
        latency_ms=4800.0,
        cache_hit=False,
        timestamp=now - timedelta(days=1),
    ),
    UsageRecord(
        user_id="demo-free",
        feature="quick_chat",
        model="gemini-1.5-flash",
        input_tokens=30,
        output_tokens=70,
        cost_cents=0,
        latency_ms=640.0,
        cache_hit=False,
        timestamp=now - timedelta(hours=3),
        fallback_used=True,
    ),
    UsageRecord(
        user_id="demo-free",
        feature="quick_chat",
        model="gemini-1.5-flash",
        input_tokens=0,
        output_tokens=0,
        cost_cents=0,
        latency_ms=1.2,
        cache_hit=True,
        timestamp=now - timedelta(hours=2),
        fallback_used=True,
    ),
]

for r in records:
    insert_usage_record(r)

print("Demo profiles and usage data inserted")
