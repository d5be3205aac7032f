"""
End-to-end tests for the request dispatcher over in-memory stores.
"""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from ai_cost_router.config.loader import RouterConfig, RoutingConfig
from ai_cost_router.core.catalog import FeatureType, ModelId
from ai_cost_router.core.dispatcher import build_dispatcher, parse_structured_content
from ai_cost_router.core.errors import (
    AuthError,
    DispatchError,
    ProfileNotFoundError,
    ProviderError,
    QuotaExceededError,
    ResponseParseError,
    ValidationError,
)
from ai_cost_router.core.request import AIRequest
from ai_cost_router.storage.memory import InMemoryProfileStore

NO_DIVERSION = RouterConfig(routing=RoutingConfig(free_diversion_rate=0.0))


@pytest.fixture
def adapters(scripted_adapter):
    return {
        ModelId.GPT_4O_MINI: scripted_adapter(ModelId.GPT_4O_MINI, content="Hi there!"),
        ModelId.CLAUDE_35_HAIKU: scripted_adapter(ModelId.CLAUDE_35_HAIKU, content="Thoughtful answer"),
        ModelId.GEMINI_15_FLASH: scripted_adapter(ModelId.GEMINI_15_FLASH, content="Gemini answer"),
    }


@pytest.fixture
def dispatcher(profile_store, usage_store, adapters):
    return build_dispatcher(profile_store, usage_store, adapters, NO_DIVERSION)


def _calls(adapters):
    return sum(len(adapter.calls) for adapter in adapters.values())


class TestDispatchFlow:
    """Happy path, caching and quota."""

    @pytest.mark.asyncio
    async def test_fresh_free_user_quick_chat(self, dispatcher, profile_store, usage_store):
        profile_store.add("u1", "free", daily_count=0)

        response = await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert response.content == "Hi there!"
        assert response.model_used == "gpt-4o-mini"
        assert response.cache_hit is False
        assert response.tokens_used == 40
        assert (await profile_store.get_profile("u1")).daily_count == 1
        assert len(usage_store.records) == 1
        assert usage_store.records[0].cache_hit is False
        assert len(dispatcher.cache) == 1

    @pytest.mark.asyncio
    async def test_repeat_request_is_cache_hit(self, dispatcher, profile_store, usage_store, adapters):
        profile_store.add("u1", "free")
        await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        response = await dispatcher.process(AIRequest(user_id="u1", message="  hello!"))

        assert response.cache_hit is True
        assert response.cost_cents == 0
        assert response.content == "Hi there!"
        assert _calls(adapters) == 1
        assert (await profile_store.get_profile("u1")).daily_count == 1
        assert [r.cache_hit for r in usage_store.records] == [False, True]
        assert usage_store.records[1].cost_cents == 0

    @pytest.mark.asyncio
    async def test_over_quota_makes_no_provider_call(self, dispatcher, profile_store, usage_store, adapters):
        profile_store.add("u1", "free", daily_count=5)

        with pytest.raises(QuotaExceededError) as exc_info:
            await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert exc_info.value.period == "daily"
        assert exc_info.value.limit == 5

        assert _calls(adapters) == 0
        assert usage_store.records == []
        assert (await profile_store.get_profile("u1")).daily_count == 5

    @pytest.mark.asyncio
    async def test_quota_resets_at_utc_midnight(self, usage_store, adapters):
        day = {"today": date(2026, 10, 16)}
        store = InMemoryProfileStore(today=lambda: day["today"])
        store.add("u1", "free", daily_count=5)
        dispatcher = build_dispatcher(store, usage_store, adapters, NO_DIVERSION, today=lambda: day["today"])
        with pytest.raises(QuotaExceededError):
            await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        day["today"] = date(2026, 10, 17)
        response = await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert response.content == "Hi there!"
        assert (await store.get_profile("u1")).daily_count == 1

    @pytest.mark.asyncio
    async def test_over_quota_is_rejected_even_when_cached(self, dispatcher, profile_store):
        profile_store.add("u1", "free", daily_count=4)
        await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))
        with pytest.raises(QuotaExceededError):
            await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

    @pytest.mark.asyncio
    async def test_monthly_limit_counts_ledger_requests(self, dispatcher, profile_store, usage_store):
        profile_store.add("u1", "free")
        usage_store.count_requests = AsyncMock(return_value=150)
        with pytest.raises(QuotaExceededError) as exc_info:
            await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))
        assert exc_info.value.period == "monthly"
        assert exc_info.value.limit == 150

    @pytest.mark.asyncio
    async def test_pro_user_gets_premium_model(self, dispatcher, profile_store):
        profile_store.add("u2", "pro")
        response = await dispatcher.process(
            AIRequest(user_id="u2", message="Draft a note", feature_type=FeatureType.NOTE_GENERATION)
        )
        assert response.model_used == "claude-3.5-haiku"

    @pytest.mark.asyncio
    async def test_missing_user_is_auth_error(self, dispatcher):
        with pytest.raises(AuthError):
            await dispatcher.process(AIRequest(user_id="", message="Hello!"))

    @pytest.mark.asyncio
    async def test_unknown_profile(self, dispatcher):
        with pytest.raises(ProfileNotFoundError):
            await dispatcher.process(AIRequest(user_id="ghost", message="Hello!"))

    @pytest.mark.asyncio
    async def test_empty_message_rejected_before_profile_read(self, dispatcher, profile_store):
        profile_store.add("u1")
        with pytest.raises(ValidationError):
            await dispatcher.process(AIRequest(user_id="u1", message="   "))
        assert profile_store.fetch_count == 0


class TestProviderFailures:
    """Fallback, total failure and structured output."""

    @pytest.mark.asyncio
    async def test_fallback_is_reported_and_counted(self, dispatcher, profile_store, usage_store, adapters):
        profile_store.add("u1", "free")
        adapters[ModelId.GPT_4O_MINI].error = ProviderError("timeout")

        response = await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert response.model_used == "gemini-1.5-flash (fallback)"
        assert response.content == "Gemini answer"
        assert response.cost_cents == 0
        assert usage_store.records[0].fallback_used is True
        assert usage_store.records[0].model == "gemini-1.5-flash"
        assert (await profile_store.get_profile("u1")).daily_count == 1

    @pytest.mark.asyncio
    async def test_cached_fallback_logs_canonical_model(self, dispatcher, profile_store, usage_store, adapters):
        profile_store.add("u1", "free")
        adapters[ModelId.GPT_4O_MINI].error = ProviderError("timeout")
        await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        response = await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert response.cache_hit is True
        assert response.model_used == "gemini-1.5-flash (fallback)"
        assert usage_store.records[1].model == "gemini-1.5-flash"
        assert usage_store.records[1].fallback_used is True

    @pytest.mark.asyncio
    async def test_total_failure_releases_quota(self, dispatcher, profile_store, usage_store, adapters):
        profile_store.add("u1", "free", daily_count=2)
        adapters[ModelId.GPT_4O_MINI].error = ProviderError("timeout")
        adapters[ModelId.GEMINI_15_FLASH].error = ProviderError("quota")

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert (await profile_store.get_profile("u1")).daily_count == 2
        assert usage_store.records == []
        assert len(dispatcher.cache) == 0

    @pytest.mark.asyncio
    async def test_structured_feature_parses_json(self, dispatcher, profile_store, adapters):
        profile_store.add("u1", "pro")
        adapters[ModelId.GPT_4O_MINI].content = 'Here you go:\n```json\n{"title": "Buy milk", "priority": "low"}\n```'

        response = await dispatcher.process(
            AIRequest(user_id="u1", message="buy milk", feature_type=FeatureType.TASK_PARSING)
        )
        assert response.data == {"title": "Buy milk", "priority": "low"}

    @pytest.mark.asyncio
    async def test_unparseable_structured_output(self, dispatcher, profile_store, usage_store, adapters):
        profile_store.add("u1", "pro")
        adapters[ModelId.GPT_4O_MINI].content = "Sorry, I can't do that."

        with pytest.raises(ResponseParseError) as exc_info:
            await dispatcher.process(
                AIRequest(user_id="u1", message="buy milk", feature_type=FeatureType.TASK_PARSING)
            )

        assert exc_info.value.raw_content == "Sorry, I can't do that."
        assert len(adapters[ModelId.GEMINI_15_FLASH].calls) == 0
        assert len(usage_store.records) == 1
        assert len(dispatcher.cache) == 0

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_fail_request(self, dispatcher, profile_store, usage_store):
        profile_store.add("u1", "free")
        usage_store.log_usage = AsyncMock(side_effect=OSError("disk full"))

        response = await dispatcher.process(AIRequest(user_id="u1", message="Hello!"))

        assert response.content == "Hi there!"
        assert dispatcher.ledger.failed_writes == 1


class TestStructuredParsing:

    def test_bare_json(self):
        assert parse_structured_content('{"a": 1}') == {"a": 1}

    def test_json_inside_prose(self):
        assert parse_structured_content('Result: {"events": []} done') == {"events": []}

    def test_skips_unbalanced_brace(self):
        assert parse_structured_content('{ oops {"ok": true}') == {"ok": True}

    def test_no_object(self):
        with pytest.raises(ResponseParseError):
            parse_structured_content("[1, 2, 3]")
