"""
Tests for provider adapters and the fallback chain.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from ai_cost_router.core.catalog import FeatureType, ModelId
from ai_cost_router.core.errors import ProviderError
from ai_cost_router.core.request import (
    AIRequest,
    ConversationTurn,
    FileAttachment,
    ProfileContext,
    RequestContext,
)
from ai_cost_router.providers.anthropic_client import AnthropicAdapter
from ai_cost_router.providers.base import ProviderRequest, build_system_prompt, extract_citations
from ai_cost_router.providers.fallback import FallbackChain
from ai_cost_router.providers.gemini_client import GeminiAdapter
from ai_cost_router.providers.openai_client import (
    ImageGenerationAdapter,
    OpenAIChatAdapter,
    PerplexityAdapter,
)
from ai_cost_router.providers.registry import ProviderSettings, build_adapters


def _provider_request(message="Hello!", feature=FeatureType.QUICK_CHAT, history=None, files=None):
    request = AIRequest(
        user_id="u1",
        message=message,
        feature_type=feature,
        context=RequestContext(conversation_history=history or []),
        files=files or [],
    )
    return ProviderRequest.from_request(request)


def _openai_client(content="Hi!", usage=None):
    completion = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=usage,
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion)
    return client


class TestProviderRequest:
    """Normalization shared by all adapters."""

    def test_history_capped_at_ten_turns(self):
        history = [ConversationTurn("user", f"turn {i}") for i in range(15)]
        request = _provider_request(history=history)
        assert len(request.history) == 10
        assert request.history[0].content == "turn 5"

    def test_chat_messages_order(self):
        request = _provider_request(history=[ConversationTurn("user", "a"), ConversationTurn("assistant", "b")])
        roles = [m["role"] for m in request.chat_messages()]
        assert roles == ["system", "user", "assistant", "user"]

    def test_system_prompt_carries_personality_and_task(self):
        request = AIRequest(
            user_id="u1",
            message="Buy milk tomorrow",
            feature_type=FeatureType.TASK_PARSING,
            context=RequestContext(user_profile=ProfileContext(personality_mode="analytical")),
        )
        prompt = build_system_prompt(request)
        assert "data-driven" in prompt
        assert "Return JSON" in prompt

    def test_extract_citations(self):
        content = "Fact one [1] https://a.example/x and fact two [2] https://b.example/y. Again [1] https://a.example/x"
        citations = extract_citations(content)
        assert [c.number for c in citations] == [1, 2]
        assert citations[1].url == "https://b.example/y"

    def test_no_citations(self):
        assert extract_citations("nothing here") == []


class TestOpenAIAdapters:
    """Chat completions adapters with a mocked client."""

    @pytest.mark.asyncio
    async def test_reported_usage_and_cost(self):
        client = _openai_client(usage=SimpleNamespace(prompt_tokens=300_000, completion_tokens=700_000, total_tokens=1_000_000))
        adapter = OpenAIChatAdapter(client)
        result = await adapter.execute(_provider_request())

        assert result.content == "Hi!"
        assert result.tokens_used == 1_000_000
        assert result.cost_cents == 47
        assert result.confidence == 0.85
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][-1] == {"role": "user", "content": "Hello!"}

    @pytest.mark.asyncio
    async def test_missing_usage_is_estimated(self):
        adapter = OpenAIChatAdapter(_openai_client(content="abcdefgh", usage=None))
        result = await adapter.execute(_provider_request())
        assert result.usage.completion_tokens == 2
        assert result.usage.prompt_tokens > 0

    @pytest.mark.asyncio
    async def test_vision_embeds_images(self):
        client = _openai_client()
        adapter = OpenAIChatAdapter(client)
        request = _provider_request(
            message="What is in this?",
            feature=FeatureType.VISION_OCR,
            files=[FileAttachment("image/png", "iVBOR")],
        )
        result = await adapter.execute(request)

        content = client.chat.completions.create.call_args.kwargs["messages"][-1]["content"]
        assert content[0] == {"type": "text", "text": "What is in this?"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBOR"
        assert result.confidence == 0.88

    @pytest.mark.asyncio
    async def test_null_content_is_provider_error(self):
        adapter = OpenAIChatAdapter(_openai_client(content=None))
        with pytest.raises(ProviderError):
            await adapter.execute(_provider_request())

    @pytest.mark.asyncio
    async def test_sdk_exception_is_wrapped(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=TimeoutError("read timeout"))
        adapter = OpenAIChatAdapter(client)
        with pytest.raises(ProviderError, match="read timeout") as exc_info:
            await adapter.execute(_provider_request())
        assert exc_info.value.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_perplexity_extracts_sources(self):
        client = _openai_client(content="Paris [1] https://en.wikipedia.org/wiki/Paris")
        adapter = PerplexityAdapter(client)
        result = await adapter.execute(_provider_request(feature=FeatureType.RESEARCH_WITH_SOURCES))
        assert result.confidence == 0.95
        assert result.sources[0].url == "https://en.wikipedia.org/wiki/Paris"
        assert client.chat.completions.create.call_args.kwargs["model"] == "sonar"

    @pytest.mark.asyncio
    async def test_image_generation_returns_url(self):
        client = MagicMock()
        client.images.generate = AsyncMock(
            return_value=SimpleNamespace(data=[SimpleNamespace(url="https://img.example/1.png")])
        )
        adapter = ImageGenerationAdapter(client)
        result = await adapter.execute(_provider_request("A red fox", FeatureType.COMPLETION_IMAGE))
        assert result.content == "https://img.example/1.png"
        assert result.cost_cents == 0


class TestAnthropicAdapter:
    """Messages API translation."""

    @pytest.mark.asyncio
    async def test_system_prompt_separate_and_text_joined(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hello "), SimpleNamespace(type="text", text="there")],
            usage=SimpleNamespace(input_tokens=1_000_000, output_tokens=1_000_000),
        ))
        adapter = AnthropicAdapter(client)
        history = [ConversationTurn("assistant", "Welcome back"), ConversationTurn("user", "Thanks")]
        result = await adapter.execute(_provider_request(history=history))

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-haiku-20241022"
        assert kwargs["system"].startswith("You are an AI assistant")
        assert kwargs["messages"][0]["role"] == "user"
        assert result.content == "Hello there"
        assert result.cost_cents == 480
        assert result.confidence == 0.92

    @pytest.mark.asyncio
    async def test_vision_uses_image_blocks(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="A cat")],
            usage=SimpleNamespace(input_tokens=10, output_tokens=2),
        ))
        adapter = AnthropicAdapter(client)
        request = _provider_request("Describe", FeatureType.VISION_OCR, files=[FileAttachment("image/jpeg", "/9j/")])
        await adapter.execute(request)

        blocks = client.messages.create.call_args.kwargs["messages"][-1]["content"]
        assert blocks[0]["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "/9j/"}
        assert blocks[-1] == {"type": "text", "text": "Describe"}


class TestGeminiAdapter:
    """REST adapter against a mock transport."""

    @pytest.mark.asyncio
    async def test_request_shape_and_usage(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Hi from Gemini"}]}}],
                "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 4, "totalTokenCount": 16},
            })

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = GeminiAdapter("test-key", client=client)
            history = [ConversationTurn("user", "hi"), ConversationTurn("assistant", "hello")]
            result = await adapter.execute(_provider_request(history=history))

        assert seen["url"].endswith("/models/gemini-1.5-flash:generateContent")
        assert seen["key"] == "test-key"
        assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model", "user"]
        assert result.content == "Hi from Gemini"
        assert result.tokens_used == 16
        assert result.cost_cents == 0
        assert result.confidence == 0.80

    @pytest.mark.asyncio
    async def test_total_only_usage_is_split(self):
        def handler(request):
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "ok"}]}}],
                "usageMetadata": {"totalTokenCount": 100},
            })

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await GeminiAdapter("k", client=client).execute(_provider_request())
        assert result.usage.prompt_tokens == 30
        assert result.usage.completion_tokens == 70

    @pytest.mark.asyncio
    async def test_http_error_is_provider_error(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503))) as client:
            with pytest.raises(ProviderError):
                await GeminiAdapter("k", client=client).execute(_provider_request())

    @pytest.mark.asyncio
    async def test_no_candidates_is_provider_error(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))) as client:
            with pytest.raises(ProviderError, match="no candidates"):
                await GeminiAdapter("k", client=client).execute(_provider_request())

    def test_vision_payload_inlines_files(self):
        adapter = GeminiAdapter("k")
        payload = adapter.build_payload(
            _provider_request("Read", FeatureType.VISION_OCR, files=[FileAttachment("image/png", "AAA")])
        )
        parts = payload["contents"][-1]["parts"]
        assert parts[1] == {"inline_data": {"mime_type": "image/png", "data": "AAA"}}


class TestFallbackChain:
    """Single fallback attempt on the free model."""

    @pytest.mark.asyncio
    async def test_primary_success(self, scripted_adapter):
        primary = scripted_adapter(ModelId.GPT_4O_MINI)
        fallback = scripted_adapter(ModelId.GEMINI_15_FLASH)
        chain = FallbackChain({ModelId.GPT_4O_MINI: primary, ModelId.GEMINI_15_FLASH: fallback})

        outcome = await chain.execute(ModelId.GPT_4O_MINI, _provider_request())
        assert outcome.model_used == "gpt-4o-mini"
        assert not outcome.fallback_used
        assert fallback.calls == []

    @pytest.mark.asyncio
    async def test_fallback_annotation(self, scripted_adapter):
        primary = scripted_adapter(ModelId.CLAUDE_35_HAIKU, error=ProviderError("overloaded"))
        fallback = scripted_adapter(ModelId.GEMINI_15_FLASH, content="from gemini")
        chain = FallbackChain({ModelId.CLAUDE_35_HAIKU: primary, ModelId.GEMINI_15_FLASH: fallback})

        outcome = await chain.execute(ModelId.CLAUDE_35_HAIKU, _provider_request())
        assert outcome.model_used == "gemini-1.5-flash (fallback)"
        assert outcome.fallback_used
        assert outcome.result.content == "from gemini"
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_unregistered_model_falls_back(self, scripted_adapter):
        chain = FallbackChain({ModelId.GEMINI_15_FLASH: scripted_adapter(ModelId.GEMINI_15_FLASH)})
        outcome = await chain.execute(ModelId.PERPLEXITY_SONAR, _provider_request())
        assert outcome.fallback_used

    @pytest.mark.asyncio
    async def test_both_fail_raises_fallback_error(self, scripted_adapter):
        primary = scripted_adapter(ModelId.GPT_4O_MINI, error=ProviderError("primary down"))
        fallback = scripted_adapter(ModelId.GEMINI_15_FLASH, error=ProviderError("fallback down"))
        chain = FallbackChain({ModelId.GPT_4O_MINI: primary, ModelId.GEMINI_15_FLASH: fallback})

        with pytest.raises(ProviderError, match="fallback down") as exc_info:
            await chain.execute(ModelId.GPT_4O_MINI, _provider_request())
        assert "primary down" in str(exc_info.value.__cause__)
        assert len(fallback.calls) == 1

    @pytest.mark.asyncio
    async def test_gemini_primary_gets_one_more_attempt(self, scripted_adapter):
        gemini = scripted_adapter(ModelId.GEMINI_15_FLASH, error=ProviderError("quota"))
        chain = FallbackChain({ModelId.GEMINI_15_FLASH: gemini})
        with pytest.raises(ProviderError):
            await chain.execute(ModelId.GEMINI_15_FLASH, _provider_request())
        assert len(gemini.calls) == 2

    @pytest.mark.asyncio
    async def test_image_generation_has_no_fallback(self, scripted_adapter):
        image = scripted_adapter(ModelId.DALL_E_3, error=ProviderError("content policy"))
        gemini = scripted_adapter(ModelId.GEMINI_15_FLASH)
        chain = FallbackChain({ModelId.DALL_E_3: image, ModelId.GEMINI_15_FLASH: gemini})
        with pytest.raises(ProviderError, match="content policy"):
            await chain.execute(ModelId.DALL_E_3, _provider_request("A fox", FeatureType.COMPLETION_IMAGE))
        assert gemini.calls == []


class TestRegistry:
    """Adapter wiring from environment keys."""

    def test_settings_from_env(self):
        settings = ProviderSettings.from_env({"OPENAI_API_KEY": "sk-1", "GEMINI_API_KEY": "  "})
        assert settings.openai_api_key == "sk-1"
        assert settings.gemini_api_key is None
        assert settings.configured()["openai"] is True

    def test_missing_keys_leave_models_unregistered(self):
        adapters = build_adapters(ProviderSettings(gemini_api_key="g", perplexity_api_key="p"))
        assert set(adapters) == {ModelId.GEMINI_15_FLASH, ModelId.PERPLEXITY_SONAR}

    def test_all_keys(self):
        adapters = build_adapters(ProviderSettings("o", "a", "g", "x", "p"))
        assert set(adapters) == set(ModelId)
        assert adapters[ModelId.GROK_4_FAST].api_model == "grok-4-fast"
