"""
Request dispatcher.

Runs one AIRequest through the full path:

1. Validate the request
2. Load tier and daily count through the profile cache
3. Reject over-quota users before anything else costs money
4. Serve from the response cache when a fresh entry exists
5. Select a model from feature, tier and remaining budget
6. Reserve quota, call the provider with one fallback attempt
7. Record usage, cache and return the response
"""

import json
import logging
import re
import time
from datetime import date
from typing import Any, Callable, Mapping, Optional

from ai_cost_router.config.loader import RouterConfig
from ai_cost_router.providers.base import ProviderAdapter, ProviderRequest
from ai_cost_router.providers.fallback import FALLBACK_SUFFIX, ChainResult, FallbackChain
from ai_cost_router.storage.models import ProfileStore, UsageRecord, UsageStore, utc_now, utc_today

from .catalog import FeatureType, ModelId
from .errors import DispatchError, ProviderError, QuotaExceededError, ResponseParseError
from .ledger import UsageLedger
from .profile_cache import ProfileCache
from .quota import QuotaGuard
from .request import AIRequest, AIResponse
from .response_cache import ResponseCache, fingerprint
from .selector import ModelSelector

logger = logging.getLogger(__name__)

# Features whose content must carry a JSON object
STRUCTURED_FEATURES = frozenset({
    FeatureType.TASK_PARSING,
    FeatureType.CALENDAR_EVENT_PARSING,
    FeatureType.GMAIL_EVENT_EXTRACTION,
    FeatureType.VISION_EVENT_DETECTION,
    FeatureType.MINDMAP_GENERATION,
})

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def parse_structured_content(content: str) -> Any:
    """Extract the first JSON object from model output.

    Accepts bare JSON, fenced code blocks and JSON embedded in prose.

    Raises:
        ResponseParseError: If no JSON object can be decoded
    """
    candidates = [match.group(1) for match in _CODE_FENCE.finditer(content)]
    candidates.append(content)
    decoder = json.JSONDecoder()
    for text in candidates:
        start = text.find("{")
        while start != -1:
            try:
                value, _ = decoder.raw_decode(text, start)
                return value
            except json.JSONDecodeError:
                start = text.find("{", start + 1)
    raise ResponseParseError("Model output did not contain a JSON object", raw_content=content)


class Dispatcher:
    """Quota-admitted, cache-first dispatcher over a provider fallback chain."""

    def __init__(
        self,
        profile_cache: ProfileCache,
        quota: QuotaGuard,
        response_cache: ResponseCache,
        selector: ModelSelector,
        chain: FallbackChain,
        ledger: UsageLedger,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.profiles = profile_cache
        self.quota = quota
        self.cache = response_cache
        self.selector = selector
        self.chain = chain
        self.ledger = ledger
        self._timer = timer

    def _elapsed_ms(self, start: float) -> float:
        return round((self._timer() - start) * 1000, 2)

    async def process(self, request: AIRequest) -> AIResponse:
        """Serve one request.

        Raises:
            AuthError: If the request has no user or the user has no profile
            ValidationError: If the request is malformed
            QuotaExceededError: If the user is at a tier limit
            ResponseParseError: If a structured feature returned no JSON
            DispatchError: If the primary and fallback providers both failed
        """
        start = self._timer()
        request.validate()

        profile = await self.profiles.get_profile(request.user_id)
        monthly_count = await self.ledger.count_requests(request.user_id)
        quota_state = self.quota.state(profile.tier, profile.daily_count, monthly_count)
        if not quota_state.allowed:
            logger.info(
                "Quota exceeded for user %s (tier=%s, %s limit %s)",
                request.user_id, profile.tier.value, quota_state.exceeded_period, quota_state.exceeded_limit,
            )
            raise QuotaExceededError(
                "AI request limit reached. Upgrade for more requests.",
                tier=profile.tier.value,
                limit=quota_state.exceeded_limit,
                period=quota_state.exceeded_period,
            )

        key = fingerprint(request)
        cached = self.cache.get(key)
        if cached is not None:
            response = cached.as_cache_hit()
            fallback_used = cached.model_used.endswith(FALLBACK_SUFFIX)
            await self.ledger.record(UsageRecord(
                user_id=request.user_id,
                feature=request.feature_type.value,
                model=cached.model_used[:-len(FALLBACK_SUFFIX)] if fallback_used else cached.model_used,
                input_tokens=0,
                output_tokens=0,
                cost_cents=0,
                latency_ms=self._elapsed_ms(start),
                cache_hit=True,
                timestamp=utc_now(),
                fallback_used=fallback_used,
            ))
            logger.debug("Cache hit for %s", key)
            return response

        budget = await self.ledger.budget_state(request.user_id)
        model = self.selector.select_model(
            request.feature_type, profile, budget, fingerprint=key, request=request,
        )

        await self.quota.try_consume(request.user_id, profile.tier)
        outcome = await self._execute(request, model)

        latency_ms = self._elapsed_ms(start)
        result = outcome.result
        await self.ledger.record(UsageRecord(
            user_id=request.user_id,
            feature=request.feature_type.value,
            model=outcome.model.value,
            input_tokens=result.usage.prompt_tokens,
            output_tokens=result.usage.completion_tokens,
            cost_cents=result.cost_cents,
            latency_ms=latency_ms,
            cache_hit=False,
            timestamp=utc_now(),
            fallback_used=outcome.fallback_used,
        ))

        data = None
        if request.feature_type in STRUCTURED_FEATURES:
            data = parse_structured_content(result.content)

        response = AIResponse(
            content=result.content,
            model_used=outcome.model_used,
            tokens_used=result.tokens_used,
            cost_cents=result.cost_cents,
            confidence=result.confidence,
            sources=result.sources,
            cache_hit=False,
            processing_time_ms=latency_ms,
            data=data,
        )
        self.cache.put(key, response, request.feature_type)
        logger.info(
            "Served %s for user %s with %s (%d tokens, %d cents)",
            request.feature_type.value, request.user_id, response.model_used,
            response.tokens_used, response.cost_cents,
        )
        return response

    async def _execute(self, request: AIRequest, model: ModelId) -> ChainResult:
        try:
            return await self.chain.execute(model, ProviderRequest.from_request(request))
        except ProviderError as e:
            await self.quota.release(request.user_id)
            raise DispatchError("AI request failed on all available providers") from e


def build_dispatcher(
    profile_store: ProfileStore,
    usage_store: UsageStore,
    adapters: Mapping[ModelId, ProviderAdapter],
    config: Optional[RouterConfig] = None,
    today: Callable[[], date] = utc_today,
) -> Dispatcher:
    """Wire a dispatcher from stores, adapters and configuration.

    ``today`` must agree with the day boundary the profile store resets on.
    """
    config = config or RouterConfig()
    profile_cache = ProfileCache(profile_store, ttl_seconds=config.profile_ttl_seconds, today=today)
    return Dispatcher(
        profile_cache=profile_cache,
        quota=QuotaGuard(profile_store, profile_cache, limits=config.tier_limits),
        response_cache=ResponseCache(
            ttls=config.cache.ttls,
            default_ttl_seconds=config.cache.default_ttl_seconds,
            max_entries=config.cache.max_entries,
        ),
        selector=ModelSelector(
            free_diversion_rate=config.routing.free_diversion_rate,
            mid_tier_min_budget_cents=config.routing.mid_tier_min_budget_cents,
            limits=config.tier_limits,
        ),
        chain=FallbackChain(adapters),
        ledger=UsageLedger(
            usage_store,
            monthly_budget_cents=config.budget.monthly_cents,
            free_credits_cents=config.budget.free_credits_cents,
        ),
    )
