"""
Shared fixtures: scripted provider adapters and in-memory stores.
"""

from typing import List, Optional

import pytest

from ai_cost_router.core.catalog import ModelId
from ai_cost_router.core.token_counter import TokenUsage
from ai_cost_router.providers.base import AdapterResult, ProviderAdapter, ProviderRequest
from ai_cost_router.storage.memory import InMemoryProfileStore, InMemoryUsageStore


class ScriptedAdapter(ProviderAdapter):
    """Adapter returning fixed content or raising a fixed error."""

    def __init__(
        self,
        model_id: ModelId,
        content: Optional[str] = "Hi there!",
        error: Optional[Exception] = None,
        usage: Optional[TokenUsage] = None,
        confidence: float = 0.9,
    ):
        super().__init__(model_id, model_id.value, confidence)
        self.content = content
        self.error = error
        self.usage = usage or TokenUsage(prompt_tokens=12, completion_tokens=28)
        self.calls: List[ProviderRequest] = []

    async def _call(self, request: ProviderRequest) -> AdapterResult:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return self._result(self.content, self.usage)


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()
