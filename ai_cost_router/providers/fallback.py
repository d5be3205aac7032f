"""
Primary-then-fallback execution.

The chain tries the selected model once. If that raises ProviderError it
makes exactly one attempt on the fallback model, provided the fallback can
serve the feature at all. The fallback's own error propagates with the
primary error chained as its cause.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping

from ai_cost_router.core.catalog import FREE_TIER_MODEL, MODEL_CATALOG, ModelId, required_capability
from ai_cost_router.core.errors import ProviderError

from .base import AdapterResult, ProviderAdapter, ProviderRequest

logger = logging.getLogger(__name__)

FALLBACK_SUFFIX = " (fallback)"


@dataclass(frozen=True)
class ChainResult:
    result: AdapterResult
    model: ModelId
    fallback_used: bool

    @property
    def model_used(self) -> str:
        """Reported model name; fallback results carry an annotation."""
        if self.fallback_used:
            return f"{self.model.value}{FALLBACK_SUFFIX}"
        return self.model.value


class FallbackChain:
    """Executes a request on a model with a single fallback attempt."""

    def __init__(self, adapters: Mapping[ModelId, ProviderAdapter], fallback_model: ModelId = FREE_TIER_MODEL):
        self._adapters: Dict[ModelId, ProviderAdapter] = dict(adapters)
        self.fallback_model = fallback_model

    @property
    def models(self):
        return sorted(self._adapters, key=lambda m: m.value)

    def adapter_for(self, model: ModelId) -> ProviderAdapter:
        adapter = self._adapters.get(model)
        if adapter is None:
            raise ProviderError(f"No provider configured for {model.value}", model=model.value)
        return adapter

    async def execute(self, model: ModelId, request: ProviderRequest) -> ChainResult:
        """Run on ``model``, falling back once on provider failure.

        Raises:
            ProviderError: If the primary failed and the fallback either
                failed too or cannot serve this feature
        """
        try:
            result = await self.adapter_for(model).execute(request)
            return ChainResult(result=result, model=model, fallback_used=False)
        except ProviderError as primary_error:
            fallback = MODEL_CATALOG[self.fallback_model]
            if not fallback.supports(required_capability(request.feature_type)):
                logger.error("Provider %s failed, no capable fallback: %s", model.value, primary_error)
                raise
            logger.warning(
                "Provider %s failed, falling back to %s: %s",
                model.value, self.fallback_model.value, primary_error,
            )
            try:
                result = await self.adapter_for(self.fallback_model).execute(request)
            except ProviderError as fallback_error:
                logger.error("Fallback provider %s failed: %s", self.fallback_model.value, fallback_error)
                raise fallback_error from primary_error
            return ChainResult(result=result, model=self.fallback_model, fallback_used=True)
