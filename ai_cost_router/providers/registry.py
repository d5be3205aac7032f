"""
Adapter wiring from provider API keys.

A model whose key is absent is simply not registered; requests routed to
it fail over to the fallback model.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import httpx

from ai_cost_router.core.catalog import ModelId

from .anthropic_client import anthropic_adapter
from .base import ProviderAdapter
from .gemini_client import GeminiAdapter
from .openai_client import grok_adapter, image_adapter, openai_adapter, perplexity_adapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSettings:
    """API keys per provider; None means not configured."""
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    grok_api_key: Optional[str] = None
    perplexity_api_key: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProviderSettings":
        env = os.environ if env is None else env

        def key(name: str) -> Optional[str]:
            value = (env.get(name) or "").strip()
            return value or None

        return cls(
            openai_api_key=key("OPENAI_API_KEY"),
            anthropic_api_key=key("ANTHROPIC_API_KEY"),
            gemini_api_key=key("GEMINI_API_KEY"),
            grok_api_key=key("GROK_API_KEY"),
            perplexity_api_key=key("PERPLEXITY_API_KEY"),
        )

    def configured(self) -> Dict[str, bool]:
        return {
            "openai": self.openai_api_key is not None,
            "anthropic": self.anthropic_api_key is not None,
            "gemini": self.gemini_api_key is not None,
            "grok": self.grok_api_key is not None,
            "perplexity": self.perplexity_api_key is not None,
        }


def build_adapters(
    settings: ProviderSettings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[ModelId, ProviderAdapter]:
    """Create one adapter per configured provider.

    Args:
        settings: Provider API keys
        http_client: Shared client for HTTP-only adapters

    Returns:
        Adapters keyed by the model they serve
    """
    adapters: Dict[ModelId, ProviderAdapter] = {}
    if settings.openai_api_key:
        adapters[ModelId.GPT_4O_MINI] = openai_adapter(settings.openai_api_key)
        adapters[ModelId.DALL_E_3] = image_adapter(settings.openai_api_key)
    if settings.anthropic_api_key:
        adapters[ModelId.CLAUDE_35_HAIKU] = anthropic_adapter(settings.anthropic_api_key)
    if settings.gemini_api_key:
        adapters[ModelId.GEMINI_15_FLASH] = GeminiAdapter(settings.gemini_api_key, client=http_client)
    if settings.grok_api_key:
        adapters[ModelId.GROK_4_FAST] = grok_adapter(settings.grok_api_key)
    if settings.perplexity_api_key:
        adapters[ModelId.PERPLEXITY_SONAR] = perplexity_adapter(settings.perplexity_api_key)

    missing = [model.value for model in ModelId if model not in adapters]
    if missing:
        logger.info("No provider key for: %s", ", ".join(missing))
    return adapters
