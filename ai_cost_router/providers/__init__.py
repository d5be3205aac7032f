"""
Provider adapters for AI Cost Router.

Normalizes OpenAI, Anthropic, Gemini, Grok and Perplexity calls behind one
adapter interface and runs them through a single-fallback chain.
"""

from .base import AdapterResult, ProviderAdapter, ProviderRequest
from .fallback import ChainResult, FallbackChain
from .registry import ProviderSettings, build_adapters

__all__ = [
    "AdapterResult",
    "ChainResult",
    "FallbackChain",
    "ProviderAdapter",
    "ProviderRequest",
    "ProviderSettings",
    "build_adapters",
]
