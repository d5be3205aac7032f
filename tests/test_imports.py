"""
Import checks for every package module.
"""

import importlib

import pytest

MODULES = [
    "ai_cost_router.core.catalog",
    "ai_cost_router.core.cipher",
    "ai_cost_router.core.dispatcher",
    "ai_cost_router.core.errors",
    "ai_cost_router.core.ledger",
    "ai_cost_router.core.pricing",
    "ai_cost_router.core.profile_cache",
    "ai_cost_router.core.quota",
    "ai_cost_router.core.request",
    "ai_cost_router.core.response_cache",
    "ai_cost_router.core.selector",
    "ai_cost_router.core.singleflight",
    "ai_cost_router.core.token_counter",
    "ai_cost_router.providers",
    "ai_cost_router.providers.anthropic_client",
    "ai_cost_router.providers.base",
    "ai_cost_router.providers.fallback",
    "ai_cost_router.providers.gemini_client",
    "ai_cost_router.providers.openai_client",
    "ai_cost_router.providers.registry",
    "ai_cost_router.storage.db",
    "ai_cost_router.storage.memory",
    "ai_cost_router.storage.models",
    "ai_cost_router.storage.repository",
    "ai_cost_router.config.loader",
    "ai_cost_router.cli.main",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    assert importlib.import_module(name) is not None


def test_provider_package_exports():
    providers = importlib.import_module("ai_cost_router.providers")
    for name in providers.__all__:
        assert hasattr(providers, name)
