"""
Model selection.

Maps (feature type, user tier, remaining budget) to a concrete model.

Selection order:
1. Feature routing table (tier-conditioned entries for premium features)
2. Free-tier diversion to the zero-cost model at a fixed rate, decided by
   hashing the request fingerprint so the same request always routes the
   same way
3. Budget downgrade when the monthly allowance or a provider's free
   credits are used up
4. Complexity classification for features without a table entry
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional

from .catalog import (
    FREE_TIER_MODEL,
    MODEL_CATALOG,
    FeatureType,
    ModelId,
    Tier,
    required_capability,
)
from .errors import QuotaExceededError
from .ledger import BudgetState
from .profile_cache import CachedProfile
from .quota import TIER_LIMITS, TierLimits
from .request import AIRequest
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_FREE_DIVERSION_RATE = 0.3
DEFAULT_MID_TIER_MIN_BUDGET_CENTS = 3

LOW_COMPLEXITY_MAX_TOKENS = 500
MEDIUM_COMPLEXITY_MAX_TOKENS = 2000
DEEP_CONTEXT_TURNS = 5

_REASONING = re.compile(r"\b(analyze|compare|explain why|how would|strategy|plan)\b", re.IGNORECASE)


class Complexity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Route:
    """Preferred model for a feature, with an optional free-tier override."""
    default: ModelId
    free_tier: Optional[ModelId] = None

    def for_tier(self, tier: Tier) -> ModelId:
        if tier == Tier.FREE and self.free_tier is not None:
            return self.free_tier
        return self.default


ROUTING_TABLE: Dict[FeatureType, Route] = {
    # Fast structured output and vision
    FeatureType.QUICK_CHAT: Route(ModelId.GPT_4O_MINI),
    FeatureType.TASK_PARSING: Route(ModelId.GPT_4O_MINI),
    FeatureType.CALENDAR_EVENT_PARSING: Route(ModelId.GPT_4O_MINI),
    FeatureType.GMAIL_EVENT_EXTRACTION: Route(ModelId.GPT_4O_MINI),
    FeatureType.VISION_OCR: Route(ModelId.GPT_4O_MINI),
    FeatureType.VISION_EVENT_DETECTION: Route(ModelId.GPT_4O_MINI),
    # Quality reasoning for paying tiers
    FeatureType.NOTE_GENERATION: Route(ModelId.CLAUDE_35_HAIKU, free_tier=ModelId.GPT_4O_MINI),
    FeatureType.NOTE_AUTOFILL: Route(ModelId.CLAUDE_35_HAIKU, free_tier=ModelId.GPT_4O_MINI),
    FeatureType.STRATEGIC_BRIEFING: Route(ModelId.CLAUDE_35_HAIKU, free_tier=ModelId.GPT_4O_MINI),
    FeatureType.MINDMAP_GENERATION: Route(ModelId.CLAUDE_35_HAIKU, free_tier=ModelId.GPT_4O_MINI),
    FeatureType.COMPLETION_SUMMARY: Route(ModelId.CLAUDE_35_HAIKU, free_tier=ModelId.GPT_4O_MINI),
    # Search with citations
    FeatureType.RESEARCH_WITH_SOURCES: Route(ModelId.PERPLEXITY_SONAR, free_tier=FREE_TIER_MODEL),
    # Image generation
    FeatureType.COMPLETION_IMAGE: Route(ModelId.DALL_E_3),
}

# Routed by complexity classification instead of the table
COMPLEXITY_ROUTED: FrozenSet[FeatureType] = frozenset(
    feature for feature in FeatureType if feature not in ROUTING_TABLE
)


def _context_text(request: AIRequest) -> str:
    ctx = request.context
    return json.dumps(
        {
            "history": [[t.role, t.content] for t in ctx.conversation_history],
            "goals": [g.text for g in ctx.user_goals],
            "tasks": [t.title for t in ctx.recent_tasks],
            "notes": [[n.title, n.content] for n in ctx.recent_notes],
        },
        ensure_ascii=False,
    )


def classify_complexity(request: AIRequest) -> Complexity:
    """Classify a request by size, context depth and reasoning cues."""
    tokens = estimate_tokens(request.message + _context_text(request))
    deep_context = len(request.context.conversation_history) > DEEP_CONTEXT_TURNS
    needs_reasoning = _REASONING.search(request.message) is not None

    if tokens < LOW_COMPLEXITY_MAX_TOKENS and not deep_context and not needs_reasoning:
        return Complexity.LOW
    if tokens < MEDIUM_COMPLEXITY_MAX_TOKENS or (deep_context and needs_reasoning):
        return Complexity.MEDIUM
    return Complexity.HIGH


def diversion_bucket(key: str) -> float:
    """Map a key onto [0, 1) using SHA-256, stable across processes."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / float(1 << 64)


class ModelSelector:
    """Feature-, tier- and budget-aware router."""

    def __init__(
        self,
        free_diversion_rate: float = DEFAULT_FREE_DIVERSION_RATE,
        mid_tier_min_budget_cents: int = DEFAULT_MID_TIER_MIN_BUDGET_CENTS,
        limits: Optional[Mapping[Tier, TierLimits]] = None,
    ):
        if not 0.0 <= free_diversion_rate <= 1.0:
            raise ValueError("free_diversion_rate must be between 0 and 1")
        self.free_diversion_rate = free_diversion_rate
        self.mid_tier_min_budget_cents = mid_tier_min_budget_cents
        self._limits: Dict[Tier, TierLimits] = dict(TIER_LIMITS)
        if limits:
            self._limits.update(limits)

    def select_model(
        self,
        feature_type: FeatureType,
        profile: CachedProfile,
        budget: BudgetState,
        fingerprint: str = "",
        request: Optional[AIRequest] = None,
    ) -> ModelId:
        """Pick the model for a request.

        Args:
            feature_type: Request feature
            profile: Cached tier and daily count
            budget: Remaining monthly allowance and free credits
            fingerprint: Request fingerprint driving the free-tier diversion
            request: Full request, needed for complexity routing

        Returns:
            The model to dispatch to

        Raises:
            QuotaExceededError: If the profile is already at its daily limit
        """
        limits = self._limits.get(profile.tier, self._limits[Tier.FREE])
        if profile.daily_count >= limits.daily:
            raise QuotaExceededError(
                "Daily AI request limit reached. Upgrade for more requests.",
                tier=profile.tier.value,
                limit=limits.daily,
                period="daily",
            )

        route = ROUTING_TABLE.get(feature_type)
        if route is not None:
            model = route.for_tier(profile.tier)
        else:
            model = self._by_complexity(request, budget)

        if profile.tier == Tier.FREE and self._should_divert(feature_type, model, fingerprint):
            model = FREE_TIER_MODEL

        selected = self._apply_budget(feature_type, model, budget)
        logger.debug(
            "Selected %s for %s (tier=%s, routed=%s)",
            selected.value, feature_type.value, profile.tier.value, model.value,
        )
        return selected

    def _by_complexity(self, request: Optional[AIRequest], budget: BudgetState) -> ModelId:
        complexity = classify_complexity(request) if request is not None else Complexity.LOW
        if complexity == Complexity.LOW:
            return ModelId.GPT_4O_MINI
        if complexity == Complexity.MEDIUM:
            if budget.monthly_remaining_cents > self.mid_tier_min_budget_cents:
                return ModelId.CLAUDE_35_HAIKU
            return ModelId.GPT_4O_MINI
        if budget.credit_remaining(ModelId.GROK_4_FAST) > 0:
            return ModelId.GROK_4_FAST
        return FREE_TIER_MODEL

    def _free_model_can_serve(self, feature_type: FeatureType) -> bool:
        return MODEL_CATALOG[FREE_TIER_MODEL].supports(required_capability(feature_type))

    def _should_divert(self, feature_type: FeatureType, model: ModelId, fingerprint: str) -> bool:
        if model == FREE_TIER_MODEL or self.free_diversion_rate <= 0:
            return False
        if not self._free_model_can_serve(feature_type):
            return False
        return diversion_bucket(fingerprint or feature_type.value) < self.free_diversion_rate

    def _apply_budget(self, feature_type: FeatureType, model: ModelId, budget: BudgetState) -> ModelId:
        descriptor = MODEL_CATALOG[model]
        if descriptor.is_credit_funded:
            exhausted = budget.credit_remaining(model) <= 0
        else:
            exhausted = descriptor.is_paid and not budget.has_monthly_allowance
        if exhausted and model != FREE_TIER_MODEL and self._free_model_can_serve(feature_type):
            logger.info("Budget exhausted for %s, downgrading to %s", model.value, FREE_TIER_MODEL.value)
            return FREE_TIER_MODEL
        return model
