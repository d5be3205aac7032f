"""
Closed variants and the static model catalog.

Feature types, subscription tiers, priorities and model identifiers are
enumerations so the routing and rate tables can be checked for coverage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


class FeatureType(Enum):
    """Category of request driving routing and cache TTL."""
    QUICK_CHAT = "quick_chat"
    TASK_PARSING = "task_parsing"
    NOTE_GENERATION = "note_generation"
    NOTE_SUMMARY = "note_summary"
    NOTE_AUTOFILL = "note_autofill"
    MINDMAP_GENERATION = "mindmap_generation"
    STRATEGIC_BRIEFING = "strategic_briefing"
    VISION_OCR = "vision_ocr"
    VISION_EVENT_DETECTION = "vision_event_detection"
    CALENDAR_EVENT_PARSING = "calendar_event_parsing"
    RESEARCH_WITH_SOURCES = "research_with_sources"
    GMAIL_EVENT_EXTRACTION = "gmail_event_extraction"
    COMPLETION_SUMMARY = "completion_summary"
    COMPLETION_IMAGE = "completion_image"
    GENERAL = "general"

    @classmethod
    def parse(cls, value) -> "FeatureType":
        """Resolve a feature from its enum member or string value.

        Raises:
            ValueError: If the value names no known feature
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [feature.value for feature in cls]
            raise ValueError(f"Unknown feature type '{value}', expected one of: {valid}")

    @property
    def is_vision(self) -> bool:
        return self.value.startswith("vision_")


class Tier(Enum):
    """Subscription level."""
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value) -> "Tier":
        """Resolve a tier; unknown or missing values fall back to FREE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.FREE


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value) -> "Priority":
        if value is None:
            return cls.MEDIUM
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown priority '{value}', expected low, medium or high")


class ModelId(Enum):
    """Models the router can dispatch to."""
    GPT_4O_MINI = "gpt-4o-mini"
    CLAUDE_35_HAIKU = "claude-3.5-haiku"
    GROK_4_FAST = "grok-4-fast"
    PERPLEXITY_SONAR = "perplexity-sonar"
    GEMINI_15_FLASH = "gemini-1.5-flash"
    DALL_E_3 = "dall-e-3"


class Capability(Enum):
    CHAT = "chat"
    VISION = "vision"
    JSON = "json"
    ANALYSIS = "analysis"
    SEARCH = "search"
    CITATIONS = "citations"
    LARGE_CONTEXT = "large_context"
    IMAGE_GENERATION = "image_generation"


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of a routable model."""
    model_id: ModelId
    input_cost_per_million: float  # USD per 1M input tokens
    output_cost_per_million: float  # USD per 1M output tokens
    capabilities: FrozenSet[Capability]
    reliability: float
    context_window: int
    free_credit_cents: int = 0  # Monthly provider credits
    free_tier: bool = False

    @property
    def is_paid(self) -> bool:
        return self.input_cost_per_million > 0 or self.output_cost_per_million > 0

    @property
    def is_credit_funded(self) -> bool:
        return self.free_credit_cents > 0

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


MODEL_CATALOG: Dict[ModelId, ModelDescriptor] = {
    ModelId.GPT_4O_MINI: ModelDescriptor(
        model_id=ModelId.GPT_4O_MINI,
        input_cost_per_million=0.15,
        output_cost_per_million=0.60,
        capabilities=frozenset({Capability.CHAT, Capability.VISION, Capability.JSON}),
        reliability=0.99,
        context_window=128_000,
    ),
    ModelId.CLAUDE_35_HAIKU: ModelDescriptor(
        model_id=ModelId.CLAUDE_35_HAIKU,
        input_cost_per_million=0.80,
        output_cost_per_million=4.00,
        capabilities=frozenset({Capability.CHAT, Capability.VISION, Capability.ANALYSIS}),
        reliability=0.98,
        context_window=200_000,
    ),
    ModelId.GROK_4_FAST: ModelDescriptor(
        model_id=ModelId.GROK_4_FAST,
        input_cost_per_million=5.00,
        output_cost_per_million=15.00,
        capabilities=frozenset({Capability.CHAT, Capability.SEARCH, Capability.VISION}),
        reliability=0.95,
        context_window=128_000,
        free_credit_cents=2500,
    ),
    ModelId.PERPLEXITY_SONAR: ModelDescriptor(
        model_id=ModelId.PERPLEXITY_SONAR,
        input_cost_per_million=5.00,
        output_cost_per_million=5.00,
        capabilities=frozenset({Capability.CHAT, Capability.SEARCH, Capability.CITATIONS}),
        reliability=0.97,
        context_window=128_000,
    ),
    ModelId.GEMINI_15_FLASH: ModelDescriptor(
        model_id=ModelId.GEMINI_15_FLASH,
        input_cost_per_million=0.00,
        output_cost_per_million=0.00,
        capabilities=frozenset({Capability.CHAT, Capability.VISION, Capability.LARGE_CONTEXT}),
        reliability=0.96,
        context_window=1_000_000,
        free_tier=True,
    ),
    ModelId.DALL_E_3: ModelDescriptor(
        model_id=ModelId.DALL_E_3,
        input_cost_per_million=0.00,  # Billed per image, not per token
        output_cost_per_million=0.00,
        capabilities=frozenset({Capability.IMAGE_GENERATION}),
        reliability=0.97,
        context_window=4_000,
    ),
}

# Always-available provider used for free-tier diversion and fallback
FREE_TIER_MODEL = ModelId.GEMINI_15_FLASH


def get_descriptor(model: ModelId) -> ModelDescriptor:
    return MODEL_CATALOG[model]


def required_capability(feature: FeatureType) -> Capability:
    """Capability a model must have to serve the feature."""
    if feature == FeatureType.COMPLETION_IMAGE:
        return Capability.IMAGE_GENERATION
    if feature.is_vision:
        return Capability.VISION
    return Capability.CHAT


def find_model(value: str) -> Optional[ModelId]:
    """Look up a model id by exact value, returning None when unknown."""
    try:
        return ModelId(value)
    except ValueError:
        return None
