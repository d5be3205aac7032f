"""
Provider adapter contract.

Every backend takes the same ProviderRequest and returns the same
AdapterResult. Anything that goes wrong inside a provider call surfaces
as ProviderError so the fallback chain has one thing to catch.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from ai_cost_router.core.catalog import FeatureType, ModelId
from ai_cost_router.core.errors import ProviderError
from ai_cost_router.core.pricing import calculate_cost
from ai_cost_router.core.request import (
    AIRequest,
    Citation,
    ConversationTurn,
    FileAttachment,
    MAX_HISTORY_TURNS,
)
from ai_cost_router.core.token_counter import TokenUsage


BASE_PROMPT = (
    "You are an AI assistant for a productivity platform. You help users "
    "manage tasks, notes and goals and provide strategic insights."
)

PERSONALITY_PROMPTS = {
    "supportive": "Be encouraging, empathetic, and supportive.",
    "tough_love": "Be direct and challenging. Hold the user accountable.",
    "analytical": "Be logical and data-driven. Provide structured analysis.",
    "motivational": "Be energetic, inspiring, and action-oriented.",
}

FEATURE_INSTRUCTIONS = {
    FeatureType.TASK_PARSING: "Parse the input into a structured task. Return JSON.",
    FeatureType.CALENDAR_EVENT_PARSING: "Extract calendar events from the input. Return JSON.",
    FeatureType.GMAIL_EVENT_EXTRACTION: "Extract events from the email. Return JSON.",
    FeatureType.VISION_EVENT_DETECTION: "Detect events in the attached images. Return JSON.",
    FeatureType.MINDMAP_GENERATION: "Build a mind map of the user's context. Return JSON with nodes and edges.",
    FeatureType.STRATEGIC_BRIEFING: "Write a strategic briefing with actionable recommendations.",
    FeatureType.RESEARCH_WITH_SOURCES: "Answer with numbered citations in the form [n] <url>.",
}

_CITATION = re.compile(r"\[(\d+)\]\s*(https?://[^\s\]\)]+)")


def build_system_prompt(request: AIRequest) -> str:
    ctx = request.context
    parts = [BASE_PROMPT]
    if ctx.user_profile and ctx.user_profile.personality_mode in PERSONALITY_PROMPTS:
        parts.append(f"Personality: {PERSONALITY_PROMPTS[ctx.user_profile.personality_mode]}")
    instruction = FEATURE_INSTRUCTIONS.get(request.feature_type)
    if instruction:
        parts.append(f"Your task: {instruction}")
    if ctx.user_goals:
        parts.append("User's goals:\n" + "\n".join(f"- {g.term}: {g.text}" for g in ctx.user_goals))
    if ctx.current_time:
        parts.append(f"Current time: {ctx.current_time.isoformat()}")
    return "\n\n".join(parts)


def extract_citations(content: str) -> List[Citation]:
    """Collect ``[n] <url>`` markers from provider text, first occurrence wins."""
    seen = set()
    citations = []
    for match in _CITATION.finditer(content or ""):
        number = int(match.group(1))
        if number in seen:
            continue
        seen.add(number)
        citations.append(Citation(number=number, url=match.group(2).rstrip(".,;:")))
    return citations


@dataclass(frozen=True)
class ProviderRequest:
    """Request as handed to adapters: history capped, system prompt built."""
    feature_type: FeatureType
    message: str
    system_prompt: str
    history: List[ConversationTurn]
    files: List[FileAttachment]

    @classmethod
    def from_request(cls, request: AIRequest) -> "ProviderRequest":
        return cls(
            feature_type=request.feature_type,
            message=request.message,
            system_prompt=build_system_prompt(request),
            history=request.context.recent_history(MAX_HISTORY_TURNS),
            files=list(request.files),
        )

    @property
    def is_vision(self) -> bool:
        return self.feature_type.is_vision and bool(self.files)

    def prompt_text(self) -> str:
        """Everything sent as input, for length-based token estimates."""
        return "\n".join([self.system_prompt] + [t.content for t in self.history] + [self.message])

    def chat_messages(self, include_system: bool = True) -> List[Dict[str, str]]:
        """OpenAI-style role/content list ending with the current message."""
        messages: List[Dict[str, str]] = []
        if include_system:
            messages.append({"role": "system", "content": self.system_prompt})
        for turn in self.history:
            role = "user" if turn.role == "user" else "assistant"
            messages.append({"role": role, "content": turn.content})
        messages.append({"role": "user", "content": self.message})
        return messages


@dataclass(frozen=True)
class AdapterResult:
    """Normalized provider output."""
    content: str
    usage: TokenUsage
    cost_cents: int
    confidence: float
    sources: Optional[List[Citation]] = None

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens


class ProviderAdapter(ABC):
    """Base class for provider backends."""

    def __init__(self, model_id: ModelId, api_model: str, confidence: float):
        self.model_id = model_id
        self.api_model = api_model
        self.confidence = confidence

    async def execute(self, request: ProviderRequest) -> AdapterResult:
        """Run one provider call.

        Raises:
            ProviderError: On any transport, API or response-shape failure
        """
        try:
            return await self._call(request)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{self.model_id.value} request failed: {type(e).__name__}: {e}",
                model=self.model_id.value,
            ) from e

    @abstractmethod
    async def _call(self, request: ProviderRequest) -> AdapterResult:
        """Provider-specific request/response translation."""

    def _result(
        self,
        content: Optional[str],
        usage: TokenUsage,
        confidence: Optional[float] = None,
        sources: Optional[List[Citation]] = None,
    ) -> AdapterResult:
        if content is None:
            raise ProviderError(f"{self.model_id.value} returned no content", model=self.model_id.value)
        return AdapterResult(
            content=content,
            usage=usage,
            cost_cents=calculate_cost(self.model_id, usage),
            confidence=self.confidence if confidence is None else confidence,
            sources=sources,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model_id.value!r}, api_model={self.api_model!r})"
