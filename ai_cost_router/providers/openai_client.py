"""
OpenAI-protocol adapters.

OpenAI chat, xAI Grok and Perplexity all speak the chat completions
protocol, so one adapter serves all three with different clients. Image
generation goes through the images endpoint.
"""

from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from ai_cost_router.core.catalog import ModelId
from ai_cost_router.core.token_counter import TokenUsage

from .base import AdapterResult, ProviderAdapter, ProviderRequest, extract_citations

GROK_BASE_URL = "https://api.x.ai/v1"
PERPLEXITY_BASE_URL = "https://api.perplexity.ai"


def _usage_from_completion(completion: Any, request: ProviderRequest, content: str) -> TokenUsage:
    usage = getattr(completion, "usage", None)
    if usage is not None and usage.prompt_tokens is not None and usage.completion_tokens is not None:
        return TokenUsage(prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens)
    if usage is not None and getattr(usage, "total_tokens", None):
        return TokenUsage.from_total(usage.total_tokens)
    return TokenUsage.estimate(request.prompt_text(), content)


class OpenAIChatAdapter(ProviderAdapter):
    """Chat completions with inline image parts for vision requests."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model_id: ModelId = ModelId.GPT_4O_MINI,
        api_model: str = "gpt-4o-mini",
        confidence: float = 0.85,
        vision_confidence: float = 0.88,
        temperature: float = 0.7,
        max_tokens: Optional[int] = 1000,
    ):
        super().__init__(model_id, api_model, confidence)
        self.client = client
        self.vision_confidence = vision_confidence
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = request.chat_messages()
        if request.is_vision:
            content: List[Dict[str, Any]] = [{"type": "text", "text": request.message}]
            for attachment in request.files:
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.mime_type};base64,{attachment.base64}"},
                })
            messages[-1] = {"role": "user", "content": content}
        return messages

    def _completion_kwargs(self, request: ProviderRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.api_model,
            "messages": self.build_messages(request),
            "temperature": self.temperature,
        }
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        return kwargs

    async def _call(self, request: ProviderRequest) -> AdapterResult:
        completion = await self.client.chat.completions.create(**self._completion_kwargs(request))
        content = completion.choices[0].message.content
        usage = _usage_from_completion(completion, request, content or "")
        confidence = self.vision_confidence if request.is_vision else self.confidence
        return self._result(content, usage, confidence=confidence)


class PerplexityAdapter(OpenAIChatAdapter):
    """Search-backed chat; citation markers become structured sources."""

    def __init__(self, client: AsyncOpenAI, api_model: str = "sonar", confidence: float = 0.95):
        super().__init__(
            client,
            model_id=ModelId.PERPLEXITY_SONAR,
            api_model=api_model,
            confidence=confidence,
            vision_confidence=confidence,
            max_tokens=None,
        )

    async def _call(self, request: ProviderRequest) -> AdapterResult:
        completion = await self.client.chat.completions.create(**self._completion_kwargs(request))
        content = completion.choices[0].message.content
        usage = _usage_from_completion(completion, request, content or "")
        return self._result(content, usage, sources=extract_citations(content or ""))


class ImageGenerationAdapter(ProviderAdapter):
    """Image generation; the returned content is the image URL."""

    def __init__(
        self,
        client: AsyncOpenAI,
        api_model: str = "dall-e-3",
        size: str = "1024x1024",
        quality: str = "standard",
        confidence: float = 0.9,
    ):
        super().__init__(ModelId.DALL_E_3, api_model, confidence)
        if quality not in ("standard", "hd"):
            raise ValueError(f"Invalid quality: {quality}. Use 'standard' or 'hd'.")
        self.client = client
        self.size = size
        self.quality = quality

    async def _call(self, request: ProviderRequest) -> AdapterResult:
        response = await self.client.images.generate(
            model=self.api_model,
            prompt=request.message,
            n=1,
            size=self.size,
            quality=self.quality,
        )
        image = response.data[0]
        url = getattr(image, "url", None)
        # Image APIs report no token usage
        usage = TokenUsage.estimate(request.message, "")
        return self._result(url, usage)


def openai_adapter(api_key: str, **kwargs: Any) -> OpenAIChatAdapter:
    return OpenAIChatAdapter(AsyncOpenAI(api_key=api_key), **kwargs)


def grok_adapter(api_key: str, base_url: str = GROK_BASE_URL) -> OpenAIChatAdapter:
    return OpenAIChatAdapter(
        AsyncOpenAI(api_key=api_key, base_url=base_url),
        model_id=ModelId.GROK_4_FAST,
        api_model="grok-4-fast",
        confidence=0.90,
        vision_confidence=0.90,
        max_tokens=None,
    )


def perplexity_adapter(api_key: str, base_url: str = PERPLEXITY_BASE_URL) -> PerplexityAdapter:
    return PerplexityAdapter(AsyncOpenAI(api_key=api_key, base_url=base_url))


def image_adapter(api_key: str) -> ImageGenerationAdapter:
    return ImageGenerationAdapter(AsyncOpenAI(api_key=api_key))
