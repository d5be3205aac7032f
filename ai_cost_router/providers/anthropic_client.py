"""Anthropic Messages API adapter."""

from typing import Any, Dict, List

from anthropic import AsyncAnthropic

from ai_cost_router.core.catalog import ModelId
from ai_cost_router.core.token_counter import TokenUsage

from .base import AdapterResult, ProviderAdapter, ProviderRequest

ANTHROPIC_API_MODEL = "claude-3-5-haiku-20241022"


class AnthropicAdapter(ProviderAdapter):
    """Claude adapter; the system prompt goes in its own field."""

    def __init__(
        self,
        client: AsyncAnthropic,
        api_model: str = ANTHROPIC_API_MODEL,
        confidence: float = 0.92,
        max_tokens: int = 1024,
    ):
        super().__init__(ModelId.CLAUDE_35_HAIKU, api_model, confidence)
        self.client = client
        self.max_tokens = max_tokens

    def build_messages(self, request: ProviderRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = request.chat_messages(include_system=False)
        # The API expects the conversation to open with a user turn
        while len(messages) > 1 and messages[0]["role"] != "user":
            messages.pop(0)
        if request.is_vision:
            content: List[Dict[str, Any]] = [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": f.mime_type, "data": f.base64},
                }
                for f in request.files
            ]
            content.append({"type": "text", "text": request.message})
            messages[-1] = {"role": "user", "content": content}
        return messages

    async def _call(self, request: ProviderRequest) -> AdapterResult:
        response = await self.client.messages.create(
            model=self.api_model,
            max_tokens=self.max_tokens,
            system=request.system_prompt,
            messages=self.build_messages(request),
        )
        texts = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        content = "".join(texts) if texts else None
        usage = response.usage
        if usage is not None:
            token_usage = TokenUsage(prompt_tokens=usage.input_tokens, completion_tokens=usage.output_tokens)
        else:
            token_usage = TokenUsage.estimate(request.prompt_text(), content or "")
        return self._result(content, token_usage)


def anthropic_adapter(api_key: str) -> AnthropicAdapter:
    return AnthropicAdapter(AsyncAnthropic(api_key=api_key))
