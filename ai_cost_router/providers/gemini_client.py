"""
Gemini adapter over the REST generateContent endpoint.

Uses httpx directly; the free-tier model is also the fallback target, so
this adapter has no SDK dependency beyond the HTTP client.
"""

from typing import Any, Dict, List, Optional

import httpx

from ai_cost_router.core.catalog import ModelId
from ai_cost_router.core.errors import ProviderError
from ai_cost_router.core.token_counter import TokenUsage

from .base import AdapterResult, ProviderAdapter, ProviderRequest

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_API_MODEL = "gemini-1.5-flash"


class GeminiAdapter(ProviderAdapter):
    """Gemini Flash via HTTP; roles map to user/model."""

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = GEMINI_BASE_URL,
        api_model: str = GEMINI_API_MODEL,
        confidence: float = 0.80,
        timeout: float = 30.0,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ):
        super().__init__(ModelId.GEMINI_15_FLASH, api_model, confidence)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.api_model}:generateContent"

    def build_payload(self, request: ProviderRequest) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = [
            {"role": "user" if turn.role == "user" else "model", "parts": [{"text": turn.content}]}
            for turn in request.history
        ]
        parts: List[Dict[str, Any]] = [{"text": request.message}]
        if request.is_vision:
            parts.extend(
                {"inline_data": {"mime_type": f.mime_type, "data": f.base64}} for f in request.files
            )
        contents.append({"role": "user", "parts": parts})
        return {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": request.system_prompt}]},
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, json=payload, headers=headers)

    async def _call(self, request: ProviderRequest) -> AdapterResult:
        response = await self._post(self.build_payload(request))
        response.raise_for_status()
        data = response.json()

        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("gemini returned no candidates", model=self.model_id.value)
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [part["text"] for part in parts if "text" in part]
        content = "".join(texts) if texts else None

        meta = data.get("usageMetadata") or {}
        if "promptTokenCount" in meta and "candidatesTokenCount" in meta:
            usage = TokenUsage(
                prompt_tokens=int(meta["promptTokenCount"]),
                completion_tokens=int(meta["candidatesTokenCount"]),
            )
        elif meta.get("totalTokenCount"):
            usage = TokenUsage.from_total(int(meta["totalTokenCount"]))
        else:
            usage = TokenUsage.estimate(request.prompt_text(), content or "")
        return self._result(content, usage)
