"""DeepSeek chat-completions provider."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from deepshell.errors import ModelCallFailed, ModelCallTimeout
from deepshell.providers.base import LLMProvider, LLMResponse

DEFAULT_DEEPSEEK_URL = "https://api.deepseek.com/chat/completions"
DEFAULT_MODEL = "deepseek-coder"


class DeepSeekProvider(LLMProvider):
    """Call an OpenAI-compatible `/chat/completions` endpoint (DeepSeek by default)."""

    def __init__(
        self,
        api_key: str | None,
        api_base: str | None = None,
        default_model: str = DEFAULT_MODEL,
        max_tokens: int = 1000,
        temperature: float = 0.1,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key=api_key, api_base=api_base or DEFAULT_DEEPSEEK_URL)
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        body = {
            "model": model or self.default_model,
            "messages": _clean_messages(messages),
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key or ''}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_base, headers=headers, json=body)
        except httpx.TimeoutException as e:
            logger.warning(f"Model call timed out after {self.timeout}s")
            raise ModelCallTimeout(f"Request timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Model call failed: {e}")
            raise ModelCallFailed(f"Connection error: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise ModelCallFailed(_friendly_error(response))

        try:
            data = response.json()
        except ValueError as e:
            raise ModelCallFailed("Invalid response format from API") from e

        if not isinstance(data, dict):
            raise ModelCallFailed("Invalid response format from API")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ModelCallFailed(f"API Error: {message}")

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ModelCallFailed("Invalid response format from API")

        choice = choices[0]
        message = choice.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return LLMResponse(
            content=content or "",
            finish_reason=str(choice.get("finish_reason") or "stop"),
            usage=data.get("usage") or {},
            metadata={"model": data.get("model", body["model"])},
        )

    def get_default_model(self) -> str:
        return self.default_model


def _clean_messages(messages: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Drop bookkeeping keys (timestamps etc.) the API does not accept."""
    return [
        {"role": str(m.get("role", "user")), "content": str(m.get("content") or "")}
        for m in messages
    ]


def _friendly_error(response: httpx.Response) -> str:
    if response.status_code == 401:
        return "HTTP 401: Unauthorized. Check your DEEPSEEK_API_KEY."
    if response.status_code == 429:
        return "HTTP 429: Rate limit or quota exceeded. Please try again later."
    return f"HTTP {response.status_code}: {response.reason_phrase}"
