from typing import Any

from deepshell.providers.base import LLMProvider, LLMResponse


class ScriptedProvider(LLMProvider):
    """Replays canned replies; an Exception item is raised instead of returned."""

    def __init__(self, replies: list[Any] | None = None, fallback: str = "done"):
        super().__init__(api_key="test-key")
        self.replies = list(replies or [])
        self.fallback = fallback
        self.calls: list[list[dict[str, Any]]] = []

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        self.calls.append(messages)
        if not self.replies:
            return LLMResponse(content=self.fallback)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = await reply(messages)
        return LLMResponse(content=reply)

    def get_default_model(self) -> str:
        return "scripted"
