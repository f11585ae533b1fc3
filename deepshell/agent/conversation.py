"""Conversation manager: model requests, size checks and compaction."""

from __future__ import annotations

from typing import Any

from loguru import logger

from deepshell.agent.context import ContextBuilder
from deepshell.errors import ModelCallFailed
from deepshell.providers.base import LLMProvider
from deepshell.session.manager import SessionManager

SIZE_NORMAL = "normal"
SIZE_WARNING = "warning"
SIZE_NEEDS_COMPACT = "needs_compact"

_COMPACTION_SYSTEM_PROMPT = (
    "You are a conversation synthesis expert. "
    "Your task is to reduce a long conversation to its essence (20% of original size) "
    "while keeping all important information to maintain continuity. "
    "Return ONLY the compacted text, without additional comments."
)


class ConversationManager:
    """Sends prompts to the model on behalf of one agent and keeps its history bounded."""

    MIN_MESSAGES_TO_COMPACT = 10

    def __init__(
        self,
        sessions: SessionManager,
        provider: LLMProvider,
        context: ContextBuilder,
        warn_threshold: int = 90,
        compact_threshold: int = 100,
        model: str | None = None,
    ):
        self.sessions = sessions
        self.provider = provider
        self.context = context
        self.warn_threshold = warn_threshold
        self.compact_threshold = compact_threshold
        self.model = model

    def check_size(self) -> str:
        size = len(self.sessions.messages)
        if size >= self.compact_threshold:
            return SIZE_NEEDS_COMPACT
        if size >= self.warn_threshold:
            return SIZE_WARNING
        return SIZE_NORMAL

    async def ask(self, prompt: str, system_prompt: str) -> str:
        """
        Send `prompt` with the accumulated history and record the exchange.

        Raises:
            ModelCallFailed: on HTTP, payload or timeout errors.
        """
        history = self.sessions.current.get_history()
        final_system_prompt = self.context.build_system_prompt(
            system_prompt, include_bootstrap=not history
        )
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": final_system_prompt},
            *history,
            {"role": "user", "content": prompt},
        ]

        response = await self.provider.chat(messages=messages, model=self.model)
        content = response.content or ""

        self.sessions.add_message("user", prompt)
        self.sessions.add_message("assistant", content)
        self.sessions.save()
        return content

    async def compact(self) -> bool:
        """Summarize the history with the model, falling back to head+tail truncation."""
        messages = self.sessions.messages
        total = len(messages)
        if total <= self.MIN_MESSAGES_TO_COMPACT:
            logger.info(f"Conversation has {total} messages, no compaction needed")
            return False

        logger.info(f"Compacting conversation ({total} messages)")
        conversation = "\n\n".join(
            f"{str(m.get('role', '?')).upper()}:\n{m.get('content', '')}" for m in messages
        )
        prompt = f"""Here is the complete history of a conversation between an AI assistant and a user.
Compact this conversation while keeping only the most relevant information.
Reduce the size to about 20% of the original while preserving:
1. The general context and main objective
2. Important decisions made
3. Problems encountered and their solutions
4. Current project state
5. Key commands executed

Keep the conversation structure (USER/ASSISTANT roles) but merge similar messages.
The compacted version should allow continuing the conversation without losing context.

Conversation to compact:
{conversation}"""

        try:
            response = await self.provider.chat(
                messages=[
                    {"role": "system", "content": _COMPACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
            )
            summary = (response.content or "").strip()
            if not summary:
                raise ModelCallFailed("empty compaction summary")
        except ModelCallFailed as e:
            logger.warning(f"AI compaction failed, using fallback method: {e}")
            return self.compact_fallback()

        summary_message = {
            "role": "system",
            "content": f"CONVERSATION SUMMARY ({total} messages compacted):\n{summary}",
        }
        self.sessions.set_messages([*messages[:2], summary_message, *messages[-4:]])
        self.sessions.save()
        logger.info(f"Compacted conversation: {total} -> {len(self.sessions.messages)} messages")
        return True

    def compact_fallback(self) -> bool:
        messages = self.sessions.messages
        total = len(messages)
        if total <= self.MIN_MESSAGES_TO_COMPACT:
            return False

        self.sessions.set_messages([*messages[:4], *messages[-6:]])
        self.sessions.save()
        logger.info(
            f"Conversation compacted (fallback): {total} -> {len(self.sessions.messages)} messages"
        )
        return True
