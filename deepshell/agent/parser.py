"""Response parser: split a model reply into chat, shell and delegation actions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

BLOCK_START = ">>>"
BLOCK_END = "<<<"
PREVIEW_CHARS = 200

_AGENT_LINE = re.compile(r"^agent\s+(\w+)\s*:?\s*(.*)$", re.IGNORECASE)
_SENTINEL = re.compile(
    rf"^(?:{re.escape(BLOCK_START)}\s*)?(exit|pause|done)(?:\s*{re.escape(BLOCK_END)})?$",
    re.IGNORECASE,
)


class ActionType(str, Enum):
    CHAT = "chat"
    SHELL = "shell"
    DELEGATE = "delegate"


@dataclass(frozen=True)
class ChatAction:
    text: str
    type: ActionType = field(default=ActionType.CHAT, init=False)


@dataclass(frozen=True)
class ShellAction:
    content: str
    type: ActionType = field(default=ActionType.SHELL, init=False)


@dataclass(frozen=True)
class DelegateAction:
    agent_id: str
    message: str
    type: ActionType = field(default=ActionType.DELEGATE, init=False)


Action = ChatAction | ShellAction | DelegateAction


@dataclass(frozen=True)
class UnclosedBlock:
    """A start marker with no matching end marker."""

    start_index: int
    preview: str


@dataclass(frozen=True)
class ParseDiagnostics:
    unclosed_blocks: tuple[UnclosedBlock, ...] = ()


@dataclass(frozen=True)
class ParseResult:
    actions: tuple[Action, ...]
    commands: tuple[str, ...]
    primary_type: ActionType
    diagnostics: ParseDiagnostics = field(default_factory=ParseDiagnostics)


def match_sentinel(text: str) -> str | None:
    """Return the lower-cased sentinel word (exit/pause/done) if `text` is one."""
    match = _SENTINEL.match((text or "").strip())
    return match.group(1).lower() if match else None


def is_completion_sentinel(text: str) -> bool:
    return match_sentinel(text) is not None


class ResponseParser:
    """
    Single-pass parser for the `>>> ... <<<` command-block protocol.

    Text outside command blocks is chat. Within chat, a line of the form
    `agent <id>[:] <message>` is a delegation request. A start marker without
    an end marker is recorded as a diagnostic and the remainder is kept as chat.

    The parser holds no state between calls.
    """

    def parse(self, response: str) -> ParseResult:
        text = response or ""
        actions: list[Action] = []
        unclosed: list[UnclosedBlock] = []

        cursor = 0
        while cursor < len(text):
            start = text.find(BLOCK_START, cursor)
            if start == -1:
                self._append_chat_segment(text[cursor:], actions)
                break

            self._append_chat_segment(text[cursor:start], actions)

            end = text.find(BLOCK_END, start + len(BLOCK_START))
            if end == -1:
                unclosed.append(
                    UnclosedBlock(start_index=start, preview=text[start : start + PREVIEW_CHARS])
                )
                self._append_chat_segment(text[start:], actions)
                break

            content = text[start + len(BLOCK_START) : end].strip()
            if content:
                actions.append(ShellAction(content=content))
            cursor = end + len(BLOCK_END)

        commands = tuple(a.content for a in actions if isinstance(a, ShellAction))
        if commands:
            primary = ActionType.SHELL
        elif any(isinstance(a, DelegateAction) for a in actions):
            primary = ActionType.DELEGATE
        else:
            primary = ActionType.CHAT

        return ParseResult(
            actions=tuple(actions),
            commands=commands,
            primary_type=primary,
            diagnostics=ParseDiagnostics(unclosed_blocks=tuple(unclosed)),
        )

    @staticmethod
    def _append_chat_segment(segment: str, actions: list[Action]) -> None:
        if not segment:
            return

        buffer: list[str] = []

        def flush() -> None:
            chat = "\n".join(buffer).strip()
            if chat:
                actions.append(ChatAction(text=chat))
            buffer.clear()

        for raw_line in segment.split("\n"):
            line = raw_line.strip()
            if not line:
                flush()
                continue

            agent_match = _AGENT_LINE.match(line)
            if agent_match:
                flush()
                actions.append(
                    DelegateAction(
                        agent_id=agent_match.group(1),
                        message=(agent_match.group(2) or "").strip(),
                    )
                )
                continue

            buffer.append(line)

        flush()
