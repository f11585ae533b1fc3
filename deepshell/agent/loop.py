"""Task loop: the prompt -> model -> parse -> execute cycle for one agent."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from loguru import logger

from deepshell.agent.conversation import SIZE_NEEDS_COMPACT, SIZE_WARNING, ConversationManager
from deepshell.agent.interrupt import InterruptController
from deepshell.agent.parser import (
    ChatAction,
    DelegateAction,
    ParseResult,
    ResponseParser,
    ShellAction,
    match_sentinel,
)
from deepshell.agent.sandbox import CommandSandbox, ExecutionResult
from deepshell.errors import ErrorKind, ModelCallFailed, TaskInterrupted
from deepshell.session.manager import SessionManager


class TaskState(str, Enum):
    RUNNING = "running"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_USER = "awaiting_user"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"


@dataclass
class TaskOutcome:
    state: TaskState
    iterations: int
    reason: str = ""

    @property
    def interrupted(self) -> bool:
        return self.state == TaskState.INTERRUPTED

    @property
    def paused(self) -> bool:
        return self.state == TaskState.AWAITING_USER


@dataclass(frozen=True)
class ProgressEvent:
    """
    Something the user should see.

    kind: chat | command | output_ok | output_fail | delegate | warning | error | status
    """

    kind: str
    text: str
    agent_id: str = ""
    depth: int = 0


@dataclass
class DelegationResult:
    success: bool
    output: str
    interrupted: bool = False
    paused: bool = False


ProgressCallback = Callable[[ProgressEvent], None]
DelegateCallback = Callable[[str, str], Awaitable[DelegationResult]]


@dataclass
class _Step:
    next_prompt: str = ""
    stop: TaskState | None = None
    reason: str = ""


class TaskLoop:
    """
    Drives one agent until its task completes, pauses, is interrupted,
    or the iteration cap is hit.

    Model and command failures never abort the loop: they are turned into
    the next prompt so the model can correct itself. Only an interrupt
    exits early.
    """

    _NO_ACTIONS_PROMPT = "Give me a valid shell command to execute"
    _CHAT_ONLY_PROMPT = "Give me a valid shell command wrapped between >>> and <<<"
    _HANDLED_PROMPT = "Command handled. Continue with next instruction."

    def __init__(
        self,
        conversation: ConversationManager,
        sandbox: CommandSandbox,
        sessions: SessionManager,
        interrupt: InterruptController,
        system_prompt: str = "",
        agent_id: str = "",
        depth: int = 0,
        max_iterations: int = 100,
        delegate: DelegateCallback | None = None,
        on_progress: ProgressCallback | None = None,
        parser: ResponseParser | None = None,
    ):
        self.conversation = conversation
        self.sandbox = sandbox
        self.sessions = sessions
        self.interrupt = interrupt
        self.system_prompt = system_prompt
        self.agent_id = agent_id
        self.depth = depth
        self.max_iterations = max_iterations
        self.delegate = delegate
        self.on_progress = on_progress
        self.parser = parser or ResponseParser()
        self.state = TaskState.COMPLETED

    async def run(self, initial_prompt: str) -> TaskOutcome:
        """Run until a terminal state; returns how the run ended."""
        self.state = TaskState.RUNNING
        if initial_prompt and not self.sessions.current.initial_prompt:
            self.sessions.set_initial_prompt(initial_prompt)

        unregister = self.interrupt.on_interrupt(self.sandbox.kill)
        prompt = initial_prompt
        iteration = 0
        try:
            while iteration < self.max_iterations:
                iteration += 1
                self.interrupt.check()
                await self._maybe_compact()

                try:
                    self.state = TaskState.AWAITING_MODEL
                    reply = await self.interrupt.run_cancellable(
                        self.conversation.ask(prompt, self.system_prompt)
                    )
                    self.state = TaskState.RUNNING
                    self.interrupt.check()
                    step = await self._process_reply(reply)
                except TaskInterrupted:
                    raise
                except ModelCallFailed as e:
                    self.interrupt.check()
                    self.state = TaskState.RUNNING
                    logger.error(f"[{self.agent_id}] Model call failed ({e.kind.value}): {e}")
                    self._emit("error", f"Error: {e}")
                    prompt = f"Error: {e}. What next?"
                    continue
                except Exception as e:
                    self.interrupt.check()
                    self.state = TaskState.RUNNING
                    logger.exception(f"[{self.agent_id}] Iteration {iteration} failed")
                    self._emit("error", f"Error: {e}")
                    prompt = f"Error: {e}. What next?"
                    continue

                if step.stop is not None:
                    return self._finish(step.stop, iteration, step.reason)
                prompt = step.next_prompt

            logger.info(f"[{self.agent_id}] Maximum iterations ({self.max_iterations}) reached")
            self._emit("status", f"Maximum iterations ({self.max_iterations}) reached")
            return self._finish(TaskState.COMPLETED, iteration, "max_iterations", announce=False)
        except TaskInterrupted:
            return self._finish(TaskState.INTERRUPTED, iteration, "interrupted")
        finally:
            unregister()

    async def _maybe_compact(self) -> None:
        status = self.conversation.check_size()
        if status == SIZE_WARNING:
            logger.warning(
                f"[{self.agent_id}] Conversation is getting long ({len(self.sessions.messages)} messages)"
            )
        if status != SIZE_NEEDS_COMPACT:
            return

        self._emit("status", f"Compacting conversation ({len(self.sessions.messages)} messages)...")
        try:
            await self.interrupt.run_cancellable(self.conversation.compact())
        except TaskInterrupted:
            raise
        except Exception as e:
            logger.error(f"[{self.agent_id}] Compaction failed: {e}")
            self.conversation.compact_fallback()

    async def _process_reply(self, reply: str) -> _Step:
        parsed: ParseResult = self.parser.parse(reply)
        for block in parsed.diagnostics.unclosed_blocks:
            preview = " ".join(block.preview.split())
            logger.warning(
                f"[{self.agent_id}] {ErrorKind.UNCLOSED_COMMAND_BLOCK.value} at offset {block.start_index}"
            )
            self._emit("warning", f"Incomplete command block detected (missing <<<). Preview: {preview}")

        if not parsed.actions:
            self._emit("error", "No valid command found")
            return _Step(next_prompt=self._NO_ACTIONS_PROMPT)

        next_prompt = ""
        executed = False
        for action in parsed.actions:
            self.interrupt.check()

            if isinstance(action, ChatAction):
                self._emit("chat", action.text)
                continue

            if isinstance(action, DelegateAction):
                executed = True
                step = await self._delegate(action)
                self.interrupt.check()
                if step.stop is not None:
                    return step
                next_prompt = step.next_prompt
                continue

            if isinstance(action, ShellAction):
                sentinel = match_sentinel(action.content)
                if sentinel:
                    return self._sentinel_step(sentinel)

                executed = True
                result = await self._execute_shell(action.content)
                if result.paused:
                    return self._sentinel_step("pause")
                next_prompt = self.sandbox.summary_prompt(
                    action.content, result.success, result.output, result.error
                )

        sentinel = match_sentinel(reply)
        if sentinel:
            return self._sentinel_step(sentinel)

        if not executed:
            return _Step(next_prompt=self._CHAT_ONLY_PROMPT)
        return _Step(next_prompt=next_prompt or self._HANDLED_PROMPT)

    async def _execute_shell(self, command: str) -> ExecutionResult:
        self._emit("command", command)
        result = await self.sandbox.execute(command)

        if result.error_kind == ErrorKind.COMMAND_TOO_LONG:
            self.sessions.add_message(
                "system",
                f"Your command contained {result.line_count} lines. "
                f"The maximum allowed is {self.sandbox.max_lines}. "
                f"Split large scripts into multiple >>>/<<< blocks "
                f"(each ≤{self.sandbox.max_lines} lines) before resubmitting.",
            )
            self.sessions.save()
        elif result.error_kind == ErrorKind.UNTERMINATED_HEREDOC:
            self.sessions.add_message("system", result.output)
            self.sessions.save()

        if result.interrupted or self.interrupt.interrupted:
            raise TaskInterrupted()

        if result.paused:
            return result

        self.sessions.add_history_entry(command, result.success, result.output)
        self.sessions.save()
        self._emit("output_ok" if result.success else "output_fail", result.output)
        if not result.success:
            kind = result.error_kind.value if result.error_kind else "failed"
            logger.info(f"[{self.agent_id}] Command {kind}: {result.error}")
        return result

    async def _delegate(self, action: DelegateAction) -> _Step:
        label = f"agent {action.agent_id} {action.message}".strip()
        if self.delegate is None:
            self._emit("error", f"Agent delegation unsupported: {action.agent_id}")
            self.sessions.add_history_entry(label, False, "Agent delegation unsupported")
            self.sessions.save()
            return _Step(next_prompt=f"Error: delegation to agent {action.agent_id} is not available. What next?")

        self._emit("delegate", f'Delegating to agent "{action.agent_id}" with task: "{action.message}"')
        result = await self.delegate(action.agent_id, action.message)
        self.sessions.add_history_entry(label, result.success, result.output)
        self.sessions.save()

        if result.interrupted:
            raise TaskInterrupted()
        if result.paused:
            return _Step(stop=TaskState.AWAITING_USER, reason="delegate_paused")
        if result.success:
            return _Step(next_prompt=f"Delegated to agent {action.agent_id}. Continue.")
        return _Step(next_prompt=result.output)

    def _sentinel_step(self, sentinel: str) -> _Step:
        if sentinel == "pause":
            return _Step(stop=TaskState.AWAITING_USER, reason="pause")
        return _Step(stop=TaskState.COMPLETED, reason=sentinel)

    def _finish(
        self, state: TaskState, iterations: int, reason: str, *, announce: bool = True
    ) -> TaskOutcome:
        self.state = state
        if announce:
            if state == TaskState.INTERRUPTED:
                message = "Task interrupted - returning to main prompt"
            elif state == TaskState.AWAITING_USER:
                message = "Task paused - waiting for user"
            else:
                message = "Task completed"
            logger.info(f"[{self.agent_id}] {message}")
            self._emit("status", message)
        return TaskOutcome(state=state, iterations=iterations, reason=reason)

    def _emit(self, kind: str, text: str) -> None:
        if self.on_progress is None:
            return
        self.on_progress(ProgressEvent(kind=kind, text=text, agent_id=self.agent_id, depth=self.depth))
