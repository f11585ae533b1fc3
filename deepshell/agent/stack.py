"""Stack of nested agent contexts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from deepshell.agent.context import ContextBuilder
from deepshell.agent.conversation import ConversationManager
from deepshell.agent.interrupt import InterruptController
from deepshell.agent.loop import (
    DelegationResult,
    ProgressCallback,
    ProgressEvent,
    TaskLoop,
    TaskOutcome,
    TaskState,
)
from deepshell.agent.registry import AgentRegistry
from deepshell.agent.sandbox import DEFAULT_FORBIDDEN_COMMANDS, CommandSandbox
from deepshell.config.schema import Config
from deepshell.errors import AgentNotFound
from deepshell.providers.base import LLMProvider
from deepshell.session.manager import SessionManager
from deepshell.utils.helpers import timestamp36


@dataclass
class AgentContext:
    """Everything one active agent owns: prompt, session, sandbox and loop."""

    agent_id: str
    system_prompt: str
    sessions: SessionManager
    conversation: ConversationManager
    sandbox: CommandSandbox
    loop: TaskLoop
    namespace: str | None = None
    depth: int = 0
    auto_pop_on_complete: bool = False
    delegated: bool = False

    @property
    def is_root(self) -> bool:
        return self.namespace is None


class AgentContextStack:
    """
    Ordered agent contexts with the root at index 0.

    The root is created on construction and never popped. Each pushed agent
    gets its own session namespace and sandbox; the working directory and the
    forbidden-command list are copied from the stack settings.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        provider: LLMProvider,
        working_dir: Path | str,
        interrupt: InterruptController | None = None,
        config: Config | None = None,
        root_agent: str | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.registry = registry
        self.provider = provider
        self.working_dir = Path(working_dir)
        self.interrupt = interrupt or InterruptController()
        self.config = config or Config()
        self.on_progress = on_progress
        self.forbidden_commands: tuple[str, ...] = tuple(
            dict.fromkeys([*DEFAULT_FORBIDDEN_COMMANDS, *self.config.forbidden_commands])
        )
        self._contexts: list[AgentContext] = []
        root = self._create_context(root_agent or self.config.default_agent, root=True)
        self._contexts.append(root)

    def __len__(self) -> int:
        return len(self._contexts)

    @property
    def contexts(self) -> tuple[AgentContext, ...]:
        return tuple(self._contexts)

    def current(self) -> AgentContext:
        return self._contexts[-1]

    def root(self) -> AgentContext:
        return self._contexts[0]

    async def push(
        self,
        agent_id: str,
        initial_prompt: str | None = None,
        *,
        delegated: bool = False,
    ) -> TaskOutcome | None:
        """
        Make `agent_id` the current agent, optionally running a task right away.

        Raises:
            AgentNotFound: if the agent is not configured; the stack is unchanged.
        """
        context = self._create_context(agent_id, delegated=delegated)
        self._contexts.append(context)
        context.auto_pop_on_complete = bool(initial_prompt)
        logger.info(f"Pushed agent {agent_id} (depth {context.depth}, namespace {context.namespace})")

        if not initial_prompt:
            self._emit(context, "status", f"Active agent: {agent_id}")
            return None

        self._emit(context, "status", f'Agent "{agent_id}" started with task: "{initial_prompt}"')
        try:
            outcome = await context.loop.run(initial_prompt)
        except BaseException:
            if self.current() is context:
                self._contexts.pop()
                self._teardown(context)
            raise

        self._finalize(context, outcome)
        return outcome

    def pop(self, auto: bool = False) -> bool:
        """Remove the current agent and return to its parent. Refuses at the root."""
        if len(self._contexts) <= 1:
            self._emit(self.current(), "status", "Already at the root agent - nothing to pop")
            return False

        context = self._contexts.pop()
        self._teardown(context)
        parent = self.current()
        logger.info(f"Popped agent {context.agent_id} (auto={auto}), current: {parent.agent_id}")

        if auto:
            self._emit(parent, "status", f'Agent completed. Back to "{parent.agent_id}"')
        else:
            self._emit(parent, "status", f'Returned to agent "{parent.agent_id}"')
        return True

    def unwind(self) -> int:
        """Pop every non-root context (used after an interrupt). Returns how many."""
        count = 0
        while len(self._contexts) > 1:
            context = self._contexts.pop()
            self._teardown(context)
            count += 1
        if count:
            logger.info(f"Unwound {count} agent context(s) to root {self.root().agent_id}")
            self._emit(self.root(), "status", f'Returned to root agent "{self.root().agent_id}"')
        return count

    async def delegate(self, agent_id: str, message: str) -> DelegationResult:
        """Run `agent_id` on `message` as a nested task of the current agent."""
        message = _strip_quotes(message.strip())
        if not message:
            return DelegationResult(False, f"Agent command for {agent_id} is missing message content")

        try:
            outcome = await self.push(agent_id, message, delegated=True)
        except AgentNotFound as e:
            available = ", ".join(e.available) or "none"
            self._emit(self.current(), "error", f'Failed to launch agent "{agent_id}": {e}')
            return DelegationResult(False, f"Agent {agent_id} not found. Available agents: {available}")

        assert outcome is not None
        if outcome.interrupted:
            return DelegationResult(False, f"Agent {agent_id} interrupted", interrupted=True)
        if outcome.paused:
            return DelegationResult(True, f"Agent {agent_id} paused", paused=True)
        return DelegationResult(True, f"Delegated to agent {agent_id}")

    async def run_task(self, prompt: str) -> TaskOutcome:
        """Run a user task on the current agent."""
        context = self.current()
        outcome = await context.loop.run(prompt)
        self._finalize(context, outcome)
        return outcome

    async def resume(self) -> TaskOutcome | None:
        """Continue the current agent from its last recorded step."""
        context = self.current()
        session = context.sessions.current
        if not session.messages:
            return None

        if session.history:
            last = session.history[-1]
            prompt = CommandSandbox.summary_prompt(
                last.get("command", ""), bool(last.get("success")), last.get("output", "")
            )
        else:
            prompt = "Continue with the next command"
        return await self.run_task(prompt)

    def _finalize(self, context: AgentContext, outcome: TaskOutcome) -> None:
        if outcome.state == TaskState.AWAITING_USER:
            self._emit(
                context,
                "status",
                f'Agent "{context.agent_id}" paused. Use /continue to resume or /pop to return to parent.',
            )
            return
        if outcome.state != TaskState.COMPLETED:
            return
        if context.auto_pop_on_complete and not context.is_root and self.current() is context:
            self.pop(auto=True)

    def _create_context(
        self, agent_id: str, *, root: bool = False, delegated: bool = False
    ) -> AgentContext:
        system_prompt = self.registry.resolve_prompt(agent_id)
        depth = len(self._contexts)
        namespace = None if root else self._new_namespace(agent_id)

        sessions = SessionManager(self.working_dir, namespace=namespace)
        if root:
            sessions.load_current()

        exec_cfg = self.config.exec
        sandbox = CommandSandbox(
            self.working_dir,
            list(self.forbidden_commands),
            timeout=exec_cfg.timeout,
            max_lines=exec_cfg.max_command_lines,
            max_output_chars=exec_cfg.max_output_chars,
            heredoc_file_writes=exec_cfg.heredoc_file_writes,
        )
        conversation = ConversationManager(
            sessions,
            self.provider,
            ContextBuilder(self.working_dir, agent_roster=self.registry.ids()),
            warn_threshold=self.config.loop.warn_threshold,
            compact_threshold=self.config.loop.compact_threshold,
            model=self.config.provider.model,
        )
        loop = TaskLoop(
            conversation,
            sandbox,
            sessions,
            self.interrupt,
            system_prompt=system_prompt,
            agent_id=agent_id,
            depth=depth,
            max_iterations=self.config.loop.max_iterations,
            delegate=self.delegate,
            on_progress=self.on_progress,
        )
        return AgentContext(
            agent_id=agent_id,
            system_prompt=system_prompt,
            sessions=sessions,
            conversation=conversation,
            sandbox=sandbox,
            loop=loop,
            namespace=namespace,
            depth=depth,
            delegated=delegated,
        )

    def _new_namespace(self, agent_id: str) -> str:
        parent_sid = self.current().sessions.current.session_id if self._contexts else "main"
        base = f"{parent_sid}_{agent_id}_{timestamp36()}"
        taken = {c.namespace for c in self._contexts}
        namespace = base
        n = 1
        while namespace in taken:
            namespace = f"{base}-{n}"
            n += 1
        return namespace

    @staticmethod
    def _teardown(context: AgentContext) -> None:
        context.sandbox.kill()
        if context.sessions.messages:
            context.sessions.archive_current()
        context.sessions.cleanup_artifacts()

    def _emit(self, context: AgentContext, kind: str, text: str) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            ProgressEvent(kind=kind, text=text, agent_id=context.agent_id, depth=context.depth)
        )


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text
