"""Interactive prompt with slash commands."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Awaitable

from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from deepshell.agent.interrupt import InterruptController, InterruptMonitor
from deepshell.agent.loop import TaskOutcome
from deepshell.agent.stack import AgentContextStack
from deepshell.errors import AgentNotFound
from deepshell.utils.helpers import ensure_dir, truncate_lines

HELP_TEXT = """Commands:
- <task> : Run a task with the current agent
- /continue : Continue from the last step
- /continue <session-id> : Switch to an archived session and continue
- /clear : Archive the current session and start a new one
- /clear-all : Delete the current session and all archives
- /agent <id> "<message>" : Activate another agent (message optional)
- /pop : Leave the current agent and return to its parent
- /compact : Summarize the conversation to reduce its size
- /archives : List archived sessions
- /history : Show the command history
- /status : Show session status
- /forbidden : Show forbidden commands
- /help : Show this help
- /quit | /exit : Quit

Press ESC or Ctrl+C to interrupt a running task."""

EXIT_COMMANDS = {"/quit", "/exit", "exit", "quit", ":q"}

_AGENT_COMMAND = re.compile(r"^/agent\s+(\S+)(?:\s+(.*))?$", re.DOTALL)


class InteractiveSession:
    """
    Reads user input and dispatches it to the agent stack.

    The interrupt monitor only runs while a task is in flight so it never
    competes with the prompt for the terminal.
    """

    def __init__(
        self,
        stack: AgentContextStack,
        interrupt: InterruptController,
        console: Console,
        history_path: Path | None = None,
    ):
        self.stack = stack
        self.interrupt = interrupt
        self.console = console
        self.monitor = InterruptMonitor(interrupt)
        self.history_path = history_path
        self._prompt: PromptSession | None = None

    def _init_prompt_session(self) -> PromptSession:
        if self.history_path is None:
            return PromptSession()
        ensure_dir(self.history_path.parent)
        return PromptSession(history=FileHistory(str(self.history_path)), enable_history_search=True)

    async def _read_input(self, message: str) -> str:
        if self._prompt is None:
            self._prompt = self._init_prompt_session()
        with patch_stdout():
            return await self._prompt.prompt_async(HTML(message))

    async def run(self) -> None:
        self.console.print("Type a task, or /help for commands. /quit to leave.")
        while True:
            label = self.stack.current().agent_id or "Agent"
            try:
                line = await self._read_input(f"\n<b><ansigreen>[{label}]&gt;</ansigreen></b> ")
            except (EOFError, KeyboardInterrupt):
                break

            line = line.strip()
            if not line:
                continue
            if line.lower() in EXIT_COMMANDS:
                break
            if line.startswith("/"):
                await self.handle_command(line)
                continue

            await self.run_guarded(self.stack.run_task(line))

        self.console.print("Goodbye!")

    async def run_guarded(self, task: Awaitable[TaskOutcome | None]) -> TaskOutcome | None:
        """Run a task with the interrupt monitor active; unwind the stack if interrupted."""
        self.interrupt.clear()
        self.monitor.start()
        try:
            outcome = await task
        finally:
            self.monitor.stop()

        if (outcome is not None and outcome.interrupted) or self.interrupt.interrupted:
            unwound = self.stack.unwind()
            if unwound:
                logger.info(f"Unwound {unwound} agent(s) after interrupt")
            self.interrupt.clear()
        return outcome

    async def handle_command(self, line: str) -> None:
        parts = line.split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "/help":
            self.console.print(HELP_TEXT, markup=False)
        elif cmd == "/continue":
            await self._continue(arg)
        elif cmd == "/clear":
            self._clear()
        elif cmd == "/clear-all":
            await self._clear_all()
        elif cmd == "/agent":
            await self._agent(line)
        elif cmd == "/pop":
            self.stack.pop()
        elif cmd == "/compact":
            await self._compact()
        elif cmd == "/archives":
            self.print_archives()
        elif cmd == "/history":
            self._history()
        elif cmd == "/status":
            self._status()
        elif cmd == "/forbidden":
            self._forbidden()
        else:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for the list.[/yellow]")

    async def _continue(self, session_id: str) -> None:
        sessions = self.stack.current().sessions
        if session_id:
            if not sessions.switch_to_archive(session_id):
                self.console.print(f"[red]❌ Archive not found: {session_id}[/red]")
                return
            self.console.print(f"Switched to session {session_id}")

        if not sessions.messages:
            self.console.print("No session to continue. Start a new task.")
            return
        await self.run_guarded(self.stack.resume())

    def _clear(self) -> None:
        archived = self.stack.current().sessions.archive_and_clear()
        if archived:
            self.console.print(f"Session archived: {archived}")
        self.console.print("New session started")

    async def _clear_all(self) -> None:
        answer = await self._read_input("Delete ALL sessions and archives? (y/N) ")
        if answer.strip().lower() not in ("y", "yes"):
            self.console.print("Cancelled")
            return
        deleted = self.stack.current().sessions.clear_all()
        self.console.print(f"Deleted {deleted} archived session(s)")

    async def _agent(self, line: str) -> None:
        match = _AGENT_COMMAND.match(line.strip())
        if not match:
            self.console.print('Usage: /agent <agentId> "<message optional>"')
            return

        agent_id = match.group(1)
        message = _unquote((match.group(2) or "").strip())
        try:
            await self.run_guarded(self.stack.push(agent_id, message or None))
        except AgentNotFound as e:
            available = ", ".join(e.available) or "none"
            self.console.print(f"[red]❌ {e}. Available agents: {available}[/red]")

    async def _compact(self) -> None:
        conversation = self.stack.current().conversation
        before = len(conversation.sessions.messages)
        if await conversation.compact():
            after = len(conversation.sessions.messages)
            self.console.print(f"Conversation compacted: {before} -> {after} messages")
        else:
            self.console.print("Conversation too short to compact")

    def print_archives(self) -> None:
        print_archives(self.console, self.stack.current().sessions.list_archives())

    def _history(self) -> None:
        history = self.stack.current().sessions.current.history
        if not history:
            self.console.print("No commands executed yet")
            return
        for index, entry in enumerate(history, start=1):
            self.console.print(f"\n--- Step {index} ---", style="bold", markup=False)
            self.console.print(f"Command: {entry.get('command', '')}", markup=False)
            self.console.print(f"Result: {'SUCCESS' if entry.get('success') else 'FAILED'}", markup=False)
            self.console.print(f"Output: {truncate_lines(entry.get('output', ''), 4)}", markup=False)

    def _status(self) -> None:
        context = self.stack.current()
        status = context.sessions.status()
        path = " > ".join(c.agent_id for c in self.stack.contexts)
        self.console.print(f"Agent: {path} (depth {context.depth})", markup=False)
        self.console.print(f"Session: {status['session_id']}", markup=False)
        self.console.print(f"Initial prompt: {status['initial_prompt'] or '-'}", markup=False)
        self.console.print(
            f"Messages: {status['message_count']}  Commands: {status['command_count']}", markup=False
        )
        if status["last_action"]:
            self.console.print(f"Last action: {status['last_action']}", markup=False)

    def _forbidden(self) -> None:
        self.console.print("🚫 Forbidden commands:")
        for cmd in self.stack.current().sandbox.forbidden_commands:
            self.console.print(f"  - {cmd}", markup=False)


def print_archives(console: Console, archives: list[dict]) -> None:
    if not archives:
        console.print("No archived sessions")
        return

    table = Table(title="Archived sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Date")
    table.add_column("Messages", justify="right")
    table.add_column("Commands", justify="right")
    table.add_column("Description")
    for item in archives:
        table.add_row(
            item["session_id"],
            str(item.get("timestamp") or "")[:19],
            str(item["message_count"]),
            str(item["command_count"]),
            escape(item.get("description") or ""),
        )
    console.print(table)


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text
