"""Sandboxed shell execution for model-issued command blocks."""

from __future__ import annotations

import asyncio
import os
import re
import signal
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from deepshell.errors import ErrorKind
from deepshell.utils.helpers import truncate_chars

DEFAULT_FORBIDDEN_COMMANDS: tuple[str, ...] = (
    "rm -rf /",
    "rm -rf /*",
    "rm -rf .",
    "rm -rf *",
    "dd if=/dev/random",
    "mkfs",
    "fdisk",
    ":(){ :|:& };:",
    "chmod -R 000",
    "chown -R root:root",
    "mv / /dev/null",
    "> /dev/sda",
    "dd if=/dev/zero",
)

PAUSE_OUTPUT = "PAUSE: Waiting for user action. Continue when ready."
NEXT_COMMAND_HINT = "Next command? Remember to wrap it between >>> and <<<."

_PAUSE_WORDS = {"pause", "exit"}
_BOUNDARY_CHARS = frozenset(" \t;&|)")
_HEREDOC_OPENER = re.compile(r"(?<!<)<<(-?)(?!<)\s*(['\"]?)([A-Za-z_][A-Za-z0-9_]*)\2")
_CAT_HEREDOC = re.compile(r"^cat\s+(>>?)\s*(.+?)\s+<<-?\s*(['\"]?)([A-Za-z0-9_-]+)\3\s*$")


@dataclass
class ExecutionResult:
    """Outcome of one sandbox call."""

    success: bool
    output: str
    error: str | None = None
    paused: bool = False
    interrupted: bool = False
    error_kind: ErrorKind | None = None
    line_count: int | None = None


class CommandSandbox:
    """
    Validate and run one shell script at a time.

    Checks run in a fixed order before anything is spawned: pause sentinel,
    empty command, deny-list, heredoc integrity, the `cat > file <<EOF`
    shortcut and finally the line budget.
    """

    def __init__(
        self,
        working_dir: str | Path,
        forbidden_commands: list[str] | tuple[str, ...] | None = None,
        timeout: int = 60,
        max_lines: int = 20,
        max_output_chars: int = 10000,
        heredoc_file_writes: bool = True,
    ):
        self.working_dir = str(working_dir)
        entries = DEFAULT_FORBIDDEN_COMMANDS if forbidden_commands is None else forbidden_commands
        self.forbidden_commands: tuple[str, ...] = tuple(
            dict.fromkeys(e.strip().lower() for e in entries if e and e.strip())
        )
        self.timeout = timeout
        self.max_lines = max_lines
        self.max_output_chars = max_output_chars
        self.heredoc_file_writes = heredoc_file_writes
        self._process: asyncio.subprocess.Process | None = None
        self._starting = False
        self._killed = False

    @property
    def busy(self) -> bool:
        return self._starting or self._process is not None

    def is_forbidden(self, command: str) -> bool:
        """True if any line of `command` matches a deny-list entry at a word boundary."""
        lines = (command or "").split("\n")
        if lines:
            lines[0] = lines[0].split("#", 1)[0]
        for raw in lines:
            clean = raw.strip().lower()
            if not clean or clean.startswith("#"):
                continue
            for entry in self.forbidden_commands:
                if clean == entry:
                    return True
                if clean.startswith(entry) and clean[len(entry)] in _BOUNDARY_CHARS:
                    return True
        return False

    @staticmethod
    def find_unterminated_heredoc(command: str) -> str | None:
        """Return an error message naming heredoc markers that are never closed."""
        lines = command.split("\n")
        pending: list[str] = []
        for idx, line in enumerate(lines):
            for match in _HEREDOC_OPENER.finditer(line):
                strip_tabs = match.group(1) == "-"
                marker = match.group(3)
                closed = False
                for later in lines[idx + 1 :]:
                    candidate = later.rstrip("\r")
                    if strip_tabs:
                        candidate = candidate.lstrip("\t")
                    if candidate == marker:
                        closed = True
                        break
                if not closed and marker not in pending:
                    pending.append(marker)

        if not pending:
            return None
        return (
            f"Unterminated heredoc marker(s): {', '.join(pending)}. "
            "Complete the command with the closing marker before executing."
        )

    async def execute(self, command: str) -> ExecutionResult:
        trimmed = (command or "").strip()
        normalized = trimmed.split("\n", 1)[0].split("#", 1)[0].strip().lower()

        if "\n" not in trimmed and normalized in _PAUSE_WORDS:
            return ExecutionResult(success=True, output=PAUSE_OUTPUT, paused=True)

        if not trimmed:
            return ExecutionResult(
                success=False,
                output="Empty command",
                error="Empty command",
                error_kind=ErrorKind.EMPTY_COMMAND,
            )

        if self.is_forbidden(trimmed):
            logger.warning(f"Blocked forbidden command: {trimmed[:200]}")
            return ExecutionResult(
                success=False,
                output=f'FORBIDDEN COMMAND: "{trimmed}" is not allowed for safety reasons.',
                error="Forbidden command",
                error_kind=ErrorKind.FORBIDDEN_COMMAND,
            )

        heredoc_error = self.find_unterminated_heredoc(trimmed)
        if heredoc_error:
            return ExecutionResult(
                success=False,
                output=heredoc_error,
                error="Unterminated heredoc",
                error_kind=ErrorKind.UNTERMINATED_HEREDOC,
            )

        if self.heredoc_file_writes:
            written = self._write_heredoc_file(trimmed)
            if written is not None:
                return written

        line_count = len(trimmed.split("\n"))
        if line_count > self.max_lines:
            return ExecutionResult(
                success=False,
                output=(
                    f"Command skipped: {line_count} lines detected (max {self.max_lines}). "
                    "Split the script into smaller blocks."
                ),
                error="Command too long",
                error_kind=ErrorKind.COMMAND_TOO_LONG,
                line_count=line_count,
            )

        if self.busy:
            return ExecutionResult(
                success=False,
                output="Another command is already running in this sandbox.",
                error="Another command is already running",
                error_kind=ErrorKind.EXECUTION_RUNTIME_ERROR,
            )

        return await self._run_command(trimmed)

    async def _spawn(self, command: str) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.working_dir,
            start_new_session=True,
        )

    async def _run_command(self, command: str) -> ExecutionResult:
        self._killed = False
        self._starting = True
        try:
            process = await self._spawn(command)
        except Exception as e:
            logger.error(f"Failed to start command: {e}")
            return ExecutionResult(
                success=False,
                output=f"Error executing command: {e}",
                error=str(e),
                error_kind=ErrorKind.EXECUTION_RUNTIME_ERROR,
            )
        finally:
            self._starting = False

        self._process = process
        if self._killed:
            # interrupted while the process was starting
            await self._terminate(process)
            self._process = None
            return self._interrupted_result("(no output)")

        try:
            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                await self._terminate(process)
                logger.warning(f"Command timed out after {self.timeout}s: {command[:200]}")
                return ExecutionResult(
                    success=False,
                    output=f"Error: Command timed out after {self.timeout} seconds",
                    error=f"Command timed out after {self.timeout} seconds",
                    error_kind=ErrorKind.EXECUTION_TIMEOUT,
                )
        finally:
            self._process = None

        output = self._format_output(stdout, stderr)

        if self._killed:
            return self._interrupted_result(output)

        if process.returncode != 0:
            return ExecutionResult(
                success=False,
                output=output,
                error=f"Exit code {process.returncode}",
                error_kind=ErrorKind.EXECUTION_RUNTIME_ERROR,
            )

        return ExecutionResult(success=True, output=output)

    @staticmethod
    def _interrupted_result(output: str) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            output=output,
            error="Command interrupted",
            interrupted=True,
            error_kind=ErrorKind.INTERRUPTED,
        )

    def _format_output(self, stdout: bytes | None, stderr: bytes | None) -> str:
        output_parts = []

        if stdout:
            output_parts.append(stdout.decode("utf-8", errors="replace"))

        if stderr:
            stderr_text = stderr.decode("utf-8", errors="replace")
            if stderr_text.strip():
                output_parts.append(f"STDERR:\n{stderr_text}")

        result = "\n".join(output_parts) if output_parts else "(no output)"
        return truncate_chars(result, self.max_output_chars)

    def kill(self) -> None:
        """Terminate the in-flight process group, if any."""
        if self._starting:
            self._killed = True
            logger.info("Kill requested while command was starting")
            return
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._killed = True
        self._signal_group(process, signal.SIGTERM)
        logger.info(f"Sent SIGTERM to command process group {process.pid}")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        self._signal_group(process, signal.SIGKILL)
        await process.wait()

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass

    def _write_heredoc_file(self, command: str) -> ExecutionResult | None:
        """Handle `cat > path <<EOF ... EOF` by writing the body directly."""
        lines = command.split("\n")
        match = _CAT_HEREDOC.match(lines[0].strip())
        if not match:
            return None

        operator, target, _, terminator = match.groups()
        target = target.strip()
        if len(target) >= 2 and target[0] == target[-1] and target[0] in "'\"":
            target = target[1:-1]

        closing = next(
            (i for i, line in enumerate(lines[1:], start=1) if line.rstrip("\r") == terminator),
            None,
        )
        if closing is None:
            return ExecutionResult(
                success=False,
                output=f'Unterminated heredoc marker "{terminator}". Complete the block before executing.',
                error="Unterminated heredoc",
                error_kind=ErrorKind.UNTERMINATED_HEREDOC,
            )
        if closing != len(lines) - 1:
            # Trailing commands after the heredoc need a real shell.
            return None

        body_lines = lines[1:closing]
        content = "\n".join(body_lines)
        if content and not content.endswith("\n"):
            content += "\n"

        path = Path(target)
        if not path.is_absolute():
            path = Path(self.working_dir) / path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            mode = "a" if operator == ">>" else "w"
            with open(path, mode, encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Heredoc write to {path} failed: {e}")
            return ExecutionResult(
                success=False,
                output=f"Failed to write file: {e}",
                error=str(e),
                error_kind=ErrorKind.HEREDOC_WRITE_FAILED,
            )

        return ExecutionResult(success=True, output=f"Wrote {len(body_lines)} line(s) to {target}")

    @staticmethod
    def summary_prompt(command: str, success: bool, output: str | None, error: str | None = None) -> str:
        """Deterministic feedback block fed back to the model after a command."""
        lines = [f"Command: {command}", f"Result: {'SUCCESS' if success else 'FAILED'}"]
        if error:
            lines.append(f"Error: {error}")
        lines.append("Output:")
        lines.extend((output or "No output").split("\n"))
        lines.extend(["", NEXT_COMMAND_HINT])
        return "\n".join(lines).rstrip()
