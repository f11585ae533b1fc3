import asyncio
import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from deepshell.agent.sandbox import (
    DEFAULT_FORBIDDEN_COMMANDS,
    NEXT_COMMAND_HINT,
    PAUSE_OUTPUT,
    CommandSandbox,
)
from deepshell.errors import ErrorKind


@pytest.fixture
def sandbox(tmp_path: Path) -> CommandSandbox:
    return CommandSandbox(tmp_path)


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /",
        "rm -rf / ; echo gone",
        "RM -RF /",
        "mkfs /dev/sdb1",
        "echo start\nmkfs /dev/sdb1",
        "rm -rf *",
        "dd if=/dev/zero of=/dev/sda",
        ":(){ :|:& };:",
        "rm -rf /|cat",
    ],
)
def test_forbidden_commands_blocked(sandbox: CommandSandbox, command: str) -> None:
    assert sandbox.is_forbidden(command)


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /tmp/build",
        "rm -rf ./dist",
        "ls -la",
        "# rm -rf /",
        "echo ok # rm -rf /",
        "echo mkfs",
    ],
)
def test_allowed_commands(sandbox: CommandSandbox, command: str) -> None:
    assert not sandbox.is_forbidden(command)


def test_default_and_custom_forbidden_lists(tmp_path: Path) -> None:
    default = CommandSandbox(tmp_path)
    custom = CommandSandbox(tmp_path, ["git push --force", "  Shutdown "])

    assert len(default.forbidden_commands) == len(DEFAULT_FORBIDDEN_COMMANDS)
    assert custom.forbidden_commands == ("git push --force", "shutdown")
    assert custom.is_forbidden("git push --force origin main")
    assert custom.is_forbidden("shutdown")
    assert not custom.is_forbidden("rm -rf /")


@pytest.mark.asyncio
async def test_forbidden_command_not_spawned(sandbox: CommandSandbox) -> None:
    with patch.object(sandbox, "_spawn", new_callable=AsyncMock) as spawn:
        result = await sandbox.execute("rm -rf /")

    spawn.assert_not_awaited()
    assert not result.success
    assert result.error_kind == ErrorKind.FORBIDDEN_COMMAND
    assert result.output == 'FORBIDDEN COMMAND: "rm -rf /" is not allowed for safety reasons.'


@pytest.mark.asyncio
async def test_empty_command(sandbox: CommandSandbox) -> None:
    result = await sandbox.execute("   \n  ")

    assert not result.success
    assert result.error_kind == ErrorKind.EMPTY_COMMAND


@pytest.mark.asyncio
@pytest.mark.parametrize("word", ["pause", "EXIT", " pause "])
async def test_pause_words(sandbox: CommandSandbox, word: str) -> None:
    with patch.object(sandbox, "_spawn", new_callable=AsyncMock) as spawn:
        result = await sandbox.execute(word)

    spawn.assert_not_awaited()
    assert result.paused
    assert result.success
    assert result.output == PAUSE_OUTPUT


@pytest.mark.asyncio
async def test_unterminated_heredoc_not_spawned(sandbox: CommandSandbox) -> None:
    command = "python3 - <<'PY'\nprint('hello')\n"
    with patch.object(sandbox, "_spawn", new_callable=AsyncMock) as spawn:
        result = await sandbox.execute(command)

    spawn.assert_not_awaited()
    assert result.error_kind == ErrorKind.UNTERMINATED_HEREDOC
    assert "PY" in result.output


def test_find_unterminated_heredoc() -> None:
    assert CommandSandbox.find_unterminated_heredoc("cat <<EOF\nhi\nEOF") is None
    assert CommandSandbox.find_unterminated_heredoc("cat <<-EOF\nhi\n\tEOF") is None
    assert CommandSandbox.find_unterminated_heredoc("echo $((1 << 2))") is None
    assert CommandSandbox.find_unterminated_heredoc("grep x <<< \"$VAR\"") is None
    message = CommandSandbox.find_unterminated_heredoc("cat <<END\nhi\nEND \n")
    assert message is not None and "END" in message


@pytest.mark.asyncio
async def test_line_limit_boundary(sandbox: CommandSandbox) -> None:
    at_limit = "\n".join(f"echo {i}" for i in range(20))
    over_limit = "\n".join(f"echo {i}" for i in range(21))

    ok = await sandbox.execute(at_limit)
    assert ok.success
    assert ok.output.split() == [str(i) for i in range(20)]

    with patch.object(sandbox, "_spawn", new_callable=AsyncMock) as spawn:
        skipped = await sandbox.execute(over_limit)

    spawn.assert_not_awaited()
    assert not skipped.success
    assert skipped.error_kind == ErrorKind.COMMAND_TOO_LONG
    assert skipped.line_count == 21
    assert "21 lines detected (max 20)" in skipped.output


@pytest.mark.asyncio
async def test_echo_hello(sandbox: CommandSandbox) -> None:
    result = await sandbox.execute("echo hello")

    assert result.success
    assert result.output.strip() == "hello"
    assert result.error is None


@pytest.mark.asyncio
async def test_runs_in_working_directory(tmp_path: Path) -> None:
    result = await CommandSandbox(tmp_path).execute("pwd")

    assert Path(result.output.strip()).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_unknown_binary(sandbox: CommandSandbox) -> None:
    result = await sandbox.execute("definitely-not-a-real-binary-xyz --help")

    assert not result.success
    assert result.error == "Exit code 127"
    assert result.error_kind == ErrorKind.EXECUTION_RUNTIME_ERROR
    assert "STDERR:" in result.output


@pytest.mark.asyncio
async def test_nonzero_exit_without_output(sandbox: CommandSandbox) -> None:
    result = await sandbox.execute("false")

    assert not result.success
    assert result.error == "Exit code 1"
    assert result.output == "(no output)"


@pytest.mark.asyncio
async def test_output_is_truncated(tmp_path: Path) -> None:
    sandbox = CommandSandbox(tmp_path, max_output_chars=50)
    result = await sandbox.execute("printf 'x%.0s' $(seq 1 200)")

    assert result.success
    assert result.output.startswith("x" * 50)
    assert "(truncated, 150 more chars)" in result.output


@pytest.mark.asyncio
async def test_kill_interrupts_running_command(sandbox: CommandSandbox) -> None:
    task = asyncio.create_task(sandbox.execute("sleep 30"))
    for _ in range(200):
        if sandbox._process is not None:
            break
        await asyncio.sleep(0.01)
    process = sandbox._process
    assert process is not None

    started = time.monotonic()
    sandbox.kill()
    result = await asyncio.wait_for(task, timeout=5)

    assert time.monotonic() - started < 5
    assert result.interrupted
    assert result.error_kind == ErrorKind.INTERRUPTED
    assert process is not None and process.returncode is not None
    assert not sandbox.busy


def test_kill_when_idle_is_noop(sandbox: CommandSandbox) -> None:
    sandbox.kill()
    assert not sandbox.busy


@pytest.mark.asyncio
async def test_kill_while_starting_interrupts_command(sandbox: CommandSandbox) -> None:
    real_spawn = sandbox._spawn

    async def spawn_then_kill(command: str):
        process = await real_spawn(command)
        assert sandbox.busy
        sandbox.kill()
        return process

    sandbox._spawn = spawn_then_kill
    started = time.monotonic()
    result = await asyncio.wait_for(sandbox.execute("sleep 4"), timeout=10)

    assert time.monotonic() - started < 2
    assert result.interrupted
    assert result.error_kind == ErrorKind.INTERRUPTED
    assert not sandbox.busy


@pytest.mark.asyncio
async def test_stdin_is_not_inherited(tmp_path: Path) -> None:
    sandbox = CommandSandbox(tmp_path, timeout=5)

    started = time.monotonic()
    result = await sandbox.execute("cat")

    assert time.monotonic() - started < 5
    assert result.success
    assert result.error_kind is None
    assert result.output == "(no output)"


@pytest.mark.asyncio
async def test_timeout_kills_process(tmp_path: Path) -> None:
    sandbox = CommandSandbox(tmp_path, timeout=1)
    result = await sandbox.execute("sleep 10")

    assert not result.success
    assert result.error_kind == ErrorKind.EXECUTION_TIMEOUT
    assert result.output == "Error: Command timed out after 1 seconds"
    assert not sandbox.busy


@pytest.mark.asyncio
async def test_heredoc_file_write(sandbox: CommandSandbox, tmp_path: Path) -> None:
    command = "cat > notes/out.txt <<'EOF'\nline one\n  $HOME stays literal\nEOF"
    with patch.object(sandbox, "_spawn", new_callable=AsyncMock) as spawn:
        result = await sandbox.execute(command)

    spawn.assert_not_awaited()
    assert result.success
    assert result.output == "Wrote 2 line(s) to notes/out.txt"
    assert (tmp_path / "notes" / "out.txt").read_text() == "line one\n  $HOME stays literal\n"


@pytest.mark.asyncio
async def test_heredoc_append(sandbox: CommandSandbox, tmp_path: Path) -> None:
    target = tmp_path / "log.txt"
    target.write_text("first\n")

    result = await sandbox.execute("cat >> log.txt <<EOF\nsecond\nEOF")

    assert result.success
    assert target.read_text() == "first\nsecond\n"


@pytest.mark.asyncio
async def test_heredoc_with_trailing_commands_uses_shell(sandbox: CommandSandbox, tmp_path: Path) -> None:
    result = await sandbox.execute("cat > a.txt <<EOF\nhi\nEOF\ncat a.txt")

    assert result.success
    assert result.output.strip() == "hi"


@pytest.mark.asyncio
async def test_heredoc_shortcut_can_be_disabled(tmp_path: Path) -> None:
    sandbox = CommandSandbox(tmp_path, heredoc_file_writes=False)
    result = await sandbox.execute("cat > out.txt <<EOF\nvalue\nEOF")

    assert result.success
    assert result.output == "(no output)"
    assert (tmp_path / "out.txt").read_text() == "value\n"


def test_summary_prompt_format() -> None:
    prompt = CommandSandbox.summary_prompt("ls", False, "boom", "Exit code 2")

    assert prompt.split("\n") == [
        "Command: ls",
        "Result: FAILED",
        "Error: Exit code 2",
        "Output:",
        "boom",
        "",
        NEXT_COMMAND_HINT,
    ]
    assert CommandSandbox.summary_prompt("ls", True, "") == CommandSandbox.summary_prompt("ls", True, None)
