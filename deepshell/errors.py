"""Error taxonomy shared by the sandbox, the task loop and the agent stack."""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to failed executions and recovered errors."""

    FORBIDDEN_COMMAND = "forbidden_command"
    EMPTY_COMMAND = "empty_command"
    UNTERMINATED_HEREDOC = "unterminated_heredoc"
    COMMAND_TOO_LONG = "command_too_long"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_RUNTIME_ERROR = "execution_runtime_error"
    HEREDOC_WRITE_FAILED = "heredoc_write_failed"
    MODEL_CALL_FAILED = "model_call_failed"
    MODEL_CALL_TIMEOUT = "model_call_timeout"
    AGENT_NOT_FOUND = "agent_not_found"
    INTERRUPTED = "interrupted"
    UNCLOSED_COMMAND_BLOCK = "unclosed_command_block"


class DeepShellError(Exception):
    """Base class for deepshell errors."""

    kind: ErrorKind | None = None


class ModelCallFailed(DeepShellError):
    """The model backend returned an error or an unusable payload."""

    kind = ErrorKind.MODEL_CALL_FAILED


class ModelCallTimeout(ModelCallFailed):
    """The model backend did not answer in time."""

    kind = ErrorKind.MODEL_CALL_TIMEOUT


class AgentNotFound(DeepShellError):
    """No agent definition exists for the requested identifier."""

    kind = ErrorKind.AGENT_NOT_FOUND

    def __init__(self, agent_id: str, available: list[str] | None = None):
        self.agent_id = agent_id
        self.available = list(available or [])
        super().__init__(f'Agent "{agent_id}" not found in configuration')


class TaskInterrupted(DeepShellError):
    """Raised when a cancellable operation is aborted by a user interrupt."""

    kind = ErrorKind.INTERRUPTED

    def __init__(self, message: str = "Interrupted by user"):
        super().__init__(message)


class ConfigError(DeepShellError):
    """Configuration file is missing, unreadable or invalid."""
