"""Agent core: parsing, sandboxed execution, task loop and context stack."""

from deepshell.agent.interrupt import InterruptController
from deepshell.agent.loop import TaskLoop, TaskOutcome, TaskState
from deepshell.agent.parser import ResponseParser
from deepshell.agent.sandbox import CommandSandbox, ExecutionResult
from deepshell.agent.stack import AgentContext, AgentContextStack

__all__ = [
    "AgentContext",
    "AgentContextStack",
    "CommandSandbox",
    "ExecutionResult",
    "InterruptController",
    "ResponseParser",
    "TaskLoop",
    "TaskOutcome",
    "TaskState",
]
