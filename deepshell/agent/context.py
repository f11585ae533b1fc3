"""Context builder for assembling agent system prompts."""

import platform
from pathlib import Path

from loguru import logger

DEFAULT_SYSTEM_PROMPT = """You are a shell assistant working in a terminal on the user's machine.

Protocol:
- Wrap every shell command or script you want executed between >>> and <<<.
  Example: >>> ls -la <<<
- Keep each block at 20 lines or fewer. Split longer scripts into several blocks.
- To write a file, use `cat > path <<'EOF'` followed by the content and a closing EOF line.
- To hand a sub-task to another agent, write a line: agent <AgentId>: <task description>
- Text outside the markers is shown to the user as commentary.
- When the task is finished, reply with exactly: done
- To stop and wait for the user, reply with exactly: pause"""


class ContextBuilder:
    """
    Builds the system prompt sent with every model request.

    Assembles the agent's own prompt, project context from AGENTS.md,
    the roster of agents available for delegation, and runtime details.
    """

    BOOTSTRAP_FILES = ["AGENTS.md"]

    def __init__(self, working_dir: Path, agent_roster: list[str] | None = None):
        self.working_dir = Path(working_dir)
        self.agent_roster = list(agent_roster or [])

    def build_system_prompt(self, agent_prompt: str, include_bootstrap: bool = True) -> str:
        parts = [agent_prompt.strip() or DEFAULT_SYSTEM_PROMPT]

        if include_bootstrap:
            bootstrap = self._load_bootstrap_files()
            if bootstrap:
                parts.append(f"Project-specific context from AGENTS.md:\n{bootstrap}")

        if self.agent_roster:
            parts.append("Agents available for delegation: " + ", ".join(self.agent_roster))

        parts.append(self._get_runtime())
        return "\n\n".join(parts)

    def _get_runtime(self) -> str:
        system = platform.system()
        runtime = f"{'macOS' if system == 'Darwin' else system} {platform.machine()}"
        return f"Runtime: {runtime}\nCurrent directory: {self.working_dir}"

    def _load_bootstrap_files(self) -> str:
        parts = []
        for filename in self.BOOTSTRAP_FILES:
            file_path = self.working_dir / filename
            if not file_path.exists():
                continue
            try:
                parts.append(file_path.read_text(encoding="utf-8").strip())
                logger.info(f"Loaded {filename} from {self.working_dir}")
            except OSError as e:
                logger.warning(f"Failed to read {file_path}: {e}")
        return "\n\n".join(p for p in parts if p)
