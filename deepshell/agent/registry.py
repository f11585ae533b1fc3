"""Read-only lookup of configured agents and their system prompts."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from deepshell.config.schema import AgentDefinition, Config
from deepshell.errors import AgentNotFound


class AgentRegistry:
    """
    Resolves agent identifiers to definitions and prompt text.

    An agent's `system_prompt` is treated as a file path when it names an
    existing file (relative paths resolve against `base_dir`), otherwise as
    inline text. Agents without a prompt fall back to the global one.
    """

    def __init__(
        self,
        agents: list[AgentDefinition],
        default_prompt: str = "",
        base_dir: Path | None = None,
    ):
        self._agents = {a.id: a for a in agents}
        self.default_prompt = default_prompt
        self.base_dir = base_dir or Path.cwd()
        self._prompt_cache: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: Config, config_path: Path | None = None) -> AgentRegistry:
        base_dir = config_path.parent if config_path is not None else Path.cwd()
        agents = list(config.agents)
        # The default agent always exists, using the global prompt.
        if config.default_agent not in {a.id for a in agents}:
            agents.insert(0, AgentDefinition(id=config.default_agent))
        return cls(agents, default_prompt=config.system_prompt, base_dir=base_dir)

    def ids(self) -> list[str]:
        return list(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def get(self, agent_id: str) -> AgentDefinition:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id, self.ids())
        return agent

    def resolve_prompt(self, agent_id: str) -> str:
        """Return the agent's system prompt text (raises AgentNotFound)."""
        if agent_id in self._prompt_cache:
            return self._prompt_cache[agent_id]

        agent = self.get(agent_id)
        prompt = self._load_prompt(agent)
        self._prompt_cache[agent_id] = prompt
        return prompt

    def _load_prompt(self, agent: AgentDefinition) -> str:
        source = agent.system_prompt.strip()
        if not source:
            return self.default_prompt

        if "\n" not in source:
            path = Path(source).expanduser()
            if not path.is_absolute():
                path = self.base_dir / path
            if path.is_file():
                try:
                    return path.read_text(encoding="utf-8")
                except OSError as e:
                    logger.warning(f"Unable to load system prompt for {agent.id}: {e}")
                    return self.default_prompt
            if source.endswith((".md", ".txt")):
                logger.warning(f"System prompt file for {agent.id} not found: {path}")
                return self.default_prompt

        return source
