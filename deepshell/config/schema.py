"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentDefinition(Base):
    """A named agent role. `system_prompt` is a file path or inline text."""

    id: str
    system_prompt: str = ""
    description: str = ""


class ProviderConfig(Base):
    """Model backend settings."""

    api_key: str | None = None
    api_base: str = "https://api.deepseek.com/chat/completions"
    model: str = "deepseek-coder"
    max_tokens: int = 1000
    temperature: float = 0.1
    timeout: float = 30.0


class ExecConfig(Base):
    """Command sandbox settings."""

    timeout: int = 60
    max_command_lines: int = 20
    max_output_chars: int = 10000
    heredoc_file_writes: bool = True


class LoopConfig(Base):
    """Task loop bounds."""

    max_iterations: int = 100
    warn_threshold: int = 90
    compact_threshold: int = 100


class Config(Base):
    """Root configuration for deepshell."""

    api_key: str | None = None
    default_agent: str = "Generic"
    system_prompt: str = ""
    forbidden_commands: list[str] = Field(default_factory=list)
    agents: list[AgentDefinition] = Field(default_factory=list)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    exec: ExecConfig = Field(default_factory=ExecConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)

    @field_validator("system_prompt", mode="before")
    @classmethod
    def _join_prompt_lines(cls, value: object) -> object:
        if isinstance(value, list):
            return "\n".join(str(line) for line in value)
        return value

    def get_api_key(self) -> str | None:
        return self.provider.api_key or self.api_key

    def agent_ids(self) -> list[str]:
        return [a.id for a in self.agents]
