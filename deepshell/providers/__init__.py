"""LLM provider abstraction module."""

from deepshell.providers.base import LLMProvider, LLMResponse
from deepshell.providers.deepseek_provider import DeepSeekProvider

__all__ = ["LLMProvider", "LLMResponse", "DeepSeekProvider"]
