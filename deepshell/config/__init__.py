"""Configuration module for deepshell."""

from deepshell.config.loader import get_config_path, load_config
from deepshell.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
