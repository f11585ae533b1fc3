"""Configuration loading utilities."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from deepshell.config.schema import Config
from deepshell.errors import ConfigError

LOCAL_CONFIG_NAME = ".deepshell.json"


def get_config_path() -> Path:
    """Get the default user-level configuration file path."""
    return Path.home() / ".deepshell" / "config.json"


def resolve_config_path(config_path: Path | None = None) -> Path:
    """Pick the config file: explicit path, then ./.deepshell.json, then the user default."""
    if config_path is not None:
        return config_path
    local = Path.cwd() / LOCAL_CONFIG_NAME
    if local.exists():
        return local
    return get_config_path()


def load_config(
    config_path: Path | None = None, *, strict: bool = False, apply_env: bool = True
) -> Config:
    """
    Load configuration from file or create default.

    Environment overrides are applied last: DEEPSEEK_API_KEY and
    DEEPSEEK_DEFAULT_AGENT.

    Args:
        config_path: Optional path to config file.
        strict: Raise ConfigError instead of falling back to defaults.
        apply_env: Apply environment overrides (off when rewriting the file).

    Returns:
        Loaded configuration object.
    """
    path = resolve_config_path(config_path)
    config = Config()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            config = Config.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            if strict:
                raise ConfigError(f"Failed to load config from {path}: {e}") from e
            logger.warning(f"Failed to load config from {path}: {e}. Using default configuration.")
    else:
        logger.debug(f"Config file {path} does not exist, using defaults")

    return apply_env_overrides(config) if apply_env else config


def apply_env_overrides(config: Config) -> Config:
    if api_key := os.environ.get("DEEPSEEK_API_KEY"):
        config.provider.api_key = api_key
    if agent := os.environ.get("DEEPSEEK_DEFAULT_AGENT"):
        config.default_agent = agent
    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(by_alias=True, exclude_none=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
