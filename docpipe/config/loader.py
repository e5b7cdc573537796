"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- static defaults checked into the repo
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set at deploy time
#
# load_config() reads the YAML file, then deep-merges the env-derived
# values from Settings on top.  build_app_config() turns the merged dict
# into the frozen AppConfig that services receive by injection.
#
#   base = {"chunking": {"window_chars": 1000}}
#   overrides = {"chunking": {"strategy": "semantic"}}
#   result = {"chunking": {"window_chars": 1000, "strategy": "semantic"}}
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from docpipe.config.app_config import AppConfig
from docpipe.config.settings import Settings
from docpipe.utils.errors import ConfigurationError


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict[str, Any]:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.
        settings: Settings instance to read overrides from; a fresh one is
            built when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides: dict[str, Any] = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "available_providers": settings.get_available_llm_providers(),
        },
        "logging": {
            "level": settings.log_level,
        },
    }
    # Only a non-empty env value overrides the YAML webhook.
    if settings.continue_processing_url:
        env_overrides["orchestrator"] = {"continue_url": settings.continue_processing_url}

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def build_app_config(config: dict[str, Any]) -> AppConfig:
    """Validate the merged config dict into an :class:`AppConfig`.

    Raises:
        ConfigurationError: If a section holds a value of the wrong type
            or outside its allowed range.
    """
    try:
        return AppConfig.model_validate(config)
    except ValidationError as exc:
        raise ConfigurationError(message=f"Invalid configuration: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
