"""Configuration loading utilities."""

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from loguru import logger

from hrdesk.config.schema import Config, ProviderConfig

# Load .env into os.environ (won't overwrite existing env vars)
load_dotenv(override=False)


def get_config_path() -> Path:
    """Get the default configuration file path."""
    if val := os.environ.get("HRDESK_CONFIG_PATH"):
        return Path(val)
    return Path.home() / ".hrdesk" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, then apply env-var overrides.

    Priority (highest → lowest):
        1. HRDESK_* environment variables / .env
        2. ~/.hrdesk/config.json
        3. Built-in defaults
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            config = Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using defaults")
            config = Config()
    else:
        config = Config()

    _apply_env_overrides(config)
    return config


# ---------------------------------------------------------------------------
# Flat env-var overrides (no __ nesting)
# ---------------------------------------------------------------------------

_ENV_PROVIDER_KEY_MAP: dict[str, str] = {
    "HRDESK_GROQ_API_KEY": "groq",
    "HRDESK_GEMINI_API_KEY": "gemini",
    "HRDESK_OPENAI_API_KEY": "openai",
}

_ENV_PROVIDER_BASE_MAP: dict[str, str] = {
    "HRDESK_OPENAI_API_BASE": "openai",
    "HRDESK_OLLAMA_API_BASE": "ollama",
}

_ENV_PROVIDER_MODEL_MAP: dict[str, str] = {
    "HRDESK_GROQ_MODEL": "groq",
    "HRDESK_GEMINI_MODEL": "gemini",
    "HRDESK_OPENAI_MODEL": "openai",
    "HRDESK_OLLAMA_MODEL": "ollama",
}


def _provider_entry(config: Config, name: str) -> ProviderConfig:
    entry = config.get_provider(name)
    if entry is None:
        entry = ProviderConfig(name=name)
        config.providers.append(entry)
    return entry


def _apply_env_overrides(config: Config) -> None:
    """Apply flat HRDESK_* env vars on top of the loaded config."""

    for env_key, provider_name in _ENV_PROVIDER_KEY_MAP.items():
        if val := os.environ.get(env_key):
            _provider_entry(config, provider_name).api_key = val

    for env_key, provider_name in _ENV_PROVIDER_BASE_MAP.items():
        if val := os.environ.get(env_key):
            _provider_entry(config, provider_name).api_base = val

    for env_key, provider_name in _ENV_PROVIDER_MODEL_MAP.items():
        if val := os.environ.get(env_key):
            _provider_entry(config, provider_name).model = val

    if val := os.environ.get("HRDESK_LLM_TIMEOUT"):
        config.router.attempt_timeout_seconds = float(val)
    if val := os.environ.get("HRDESK_LLM_BACKOFF"):
        config.router.backoff_seconds = float(val)
    if val := os.environ.get("HRDESK_PROPOSAL_TTL"):
        config.gate.proposal_ttl_seconds = int(val)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())

    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
