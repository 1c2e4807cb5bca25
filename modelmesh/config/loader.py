"""
Configuration loader for modelmesh.

Loads models.yaml, resolves API keys referenced through environment
variables, and validates the result against the Pydantic schema.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from modelmesh.config.schema import ModelConfig
from modelmesh.exceptions import ConfigurationError

DEFAULT_CONFIG_NAME = "models.yaml"


def find_config_file(filename: str = DEFAULT_CONFIG_NAME) -> Path:
    """Locate config/<filename> by walking up from this file."""
    env_path = os.environ.get("MODELMESH_CONFIG", "").strip()
    if env_path:
        return Path(env_path)

    current = Path(__file__).resolve()
    for parent in current.parents:
        candidate = parent / "config" / filename
        if candidate.is_file():
            return candidate
    raise FileNotFoundError(
        f"Could not find 'config/{filename}'. "
        "Set MODELMESH_CONFIG or run from the project root."
    )


def resolve_api_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Fill in api_key for each provider from its api_key_env variable.

    An explicit api_key in the file always wins. A missing variable
    leaves api_key unset; the provider factory decides whether that
    is fatal for the backend in question.
    """
    for provider in raw.get("providers") or []:
        if not isinstance(provider, dict):
            continue
        if provider.get("api_key"):
            continue
        env_name = provider.get("api_key_env")
        if env_name:
            value = os.environ.get(env_name, "").strip()
            if value:
                provider["api_key"] = value
    return raw


def parse_model_config(raw: dict[str, Any], source: str = "<dict>") -> ModelConfig:
    """Validate an already-parsed mapping into a ModelConfig."""
    try:
        return ModelConfig(**resolve_api_keys(raw))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid model config in {source}:\n{e}"
        ) from e


def load_model_config(config_path: Optional[str | Path] = None) -> ModelConfig:
    """
    Load and validate the model routing configuration.

    Args:
        config_path: Optional explicit path to models.yaml. If not
                     provided, uses find_config_file().

    Returns:
        Validated ModelConfig instance.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigurationError: If the config is empty or invalid.
    """
    if config_path is None:
        config_path = find_config_file()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ConfigurationError(f"Config file is empty: {config_path}")
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config root must be a mapping: {config_path}"
        )

    return parse_model_config(raw, source=str(config_path))
