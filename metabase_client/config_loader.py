"""Config Loader - Loads client profiles from YAML.

String values may reference environment variables as ${ENV_VAR}, which keeps
session tokens and API keys out of the file itself:

    base_url: https://metabase.example.com
    auth:
      type: api_key
      key: ${METABASE_API_KEY}
    retry:
      max_retries: 2
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from metabase_client.errors import ConfigError
from metabase_client.models import ClientProfile


_ENV_VAR = re.compile(r"\$\{([^}]+)\}")


def load_client_profile(config_path: Path | str) -> ClientProfile:
    """Load a client profile from YAML with ${ENV_VAR} substitution."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ClientProfile.model_validate(raw_config)
    except ValidationError as e:
        # Field names only: input values may be secrets.
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) or "<root>" for error in e.errors()
        )
        raise ConfigError(f"Invalid config structure: {fields}") from None


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR.sub(replacer, s)
