"""Configuration loader.

Loads configuration from YAML, applies environment overrides and validates
against the Pydantic schema.

Usage:
    from outlook_mcp.config import get_config

    # Get current config (singleton)
    config = get_config()

Environment:
    OUTLOOK_MCP_CONFIG_PATH: Path to config.yaml (default: config/config.yaml)
    AZURE_CLIENT_ID: Overrides auth.client_id
    AZURE_TENANT_ID: Overrides auth.tenant_id
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from outlook_mcp.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from outlook_mcp.core.errors import ConfigLoadError, ConfigValidationError
from outlook_mcp.core.logging import get_logger

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

ENV_OVERRIDES = {
    "AZURE_CLIENT_ID": "client_id",
    "AZURE_TENANT_ID": "tenant_id",
}

_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get("OUTLOOK_MCP_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error message with specific field errors
    """
    messages = []
    for err in error.errors():
        # Build field path (e.g., "retry.max_attempts")
        field_path = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"]
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type == "int_type":
            messages.append(f"  - Field '{field_path}' must be an integer")
        else:
            messages.append(f"  - Field '{field_path}': {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse YAML file.

    A missing file is tolerated when AZURE_CLIENT_ID is set, so the server
    can be configured from the environment alone.

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        if os.environ.get("AZURE_CLIENT_ID"):
            logger.debug("No config file, using environment only", path=str(path))
            return {}
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            "Create it from config/config.yaml.example, or set AZURE_CLIENT_ID "
            "and AZURE_TENANT_ID in the environment."
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay AZURE_* environment variables onto the auth section."""
    auth = dict(data.get("auth") or {})
    for env_name, field in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            auth[field] = value
    return {**data, "auth": auth}


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade outlook-mcp or downgrade the config."
        )

    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML file and environment.

    This function always loads fresh from disk. For cached access use
    get_config() instead.

    Args:
        path: Optional path to config file. If not provided, uses
              OUTLOOK_MCP_CONFIG_PATH env var or default.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()

    logger.debug("Loading configuration", path=str(config_path))

    data = _apply_env_overrides(_load_yaml(config_path))
    config = _validate_config(data, config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        max_attempts=config.retry.max_attempts,
        max_concurrent_requests=config.graph.max_concurrent_requests,
    )

    return config


def get_config() -> AppConfig:
    """Get the current configuration singleton, loading it on first call.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config()
        return _current_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()

    try:
        config = load_config(config_path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - tenant: {config.auth.tenant_id}\n"
        f"  - {len(config.auth.scopes)} scopes\n"
        f"  - retry: {config.retry.max_attempts} attempts, "
        f"{config.retry.initial_delay_seconds}s initial delay\n"
        f"  - {config.graph.max_concurrent_requests} concurrent requests",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
