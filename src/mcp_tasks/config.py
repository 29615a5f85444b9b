"""
Configuration management for the task manager MCP server.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (--config path, or ./mcp-tasks.yml when present)
3. Environment variables (MCP_TASKS_* prefix, __ for nesting)
4. Legacy deployment variables (PORT, API_KEYS, DB_PATH)
5. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("mcp-tasks.yml")

_VALID_LOG_LEVELS = {"debug", "info", "warn", "warning", "error", "critical"}


def _normalize_log_level(v: str) -> str:
    v_lower = v.lower()
    if v_lower not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {v}. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    if v_lower == "warn":
        return "warning"
    return v_lower


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """Listener settings.

    Attributes:
        host: Interface to bind.
        port: TCP port to bind (0 picks an ephemeral port).
        name: Server name reported in the welcome and health payloads.
        max_message_bytes: Largest accepted WebSocket frame.
    """

    host: str = Field(
        default="0.0.0.0",
        description="Interface to bind (e.g., '127.0.0.1' or '0.0.0.0')",
    )
    port: int = Field(
        default=3000,
        ge=0,
        le=65535,
        description="TCP port to listen on",
    )
    name: str = Field(
        default="PunchAI MCP Server",
        description="Server name used in connection and health messages",
    )
    max_message_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Maximum size of an inbound frame in bytes",
    )


# =============================================================================
# Security Configuration
# =============================================================================


class SecurityConfig(BaseModel):
    """Admission credential settings.

    Attributes:
        api_keys: Static set of valid API keys.
        header_name: Handshake header carrying the API key.
    """

    api_keys: list[str] = Field(
        default_factory=list,
        description="Valid API keys; an empty list rejects every connection",
    )
    header_name: str = Field(
        default="X-API-Key",
        description="HTTP header carrying the API key during the handshake",
    )

    @field_validator("api_keys", mode="before")
    @classmethod
    def split_api_keys(cls, v: Any) -> Any:
        """Accept a single comma-separated string as well as a list."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = [str(v)]
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            return [str(key).strip() for key in v if str(key).strip()]
        return v


class RateLimitConfig(BaseModel):
    """Fixed-window admission rate limiting.

    Attributes:
        enabled: Whether admissions are rate limited at all.
        max_requests: Admissions allowed per origin per window.
        window_ms: Window length in milliseconds.
        per_message: Also count every inbound frame of an open session.
        trust_forwarded_for: Use the first X-Forwarded-For hop as origin.
    """

    enabled: bool = Field(default=True, description="Enable rate limiting")
    max_requests: int = Field(
        default=100,
        ge=1,
        description="Maximum admissions per origin per window",
    )
    window_ms: int = Field(
        default=15 * 60 * 1000,
        ge=1,
        description="Window length in milliseconds",
    )
    per_message: bool = Field(
        default=False,
        description="Count every inbound frame against the origin's window",
    )
    trust_forwarded_for: bool = Field(
        default=False,
        description="Derive the origin from X-Forwarded-For (behind a proxy)",
    )


# =============================================================================
# Storage / Task Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Task store settings.

    Attributes:
        db_path: SQLite database file.
    """

    db_path: str = Field(
        default="data.db",
        description="Path to the SQLite task database",
    )


class TasksConfig(BaseModel):
    """Task tool settings.

    Attributes:
        timezone: IANA zone used to interpret natural-language due dates.
    """

    timezone: str = Field(
        default="UTC",
        description="IANA time zone for resolving due dates (e.g., 'Europe/Berlin')",
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown zone names at load time."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging and audit configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Emit JSON records instead of plain text.
        audit_log_path: Optional audit log file.
        debug_mode: Enable extra diagnostic logging.
    """

    level: str = Field(default="info", description="Log level")
    log_to_stdout: bool = Field(default=True, description="Whether to log to stdout")
    json_format: bool = Field(default=True, description="Emit JSON log records")
    audit_log_path: str | None = Field(
        default=None,
        description="Audit log file path (audit events go to the app log when unset)",
    )
    debug_mode: bool = Field(default=False, description="Enable extra diagnostic logging")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        server: Listener settings.
        security: Admission credential settings.
        rate_limit: Admission rate limiting.
        storage: Task store settings.
        tasks: Task tool settings.
        logging: Logging configuration.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tasks: TasksConfig = Field(default_factory=TasksConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = "MCP_TASKS_") -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore, e.g.
    MCP_TASKS_RATE_LIMIT__MAX_REQUESTS=50.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def _load_legacy_env_config() -> dict[str, Any]:
    """
    Load the plain variables used by hosted deployments.

    PORT is set by most PaaS platforms, API_KEYS is a comma-separated key
    list, DB_PATH points at the SQLite file.
    """
    result: dict[str, Any] = {}

    port = os.environ.get("PORT")
    if port:
        result["server"] = {"port": int(port)}

    api_keys = os.environ.get("API_KEYS")
    if api_keys:
        result["security"] = {"api_keys": api_keys.split(",")}

    db_path = os.environ.get("DB_PATH")
    if db_path:
        result["storage"] = {"db_path": db_path}

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Task manager MCP server (WebSocket transport)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument("--host", type=str, help="Interface to bind")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    server: dict[str, Any] = {}
    if parsed.host:
        server["host"] = parsed.host
    if parsed.port is not None:
        server["port"] = parsed.port
    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result["logging"] = {"level": "debug", "debug_mode": True}

    if server:
        result["server"] = server

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = "MCP_TASKS_",
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or ./mcp-tasks.yml when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If a specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=["--port", "8080"])
        >>> config.server.port
        8080
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, _load_legacy_env_config())
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
