"""Configuration management for restic-cron."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .schedule_checker import cron_iter

# Environment variable for every configurable field.
ENV_VARS: Dict[str, str] = {
    "schedule": "SCHEDULE",
    "repository": "RESTIC_REPOSITORY",
    "password": "RESTIC_PASSWORD",
    "args": "RESTIC_ARGS",
    "run_on_boot": "RUN_ON_BOOT",
    "prometheus_endpoint": "PROMETHEUS_ENDPOINT",
    "prometheus_address": "PROMETHEUS_ADDRESS",
    "pre_command": "PRE_COMMAND",
    "post_command": "POST_COMMAND",
    "rclone_args": "RCLONE_ARGS",
    "stats_file": "STATS_FILE",
    "restic_binary": "RESTIC_BINARY",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
}

# Values passed through to restic or the shell exactly as given.
VERBATIM_FIELDS = {"password", "args", "pre_command", "post_command"}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """Raised when the configuration is missing or invalid."""


class AppConfig(BaseModel):
    """Main application configuration."""

    schedule: str = Field(description="Cron schedule for backups")
    repository: str = Field(description="restic repository")
    password: str = Field(description="restic repository password", repr=False)
    args: str = Field(default="", description="Additional args for the backup command")
    run_on_boot: bool = Field(default=False, description="Run a backup on startup")
    prometheus_endpoint: str = Field(default="/metrics", description="Metrics path")
    prometheus_address: str = Field(default=":8080", description="Metrics host:port")
    pre_command: str = Field(
        default="", description="Command to execute before restic is executed"
    )
    post_command: str = Field(
        default="", description="Command to execute after a successful backup"
    )
    rclone_args: str = Field(default="", description="Additional args for rclone")
    stats_file: Optional[str] = Field(
        default=None, description="File the last backup statistics are saved to"
    )
    restic_binary: str = Field(default="restic", description="restic executable")
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        """Validate the cron schedule format."""
        v = v.strip()
        try:
            cron_iter(v)
            return v
        except Exception as e:
            raise ValueError(f"Invalid cron schedule format: {e}")

    @field_validator("repository", "password")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("prometheus_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("prometheus_endpoint must start with '/'")
        return v

    @field_validator("prometheus_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate the host:port format."""
        _, sep, port = v.rpartition(":")
        if not sep or not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"prometheus_address must look like 'host:port', got '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v_upper

    @property
    def metrics_listen(self) -> Tuple[str, int]:
        """Host and port for the metrics server; an empty host listens everywhere."""
        host, _, port = self.prometheus_address.rpartition(":")
        return host, int(port)

    @property
    def backup_args(self) -> List[str]:
        """Argument list for ``restic backup``."""
        args = ["backup"]
        if self.rclone_args:
            args.extend(["-o", self.rclone_args])
        args.extend(self.args.split())
        return args

    def restic_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment for restic with the repository and password exported."""
        env = dict(os.environ if base is None else base)
        env["RESTIC_REPOSITORY"] = self.repository
        env["RESTIC_PASSWORD"] = self.password
        return env


def _parse_bool(env_var: str, value: str) -> bool:
    lowered = value.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigError(f"{env_var}: expected a boolean, got '{value}'")


def config_from_env(environ: Mapping[str, str]) -> Dict[str, object]:
    """Collect configuration values from environment variables."""
    values: Dict[str, object] = {}
    for field_name, env_var in ENV_VARS.items():
        raw = environ.get(env_var)
        if raw is None or not raw.strip():
            continue
        if field_name in VERBATIM_FIELDS:
            values[field_name] = raw
        elif field_name == "run_on_boot":
            values[field_name] = _parse_bool(env_var, raw.strip())
        else:
            values[field_name] = raw.strip()
    return values


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = str(item["loc"][0]) if item["loc"] else ""
        name = ENV_VARS.get(field, field.upper())
        problems.append(f"{name}: {item['msg']}")
    return "Configuration validation failed:\n" + "\n".join(f"  - {p}" for p in problems)


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = ".env",
) -> AppConfig:
    """
    Load and validate configuration.

    Loading order (lowest to highest priority):
    1. Model defaults
    2. YAML file at ``config_path``
    3. ``.env`` file (only fills variables not already set)
    4. Environment variables

    Raises:
        FileNotFoundError: If ``config_path`` is given but does not exist
        ConfigError: If required settings are missing or invalid
    """
    config_data: Dict[str, object] = {}

    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML format in config file: {e}")

        if file_data is None:
            raise ConfigError("Configuration file is empty")
        if not isinstance(file_data, dict):
            raise ConfigError("Configuration file must contain a mapping")
        config_data.update(file_data)

    if environ is None:
        if dotenv_path and Path(dotenv_path).exists():
            load_dotenv(dotenv_path, override=False)
        environ = os.environ

    config_data.update(config_from_env(environ))

    try:
        return AppConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e
