"""
Configuration management for the guestwatch daemon.

Provides YAML-based configuration with CLI overrides,
configuration hierarchy (CLI > YAML > Defaults), and validation.
Guest entries are kept raw here and validated individually by
guestwatch.config.guests so one bad guest cannot disable the others.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from guestwatch.config.guests import ConfigurationError, GuestConfig, load_guest_configs
from guestwatch.config.logging import LoggingSettings
from guestwatch.config.notifications import NotificationsConfig

__all__ = [
    "MonitorSettings",
    "ProxmoxSettings",
    "StatusServerSettings",
    "WatchdogDaemonConfig",
    "apply_cli_overrides",
    "default_config_path",
    "expand_env_vars",
    "generate_default_config",
    "get_guestwatch_home",
    "load_config",
    "load_yaml",
    "save_config",
]

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def get_guestwatch_home() -> Path:
    """Get guestwatch home directory, respecting GUESTWATCH_HOME env var."""
    home = os.environ.get("GUESTWATCH_HOME")
    if home:
        return Path(home)
    return Path.home() / ".guestwatch"


def default_config_path() -> Path:
    return get_guestwatch_home() / "config.yaml"


def expand_env_vars(value: str | None) -> str | None:
    """Expand ${VAR} patterns from the environment, leaving unknown ones as-is."""
    if value is None:
        return None

    def replacer(match: re.Match) -> str:
        return os.environ.get(match.group(1), match.group(0))

    return _ENV_PATTERN.sub(replacer, value)


class ProxmoxSettings(BaseModel):
    """Proxmox VE API access used for the guest-agent channel and resets."""

    url: str = Field(
        default="https://localhost:8006",
        description="Base URL of the Proxmox VE API",
    )
    user: str = Field(
        default="root@pam",
        description="User for ticket authentication",
    )
    password: str | None = Field(
        default=None,
        description="Password for ticket authentication (supports ${VAR} expansion)",
    )
    token_id: str | None = Field(
        default=None,
        description="API token id (user@realm!name); replaces ticket authentication",
    )
    token_secret: str | None = Field(
        default=None,
        description="API token secret (supports ${VAR} expansion)",
    )
    verify_ssl: bool = Field(
        default=True,
        description="Verify the API's TLS certificate",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the URL scheme and strip trailing slashes."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_token_pair(self) -> ProxmoxSettings:
        if bool(self.token_id) != bool(self.token_secret):
            raise ValueError("token_id and token_secret must be set together")
        return self


class MonitorSettings(BaseModel):
    """Fleet-wide settings of the polling loop."""

    tick_interval: float = Field(
        default=1.0,
        gt=0,
        le=60.0,
        description="Seconds between scheduler ticks; each tick polls the guests that are due",
    )
    shutdown_grace: float = Field(
        default=30.0,
        ge=0,
        description="Seconds an in-flight reset may take to finish on shutdown",
    )


class StatusServerSettings(BaseModel):
    """Read-only HTTP status endpoint."""

    enabled: bool = Field(
        default=True,
        description="Serve the status endpoint",
    )
    host: str = Field(
        default="127.0.0.1",
        description="Address to bind",
    )
    port: int = Field(
        default=60890,
        description="Port to listen on",
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port number is in valid range."""
        if not (1024 <= v <= 65535):
            raise ValueError("Port must be between 1024 and 65535")
        return v


class WatchdogDaemonConfig(BaseModel):
    """Top-level daemon configuration."""

    proxmox: ProxmoxSettings = Field(
        default_factory=ProxmoxSettings,
        description="Hypervisor API access",
    )
    monitor: MonitorSettings = Field(
        default_factory=MonitorSettings,
        description="Polling loop settings",
    )
    defaults: dict[str, Any] = Field(
        default_factory=dict,
        description="Guest settings applied to every guest unless overridden",
    )
    guests: list[Any] = Field(
        default_factory=list,
        description="Guests to watch; each entry is validated on its own",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )
    notifications: NotificationsConfig = Field(
        default_factory=NotificationsConfig,
        description="Event delivery configuration",
    )
    status_server: StatusServerSettings = Field(
        default_factory=StatusServerSettings,
        description="Status endpoint configuration",
    )

    def load_guests(self) -> tuple[list[GuestConfig], list[ConfigurationError]]:
        """Validate the guest entries, returning valid guests and per-guest errors."""
        return load_guest_configs(self.guests, self.defaults)


def load_yaml(config_file: str) -> dict[str, Any]:
    """
    Load YAML or JSON configuration file.

    Args:
        config_file: Path to YAML or JSON configuration file

    Returns:
        Dictionary with parsed YAML/JSON content

    Raises:
        ValueError: If YAML/JSON is invalid or file format is wrong
    """
    config_path = Path(config_file).expanduser()

    if not config_path.exists():
        return {}

    file_ext = config_path.suffix.lower()
    if file_ext not in [".yaml", ".yml", ".json"]:
        raise ValueError(
            f"Config file must have .yaml, .yml, or .json extension, got: {file_ext}\n"
            f"File: {config_path}"
        )

    try:
        with open(config_path) as f:
            content = f.read()

        if file_ext == ".json":
            data = json.loads(content) if content.strip() else {}
        else:
            data = yaml.safe_load(content)
            data = data if data is not None else {}

    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping at the top level: {config_path}")
    return data


def apply_cli_overrides(
    config_dict: dict[str, Any],
    cli_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Apply CLI argument overrides to config dictionary.

    Args:
        config_dict: Configuration dictionary
        cli_overrides: Dictionary of CLI overrides, nested keys as "monitor.tick_interval"

    Returns:
        Configuration dictionary with CLI overrides applied
    """
    if cli_overrides is None:
        return config_dict

    for key, value in cli_overrides.items():
        if "." in key:
            parts = key.split(".")
            current = config_dict
            for part in parts[:-1]:
                if part not in current:
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = value
        else:
            config_dict[key] = value

    return config_dict


def _expand_secrets(config: WatchdogDaemonConfig) -> WatchdogDaemonConfig:
    proxmox = config.proxmox.model_copy(
        update={
            "password": expand_env_vars(config.proxmox.password),
            "token_secret": expand_env_vars(config.proxmox.token_secret),
        }
    )
    telegram = config.notifications.telegram.model_copy(
        update={"bot_token": expand_env_vars(config.notifications.telegram.bot_token)}
    )
    notifications = config.notifications.model_copy(update={"telegram": telegram})
    return config.model_copy(update={"proxmox": proxmox, "notifications": notifications})


def generate_default_config(config_file: str) -> None:
    """
    Generate default configuration file from Pydantic model defaults.

    Args:
        config_file: Path where to create the config file
    """
    config_path = Path(config_file).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    default_config = WatchdogDaemonConfig().model_dump(mode="python", exclude_none=True)
    default_config["guests"] = [
        {"id": "100", "node": "pve", "name": "example", "feed_interval": 60, "dry_run": True}
    ]

    with open(config_path, "w") as f:
        yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)

    # Set restrictive permissions (owner read/write only)
    config_path.chmod(0o600)


def load_config(
    config_file: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    create_default: bool = False,
) -> WatchdogDaemonConfig:
    """
    Load configuration with hierarchy: CLI > YAML > Defaults.

    Args:
        config_file: Path to YAML config file (default: ~/.guestwatch/config.yaml)
        cli_overrides: Dictionary of CLI argument overrides
        create_default: Create default config file if it doesn't exist

    Returns:
        Validated WatchdogDaemonConfig instance

    Raises:
        ValueError: If configuration is invalid or required fields are missing
    """
    if config_file is None:
        config_file = str(default_config_path())

    config_path = Path(config_file).expanduser()

    if create_default and not config_path.exists():
        generate_default_config(config_file)

    config_dict = load_yaml(config_file)
    config_dict = apply_cli_overrides(config_dict, cli_overrides)

    try:
        config = WatchdogDaemonConfig(**config_dict)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {config_file}"
        ) from e

    return _expand_secrets(config)


def save_config(config: WatchdogDaemonConfig, config_file: str | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: WatchdogDaemonConfig instance to save
        config_file: Path to YAML config file (default: ~/.guestwatch/config.yaml)

    Raises:
        OSError: If file operations fail
    """
    if config_file is None:
        config_file = str(default_config_path())

    config_path = Path(config_file).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="python", exclude_none=True)

    with open(config_path, "w") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)

    config_path.chmod(0o600)
