"""Configuration management for the Reolink client.

Connection settings come from environment variables (``REOLINK_NVR_*``) or a
``.env`` file via pydantic-settings. A YAML device inventory can name several
cameras/NVRs so the CLI can address them with ``--device``.

Configuration file search order:
1. ~/.config/reolink/config.yaml
2. Platform-specific config dir (~/Library/Application Support/reolink/ on macOS)
3. ./config.yaml (current directory)

String values in the YAML file may reference environment variables with
``${VAR}`` syntax.
"""

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_dir
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ConnectionMode

APP_NAME = "reolink"
APP_AUTHOR = "reolink-control"


def get_config_dir() -> Path:
    """Get XDG-compliant configuration directory.

    Returns:
        Path to configuration directory (~/.config/reolink on Linux).

    Note:
        Creates the directory if it doesn't exist.
    """
    config_dir = Path(user_config_dir(APP_NAME, APP_AUTHOR))
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get path to the main configuration file."""
    return get_config_dir() / "config.yaml"


# =============================================================================
# Connection Settings
# =============================================================================


class ReolinkConfig(BaseSettings):
    """Connection settings for one device.

    Loads settings from environment variables with the ``REOLINK_NVR_``
    prefix. The password may also be given as ``REOLINK_NVR_PASS`` and the
    mode as ``REOLINK_MODE``.

    Attributes:
        host: Device IP address or hostname.
        user: Login user name.
        password: Login password.
        mode: Token session or per-request credentials.
        ssl_verify: Verify TLS certificates (devices ship self-signed ones).
        use_https: Talk HTTPS rather than HTTP.
        timeout: Per-request timeout in seconds.

    Example:
        >>> config = ReolinkConfig()  # Load from environment
        >>> config = ReolinkConfig(host="192.168.1.50", user="admin", password="secret")
    """

    model_config = SettingsConfigDict(
        env_prefix="REOLINK_NVR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(..., description="Device IP address or hostname")
    user: str = Field(default="admin", description="Login user name")
    password: str = Field(
        default="",
        validation_alias=AliasChoices("REOLINK_NVR_PASS", "REOLINK_NVR_PASSWORD"),
        description="Login password",
    )
    mode: ConnectionMode = Field(
        default=ConnectionMode.TOKEN,
        validation_alias=AliasChoices("REOLINK_MODE", "REOLINK_NVR_MODE"),
    )
    ssl_verify: bool = Field(default=False, description="Verify TLS certificates")
    use_https: bool = Field(default=True, description="Use HTTPS")
    timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        """Accept the historical 'long'/'short' spellings."""
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in ("long", "token"):
                return ConnectionMode.TOKEN
            if lowered in ("short", "per-request", "per_request"):
                return ConnectionMode.PER_REQUEST
        return v

    @classmethod
    def from_env(cls, env_file: Path | None = None, **overrides: Any) -> "ReolinkConfig":
        """Load configuration from environment variables.

        Args:
            env_file: Optional path to .env file. If not provided, looks in
                the current directory and the XDG config directory.
            **overrides: Explicit values that win over the environment.

        Returns:
            ReolinkConfig instance.

        Raises:
            pydantic.ValidationError: If required settings are missing.
        """
        values = {k: v for k, v in overrides.items() if v is not None}

        if env_file and env_file.exists():
            return cls(_env_file=env_file, **values)

        for path in [Path(".env"), get_config_dir() / ".env"]:
            if path.exists():
                return cls(_env_file=path, **values)

        return cls(**values)


# =============================================================================
# Device Inventory
# =============================================================================


class DeviceConfig(BaseModel):
    """One device entry from config.yaml.

    Attributes:
        name: Display name used with ``--device``.
        host: IP address or hostname.
        username: Login user name.
        password: Login password.
        mode: Connection mode for this device.
        ssl_verify: Verify TLS certificates.
        model: Optional model string.
        channels: Optional list of channels to poll for events.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    host: str = Field(..., validation_alias=AliasChoices("host", "address"))
    username: str = Field(default="admin", validation_alias=AliasChoices("username", "user"))
    password: str = ""
    mode: ConnectionMode = ConnectionMode.TOKEN
    ssl_verify: bool = False
    model: str | None = None
    channels: list[int] | None = None

    @field_validator("host", mode="before")
    @classmethod
    def strip_host(cls, v: Any) -> str:
        if not isinstance(v, str):
            v = str(v)
        return v.strip()

    def to_connection_config(self) -> ReolinkConfig:
        """Build connection settings for this device."""
        return ReolinkConfig(
            host=self.host,
            user=self.username,
            password=self.password,
            mode=self.mode,
            ssl_verify=self.ssl_verify,
        )


def interpolate_env_vars(value: str) -> str:
    """Interpolate ``${VAR_NAME}`` references in a string.

    Args:
        value: String potentially containing ${VAR_NAME} references.

    Returns:
        String with environment variables replaced.

    Raises:
        ValueError: If a referenced environment variable is not set.

    Example:
        >>> os.environ["NVR_PASS"] = "secret"
        >>> interpolate_env_vars("${NVR_PASS}")
        'secret'
    """
    if not isinstance(value, str):
        return value

    def replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.getenv(var_name)
        if env_value is None:
            raise ValueError(f"Environment variable '{var_name}' is not set")
        return env_value

    return re.sub(r"\$\{([^}]+)\}", replace, value)


def interpolate_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively interpolate environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = interpolate_env_vars(value)
        elif isinstance(value, dict):
            result[key] = interpolate_dict(value)
        elif isinstance(value, list):
            result[key] = [
                interpolate_dict(item) if isinstance(item, dict)
                else interpolate_env_vars(item) if isinstance(item, str)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def find_config_file(config_file: Path | None = None) -> Path:
    """Find the device inventory file.

    Args:
        config_file: Optional explicit path to config file.

    Returns:
        Path to configuration file.

    Raises:
        FileNotFoundError: If no configuration file is found.
    """
    if config_file is not None:
        if config_file.exists():
            return config_file
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    xdg_config_dir = Path.home() / ".config" / APP_NAME
    search_paths = [
        xdg_config_dir / "config.yaml",
        xdg_config_dir / "config.yml",
        get_config_dir() / "config.yaml",
        get_config_dir() / "config.yml",
        Path("config.yaml"),
        Path("config.yml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    raise FileNotFoundError(
        f"Configuration file not found. Searched: {', '.join(str(p) for p in search_paths)}"
    )


@lru_cache(maxsize=4)
def load_raw_config(config_file: Path) -> dict[str, Any]:
    """Load raw YAML configuration (cached)."""
    with open(config_file) as f:
        return yaml.safe_load(f) or {}


def load_devices_config(config_file: Path | None = None) -> list[DeviceConfig]:
    """Load device entries from the YAML inventory.

    Args:
        config_file: Path to config.yaml. If None, searches standard locations.

    Returns:
        List of DeviceConfig objects.

    Raises:
        FileNotFoundError: If config file not found.
        ValueError: If referenced environment variables are missing.
    """
    config_path = find_config_file(config_file)
    raw_config = load_raw_config(config_path)
    return [DeviceConfig(**interpolate_dict(device)) for device in raw_config.get("devices", [])]


def get_device_by_name(name: str, config_file: Path | None = None) -> DeviceConfig | None:
    """Get a device entry by name (case-insensitive)."""
    name_lower = name.lower()
    for device in load_devices_config(config_file):
        if device.name.lower() == name_lower:
            return device
    return None


def list_device_names(config_file: Path | None = None) -> list[str]:
    """List device names from config, ignoring unset ``${VAR}`` references."""
    try:
        return [d.name for d in load_devices_config(config_file)]
    except (FileNotFoundError, ValueError):
        pass

    # Names only, without interpolation, so completion works without secrets set
    try:
        raw_config = load_raw_config(find_config_file(config_file))
    except (OSError, yaml.YAMLError):
        return []
    return [
        d["name"]
        for d in raw_config.get("devices", [])
        if isinstance(d, dict) and isinstance(d.get("name"), str)
    ]
