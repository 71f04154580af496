"""
Zerotrust - Configuration Management

This module handles loading, merging, and validating configuration from
TOML files and environment variables. Values resolve in this order, last
one winning: built-in defaults, the TOML file, ZEROTRUST_SECTION_KEY
environment variables. Command-line flags are applied on top by main.py.
"""

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    CONNECT_TIMEOUT,
    DEFAULT_DATA_DIR,
    DEFAULT_ECHO_PORT,
    DEFAULT_HOST,
    DEFAULT_KEY_EXCHANGE_GROUP,
    DEFAULT_PEER_PORT,
    CONNECT_READY_TIMEOUT,
    HANDSHAKE_TIMEOUT,
    PUMP_JOIN_TIMEOUT,
    SESSION_WORKER_THREADS,
)
from .errors import ConfigError, ErrorCode
from .key_exchange import KeyExchangeGroup

logger = logging.getLogger(__name__)

ENV_PREFIX = "ZEROTRUST"

DEFAULT_CONFIG: Dict[str, Any] = {
    "network": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_PEER_PORT,
        "connect_timeout": float(CONNECT_TIMEOUT),
        "ready_timeout": float(CONNECT_READY_TIMEOUT),
        "handshake_timeout": float(HANDSHAKE_TIMEOUT),
    },
    "session": {
        "worker_threads": SESSION_WORKER_THREADS,
        "close_join_timeout": PUMP_JOIN_TIMEOUT,
        "key_exchange_group": DEFAULT_KEY_EXCHANGE_GROUP,
    },
    "echo": {
        "port": DEFAULT_ECHO_PORT,
    },
    "logging": {
        "level": "WARNING",
        "file": "",
    },
}

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """Configuration manager for Zerotrust.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Load configuration.

        Args:
            config_path: Path to configuration file. Defaults to
                ~/.zerotrust/config.toml; a missing file is not an error.

        Raises:
            ConfigError: If the file cannot be parsed or holds invalid values
        """
        if config_path is None:
            config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()
        self.validate()

    def _load_config(self) -> Dict[str, Any]:
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)
            logger.debug(f"Loaded configuration from {self.config_path}")

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: ZEROTRUST_SECTION_KEY
        For example: ZEROTRUST_NETWORK_PORT=9100

        Values are converted to the type of the default they replace.

        Raises:
            ConfigError: If a value cannot be converted
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)
                if env_value is None:
                    continue

                try:
                    if isinstance(current, bool):
                        result[section][key] = env_value.lower() in ("true", "1", "yes")
                    elif isinstance(current, int):
                        result[section][key] = int(env_value)
                    elif isinstance(current, float):
                        result[section][key] = float(env_value)
                    else:
                        result[section][key] = env_value
                except ValueError as e:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "value": env_value},
                    ) from e

        return result

    def validate(self) -> None:
        """Check value types and ranges.

        Raises:
            ConfigError: On the first invalid value found
        """
        for section, key in (("network", "port"), ("echo", "port")):
            port = self.get(section, key)
            if not isinstance(port, int) or isinstance(port, bool) or not 0 <= port <= 65535:
                self._invalid(section, key, port, "must be an integer between 0 and 65535")

        for key in ("connect_timeout", "ready_timeout", "handshake_timeout"):
            value = self.get("network", key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                self._invalid("network", key, value, "must be a positive number")

        workers = self.get("session", "worker_threads")
        if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
            self._invalid("session", "worker_threads", workers, "must be a positive integer")

        join_timeout = self.get("session", "close_join_timeout")
        if not isinstance(join_timeout, (int, float)) or join_timeout < 0:
            self._invalid("session", "close_join_timeout", join_timeout, "must be a non-negative number")

        group = self.get("session", "key_exchange_group")
        try:
            KeyExchangeGroup.from_name(group)
        except ValueError:
            self._invalid("session", "key_exchange_group", group, "must be x25519 or modp2048")

        level = str(self.get("logging", "level", "INFO")).upper()
        if level not in _VALID_LOG_LEVELS:
            self._invalid("logging", "level", level, f"must be one of {', '.join(_VALID_LOG_LEVELS)}")

    def _invalid(self, section: str, key: str, value: Any, reason: str) -> None:
        raise ConfigError(
            ErrorCode.E703_INVALID_CONFIG,
            f"Invalid configuration {section}.{key}={value!r}: {reason}",
            {"section": section, "key": key, "value": repr(value)},
        )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value, or default if absent."""
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        self.data.setdefault(section, {})[key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                self._write_toml(f, self.data)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            ) from e

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
        """Write flat section tables as TOML."""
        for section, settings in data.items():
            if not isinstance(settings, dict):
                continue
            file.write(f"[{section}]\n")
            for key, value in settings.items():
                if isinstance(value, bool):
                    file.write(f"{key} = {str(value).lower()}\n")
                elif isinstance(value, (int, float)):
                    file.write(f"{key} = {value}\n")
                elif isinstance(value, str):
                    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
                    file.write(f'{key} = "{escaped}"\n')
            file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get a deep copy of the configuration."""
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Write an example configuration file holding the defaults.

        Raises:
            ConfigError: If file creation fails
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                f.write("# Zerotrust Configuration File\n")
                f.write(f"# Environment variables {ENV_PREFIX}_SECTION_KEY override these values\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            ) from e
