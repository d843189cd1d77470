"""
Configuration management for the Ruuvi gateway.
Loads configuration from environment variables with validation and defaults.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Union
from dotenv import load_dotenv
import logging

from ..ble.registry import normalize_mac


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class Config:
    """
    Configuration manager that loads settings from environment variables.
    Provides validation and type conversion for configuration values.
    """

    def __init__(self, env_file: Optional[Union[str, Path]] = None,
                 overrides: Optional[Dict[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in the working directory)
            overrides: Values taking precedence over the environment, e.g. from command line options
        """
        self.logger = logging.getLogger(__name__)
        self.overrides: Dict[str, str] = dict(overrides or {})

        if env_file is None:
            env_file = Path.cwd() / ".env"

        if Path(env_file).exists():
            load_dotenv(env_file)
            self.logger.info(f"Loaded configuration from {env_file}")
        else:
            self.logger.debug(f"Environment file {env_file} not found, using system environment")

    def _lookup(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if key in self.overrides:
            return self.overrides[key]
        return os.getenv(key, default)

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        """Get string configuration value."""
        value = self._lookup(key, default)
        if value is None:
            raise ConfigurationError(f"Required configuration key '{key}' not found")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{value}'")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        """Get float configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a float, got '{value}'")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Get path configuration value; relative paths resolve against the working directory."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            value = str(default)

        path = Path(value)
        if not path.is_absolute():
            path = Path.cwd() / path

        return path

    def get_list(self, key: str, default: Optional[List[str]] = None) -> List[str]:
        """Get comma separated list configuration value, empty items dropped."""
        value = self._lookup(key)
        if value is None:
            return list(default) if default is not None else []
        return [item.strip() for item in value.split(",") if item.strip()]

    # BLE Configuration
    @property
    def ble_adapter(self) -> str:
        return self.get_str("BLE_ADAPTER", "hci0")

    @property
    def ble_retry_attempts(self) -> int:
        return self.get_int("BLE_RETRY_ATTEMPTS", 2)

    @property
    def ble_retry_delay(self) -> float:
        return self.get_float("BLE_RETRY_DELAY", 1.0)

    @property
    def ble_blacklist(self) -> List[str]:
        return self.get_list("BLE_BLACKLIST")

    # Decoding
    @property
    def decode_strict(self) -> bool:
        return self.get_bool("DECODE_STRICT", False)

    # Exposer Configuration
    @property
    def exposer_address(self) -> str:
        return self.get_str("EXPOSER_ADDRESS", "0.0.0.0")

    @property
    def exposer_port(self) -> int:
        return self.get_int("EXPOSER_PORT", 9105)

    @property
    def sysinfo_enabled(self) -> bool:
        return self.get_bool("SYSINFO_ENABLED", True)

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)  # 10MB

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    @property
    def log_enable_syslog(self) -> bool:
        return self.get_bool("LOG_ENABLE_SYSLOG", False)

    @property
    def log_packets(self) -> bool:
        return self.get_bool("LOG_PACKETS", False)

    def validate_configuration(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        errors = []

        try:
            if not self.ble_adapter:
                errors.append("BLE_ADAPTER cannot be empty")
            if self.ble_retry_attempts < 0:
                errors.append("BLE_RETRY_ATTEMPTS cannot be negative")
            if self.ble_retry_delay < 0:
                errors.append("BLE_RETRY_DELAY cannot be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        for mac in self.ble_blacklist:
            try:
                normalize_mac(mac)
            except ValueError:
                errors.append(f"BLE_BLACKLIST contains an invalid MAC address '{mac}'")

        try:
            if self.exposer_port < 1 or self.exposer_port > 65535:
                errors.append("EXPOSER_PORT must be between 1 and 65535")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if self.log_level not in valid_levels:
                errors.append(f"LOG_LEVEL must be one of {valid_levels}")
            if self.log_backup_count < 0:
                errors.append("LOG_BACKUP_COUNT cannot be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    def get_summary(self) -> dict:
        """Get configuration summary for logging/debugging."""
        return {
            'ble': {
                'adapter': self.ble_adapter,
                'retry_attempts': self.ble_retry_attempts,
                'retry_delay': self.ble_retry_delay,
                'blacklist': self.ble_blacklist,
            },
            'decoding': {
                'strict': self.decode_strict,
            },
            'exposer': {
                'address': self.exposer_address,
                'port': self.exposer_port,
                'sysinfo_enabled': self.sysinfo_enabled,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
                'enable_syslog': self.log_enable_syslog,
                'log_packets': self.log_packets,
            },
        }
