"""Configuration loading and validation utilities for execution tracking."""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .models.execution_models import TrackingConfiguration
from .config import settings

logger = logging.getLogger(__name__)

STOP_MODES = ("kill_process_group", "terminate")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class TrackingConfigLoader:
    """Loads and validates execution tracking configuration."""

    DEFAULT_CONFIG = {
        "tracking": {
            "watchdog": {
                "timeout": 30.0
            },
            "execution": {
                "timeout": 300,
                "expected_exit_codes": [0, 1]
            },
            "stop": {
                "mode": "kill_process_group",
                "grace_period": 5.0
            }
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config loader with optional custom path."""
        self.config_path = Path(
            config_path or settings.TRACKING_CONFIG_PATH)
        self._config_cache: Optional[TrackingConfiguration] = None
        self._config_file_mtime: Optional[float] = None

    def load_config(self, force_reload: bool = False) -> TrackingConfiguration:
        """Load and validate tracking configuration.

        Args:
            force_reload: Force reload even if cached config exists

        Returns:
            TrackingConfiguration: Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not force_reload and self._config_cache and self._is_config_current():
            return self._config_cache

        try:
            config_data = self._load_config_file()
            tracking_config = self._parse_tracking_config(config_data)
            self._validate_config(tracking_config)

            self._config_cache = tracking_config
            if self.config_path.exists():
                self._config_file_mtime = self.config_path.stat().st_mtime

            logger.info(
                f"Loaded tracking configuration from {self.config_path}")
            return tracking_config

        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Failed to load tracking configuration: {e}")
            raise ConfigurationError(
                f"Configuration loading failed: {e}") from e

    def save_config(self, config: TrackingConfiguration) -> None:
        """Save configuration to file.

        Raises:
            ConfigurationError: If validation or writing fails
        """
        self._validate_config(config)
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            config_data = {
                "tracking": self._config_to_dict(config)
            }

            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)

            self._config_cache = config
            self._config_file_mtime = self.config_path.stat().st_mtime

            logger.info(
                f"Saved tracking configuration to {self.config_path}")

        except Exception as e:
            logger.error(f"Failed to save tracking configuration: {e}")
            raise ConfigurationError(
                f"Configuration saving failed: {e}") from e

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file or return defaults."""
        if not self.config_path.exists():
            logger.info(
                f"Config file {self.config_path} not found, using defaults")
            return self._deep_merge(self.DEFAULT_CONFIG, {})

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}")

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        return self._deep_merge(self.DEFAULT_CONFIG, config_data)

    def _parse_tracking_config(self, config_data: Dict[str, Any]) -> TrackingConfiguration:
        """Parse configuration data into TrackingConfiguration object."""
        tracking_section = config_data.get("tracking", {})

        watchdog = tracking_section.get("watchdog", {})
        execution = tracking_section.get("execution", {})
        stop = tracking_section.get("stop", {})

        try:
            return TrackingConfiguration(
                watchdog_timeout=float(watchdog.get("timeout", 30.0)),
                execution_timeout=int(execution.get("timeout", 300)),
                expected_exit_codes=[int(c) for c in execution.get("expected_exit_codes", [0, 1])],
                stop_mode=str(stop.get("mode", "kill_process_group")),
                stop_grace_period=float(stop.get("grace_period", 5.0))
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid tracking configuration value: {e}")

    def _config_to_dict(self, config: TrackingConfiguration) -> Dict[str, Any]:
        """Convert TrackingConfiguration to nested dictionary structure."""
        return {
            "watchdog": {
                "timeout": config.watchdog_timeout
            },
            "execution": {
                "timeout": config.execution_timeout,
                "expected_exit_codes": list(config.expected_exit_codes)
            },
            "stop": {
                "mode": config.stop_mode,
                "grace_period": config.stop_grace_period
            }
        }

    def _validate_config(self, config: TrackingConfiguration) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If validation fails
        """
        errors = []

        if config.watchdog_timeout <= 0 or config.watchdog_timeout > 600:
            errors.append("watchdog_timeout must be between 0 and 600 seconds")

        if config.execution_timeout < 1 or config.execution_timeout > 3600:
            errors.append(
                "execution_timeout must be between 1 and 3600 seconds")

        if config.stop_grace_period < 0 or config.stop_grace_period > 60:
            errors.append(
                "stop_grace_period must be between 0 and 60 seconds")

        if not config.expected_exit_codes:
            errors.append("At least one expected exit code must be specified")

        if len(config.expected_exit_codes) != len(set(config.expected_exit_codes)):
            errors.append("Duplicate expected exit codes are not allowed")

        if config.stop_mode not in STOP_MODES:
            errors.append(
                f"stop_mode must be one of {', '.join(STOP_MODES)}")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(errors))

    def _is_config_current(self) -> bool:
        """Check if cached config is still current."""
        if not self.config_path.exists():
            return self._config_file_mtime is None

        current_mtime = self.config_path.stat().st_mtime
        return self._config_file_mtime == current_mtime

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = {
            key: self._deep_merge(value, {}) if isinstance(value, dict) else value
            for key, value in base.items()
        }

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


# Global config loader instance
config_loader = TrackingConfigLoader()


def get_tracking_config(force_reload: bool = False) -> TrackingConfiguration:
    """Get the current tracking configuration.

    Args:
        force_reload: Force reload from file

    Returns:
        TrackingConfiguration: Current configuration
    """
    return config_loader.load_config(force_reload)


def save_tracking_config(config: TrackingConfiguration) -> None:
    """Save tracking configuration.

    Args:
        config: Configuration to save
    """
    config_loader.save_config(config)
