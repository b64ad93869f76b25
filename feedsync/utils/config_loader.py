"""Configuration loader for feedsync."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from feedsync.models.config import AppConfig
from feedsync.models.descriptor import EndpointMode
from feedsync.sync.classifier import classify_endpoint
from feedsync.sync.errors import ConfigurationError
from feedsync.sync.registry import ModelRegistry

log = structlog.stdlib.get_logger()


class ConfigLoader:
    """Loads and validates application configuration from YAML files and environment variables."""

    def __init__(self) -> None:
        """Initialize the ConfigLoader."""
        self.env_var_pattern = re.compile(r"\$\{([^}]+)\}")

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """Load configuration from YAML file with environment variable overrides.

        Args:
            config_path: Path to the configuration YAML file. If None, uses
                config/<APP_ENV>.yaml or config/default.yaml

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If the file is missing or invalid, or validation fails
        """
        if config_path is None:
            config_path = self._get_default_config_path()

        log.info("loading_configuration", config_path=config_path)

        config_dict = self._load_yaml_file(config_path)
        config_dict = self._substitute_env_vars(config_dict)

        try:
            app_config = AppConfig(**config_dict)
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        log.info("configuration_loaded_successfully", models=len(app_config.models))
        return app_config

    def build_registry(self, config: AppConfig) -> ModelRegistry:
        """Build the model registry from the configured descriptors.

        Raises:
            ConfigurationError: If two descriptors share a name
        """
        names = [descriptor.name for descriptor in config.models]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate model names in configuration: {duplicates}")
        return ModelRegistry(config.models)

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path based on environment.

        Returns:
            str: Path to the configuration file
        """
        env = os.getenv("APP_ENV", "default")
        config_dir = Path(__file__).parent.parent.parent / "config"
        config_file = config_dir / f"{env}.yaml"

        if not config_file.exists():
            config_file = config_dir / "default.yaml"

        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}. "
                f"Please create config/default.yaml or set APP_ENV to a valid environment."
            )

        return str(config_file)

    def _load_yaml_file(self, config_path: str) -> Dict[str, Any]:
        """Load YAML configuration file.

        Raises:
            ConfigurationError: If file cannot be read or parsed
        """
        try:
            with open(config_path, "r") as f:
                config_dict = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration file {config_path}: {e}") from e

        if config_dict is None:
            raise ConfigurationError(f"Configuration file is empty: {config_path}")
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        log.debug("yaml_file_loaded", config_path=config_path)
        return config_dict

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute ${VAR_NAME} environment references.

        Raises:
            ConfigurationError: If a referenced environment variable is not set
        """
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_var_in_string(config)
        else:
            return config

    def _substitute_env_var_in_string(self, value: str) -> str:
        matches = self.env_var_pattern.findall(value)

        for var_name in matches:
            env_value = os.getenv(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Required environment variable not set: {var_name}. "
                    f"Please set {var_name} in your environment or .env file."
                )
            value = value.replace(f"${{{var_name}}}", env_value)

        return value

    def validate_config(self, config: AppConfig) -> list[str]:
        """Check for suspicious but valid configuration and return warnings.

        Args:
            config: Application configuration to validate

        Returns:
            List of warning messages (empty if no warnings)
        """
        warnings = []
        model_names = {descriptor.name for descriptor in config.models}

        for descriptor in config.models:
            mode = classify_endpoint(descriptor)
            if descriptor.has_deletion_log and mode is not EndpointMode.SYNC:
                warnings.append(
                    f"model '{descriptor.name}' declares a deletion entity type but has no "
                    f"sync feed; deletions will not be propagated"
                )
            if mode is EndpointMode.SINGLE:
                warnings.append(
                    f"model '{descriptor.name}' has no sync or bulk feed; every run is a full fetch"
                )

        for name in config.sync.fields:
            if name not in model_names:
                warnings.append(f"sync.fields lists unknown model '{name}'")

        if warnings:
            log.warning("configuration_validation_warnings", warnings=warnings)

        return warnings
