"""Configuration management module for the mailroom service."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, validate_config_file
from .models import (
    AppConfig,
    BulkConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    ReengageConfig,
    SchedulerConfig,
    TransportConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "SchedulerConfig",
    "ReengageConfig",
    "BulkConfig",
    "TransportConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
