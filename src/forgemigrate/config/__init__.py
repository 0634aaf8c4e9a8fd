"""
Configuration handling for forgemigrate.

This package holds the .env file model used for Laravel configuration and
the tool's own settings loader.
"""

from forgemigrate.config.envfile import (
    get_value,
    parse_env,
    read_env_file,
    serialize_env,
    write_env_file,
)
from forgemigrate.config.settings import (
    ConfigurationError,
    Settings,
    example_env,
    load_config,
    save_config,
)

__all__ = [
    # .env model
    "parse_env",
    "serialize_env",
    "get_value",
    "read_env_file",
    "write_env_file",
    # Settings
    "Settings",
    "load_config",
    "save_config",
    "example_env",
    "ConfigurationError",
]
