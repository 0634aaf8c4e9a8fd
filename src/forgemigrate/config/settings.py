"""
Configuration settings management for forgemigrate.

Settings are assembled from four layers, each overriding the previous one:

    1. Built-in defaults
    2. YAML file (~/.forgemigrate/config.yaml, or $FORGEMIGRATE_CONFIG)
    3. Env-style files: <config_dir>/.env, <config_dir>/forgemigrate.env,
       ./.forgemigrate.env, ./forgemigrate.env
    4. Process environment variables

Only FORGE_API_TOKEN and FORGEMIGRATE_* keys are honoured from layers 3 and
4. A Laravel project's own .env in the working directory is never read here.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from forgemigrate.archive.container import ARCHIVE_SUFFIX, PBKDF2_ITERATIONS
from forgemigrate.config.envfile import read_env_file
from forgemigrate.reconcile.merge import DEFAULT_SERVER_LOCAL_KEYS

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".forgemigrate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_TMP_DIR = Path(tempfile.gettempdir()) / "forgemigrate"

ENV_FILE_NAMES = (".env", "forgemigrate.env")
CWD_ENV_FILE_NAMES = (".forgemigrate.env", "forgemigrate.env")


@dataclass
class ReconcileConfig:
    """Settings for the .env merge."""

    server_local_keys: list[str] = field(
        default_factory=lambda: sorted(DEFAULT_SERVER_LOCAL_KEYS)
    )


@dataclass
class ArchiveConfig:
    """Archive encryption settings."""

    pbkdf2_iterations: int = PBKDF2_ITERATIONS
    suffix: str = ARCHIVE_SUFFIX


@dataclass
class ForgeConfig:
    """Forge API settings."""

    api_token: str = ""
    base_url: str = "https://forge.laravel.com/api/v1"
    provision_delay: float = 2.0


@dataclass
class PermissionsConfig:
    """Ownership and mode applied to storage/ and bootstrap/cache after restore."""

    owner: str = "forge"
    group: str = "forge"
    mode: int = 0o775


@dataclass
class Settings:
    """
    Complete forgemigrate configuration.

    An instance is passed explicitly into every orchestrator; nothing reads
    configuration from module globals.

    Attributes:
        config_dir: Directory holding config.yaml and optional env files.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        tmp_dir: Parent directory for per-run scratch directories.
        sites_root: Directory holding site folders on Forge servers.
        reconcile: .env merge settings (server-local keys).
        archive: Archive encryption settings.
        forge: Forge API settings.
        permissions: Post-restore ownership and mode.
    """

    config_dir: str = str(DEFAULT_CONFIG_DIR)
    log_level: str = "INFO"
    tmp_dir: str = str(DEFAULT_TMP_DIR)
    sites_root: str = "/home/forge"

    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    forge: ForgeConfig = field(default_factory=ForgeConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)

    @property
    def server_local_keys(self) -> frozenset[str]:
        """The server-local key set as the reconciler expects it."""
        return frozenset(self.reconcile.server_local_keys)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from FORGEMIGRATE_CONFIG if set, otherwise the default
    (~/.forgemigrate/config.yaml).
    """
    env_path = os.environ.get("FORGEMIGRATE_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(
    config_path: Path | None = None,
    cwd: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load configuration from all layers.

    Args:
        config_path: Optional YAML path. Defaults to get_config_path().
        cwd: Directory searched for working-directory env files.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If a file cannot be read or a value is invalid.
    """
    if config_path is None:
        config_path = get_config_path()
    if environ is None:
        environ = os.environ

    settings = Settings(config_dir=str(config_path.parent))

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")
        settings = _apply_config_data(settings, config_data)

    overrides = _load_env_files(env_file_paths(Path(settings.config_dir), cwd))
    overrides.update(
        {key: value for key, value in environ.items() if _is_tool_key(key)}
    )
    settings = _apply_environment_overrides(settings, overrides)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to a YAML file.

    The Forge API token is not written; keep it in an env file or the
    environment.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def env_file_paths(config_dir: Path, cwd: Path | None = None) -> list[Path]:
    """List env-style override files in load order (later wins)."""
    cwd = Path.cwd() if cwd is None else Path(cwd)
    paths = [config_dir / name for name in ENV_FILE_NAMES]
    paths.extend(cwd / name for name in CWD_ENV_FILE_NAMES)
    return paths


def example_env(settings: Settings | None = None) -> str:
    """Render an example forgemigrate.env with every honoured key."""
    settings = settings or Settings()
    lines = [
        "# forgemigrate settings (environment variables override this file)",
        "FORGE_API_TOKEN=",
        f"FORGEMIGRATE_FORGE_URL={settings.forge.base_url}",
        f"FORGEMIGRATE_LOG_LEVEL={settings.log_level}",
        f"FORGEMIGRATE_TMP_DIR={settings.tmp_dir}",
        f"FORGEMIGRATE_SITES_ROOT={settings.sites_root}",
        f"FORGEMIGRATE_PBKDF2_ITERATIONS={settings.archive.pbkdf2_iterations}",
        f"FORGEMIGRATE_SERVER_LOCAL_KEYS={','.join(settings.reconcile.server_local_keys)}",
        "# FORGEMIGRATE_ARCHIVE_PASSWORD=",
    ]
    return "\n".join(lines) + "\n"


def _is_tool_key(key: str) -> bool:
    return key == "FORGE_API_TOKEN" or key.startswith("FORGEMIGRATE_")


def _load_env_files(paths: list[Path]) -> dict[str, str]:
    """Merge the tool keys of every existing env file, later files winning."""
    values: dict[str, str] = {}
    seen: set[Path] = set()
    for path in paths:
        resolved = path.resolve()
        if resolved in seen or not path.is_file():
            continue
        seen.add(resolved)
        try:
            file_values = read_env_file(path)
        except OSError as e:
            raise ConfigurationError(f"Cannot read env file {path}: {e}") from e
        values.update({k: v for k, v in file_values.items() if _is_tool_key(k)})
    return values


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("forgemigrate", {}) or {}

    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()
    if "tmp_dir" in general:
        settings.tmp_dir = str(general["tmp_dir"])
    if "sites_root" in general:
        settings.sites_root = str(general["sites_root"])

    reconcile = data.get("reconcile", {}) or {}
    if "server_local_keys" in reconcile:
        settings.reconcile.server_local_keys = _key_list(
            reconcile["server_local_keys"], "server_local_keys"
        )
    if "extra_server_local_keys" in reconcile:
        extra = _key_list(reconcile["extra_server_local_keys"], "extra_server_local_keys")
        settings.reconcile.server_local_keys = sorted(
            set(settings.reconcile.server_local_keys) | set(extra)
        )

    archive = data.get("archive", {}) or {}
    if "pbkdf2_iterations" in archive:
        settings.archive.pbkdf2_iterations = _to_int(
            archive["pbkdf2_iterations"], "pbkdf2_iterations"
        )
    if "suffix" in archive:
        settings.archive.suffix = str(archive["suffix"])

    forge = data.get("forge", {}) or {}
    if "api_token" in forge:
        settings.forge.api_token = str(forge["api_token"])
    if "base_url" in forge:
        settings.forge.base_url = str(forge["base_url"])
    if "provision_delay" in forge:
        settings.forge.provision_delay = _to_float(
            forge["provision_delay"], "forge.provision_delay"
        )

    permissions = data.get("permissions", {}) or {}
    if "owner" in permissions:
        settings.permissions.owner = str(permissions["owner"])
    if "group" in permissions:
        settings.permissions.group = str(permissions["group"])
    if "mode" in permissions:
        settings.permissions.mode = _parse_mode(permissions["mode"])

    return settings


def _apply_environment_overrides(
    settings: Settings, environ: Mapping[str, str]
) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "FORGEMIGRATE_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "FORGEMIGRATE_TMP_DIR": ("tmp_dir", str),
        "FORGEMIGRATE_SITES_ROOT": ("sites_root", str),
        "FORGEMIGRATE_SERVER_LOCAL_KEYS": (
            "reconcile.server_local_keys",
            lambda x: sorted({k.strip() for k in x.split(",") if k.strip()}),
        ),
        "FORGEMIGRATE_PBKDF2_ITERATIONS": (
            "archive.pbkdf2_iterations",
            lambda x: _to_int(x, "FORGEMIGRATE_PBKDF2_ITERATIONS"),
        ),
        "FORGE_API_TOKEN": ("forge.api_token", str),
        "FORGEMIGRATE_FORGE_URL": ("forge.base_url", str),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _key_list(value: Any, name: str) -> list[str]:
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list) or not all(isinstance(k, str) for k in value):
        raise ConfigurationError(f"{name} must be a list of key names")
    return sorted(set(value))


def _to_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _to_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


def _parse_mode(value: Any) -> int:
    """Accept 775, "775" or "0o775" as an octal mode."""
    text = str(value).strip().lower().removeprefix("0o")
    try:
        return int(text, 8)
    except ValueError as e:
        raise ConfigurationError(f"Invalid permissions mode: {value!r}") from e


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.archive.pbkdf2_iterations < 1:
        raise ConfigurationError("pbkdf2_iterations must be at least 1")

    if not settings.archive.suffix.startswith("."):
        raise ConfigurationError("archive suffix must start with '.'")

    if settings.forge.provision_delay < 0:
        raise ConfigurationError("provision_delay cannot be negative")

    if not 0 <= settings.permissions.mode <= 0o777:
        raise ConfigurationError("permissions mode must be between 000 and 777")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "forgemigrate": {
            "log_level": settings.log_level,
            "tmp_dir": settings.tmp_dir,
            "sites_root": settings.sites_root,
        },
        "reconcile": {
            "server_local_keys": list(settings.reconcile.server_local_keys),
        },
        "archive": {
            "pbkdf2_iterations": settings.archive.pbkdf2_iterations,
            "suffix": settings.archive.suffix,
        },
        "forge": {
            "base_url": settings.forge.base_url,
            "provision_delay": settings.forge.provision_delay,
        },
        "permissions": {
            "owner": settings.permissions.owner,
            "group": settings.permissions.group,
            "mode": f"{settings.permissions.mode:o}",
        },
    }
