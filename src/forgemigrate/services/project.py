"""
Helpers for working with a Laravel project checkout on the local host.

Best-effort lookups (git, php) never raise; they fall back to empty strings
or "unknown". Maintenance actions (permissions, artisan) raise
MaintenanceError, which restore callers downgrade to a warning.
"""

from __future__ import annotations

import logging
import math
import os
import re
import shutil
import subprocess
from pathlib import Path
from urllib.parse import urlparse

from forgemigrate.config.settings import PermissionsConfig
from forgemigrate.errors import MaintenanceError, ProjectNotFoundError

logger = logging.getLogger(__name__)

PROJECT_MARKER = "artisan"
ENV_FILENAME = ".env"
STORAGE_SUBPATH = Path("storage") / "app"
WRITABLE_SUBPATHS = (Path("storage"), Path("bootstrap") / "cache")

LOOKUP_TIMEOUT = 10


def locate_project_root(start: Path | str = ".") -> Path:
    """
    Resolve a Laravel project root.

    Raises:
        ProjectNotFoundError: If there is no artisan file at start.
    """
    root = Path(start).expanduser().resolve()
    if not (root / PROJECT_MARKER).is_file():
        raise ProjectNotFoundError(
            f"No Laravel project found at [{root}] (no {PROJECT_MARKER} file)"
        )
    return root


def detect_git_info(project_root: Path) -> tuple[str, str]:
    """Return (origin URL, current branch); empty strings when unavailable."""
    if not (Path(project_root) / ".git").exists():
        return "", ""
    remote = _run_quietly(["git", "-C", str(project_root), "remote", "get-url", "origin"])
    branch = _run_quietly(["git", "-C", str(project_root), "branch", "--show-current"])
    return remote, branch


def detect_php_version() -> str:
    """Return the PHP major.minor version, or "unknown"."""
    version = _run_quietly(["php", "-r", 'echo PHP_MAJOR_VERSION . "." . PHP_MINOR_VERSION;'])
    return version or "unknown"


def directory_size_mb(path: Path) -> int:
    """Total size of the regular files below path in MiB, rounded up like du -sm."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            file_path = Path(dirpath) / name
            try:
                if not file_path.is_symlink():
                    total += file_path.stat().st_size
            except OSError:
                continue
    return math.ceil(total / (1024 * 1024))


def domain_from_url(url: str) -> str:
    """Extract the host from an APP_URL value ("https://a.com/x" -> "a.com")."""
    if not url:
        return ""
    if "://" not in url:
        url = f"//{url}"
    return urlparse(url).hostname or ""


def slugify_domain(domain: str) -> str:
    """Replace everything except letters and digits with underscores."""
    return re.sub(r"[^a-zA-Z0-9]", "_", domain)


class ProjectMaintenance:
    """
    Post-restore maintenance on a project.

    Attributes:
        permissions: Owner, group and mode for writable directories.
        php_binary: PHP executable used to run artisan.
    """

    def __init__(
        self,
        permissions: PermissionsConfig | None = None,
        php_binary: str = "php",
        timeout: float = 600,
    ) -> None:
        self.permissions = permissions or PermissionsConfig()
        self.php_binary = php_binary
        self.timeout = timeout

    def fix_permissions(self, project_root: Path) -> None:
        """
        Apply owner, group and mode recursively to storage/ and bootstrap/cache.

        Raises:
            MaintenanceError: If any path could not be updated.
        """
        failures: list[str] = []
        for subpath in WRITABLE_SUBPATHS:
            target = Path(project_root) / subpath
            if not target.exists():
                continue
            for path in _walk(target):
                try:
                    shutil.chown(path, self.permissions.owner, self.permissions.group)
                    os.chmod(path, self.permissions.mode)
                except (OSError, LookupError) as e:
                    failures.append(f"{path}: {e}")

        if failures:
            raise MaintenanceError(
                f"Could not fix permissions on {len(failures)} paths "
                f"(first: {failures[0]})"
            )
        logger.info(f"Permissions fixed under {project_root}")

    def cache_config(self, project_root: Path) -> None:
        """Run artisan config:cache."""
        self._artisan(project_root, "config:cache")

    def migrate_schema(self, project_root: Path) -> None:
        """Run artisan migrate --force."""
        self._artisan(project_root, "migrate", "--force")

    def _artisan(self, project_root: Path, *args: str) -> None:
        command = [self.php_binary, PROJECT_MARKER, *args]
        try:
            result = subprocess.run(
                command,
                cwd=project_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise MaintenanceError(f"artisan {' '.join(args)} could not run: {e}") from e

        if result.returncode != 0:
            raise MaintenanceError(
                f"artisan {' '.join(args)} failed ({result.returncode}): "
                f"{result.stderr.strip() or result.stdout.strip()}"
            )
        logger.info(f"artisan {' '.join(args)} completed")


def _walk(root: Path):
    yield root
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            yield Path(dirpath) / name


def _run_quietly(command: list[str]) -> str:
    """Run a lookup command and return its stripped stdout, "" on any failure."""
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=LOOKUP_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()
