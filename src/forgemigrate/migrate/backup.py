"""
Backup orchestration.

Captures a Laravel site into one encrypted migration archive:

    1. locate the project (artisan file) and read its .env
    2. check the database engine and name
    3. work out the domain (argument, else the APP_URL host)
    4. dump the database into a private scratch directory
    5. describe the run in a manifest (git, php, storage size)
    6. pack manifest, .env, dump and storage/app into the archive

The scratch directory is removed whether the run succeeds or not, and the
archive builder never leaves a partial archive behind.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from forgemigrate.archive.container import ARCHIVE_SUFFIX, ArchiveBuilder
from forgemigrate.archive.manifest import Manifest
from forgemigrate.config.envfile import read_env_file
from forgemigrate.config.settings import Settings
from forgemigrate.errors import MigrationError, ValidationError
from forgemigrate.services.mysql import DatabaseClient, DatabaseCredentials
from forgemigrate.services.project import (
    ENV_FILENAME,
    STORAGE_SUBPATH,
    detect_git_info,
    detect_php_version,
    directory_size_mb,
    domain_from_url,
    locate_project_root,
    slugify_domain,
)

logger = logging.getLogger(__name__)

BACKUP_STEP = "backup"

# Above this storage/app size the in-memory archive gets a warning
LARGE_STORAGE_MB = 1024


@dataclass
class BackupResult:
    """Result of a backup run."""

    path: Path
    manifest: Manifest
    size_bytes: int = 0


def default_archive_name(
    domain: str,
    today: date | None = None,
    suffix: str = ARCHIVE_SUFFIX,
) -> str:
    """migrate_<slug>_<YYYY-MM-DD>.fmig for a domain."""
    day = (today or date.today()).isoformat()
    return f"migrate_{slugify_domain(domain)}_{day}{suffix}"


class BackupOrchestrator:
    """
    Creates a migration archive from a Laravel project.

    Usage:
        orchestrator = BackupOrchestrator(settings, MySQLClient())
        result = orchestrator.run(password, project_root="/home/forge/example.com")
        print(result.path)
    """

    def __init__(
        self,
        settings: Settings,
        database: DatabaseClient,
        builder: ArchiveBuilder | None = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.builder = builder or ArchiveBuilder(settings.archive.pbkdf2_iterations)

    def run(
        self,
        password: str,
        project_root: Path | str | None = None,
        domain: str | None = None,
        output: Path | str | None = None,
    ) -> BackupResult:
        """
        Run a backup.

        Args:
            password: Archive password.
            project_root: Laravel project directory (default: current directory).
            domain: Site domain; taken from APP_URL when omitted.
            output: Archive path; relative paths resolve against the current
                directory.

        Raises:
            ValidationError: Missing project, .env, database name or domain.
            DatabaseOperationError: The dump failed.
            ArchiveWriteError: The archive could not be written.
        """
        try:
            return self._run(password, project_root, domain, output)
        except MigrationError as e:
            raise e.with_step(BACKUP_STEP)

    def _run(
        self,
        password: str,
        project_root: Path | str | None,
        domain: str | None,
        output: Path | str | None,
    ) -> BackupResult:
        if not password:
            raise ValidationError("Archive password cannot be empty")

        root = locate_project_root(project_root or Path.cwd())
        logger.debug(f"Project root: {root}")

        env_path = root / ENV_FILENAME
        if not env_path.is_file():
            raise ValidationError(f"No .env file found at [{env_path}]")
        try:
            config_bytes = env_path.read_bytes()
            env_values = read_env_file(env_path)
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(f"Cannot read {env_path}: {e}") from e

        credentials = DatabaseCredentials.from_env(env_values)

        domain = domain or domain_from_url(env_values.get("APP_URL", ""))
        if not domain:
            raise ValidationError("Could not determine domain - pass it explicitly")
        logger.info(f"Backing up site: {domain}")

        if output:
            destination = Path(output)
        else:
            destination = Path(default_archive_name(domain, suffix=self.settings.archive.suffix))
        if not destination.is_absolute():
            destination = Path.cwd() / destination

        tmp_root = Path(self.settings.tmp_dir)
        tmp_root.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="backup_", dir=tmp_root))

        try:
            dump_path = work_dir / "database.sql"
            with open(dump_path, "wb") as f:
                self.database.dump(credentials, f)

            storage_root: Path | None = root / STORAGE_SUBPATH
            storage_size = 0
            if storage_root.is_dir():
                storage_size = directory_size_mb(storage_root)
                logger.info(f"Including storage/app ({storage_size} MB)")
                if storage_size > LARGE_STORAGE_MB:
                    logger.warning(
                        f"storage/app is {storage_size} MB; the archive is built in "
                        f"memory, so this backup needs several times that in free RAM"
                    )
            else:
                logger.debug("No storage/app folder found, skipping")
                storage_root = None

            git_remote, git_branch = detect_git_info(root)
            manifest = Manifest.build(
                domain,
                credentials.name,
                str(root),
                extras={
                    "php_version": detect_php_version(),
                    "git_remote": git_remote,
                    "git_branch": git_branch,
                    "storage_size_mb": storage_size,
                },
            )

            path = self.builder.create(
                manifest,
                config_bytes,
                destination,
                password,
                database_dump=dump_path,
                storage_root=storage_root,
            )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        size = path.stat().st_size
        logger.info(f"Backup created: {path} ({size:,} bytes)")
        return BackupResult(path=path, manifest=manifest, size_bytes=size)
