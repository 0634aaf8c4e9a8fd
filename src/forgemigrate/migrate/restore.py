"""
Restore orchestration.

Applies a migration archive to a Laravel project on the destination host as
a linear state machine:

    EXTRACTING -> MANIFEST_READ -> AWAITING_CONFIRMATION -> MERGING_CONFIG
    -> AWAITING_DB_CONFIRMATION -> RESTORING_DB -> RESTORING_STORAGE
    -> FIXING_PERMISSIONS -> DONE

Any confirmation gate can end the run in ABORTED. Declining is a normal
outcome and comes back as a RestoreResult, not an exception.

Safety rules:
    - The existing .env is copied aside before it is replaced
    - The existing storage/app is renamed aside before the backup tree is
      copied in
    - Overwriting the database needs its own confirmation naming the target
    - Permission fixing and artisan commands only ever produce warnings

Fatal failures propagate as MigrationError subclasses whose step is the
state the run was in; the orchestrator's state attribute stays there too.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from forgemigrate.archive.container import (
    CONFIG_MEMBER,
    DATABASE_MEMBER,
    STORAGE_MEMBER,
    ArchiveReader,
)
from forgemigrate.archive.manifest import TIMESTAMP_FORMAT, Manifest
from forgemigrate.config.envfile import read_env_file, write_env_file
from forgemigrate.config.settings import Settings
from forgemigrate.errors import (
    FileOperationError,
    MaintenanceError,
    MigrationError,
    ValidationError,
)
from forgemigrate.migrate.snapshot import move_aside, snapshot_file
from forgemigrate.prompter import Prompter
from forgemigrate.reconcile.merge import ConfigReconciler, ConflictPolicy, MergeResult
from forgemigrate.services.mysql import DatabaseClient, DatabaseCredentials
from forgemigrate.services.project import (
    ENV_FILENAME,
    STORAGE_SUBPATH,
    ProjectMaintenance,
    locate_project_root,
)

logger = logging.getLogger(__name__)


class RestoreState(str, Enum):
    """Restore progress."""

    EXTRACTING = "extracting"
    MANIFEST_READ = "manifest_read"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    MERGING_CONFIG = "merging_config"
    AWAITING_DB_CONFIRMATION = "awaiting_db_confirmation"
    RESTORING_DB = "restoring_db"
    RESTORING_STORAGE = "restoring_storage"
    FIXING_PERMISSIONS = "fixing_permissions"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class RestoreResult:
    """
    Outcome of a restore run.

    Attributes:
        state: DONE or ABORTED.
        manifest: Archive manifest, once read.
        project_root: Destination project.
        merge: .env reconciliation log; None when no merge happened.
        snapshots: Pre-overwrite copies created during the run.
        database_restored: Whether the dump was loaded.
        storage_restored: Whether storage/app was replaced.
        warnings: Non-fatal problems worth telling the operator about.
    """

    state: RestoreState
    manifest: Manifest | None = None
    project_root: Path | None = None
    merge: MergeResult | None = None
    snapshots: list[Path] = field(default_factory=list)
    database_restored: bool = False
    storage_restored: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.state == RestoreState.ABORTED


def describe_manifest(manifest: Manifest) -> list[str]:
    """Human readable summary lines for a manifest."""
    return [
        "Migration archive info:",
        f"  Domain    : {manifest.domain}",
        f"  Created   : {manifest.created_at.strftime(TIMESTAMP_FORMAT)}",
        f"  Database  : {manifest.db_connection} / {manifest.db_database}",
        f"  PHP       : {manifest.php_version}",
        f"  Git       : {manifest.git_remote or '-'} ({manifest.git_branch or '-'})",
        f"  Storage   : {manifest.storage_size_mb} MB",
    ]


class RestoreOrchestrator:
    """
    Restores a migration archive into a Laravel project.

    Usage:
        orchestrator = RestoreOrchestrator(
            settings, MySQLClient(), ConsolePrompter(), ProjectMaintenance()
        )
        result = orchestrator.run(Path("/tmp/migrate_example_com.fmig"), password)
        if result.aborted:
            ...

    Attributes:
        state: Current (or final) RestoreState of the last run.
    """

    def __init__(
        self,
        settings: Settings,
        database: DatabaseClient,
        prompter: Prompter,
        maintenance: ProjectMaintenance | None = None,
        reconciler: ConfigReconciler | None = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.prompter = prompter
        self.maintenance = maintenance or ProjectMaintenance(settings.permissions)
        self.reconciler = reconciler
        self.state = RestoreState.EXTRACTING

    def run(
        self,
        archive_path: Path | str,
        password: str,
        project_root: Path | str | None = None,
    ) -> RestoreResult:
        """
        Restore an archive.

        Args:
            archive_path: Migration archive to apply.
            password: Archive password.
            project_root: Destination project (default: current directory).

        Returns:
            RestoreResult in state DONE or ABORTED.

        Raises:
            ProjectNotFoundError: No artisan file at project_root.
            WrongPasswordError: The password does not open the archive.
            InvalidArchiveError: The archive is corrupt or has no usable
                manifest.
            ValidationError: The merged .env has no DB_DATABASE.
            FileOperationError: A snapshot or copy failed.
            DatabaseOperationError: Loading the dump failed.
        """
        self.state = RestoreState.EXTRACTING
        try:
            return self._run(Path(archive_path), password, project_root)
        except MigrationError as e:
            raise e.with_step(self.state.value)

    def _run(
        self,
        archive_path: Path,
        password: str,
        project_root: Path | str | None,
    ) -> RestoreResult:
        root = locate_project_root(project_root or Path.cwd())
        result = RestoreResult(state=self.state, project_root=root)

        tmp_root = Path(self.settings.tmp_dir)
        tmp_root.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="restore_", dir=tmp_root))

        try:
            logger.info(f"Extracting {archive_path}")
            handle = ArchiveReader.open(archive_path, password)
            manifest = handle.manifest()
            handle.extract_all(work_dir)

            self._enter(RestoreState.MANIFEST_READ)
            result.manifest = manifest
            for line in describe_manifest(manifest):
                logger.info(line)

            self._enter(RestoreState.AWAITING_CONFIRMATION)
            question = "\n".join(
                describe_manifest(manifest)
                + [f"Restore {manifest.domain} into {root}?"]
            )
            if not self.prompter.confirm(question):
                return self._abort(result)

            self._enter(RestoreState.MERGING_CONFIG)
            if handle.has_config():
                self._restore_config(work_dir / CONFIG_MEMBER, root, result)
            else:
                logger.info("No .env snapshot in archive, skipping")

            if handle.has_database():
                self._enter(RestoreState.AWAITING_DB_CONFIRMATION)
                credentials = self._destination_credentials(root)
                if not self.prompter.confirm(
                    f"This will overwrite database [{credentials.name}]. Continue?"
                ):
                    return self._abort(result)

                self._enter(RestoreState.RESTORING_DB)
                with open(work_dir / DATABASE_MEMBER, "rb") as f:
                    self.database.restore(credentials, f)
                result.database_restored = True
                logger.info(f"Database [{credentials.name}] restored")
            else:
                self._warn(result, "No database dump in archive, skipping")

            if handle.has_storage():
                self._enter(RestoreState.RESTORING_STORAGE)
                self._restore_storage(work_dir / STORAGE_MEMBER, root, result)
            else:
                logger.debug("No storage tree in archive, skipping")

            self._enter(RestoreState.FIXING_PERMISSIONS)
            self._maintain(root, result)

            self._enter(RestoreState.DONE)
            result.state = self.state
            logger.info(f"Restore complete for {manifest.domain}")
            return result
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _restore_config(self, backup_env: Path, root: Path, result: RestoreResult) -> None:
        target = root / ENV_FILENAME

        if not target.exists():
            try:
                shutil.copyfile(backup_env, target)
            except OSError as e:
                raise FileOperationError(f"Cannot copy .env into {root}: {e}") from e
            self._warn(
                result,
                "No existing .env - copied from backup. Update server-dependent "
                "values (DB_HOST, REDIS_HOST, ...) before going live",
            )
            return

        result.snapshots.append(snapshot_file(target))

        try:
            backup_values = read_env_file(backup_env)
            destination_values = read_env_file(target)
        except OSError as e:
            raise FileOperationError(f"Cannot read .env files: {e}") from e

        merge = self._reconciler().merge(backup_values, destination_values)
        try:
            write_env_file(target, merge.merged)
        except (OSError, ValueError) as e:
            raise FileOperationError(f"Cannot write merged {target}: {e}") from e

        result.merge = merge

    def _destination_credentials(self, root: Path) -> DatabaseCredentials:
        env_path = root / ENV_FILENAME
        if not env_path.is_file():
            raise ValidationError("No .env on destination - cannot restore database")
        try:
            values = read_env_file(env_path)
        except OSError as e:
            raise FileOperationError(f"Cannot read {env_path}: {e}") from e

        if not values.get("DB_DATABASE"):
            raise ValidationError("DB_DATABASE not set in .env - cannot restore database")
        return DatabaseCredentials.from_env(values)

    def _restore_storage(self, backup_tree: Path, root: Path, result: RestoreResult) -> None:
        target = root / STORAGE_SUBPATH
        if target.exists() or target.is_symlink():
            result.snapshots.append(move_aside(target))

        try:
            shutil.copytree(backup_tree, target, symlinks=True)
        except (OSError, shutil.Error) as e:
            raise FileOperationError(f"Cannot copy storage tree into {target}: {e}") from e

        result.storage_restored = True
        logger.info("storage/app restored")

    def _maintain(self, root: Path, result: RestoreResult) -> None:
        steps = (
            ("Fixing permissions", self.maintenance.fix_permissions),
            ("Caching configuration", self.maintenance.cache_config),
            ("Running migrations", self.maintenance.migrate_schema),
        )
        for label, action in steps:
            logger.info(f"{label}...")
            try:
                action(root)
            except MaintenanceError as e:
                self._warn(result, f"{label} failed (non-fatal): {e.message}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _reconciler(self) -> ConfigReconciler:
        if self.reconciler is not None:
            return self.reconciler
        if self.prompter.interactive:
            policy = ConflictPolicy.INTERACTIVE
        else:
            policy = ConflictPolicy.FORCED
        return ConfigReconciler(
            server_local_keys=self.settings.server_local_keys,
            policy=policy,
            prompter=self.prompter,
        )

    def _enter(self, state: RestoreState) -> None:
        logger.info(f"Restore state: {self.state.value} -> {state.value}")
        self.state = state

    def _abort(self, result: RestoreResult) -> RestoreResult:
        logger.warning(f"Restore aborted by user at {self.state.value}")
        self.state = RestoreState.ABORTED
        result.state = self.state
        return result

    @staticmethod
    def _warn(result: RestoreResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)
