"""
Tests for the restore workflow.

Tests cover:
- RestoreOrchestrator state machine and result
- .env merge, database and storage restore
- Confirmation gates and aborts
- Archive errors and their reported step
- Pre-overwrite snapshots
"""

import io
import shutil
import tarfile
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

from forgemigrate.archive.container import HEADER, MAGIC, ArchiveBuilder, derive_fernet
from forgemigrate.archive.manifest import Manifest
from forgemigrate.config.envfile import read_env_file
from forgemigrate.config.settings import Settings
from forgemigrate.errors import (
    DatabaseOperationError,
    MaintenanceError,
    MissingManifestError,
    ProjectNotFoundError,
    ValidationError,
    WrongPasswordError,
)
from forgemigrate.migrate.restore import RestoreOrchestrator, RestoreResult, RestoreState
from forgemigrate.migrate.snapshot import move_aside, snapshot_file, snapshot_path
from forgemigrate.prompter import ForcedPrompter, Prompter
from forgemigrate.reconcile.merge import Resolution
from forgemigrate.services.project import ProjectMaintenance

TEST_ITERATIONS = 1000
PASSWORD = "s3cret"

BACKUP_ENV = (
    b"APP_NAME=Old Shop\n"
    b"APP_KEY=base64:backupkey\n"
    b"APP_URL=https://example.com\n"
    b"DB_CONNECTION=mysql\n"
    b"DB_HOST=10.0.0.5\n"
    b"DB_DATABASE=shop_old\n"
    b"DB_PASSWORD=old-pw\n"
    b"STRIPE_SECRET=sk_live_123\n"
)

DESTINATION_ENV = (
    "APP_NAME=New Shop\n"
    "APP_URL=https://example.com\n"
    "DB_CONNECTION=mysql\n"
    "DB_HOST=127.0.0.1\n"
    "DB_DATABASE=shop\n"
    "DB_USERNAME=forge\n"
    "DB_PASSWORD=new-pw\n"
)


class FakeDatabase:
    """DatabaseClient double recording restores."""

    def __init__(self) -> None:
        self.restored = []

    def dump(self, credentials, output) -> None:
        output.write(b"-- dump\n")

    def restore(self, credentials, source) -> None:
        self.restored.append((credentials, source.read()))


def make_project(root: Path, env: str) -> Path:
    """Create a minimal Laravel project layout."""
    (root / "storage" / "app").mkdir(parents=True)
    (root / "artisan").write_text("#!/usr/bin/env php\n")
    (root / ".env").write_text(env)
    return root


def _prompter(confirms=(True, True), choice: str | None = "destination") -> MagicMock:
    prompter = MagicMock(spec=Prompter)
    prompter.interactive = True
    prompter.confirm.side_effect = list(confirms)
    prompter.choose.return_value = choice
    return prompter


class RestoreTestCase(unittest.TestCase):
    """Shared fixtures for restore tests."""

    def setUp(self) -> None:
        """Create a destination project and an archive to restore."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.settings = Settings(tmp_dir=str(self.temp_dir / "tmp"))
        self.project = make_project(self.temp_dir / "dest", env=DESTINATION_ENV)
        (self.project / "storage" / "app" / "old.txt").write_text("destination file")

        self.source_storage = self.temp_dir / "source_storage"
        (self.source_storage / "public").mkdir(parents=True)
        (self.source_storage / "public" / "avatar.png").write_bytes(b"avatar")

        self.manifest = Manifest.build("example.com", "shop_old", "/home/forge/example.com")
        self.archive = self.temp_dir / "migrate.fmig"
        self.database = FakeDatabase()
        self.maintenance = MagicMock(spec=ProjectMaintenance)

    def tearDown(self) -> None:
        """Clean up temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def build_archive(self, database: bool = True, storage: bool = True, config: bytes = BACKUP_ENV) -> Path:
        ArchiveBuilder(iterations=TEST_ITERATIONS).create(
            self.manifest,
            config,
            self.archive,
            PASSWORD,
            database_dump=b"-- dump\n" if database else None,
            storage_root=self.source_storage if storage else None,
        )
        return self.archive

    def orchestrator(self, prompter: Prompter | None = None) -> RestoreOrchestrator:
        return RestoreOrchestrator(
            self.settings,
            self.database,
            prompter or ForcedPrompter(),
            self.maintenance,
        )

    def scratch_dirs(self) -> list[Path]:
        tmp = Path(self.settings.tmp_dir)
        return list(tmp.iterdir()) if tmp.exists() else []


class TestRestoreSuccess(RestoreTestCase):
    """Tests for complete restores."""

    def test_forced_restore(self) -> None:
        """Test a restore with every member under --force."""
        self.build_archive()
        orchestrator = self.orchestrator()

        result = orchestrator.run(self.archive, PASSWORD, project_root=self.project)

        self.assertIsInstance(result, RestoreResult)
        self.assertEqual(result.state, RestoreState.DONE)
        self.assertEqual(orchestrator.state, RestoreState.DONE)
        self.assertFalse(result.aborted)
        self.assertEqual(result.manifest, self.manifest)

        merged = read_env_file(self.project / ".env")
        self.assertEqual(merged["DB_HOST"], "127.0.0.1")
        self.assertEqual(merged["DB_PASSWORD"], "new-pw")
        self.assertEqual(merged["DB_DATABASE"], "shop")
        self.assertEqual(merged["APP_NAME"], "New Shop")
        self.assertEqual(merged["STRIPE_SECRET"], "sk_live_123")
        self.assertEqual(merged["APP_KEY"], "base64:backupkey")
        self.assertEqual(merged["DB_USERNAME"], "forge")
        self.assertEqual(result.merge.count(Resolution.FORCED_KEPT_DESTINATION), 1)

        self.assertTrue(result.database_restored)
        credentials, dump = self.database.restored[0]
        self.assertEqual(credentials.name, "shop")
        self.assertEqual(credentials.host, "127.0.0.1")
        self.assertEqual(dump, b"-- dump\n")

        self.assertTrue(result.storage_restored)
        app = self.project / "storage" / "app"
        self.assertEqual((app / "public" / "avatar.png").read_bytes(), b"avatar")
        self.assertFalse((app / "old.txt").exists())

        self.maintenance.fix_permissions.assert_called_once_with(self.project.resolve())
        self.maintenance.cache_config.assert_called_once()
        self.maintenance.migrate_schema.assert_called_once()
        self.assertEqual(result.warnings, [])
        self.assertEqual(self.scratch_dirs(), [])

    def test_snapshots_created(self) -> None:
        """Test that the old .env and storage tree are kept."""
        self.build_archive()

        result = self.orchestrator().run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual(len(result.snapshots), 2)
        env_snapshot = next(p for p in result.snapshots if p.name.startswith(".env."))
        self.assertTrue(env_snapshot.name.startswith(".env.pre-migrate."))
        self.assertEqual(env_snapshot.read_text(), DESTINATION_ENV)

        storage_snapshot = next(p for p in result.snapshots if p.name.startswith("app."))
        self.assertEqual((storage_snapshot / "old.txt").read_text(), "destination file")

    def test_interactive_conflicts_use_prompter(self) -> None:
        """Test that an interactive prompter decides conflicts."""
        self.build_archive()
        prompter = _prompter(choice="backup")

        result = self.orchestrator(prompter).run(self.archive, PASSWORD, project_root=self.project)

        merged = read_env_file(self.project / ".env")
        self.assertEqual(merged["APP_NAME"], "Old Shop")
        self.assertEqual(merged["DB_HOST"], "127.0.0.1")
        self.assertEqual(result.merge.count(Resolution.USER_CHOSE_BACKUP), 1)
        self.assertEqual(prompter.confirm.call_count, 2)
        db_question = prompter.confirm.call_args_list[1][0][0]
        self.assertIn("shop", db_question)

    def test_archive_without_database(self) -> None:
        """Test that a missing dump skips the database step with a warning."""
        self.build_archive(database=False)
        prompter = _prompter(confirms=(True,))

        result = self.orchestrator(prompter).run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual(result.state, RestoreState.DONE)
        self.assertFalse(result.database_restored)
        self.assertEqual(self.database.restored, [])
        self.assertEqual(prompter.confirm.call_count, 1)
        self.assertTrue(any("No database dump" in w for w in result.warnings))

    def test_archive_without_storage(self) -> None:
        """Test that storage/app is left alone when the archive has none."""
        self.build_archive(storage=False)

        result = self.orchestrator().run(self.archive, PASSWORD, project_root=self.project)

        self.assertFalse(result.storage_restored)
        self.assertTrue((self.project / "storage" / "app" / "old.txt").exists())

    def test_no_destination_env(self) -> None:
        """Test that the backup .env is copied verbatim when none exists."""
        (self.project / ".env").unlink()
        self.build_archive(database=False)

        result = self.orchestrator().run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual((self.project / ".env").read_bytes(), BACKUP_ENV)
        self.assertIsNone(result.merge)
        self.assertTrue(any("server-dependent" in w for w in result.warnings))

    def test_maintenance_failures_are_warnings(self) -> None:
        """Test that permission and artisan failures still reach DONE."""
        self.build_archive()
        self.maintenance.fix_permissions.side_effect = MaintenanceError("chown: not permitted")
        self.maintenance.migrate_schema.side_effect = MaintenanceError("migrate failed")

        result = self.orchestrator().run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual(result.state, RestoreState.DONE)
        self.assertEqual(len(result.warnings), 2)
        self.maintenance.cache_config.assert_called_once()


class TestRestoreAborts(RestoreTestCase):
    """Tests for declined confirmation gates."""

    def test_abort_at_first_gate(self) -> None:
        """Test that declining leaves the destination untouched."""
        self.build_archive()
        orchestrator = self.orchestrator(_prompter(confirms=(False,)))

        result = orchestrator.run(self.archive, PASSWORD, project_root=self.project)

        self.assertTrue(result.aborted)
        self.assertEqual(orchestrator.state, RestoreState.ABORTED)
        self.assertEqual(result.manifest, self.manifest)
        self.assertEqual((self.project / ".env").read_text(), DESTINATION_ENV)
        self.assertEqual(result.snapshots, [])
        self.assertEqual(list(self.project.glob(".env.pre-migrate.*")), [])
        self.assertEqual(self.database.restored, [])
        self.maintenance.fix_permissions.assert_not_called()
        self.assertEqual(self.scratch_dirs(), [])

    def test_abort_at_database_gate(self) -> None:
        """Test that declining the database overwrite stops the restore."""
        self.build_archive()

        result = self.orchestrator(_prompter(confirms=(True, False))).run(
            self.archive, PASSWORD, project_root=self.project
        )

        self.assertTrue(result.aborted)
        self.assertEqual(self.database.restored, [])
        self.assertFalse(result.storage_restored)
        self.assertTrue((self.project / "storage" / "app" / "old.txt").exists())
        self.maintenance.fix_permissions.assert_not_called()


class TestRestoreErrors(RestoreTestCase):
    """Tests for fatal restore failures."""

    def test_not_a_project(self) -> None:
        """Test a destination without artisan."""
        self.build_archive()
        empty = self.temp_dir / "empty"
        empty.mkdir()

        with self.assertRaises(ProjectNotFoundError):
            self.orchestrator().run(self.archive, PASSWORD, project_root=empty)

    def test_wrong_password(self) -> None:
        """Test a wrong password at extraction."""
        self.build_archive()
        orchestrator = self.orchestrator()

        with self.assertRaises(WrongPasswordError) as cm:
            orchestrator.run(self.archive, "wrong", project_root=self.project)

        self.assertEqual(cm.exception.step, RestoreState.EXTRACTING.value)
        self.assertEqual(orchestrator.state, RestoreState.EXTRACTING)
        self.assertEqual((self.project / ".env").read_text(), DESTINATION_ENV)
        self.assertEqual(self.scratch_dirs(), [])

    def test_missing_manifest(self) -> None:
        """Test an archive without manifest."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            info = tarfile.TarInfo("dotenv")
            info.size = len(BACKUP_ENV)
            tar.addfile(info, io.BytesIO(BACKUP_ENV))
        salt = b"x" * 32
        token = derive_fernet(PASSWORD, salt, TEST_ITERATIONS).encrypt(buffer.getvalue())
        self.archive.write_bytes(HEADER.pack(MAGIC, 1, TEST_ITERATIONS, salt) + token)

        with self.assertRaises(MissingManifestError):
            self.orchestrator().run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual((self.project / ".env").read_text(), DESTINATION_ENV)

    def test_missing_database_name_after_merge(self) -> None:
        """Test that the merged .env must name a database."""
        (self.project / ".env").write_text("APP_NAME=New Shop\n")
        self.build_archive(config=b"APP_NAME=Old Shop\n")
        orchestrator = self.orchestrator()

        with self.assertRaises(ValidationError) as cm:
            orchestrator.run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual(cm.exception.step, RestoreState.AWAITING_DB_CONFIRMATION.value)
        self.assertEqual(self.database.restored, [])

    def test_database_failure(self) -> None:
        """Test that a failed load is fatal and reports its step."""
        self.build_archive()
        self.database = MagicMock()
        self.database.restore.side_effect = DatabaseOperationError("ERROR 1045", returncode=1)
        orchestrator = self.orchestrator()

        with self.assertRaises(DatabaseOperationError) as cm:
            orchestrator.run(self.archive, PASSWORD, project_root=self.project)

        self.assertEqual(cm.exception.step, RestoreState.RESTORING_DB.value)
        self.assertEqual(orchestrator.state, RestoreState.RESTORING_DB)
        self.assertTrue(str(cm.exception).startswith("[restoring_db]"))
        self.assertEqual(self.scratch_dirs(), [])


class TestSnapshots(unittest.TestCase):
    """Tests for snapshot helpers."""

    def setUp(self) -> None:
        """Create temporary directory for tests."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.now = datetime(2026, 1, 15, 10, 30, 0)

    def tearDown(self) -> None:
        """Clean up temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_snapshot_name(self) -> None:
        """Test the timestamped name."""
        path = snapshot_path(self.temp_dir / ".env", self.now)

        self.assertEqual(path.name, ".env.pre-migrate.20260115103000")

    def test_collision_gets_numeric_suffix(self) -> None:
        """Test that two snapshots in the same second do not clash."""
        env = self.temp_dir / ".env"
        env.write_text("A=1\n")

        first = snapshot_file(env, self.now)
        env.write_text("A=2\n")
        second = snapshot_file(env, self.now)

        self.assertEqual(first.name, ".env.pre-migrate.20260115103000")
        self.assertEqual(second.name, ".env.pre-migrate.20260115103000.1")
        self.assertEqual(first.read_text(), "A=1\n")
        self.assertEqual(second.read_text(), "A=2\n")
        self.assertEqual(env.read_text(), "A=2\n")

    def test_move_aside(self) -> None:
        """Test renaming a directory out of the way."""
        app = self.temp_dir / "app"
        app.mkdir()
        (app / "file.txt").write_text("x")

        moved = move_aside(app, self.now)

        self.assertFalse(app.exists())
        self.assertEqual(moved.name, "app.pre-migrate.20260115103000")
        self.assertEqual((moved / "file.txt").read_text(), "x")


if __name__ == "__main__":
    unittest.main()
