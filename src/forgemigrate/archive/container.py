"""
Encrypted migration archive container.

File layout:

    offset  size  field
    0       4     magic b"FMIG"
    4       1     format version (1)
    5       4     PBKDF2 iteration count, big-endian
    9       32    random salt
    41      ...   Fernet token

The Fernet plaintext is a gzip-compressed tar with fixed member names:

    manifest.json   required, see archive.manifest
    dotenv          raw bytes of the source .env
    database.sql    mysqldump output (absent when there was no database)
    storage_app/    copy of storage/app (absent when there was none)

The encryption key is PBKDF2-HMAC-SHA256 over the password and salt. Fernet
authenticates the whole payload, so a wrong password and a tampered file
both fail decryption; a payload that is not even a well-formed token is
reported as corruption instead.

Security notes:
    - The whole archive is held in memory while packing and unpacking, so a
      backup needs several times the storage/app size in free RAM
    - Symlinks leaving storage/app are stored as file copies or refused,
      never as links
    - Archives are written with owner-only permissions (0600)
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import os
import secrets
import struct
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from forgemigrate.archive.manifest import Manifest
from forgemigrate.errors import (
    ArchiveReadError,
    ArchiveWriteError,
    CorruptArchiveError,
    MissingManifestError,
    ValidationError,
    WrongPasswordError,
)

logger = logging.getLogger(__name__)

MAGIC = b"FMIG"
FORMAT_VERSION = 1
# OWASP 2023 recommends 600,000 iterations for PBKDF2-SHA256
PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 32  # 256 bits
HEADER = struct.Struct(f">4sBI{SALT_LENGTH}s")
ARCHIVE_SUFFIX = ".fmig"

MANIFEST_MEMBER = "manifest.json"
CONFIG_MEMBER = "dotenv"
DATABASE_MEMBER = "database.sql"
STORAGE_MEMBER = "storage_app"

_FERNET_VERSION = 0x80
_FERNET_MIN_LENGTH = 1 + 8 + 16 + 32  # version, timestamp, IV, HMAC


def derive_fernet(password: str, salt: bytes, iterations: int) -> Fernet:
    """
    Derive the archive key from a password and salt.

    Returns:
        Fernet instance configured with the derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,  # Fernet requires 32-byte keys
        salt=salt,
        iterations=iterations,
    )
    key = base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))
    return Fernet(key)


class ArchiveBuilder:
    """
    Writes migration archives.

    Usage:
        builder = ArchiveBuilder()
        builder.create(
            manifest,
            env_path.read_bytes(),
            Path("migrate_example_com_2026-01-01.fmig"),
            password,
            database_dump=work_dir / "database.sql",
            storage_root=project_root / "storage" / "app",
        )
    """

    def __init__(self, iterations: int = PBKDF2_ITERATIONS) -> None:
        if iterations < 1:
            raise ValueError("iterations must be at least 1")
        self.iterations = iterations

    def create(
        self,
        manifest: Manifest,
        config_bytes: bytes,
        destination: Path,
        password: str,
        database_dump: bytes | Path | None = None,
        storage_root: Path | None = None,
    ) -> Path:
        """
        Create an encrypted archive at destination.

        The archive is written next to the destination under a ".part"
        name and moved into place only once complete.

        Args:
            manifest: Backup metadata.
            config_bytes: Raw .env contents.
            destination: Final archive path.
            password: Archive password.
            database_dump: Dump contents or path to a dump file; None when
                the backup has no database.
            storage_root: Directory to store as the storage tree; None when
                the backup has no file storage.

        Returns:
            The destination path.

        Raises:
            ValidationError: If the password is empty.
            ArchiveWriteError: If packing, encryption or writing fails.
        """
        if not password:
            raise ValidationError("Archive password cannot be empty")

        destination = Path(destination)
        temp_path = destination.with_name(destination.name + ".part")

        try:
            if storage_root is not None and not Path(storage_root).is_dir():
                raise ArchiveWriteError(f"Storage tree is not a directory: {storage_root}")

            payload = self._pack(manifest, config_bytes, database_dump, storage_root)

            salt = secrets.token_bytes(SALT_LENGTH)
            token = derive_fernet(password, salt, self.iterations).encrypt(payload)
            header = HEADER.pack(MAGIC, FORMAT_VERSION, self.iterations, salt)

            with open(temp_path, "wb") as f:
                f.write(header)
                f.write(token)
                f.flush()
                os.fsync(f.fileno())

            try:
                os.chmod(temp_path, 0o600)
            except OSError:
                pass

            os.replace(temp_path, destination)

        except ArchiveWriteError:
            _remove_quietly(temp_path)
            raise
        except Exception as e:
            _remove_quietly(temp_path)
            raise ArchiveWriteError(f"Cannot write archive {destination}: {e}") from e

        logger.info(f"Archive written: {destination} ({destination.stat().st_size:,} bytes)")
        return destination

    def _pack(
        self,
        manifest: Manifest,
        config_bytes: bytes,
        database_dump: bytes | Path | None,
        storage_root: Path | None,
    ) -> bytes:
        """Build the gzip-compressed tar payload in memory."""
        mtime = int(manifest.created_at.timestamp())
        buffer = io.BytesIO()

        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            _add_bytes(tar, MANIFEST_MEMBER, manifest.to_json(), mtime)
            _add_bytes(tar, CONFIG_MEMBER, config_bytes, mtime)

            if isinstance(database_dump, bytes):
                _add_bytes(tar, DATABASE_MEMBER, database_dump, mtime)
            elif database_dump is not None:
                tar.add(database_dump, arcname=DATABASE_MEMBER)

            if storage_root is not None:
                _add_tree(tar, storage_root, STORAGE_MEMBER)

        return buffer.getvalue()


@dataclass
class ArchiveHandle:
    """
    An opened, decrypted archive.

    Attributes:
        path: Archive file on disk.
        names: Every tar member name in the payload.
    """

    path: Path
    payload: bytes
    names: list[str]

    def members(self) -> list[str]:
        """Logical members present, e.g. ["database.sql", "dotenv", ...]."""
        return sorted({name.split("/", 1)[0] for name in self.names})

    def has_manifest(self) -> bool:
        return MANIFEST_MEMBER in self.names

    def has_config(self) -> bool:
        return CONFIG_MEMBER in self.names

    def has_database(self) -> bool:
        return DATABASE_MEMBER in self.names

    def has_storage(self) -> bool:
        return STORAGE_MEMBER in self.members()

    def manifest(self) -> Manifest:
        """
        Read the manifest member.

        Raises:
            MissingManifestError: If the archive has no manifest.
            MalformedManifestError: If the manifest cannot be parsed.
        """
        self._require_manifest()
        return Manifest.read(self._read(MANIFEST_MEMBER))

    def read_member(self, name: str) -> bytes:
        """
        Read one file member.

        Raises:
            MissingManifestError: If the archive has no manifest.
            KeyError: If the member does not exist.
        """
        self._require_manifest()
        return self._read(name)

    def extract_all(self, target_dir: Path) -> Path:
        """
        Extract every present member below target_dir.

        Members absent from the archive are simply not produced.

        Raises:
            MissingManifestError: If the archive has no manifest.
            CorruptArchiveError: If a member cannot be extracted safely.
        """
        self._require_manifest()
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)

        try:
            with self._open_tar() as tar:
                tar.extractall(target_dir, filter="data")
        except tarfile.TarError as e:
            raise CorruptArchiveError(f"Cannot extract {self.path}: {e}") from e

        logger.debug(f"Extracted {', '.join(self.members())} to {target_dir}")
        return target_dir

    def _require_manifest(self) -> None:
        if not self.has_manifest():
            raise MissingManifestError(f"Invalid archive, no {MANIFEST_MEMBER} in {self.path}")

    def _open_tar(self) -> tarfile.TarFile:
        return tarfile.open(fileobj=io.BytesIO(self.payload), mode="r:gz")

    def _read(self, name: str) -> bytes:
        with self._open_tar() as tar:
            member = tar.extractfile(name)
            if member is None:
                raise KeyError(f"{name} is not a regular file")
            return member.read()


class ArchiveReader:
    """Opens migration archives written by ArchiveBuilder."""

    @classmethod
    def open(cls, path: Path, password: str) -> ArchiveHandle:
        """
        Open and decrypt an archive.

        Raises:
            ArchiveReadError: If the file cannot be read.
            CorruptArchiveError: If the file is not a valid archive.
            WrongPasswordError: If the password does not decrypt it.
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ArchiveReadError(f"Cannot read archive {path}: {e}") from e

        iterations, salt, token = cls._split(path, data)
        payload = cls._decrypt(path, password, iterations, salt, token)

        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as tar:
                names = tar.getnames()
        except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
            raise CorruptArchiveError(f"Archive payload is damaged: {e}") from e

        logger.info(f"Opened archive {path} ({len(names)} entries)")
        return ArchiveHandle(path=path, payload=payload, names=names)

    @staticmethod
    def _split(path: Path, data: bytes) -> tuple[int, bytes, bytes]:
        if len(data) < HEADER.size:
            raise CorruptArchiveError(f"Not a migration archive (too short): {path}")

        magic, version, iterations, salt = HEADER.unpack_from(data)
        if magic != MAGIC:
            raise CorruptArchiveError(f"Not a migration archive: {path}")
        if version != FORMAT_VERSION:
            raise CorruptArchiveError(f"Unsupported archive format version {version}")
        if iterations < 1:
            raise CorruptArchiveError("Archive header has an invalid iteration count")

        token = data[HEADER.size :]
        try:
            raw = base64.urlsafe_b64decode(token)
        except (binascii.Error, ValueError) as e:
            raise CorruptArchiveError(f"Archive payload is damaged: {e}") from e
        if len(raw) < _FERNET_MIN_LENGTH or raw[0] != _FERNET_VERSION:
            raise CorruptArchiveError("Archive payload is damaged")

        return iterations, salt, token

    @staticmethod
    def _decrypt(
        path: Path,
        password: str,
        iterations: int,
        salt: bytes,
        token: bytes,
    ) -> bytes:
        fernet = derive_fernet(password, salt, iterations)
        try:
            return fernet.decrypt(token)
        except InvalidToken as e:
            raise WrongPasswordError(
                f"Cannot decrypt {path}: wrong password or tampered archive"
            ) from e


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes, mtime: int) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mtime = mtime
    info.mode = 0o600
    tar.addfile(info, io.BytesIO(data))


def _add_tree(tar: tarfile.TarFile, root: Path, arcname: str) -> None:
    """
    Add a directory tree so that it extracts under tarfile's "data" filter.

    Symlinks that stay inside the tree are stored as links. A symlink to a
    file outside the tree is stored as a copy of that file; one to a directory
    or a missing path outside the tree is refused. Special files are skipped.
    """
    root = Path(os.path.abspath(root))
    tar.add(root, arcname=arcname, recursive=False)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        current = Path(dirpath)
        for name in dirnames + sorted(filenames):
            path = current / name
            member = f"{arcname}/{path.relative_to(root).as_posix()}"
            if path.is_symlink():
                _add_symlink(tar, root, path, member)
            elif path.is_dir() or path.is_file():
                tar.add(path, arcname=member, recursive=False)
            else:
                logger.warning(f"Skipping special file {path}")


def _add_symlink(tar: tarfile.TarFile, root: Path, path: Path, member: str) -> None:
    target = os.readlink(path)
    resolved = os.path.normpath(os.path.join(path.parent, target))
    if not os.path.isabs(target) and os.path.commonpath([str(root), resolved]) == str(root):
        tar.add(path, arcname=member)
        return

    if path.is_file():
        logger.debug(f"Storing contents of {path} -> {target}")
        tar.add(path.resolve(), arcname=member)
        return

    raise ArchiveWriteError(f"Symlink leaves the storage tree: {path} -> {target}")


def _remove_quietly(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
    except OSError:
        logger.warning(f"Could not remove partial archive {path}")
