"""
MySQL dump and restore through the mysqldump / mysql command line tools.

The password is handed over in MYSQL_PWD rather than on the command line so
it does not show up in process listings.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import BinaryIO, Protocol

from forgemigrate.archive.manifest import SUPPORTED_ENGINE
from forgemigrate.errors import DatabaseOperationError, UnsupportedEngineError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = "3306"

DUMP_FLAGS = ("--single-transaction", "--routines", "--triggers", "--quick")


@dataclass(frozen=True)
class DatabaseCredentials:
    """Connection details for one database."""

    host: str
    port: str
    name: str
    user: str
    password: str

    @classmethod
    def from_env(cls, values: Mapping[str, str]) -> DatabaseCredentials:
        """
        Build credentials from Laravel .env values.

        Raises:
            UnsupportedEngineError: If DB_CONNECTION is missing or anything
                other than mysql.
            ValidationError: If DB_DATABASE is empty or missing.
        """
        engine = values.get("DB_CONNECTION", "")
        if engine != SUPPORTED_ENGINE:
            raise UnsupportedEngineError(
                f"Only MySQL is supported (found DB_CONNECTION={engine or '<unset>'})"
            )

        name = values.get("DB_DATABASE", "")
        if not name:
            raise ValidationError("DB_DATABASE not set in .env")

        return cls(
            host=values.get("DB_HOST") or DEFAULT_HOST,
            port=values.get("DB_PORT") or DEFAULT_PORT,
            name=name,
            user=values.get("DB_USERNAME", ""),
            password=values.get("DB_PASSWORD", ""),
        )

    def __repr__(self) -> str:
        return (
            f"DatabaseCredentials(host={self.host!r}, port={self.port!r}, "
            f"name={self.name!r}, user={self.user!r}, password='***')"
        )


class DatabaseClient(Protocol):
    """Dump and load interface used by the orchestrators."""

    def dump(self, credentials: DatabaseCredentials, output: BinaryIO) -> None:
        """Write a SQL dump of the database to output."""
        ...

    def restore(self, credentials: DatabaseCredentials, source: BinaryIO) -> None:
        """Load a SQL dump from source into the database."""
        ...


class MySQLClient:
    """
    DatabaseClient backed by the MySQL command line tools.

    Attributes:
        dump_binary: Name or path of mysqldump.
        client_binary: Name or path of mysql.
    """

    def __init__(self, dump_binary: str = "mysqldump", client_binary: str = "mysql") -> None:
        self.dump_binary = dump_binary
        self.client_binary = client_binary

    def dump(self, credentials: DatabaseCredentials, output: BinaryIO) -> None:
        """
        Dump a database with --single-transaction --routines --triggers.

        Raises:
            DatabaseOperationError: If mysqldump is missing or fails.
        """
        logger.info(
            f"Dumping MySQL database [{credentials.name}] from "
            f"[{credentials.host}:{credentials.port}]"
        )
        command = [
            self._require(self.dump_binary),
            *self._connection_args(credentials),
            *DUMP_FLAGS,
            credentials.name,
        ]
        self._run(command, credentials, stdin=None, stdout=output, action="dump")

    def restore(self, credentials: DatabaseCredentials, source: BinaryIO) -> None:
        """
        Load a dump into a database, overwriting what is there.

        Raises:
            DatabaseOperationError: If mysql is missing or fails.
        """
        logger.info(
            f"Restoring MySQL database [{credentials.name}] on "
            f"[{credentials.host}:{credentials.port}]"
        )
        command = [
            self._require(self.client_binary),
            *self._connection_args(credentials),
            credentials.name,
        ]
        self._run(command, credentials, stdin=source, stdout=subprocess.DEVNULL, action="restore")

    @staticmethod
    def _connection_args(credentials: DatabaseCredentials) -> list[str]:
        return [
            f"--host={credentials.host}",
            f"--port={credentials.port}",
            f"--user={credentials.user}",
        ]

    @staticmethod
    def _require(binary: str) -> str:
        path = shutil.which(binary)
        if path is None:
            raise DatabaseOperationError(f"Required tool not found on PATH: {binary}")
        return path

    @staticmethod
    def _run(
        command: list[str],
        credentials: DatabaseCredentials,
        stdin: BinaryIO | None,
        stdout: BinaryIO | int,
        action: str,
    ) -> None:
        env = dict(os.environ)
        env["MYSQL_PWD"] = credentials.password

        try:
            result = subprocess.run(
                command,
                stdin=stdin,
                stdout=stdout,
                stderr=subprocess.PIPE,
                env=env,
                check=False,
            )
        except OSError as e:
            raise DatabaseOperationError(
                f"Cannot run {command[0]}: {e}", step=action
            ) from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise DatabaseOperationError(
                f"MySQL {action} failed for database [{credentials.name}]: {stderr}",
                step=action,
                returncode=result.returncode,
                stderr=stderr,
            )
