"""
Backup manifest: the provenance record stored in every archive.

The manifest is written once when a backup is made and read back verbatim
on restore. Its JSON form uses fixed keys so that any reader of the format
can interpret it:

    domain, created_at, script_version, php_version, db_connection,
    db_database, git_remote, git_branch, storage_size_mb, project_root
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from forgemigrate.errors import MalformedManifestError, ValidationError

logger = logging.getLogger(__name__)

SUPPORTED_ENGINE = "mysql"
UNKNOWN = "unknown"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Optional string fields: attribute name -> JSON key
_OPTIONAL_STRINGS = {
    "tool_version": "script_version",
    "php_version": "php_version",
    "git_remote": "git_remote",
    "git_branch": "git_branch",
    "project_root": "project_root",
}


@dataclass(frozen=True)
class Manifest:
    """
    Metadata describing one backup.

    Attributes:
        domain: Site domain the backup was taken from.
        created_at: UTC time of the backup, second precision.
        tool_version: forgemigrate version that wrote the archive.
        php_version: PHP major.minor on the source host, or "unknown".
        db_connection: Database engine; always "mysql".
        db_database: Name of the dumped database.
        git_remote: Origin URL of the project checkout, "" if unavailable.
        git_branch: Checked-out branch, "" if unavailable.
        storage_size_mb: Size of storage/app in MiB.
        project_root: Absolute project path on the source host (informational).
    """

    domain: str
    created_at: datetime
    tool_version: str
    php_version: str
    db_connection: str
    db_database: str
    git_remote: str
    git_branch: str
    storage_size_mb: int
    project_root: str

    @classmethod
    def build(
        cls,
        domain: str,
        db_name: str,
        project_root: str,
        extras: dict[str, Any] | None = None,
    ) -> Manifest:
        """
        Create a manifest for a backup taken now.

        Args:
            domain: Site domain.
            db_name: Database name.
            project_root: Absolute project path.
            extras: Optional tool_version, php_version, git_remote,
                git_branch and storage_size_mb values.

        Raises:
            ValidationError: If domain or db_name is empty, or
                storage_size_mb is not a non-negative integer.
        """
        extras = extras or {}
        if not domain:
            raise ValidationError("Manifest needs a domain")
        if not db_name:
            raise ValidationError("Manifest needs a database name")

        try:
            storage_size_mb = int(extras.get("storage_size_mb") or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"storage_size_mb must be a whole number, got {extras['storage_size_mb']!r}"
            ) from e
        if storage_size_mb < 0:
            raise ValidationError("storage_size_mb cannot be negative")

        return cls(
            domain=domain,
            created_at=datetime.now(UTC).replace(microsecond=0),
            tool_version=extras.get("tool_version") or _get_version(),
            php_version=extras.get("php_version") or UNKNOWN,
            db_connection=SUPPORTED_ENGINE,
            db_database=db_name,
            git_remote=extras.get("git_remote") or "",
            git_branch=extras.get("git_branch") or "",
            storage_size_mb=storage_size_mb,
            project_root=str(project_root),
        )

    @classmethod
    def read(cls, data: bytes) -> Manifest:
        """
        Parse a serialized manifest.

        Raises:
            MalformedManifestError: If the payload is not a JSON object or
                a field is missing or has the wrong type.
        """
        try:
            payload = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedManifestError(f"Manifest is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedManifestError("Manifest must be a JSON object")

        return cls.from_dict(payload)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        """Create a manifest from its JSON dictionary, validating every field."""
        domain = _required_string(data, "domain")
        db_database = _required_string(data, "db_database")
        created_at = _parse_timestamp(_required_string(data, "created_at"))

        db_connection = data.get("db_connection", SUPPORTED_ENGINE)
        if db_connection != SUPPORTED_ENGINE:
            raise MalformedManifestError(
                f"Unsupported db_connection {db_connection!r} "
                f"(only {SUPPORTED_ENGINE} is supported)"
            )

        optional = {}
        for attr, json_key in _OPTIONAL_STRINGS.items():
            value = data.get(json_key)
            if value is None:
                value = UNKNOWN if attr in ("php_version", "tool_version") else ""
            elif not isinstance(value, str):
                raise MalformedManifestError(f"Manifest field {json_key} must be a string")
            optional[attr] = value

        return cls(
            domain=domain,
            created_at=created_at,
            db_connection=SUPPORTED_ENGINE,
            db_database=db_database,
            storage_size_mb=_parse_size(data.get("storage_size_mb", 0)),
            **optional,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to its JSON dictionary."""
        return {
            "domain": self.domain,
            "created_at": self.created_at.astimezone(UTC).strftime(TIMESTAMP_FORMAT),
            "script_version": self.tool_version,
            "php_version": self.php_version,
            "db_connection": self.db_connection,
            "db_database": self.db_database,
            "git_remote": self.git_remote,
            "git_branch": self.git_branch,
            "storage_size_mb": self.storage_size_mb,
            "project_root": self.project_root,
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")


def _required_string(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        raise MalformedManifestError(f"Manifest is missing required field {key}")
    if not isinstance(value, str) or not value:
        raise MalformedManifestError(f"Manifest field {key} must be a non-empty string")
    return value


def _parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedManifestError(f"Manifest created_at is not a timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_size(value: Any) -> int:
    """Accept a non-negative int, or a string of digits."""
    if isinstance(value, bool):
        raise MalformedManifestError("Manifest storage_size_mb must be an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise MalformedManifestError(
                f"Manifest storage_size_mb must be a non-negative integer, got {value!r}"
            )
        value = int(text)
    if not isinstance(value, int):
        raise MalformedManifestError(
            f"Manifest storage_size_mb must be a non-negative integer, got {value!r}"
        )
    if value < 0:
        raise MalformedManifestError("Manifest storage_size_mb cannot be negative")
    return value


def _get_version() -> str:
    """Get forgemigrate version."""
    try:
        from forgemigrate import __version__

        return __version__
    except ImportError:
        return UNKNOWN
