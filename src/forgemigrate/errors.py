"""
Exception hierarchy for forgemigrate.

Every failure carries a message and, where known, the step it happened in
(a restore state, "backup", "setup", ...). The step is prefixed to the
string form so a message printed by the CLI is actionable on its own.

Taxonomy:
    ValidationError         missing or invalid input, always fatal
    ArchiveError            archive read/write problems, always fatal
    FileOperationError      snapshot or copy failures while restoring
    DatabaseOperationError  mysqldump / mysql exited non-zero
    RemoteApiError          Forge API returned non-2xx or was unreachable
    MaintenanceError        permission fixing or artisan failed (callers
                            treat this one as a warning)
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for all forgemigrate errors."""

    def __init__(self, message: str, step: str | None = None) -> None:
        self.message = message
        self.step = step
        super().__init__(f"[{step}] {message}" if step else message)

    def with_step(self, step: str) -> MigrationError:
        """Attach a step to an error raised without one and return it."""
        if self.step is None:
            self.step = step
            self.args = (f"[{step}] {self.message}",)
        return self


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class ValidationError(MigrationError):
    """Required input is missing or invalid."""

    pass


class ProjectNotFoundError(ValidationError):
    """No Laravel project (artisan file) at the given location."""

    pass


class UnsupportedEngineError(ValidationError):
    """The configured database engine is not the supported one."""

    pass


# -----------------------------------------------------------------------------
# Archive
# -----------------------------------------------------------------------------


class ArchiveError(MigrationError):
    """Base exception for archive problems."""

    pass


class ArchiveWriteError(ArchiveError):
    """The archive could not be written to its destination."""

    pass


class ArchiveReadError(ArchiveError):
    """The archive file could not be read from disk."""

    pass


class WrongPasswordError(ArchiveError):
    """The archive is intact but the password does not decrypt it."""

    pass


class InvalidArchiveError(ArchiveError):
    """The archive cannot be used for a restore."""

    pass


class CorruptArchiveError(InvalidArchiveError):
    """The file is not a readable archive (bad header, damaged payload)."""

    pass


class MissingManifestError(InvalidArchiveError):
    """The archive has no manifest member."""

    pass


class MalformedManifestError(InvalidArchiveError):
    """The manifest is present but missing fields or holding bad values."""

    pass


# -----------------------------------------------------------------------------
# Collaborators
# -----------------------------------------------------------------------------


class FileOperationError(MigrationError):
    """A filesystem operation on the destination project failed."""

    pass


class DatabaseOperationError(MigrationError):
    """
    Raised when the database dump or load tool fails.

    Attributes:
        returncode: Exit status of the tool, None if it could not be started.
        stderr: Captured standard error output.
    """

    def __init__(
        self,
        message: str,
        step: str | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, step)
        self.returncode = returncode
        self.stderr = stderr


class RemoteApiError(MigrationError):
    """
    Raised when a Forge API call fails.

    Attributes:
        status_code: HTTP status, None for connection failures.
        body: Raw response body (or the connection error text).
    """

    def __init__(
        self,
        message: str,
        step: str | None = None,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, step)
        self.status_code = status_code
        self.body = body


class MaintenanceError(MigrationError):
    """Post-restore maintenance (permissions, artisan) failed."""

    pass
