"""
Pre-overwrite snapshots.

Before a restore replaces .env or storage/app, the current version is kept
next to it under a timestamped name:

    .env.pre-migrate.20260101120000          (copy)
    storage/app.pre-migrate.20260101120000   (renamed directory)

Snapshots are never removed by forgemigrate. When the name for the current
second is already taken, ".1", ".2", ... is appended.
"""

from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path

from forgemigrate.errors import FileOperationError

logger = logging.getLogger(__name__)

SNAPSHOT_MARKER = "pre-migrate"
SNAPSHOT_TIME_FORMAT = "%Y%m%d%H%M%S"


def snapshot_path(original: Path, now: datetime | None = None) -> Path:
    """Return the first free snapshot name for original."""
    stamp = (now or datetime.now()).strftime(SNAPSHOT_TIME_FORMAT)
    candidate = original.with_name(f"{original.name}.{SNAPSHOT_MARKER}.{stamp}")
    counter = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = original.with_name(
            f"{original.name}.{SNAPSHOT_MARKER}.{stamp}.{counter}"
        )
        counter += 1
    return candidate


def snapshot_file(path: Path, now: datetime | None = None) -> Path:
    """
    Copy a file to its snapshot name, keeping mode and timestamps.

    Raises:
        FileOperationError: If the copy fails.
    """
    path = Path(path)
    target = snapshot_path(path, now)
    try:
        shutil.copy2(path, target)
    except OSError as e:
        raise FileOperationError(f"Cannot snapshot {path} to {target}: {e}") from e

    logger.info(f"Saved {path.name} as {target.name}")
    return target


def move_aside(path: Path, now: datetime | None = None) -> Path:
    """
    Rename a directory to its snapshot name.

    Raises:
        FileOperationError: If the rename fails.
    """
    path = Path(path)
    target = snapshot_path(path, now)
    try:
        os.rename(path, target)
    except OSError as e:
        raise FileOperationError(f"Cannot move {path} aside to {target}: {e}") from e

    logger.info(f"Moved {path} aside to {target.name}")
    return target
