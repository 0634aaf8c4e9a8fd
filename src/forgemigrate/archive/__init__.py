"""
Migration archive format.

Usage:
    from forgemigrate.archive import ArchiveBuilder, ArchiveReader, Manifest

    manifest = Manifest.build("example.com", "exdb", "/home/forge/example.com")
    ArchiveBuilder().create(manifest, env_bytes, Path("site.fmig"), password)

    handle = ArchiveReader.open(Path("site.fmig"), password)
    handle.manifest()
    handle.extract_all(work_dir)
"""

from forgemigrate.archive.container import (
    ARCHIVE_SUFFIX,
    CONFIG_MEMBER,
    DATABASE_MEMBER,
    MANIFEST_MEMBER,
    STORAGE_MEMBER,
    ArchiveBuilder,
    ArchiveHandle,
    ArchiveReader,
)
from forgemigrate.archive.manifest import SUPPORTED_ENGINE, Manifest

__all__ = [
    "ArchiveBuilder",
    "ArchiveReader",
    "ArchiveHandle",
    "Manifest",
    "SUPPORTED_ENGINE",
    "ARCHIVE_SUFFIX",
    "MANIFEST_MEMBER",
    "CONFIG_MEMBER",
    "DATABASE_MEMBER",
    "STORAGE_MEMBER",
]
