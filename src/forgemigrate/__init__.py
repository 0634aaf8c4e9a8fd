"""
forgemigrate - move a Laravel site between Forge-managed servers

Packages a site's state (.env, MySQL dump, storage/app, provenance metadata)
into a single password-encrypted archive and restores it on another host,
reconciling the backup .env with the one already on the destination.

Key Features:
    - Portable encrypted archive with a fixed member layout and JSON manifest
    - Three-way .env reconciliation that never copies host-bound settings
    - Timestamped snapshots before every destructive write
    - Separate confirmation gates before the restore and before the
      database overwrite
    - Optional Forge API workflow to provision the destination site

Design Principles:
    - Nothing destructive happens without a snapshot or a confirmation
    - Every merge decision is recorded and auditable
    - External tools (mysqldump, artisan, the Forge API) sit behind narrow
      interfaces so the core logic runs headless in tests
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from forgemigrate.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
