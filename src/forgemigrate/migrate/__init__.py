"""
Migration workflows.

Backup on the source host, restore on the destination host, optional Forge
site setup, and plan generation for the whole move.
"""

from forgemigrate.migrate.backup import BackupOrchestrator, BackupResult
from forgemigrate.migrate.plan import PlanStep, build_plan, format_plan, list_ssh_hosts
from forgemigrate.migrate.restore import RestoreOrchestrator, RestoreResult, RestoreState
from forgemigrate.migrate.setup import SetupResult, SiteSetup

__all__ = [
    "BackupOrchestrator",
    "BackupResult",
    "RestoreOrchestrator",
    "RestoreResult",
    "RestoreState",
    "SiteSetup",
    "SetupResult",
    "PlanStep",
    "build_plan",
    "format_plan",
    "list_ssh_hosts",
]
