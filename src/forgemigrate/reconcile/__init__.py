"""
.env reconciliation for restores.

Usage:
    from forgemigrate.reconcile import ConfigReconciler, ConflictPolicy

    reconciler = ConfigReconciler(policy=ConflictPolicy.FORCED)
    result = reconciler.merge(backup_env, destination_env)
"""

from forgemigrate.reconcile.merge import (
    DEFAULT_SERVER_LOCAL_KEYS,
    ConfigReconciler,
    ConflictPolicy,
    MergeResult,
    ReconciliationDecision,
    Resolution,
    merge_configs,
)

__all__ = [
    "ConfigReconciler",
    "ConflictPolicy",
    "MergeResult",
    "ReconciliationDecision",
    "Resolution",
    "DEFAULT_SERVER_LOCAL_KEYS",
    "merge_configs",
]
