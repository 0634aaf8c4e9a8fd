"""
Three-way .env reconciliation.

Merges the .env captured in a backup into the .env already present on the
destination. There is no common ancestor; each key is classified by where
it appears and whether the two values agree:

    only in backup              -> take backup value
    only on destination         -> keep destination value
    same value in both          -> keep it
    differs, server-local key   -> keep destination value, no questions
    differs, forced policy      -> keep destination value
    differs, interactive policy -> ask; no explicit answer keeps destination

Server-local keys are the settings that belong to the host rather than the
application (database, cache, queue, session and mail endpoints, the public
URL). They must never travel with a migration.

The result is fully determined by the two inputs, the server-local key set
and, for interactive runs, the sequence of answers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from forgemigrate.prompter import Prompter

logger = logging.getLogger(__name__)

DEFAULT_SERVER_LOCAL_KEYS: frozenset[str] = frozenset(
    {
        # database connection
        "DB_HOST",
        "DB_PORT",
        "DB_DATABASE",
        "DB_USERNAME",
        "DB_PASSWORD",
        # cache / queue / session backends
        "REDIS_HOST",
        "REDIS_PASSWORD",
        "REDIS_PORT",
        "MEMCACHED_HOST",
        "QUEUE_CONNECTION",
        "SESSION_DRIVER",
        "CACHE_DRIVER",
        "LOG_CHANNEL",
        # mail transport
        "MAIL_MAILER",
        "MAIL_HOST",
        "MAIL_PORT",
        "MAIL_USERNAME",
        "MAIL_PASSWORD",
        # public base URL
        "APP_URL",
    }
)

CHOICE_DESTINATION = "destination"
CHOICE_BACKUP = "backup"


class ConflictPolicy(str, Enum):
    """How to settle a differing, non-server-local key."""

    INTERACTIVE = "interactive"
    FORCED = "forced"


class Resolution(str, Enum):
    """Outcome recorded for each key of a merge."""

    KEPT_DESTINATION_ONLY = "kept_destination_only"
    ADDED_FROM_BACKUP_ONLY = "added_from_backup_only"
    IDENTICAL_KEPT = "identical_kept"
    SERVER_LOCAL_KEPT_DESTINATION = "server_local_kept_destination"
    FORCED_KEPT_DESTINATION = "forced_kept_destination"
    USER_CHOSE_BACKUP = "user_chose_backup"
    USER_CHOSE_DESTINATION = "user_chose_destination"

    @property
    def takes_backup(self) -> bool:
        """True when the merged value comes from the backup."""
        return self in (Resolution.ADDED_FROM_BACKUP_ONLY, Resolution.USER_CHOSE_BACKUP)


@dataclass(frozen=True)
class ReconciliationDecision:
    """
    Merge outcome for a single key.

    Attributes:
        key: The configuration key.
        backup_value: Value in the backup, None if absent there.
        destination_value: Value on the destination, None if absent there.
        resolution: Which rule decided the key.
    """

    key: str
    backup_value: str | None
    destination_value: str | None
    resolution: Resolution

    @property
    def merged_value(self) -> str:
        value = self.backup_value if self.resolution.takes_backup else self.destination_value
        assert value is not None
        return value

    @property
    def is_conflict(self) -> bool:
        """True when both sides had the key with different values."""
        return (
            self.backup_value is not None
            and self.destination_value is not None
            and self.backup_value != self.destination_value
        )


@dataclass
class MergeResult:
    """Merged configuration plus the ordered decision log that produced it."""

    merged: dict[str, str] = field(default_factory=dict)
    decisions: list[ReconciliationDecision] = field(default_factory=list)

    def count(self, resolution: Resolution) -> int:
        return sum(1 for d in self.decisions if d.resolution == resolution)

    @property
    def conflicts(self) -> list[ReconciliationDecision]:
        return [d for d in self.decisions if d.is_conflict]

    def summary(self) -> dict[str, int]:
        """Count of decisions per resolution, only non-zero entries."""
        counts: dict[str, int] = {}
        for decision in self.decisions:
            counts[decision.resolution.value] = counts.get(decision.resolution.value, 0) + 1
        return counts


class ConfigReconciler:
    """
    Merge engine for backup and destination .env mappings.

    Usage:
        reconciler = ConfigReconciler(policy=ConflictPolicy.FORCED)
        result = reconciler.merge(backup_env, destination_env)
        write_env_file(path, result.merged)

    Attributes:
        server_local_keys: Keys whose destination value always wins.
        policy: Conflict policy for the remaining differing keys.
        prompter: Asked for each conflict under the interactive policy.
    """

    def __init__(
        self,
        server_local_keys: Iterable[str] = DEFAULT_SERVER_LOCAL_KEYS,
        policy: ConflictPolicy = ConflictPolicy.FORCED,
        prompter: Prompter | None = None,
    ) -> None:
        if policy == ConflictPolicy.INTERACTIVE and prompter is None:
            raise ValueError("The interactive policy needs a prompter")
        self.server_local_keys = frozenset(server_local_keys)
        self.policy = policy
        self.prompter = prompter

    def merge(
        self,
        backup: Mapping[str, str],
        destination: Mapping[str, str],
    ) -> MergeResult:
        """
        Merge backup into destination.

        Args:
            backup: Configuration captured on the source host.
            destination: Configuration currently on the destination host.

        Returns:
            MergeResult whose key set is the union of both inputs.
        """
        result = MergeResult()

        for key in sorted(set(backup) | set(destination)):
            decision = self._decide(key, backup.get(key), destination.get(key))
            result.decisions.append(decision)
            result.merged[key] = decision.merged_value
            logger.debug(f"  {key}: {decision.resolution.value}")

        logger.info(
            f"Merged {len(result.merged)} keys "
            f"({len(result.conflicts)} conflicting): {result.summary()}"
        )
        return result

    def _decide(
        self,
        key: str,
        backup_value: str | None,
        destination_value: str | None,
    ) -> ReconciliationDecision:
        if destination_value is None:
            resolution = Resolution.ADDED_FROM_BACKUP_ONLY
        elif backup_value is None:
            resolution = Resolution.KEPT_DESTINATION_ONLY
        elif backup_value == destination_value:
            resolution = Resolution.IDENTICAL_KEPT
        elif key in self.server_local_keys:
            resolution = Resolution.SERVER_LOCAL_KEPT_DESTINATION
        elif self.policy == ConflictPolicy.FORCED:
            resolution = Resolution.FORCED_KEPT_DESTINATION
        else:
            resolution = self._ask(key, backup_value, destination_value)

        return ReconciliationDecision(
            key=key,
            backup_value=backup_value,
            destination_value=destination_value,
            resolution=resolution,
        )

    def _ask(self, key: str, backup_value: str, destination_value: str) -> Resolution:
        assert self.prompter is not None
        question = (
            f"Conflict for {key}:\n"
            f"  backup     : {backup_value}\n"
            f"  destination: {destination_value}\n"
            f"Keep which?"
        )
        answer = self.prompter.choose(
            question,
            [CHOICE_DESTINATION, CHOICE_BACKUP],
            default=CHOICE_DESTINATION,
        )
        if answer == CHOICE_BACKUP:
            return Resolution.USER_CHOSE_BACKUP
        return Resolution.USER_CHOSE_DESTINATION


def merge_configs(
    backup: Mapping[str, str],
    destination: Mapping[str, str],
    server_local_keys: Iterable[str] = DEFAULT_SERVER_LOCAL_KEYS,
    policy: ConflictPolicy = ConflictPolicy.FORCED,
    prompter: Prompter | None = None,
) -> tuple[dict[str, str], list[ReconciliationDecision]]:
    """Functional form of ConfigReconciler.merge returning (merged, decisions)."""
    result = ConfigReconciler(server_local_keys, policy, prompter).merge(backup, destination)
    return result.merged, result.decisions
