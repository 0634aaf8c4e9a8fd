"""
Migration plan generation.

Turns "move site X from host A to site Y on host B" into the ordered list of
commands an operator runs by hand: backup on the source, transfer, optional
Forge setup, restore on the destination, then DNS follow-up.

Hosts are SSH aliases from ~/.ssh/config; nothing here connects anywhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from forgemigrate.archive.container import ARCHIVE_SUFFIX
from forgemigrate.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SSH_CONFIG = Path.home() / ".ssh" / "config"
WILDCARD_CHARS = frozenset("*?!")


@dataclass
class PlanStep:
    """One step of a migration plan."""

    title: str
    commands: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


def list_ssh_hosts(path: Path | None = None) -> list[str]:
    """
    Concrete host aliases from an SSH config file, sorted.

    Patterns containing wildcards or negations are left out.

    Raises:
        ValidationError: If the config file does not exist.
    """
    path = Path(path) if path else DEFAULT_SSH_CONFIG
    if not path.is_file():
        raise ValidationError(f"No SSH config found at [{path}]")

    hosts: set[str] = set()
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        parts = line.strip().replace("=", " ", 1).split()
        if len(parts) < 2 or parts[0].lower() != "host":
            continue
        for alias in parts[1:]:
            if not WILDCARD_CHARS & set(alias):
                hosts.add(alias)

    logger.debug(f"Found {len(hosts)} SSH hosts in {path}")
    return sorted(hosts)


def build_plan(
    source_host: str,
    source_site: str,
    dest_host: str,
    dest_site: str | None = None,
    include_database: bool = True,
    include_storage: bool = True,
    sites_root: str = "/home/forge",
    program: str = "forgemigrate",
) -> list[PlanStep]:
    """
    Build the ordered migration steps.

    Args:
        source_host: SSH alias of the source server.
        source_site: Site folder (domain) on the source server.
        dest_host: SSH alias of the destination server.
        dest_site: Site folder on the destination (default: source_site).
        include_database: Whether the database should be carried over.
        include_storage: Whether storage/app should be carried over.
        sites_root: Parent folder of the sites on both servers.
        program: Command name used in the generated commands.

    Raises:
        ValidationError: If a host or the source site is empty.
    """
    if not source_host or not dest_host:
        raise ValidationError("Source and destination hosts are required")
    if not source_site:
        raise ValidationError("Source site is required")
    dest_site = dest_site or source_site

    root = sites_root.rstrip("/")
    source_root = f"{root}/{source_site}"
    dest_root = f"{root}/{dest_site}"
    archive_glob = f"migrate_*{ARCHIVE_SUFFIX}"

    steps = [
        PlanStep(
            "Create backup on source server",
            [
                f"ssh {source_host}",
                f"cd {source_root}",
                f"{program} backup --domain {source_site}",
            ],
        ),
        PlanStep(
            "Transfer archive to destination",
            [
                f"scp {source_host}:{source_root}/{archive_glob} /tmp/",
                f"scp /tmp/{archive_glob} {dest_host}:/tmp/",
            ],
        ),
    ]

    if source_host != dest_host or source_site != dest_site:
        steps.append(
            PlanStep(
                "(Optional) Setup new site via Forge API",
                [
                    f"{program} setup --domain {source_site} "
                    "--server <source_server_id> --dest-server <dest_server_id>"
                ],
                ["requires FORGE_API_TOKEN in forgemigrate.env or the environment"],
            )
        )

    restore_notes = []
    if not include_database:
        restore_notes.append(
            "Declining the database confirmation keeps the destination database but ends "
            "the restore after the .env merge: storage/app and permissions are not restored"
        )
    if not include_storage:
        restore_notes.append(
            "To keep the destination storage/app, move storage/app.pre-migrate.<timestamp> "
            "back after the restore"
        )
    steps.append(
        PlanStep(
            "Restore on destination server",
            [f"ssh {dest_host}", f"{program} restore /tmp/{archive_glob} --root {dest_root}"],
            restore_notes,
        )
    )

    steps.append(
        PlanStep(
            "Verify and update DNS",
            notes=[
                "Review .env on destination (especially DB credentials)",
                "Test the site on the new server",
                f"Update DNS records for {source_site} to point to {dest_host}",
                "Wait for DNS propagation",
                "Request SSL certificate if not done in setup step",
            ],
        )
    )
    return steps


def format_plan(
    steps: list[PlanStep],
    source_host: str = "",
    dest_host: str = "",
) -> str:
    """Render plan steps as numbered text."""
    lines = ["=== Migration Plan ===", ""]
    if source_host or dest_host:
        lines.extend([f"Source : {source_host}", f"Dest   : {dest_host}", ""])

    for number, step in enumerate(steps, start=1):
        lines.append(f"Step {number}: {step.title}")
        lines.extend(f"  {command}" for command in step.commands)
        lines.extend(f"  - {note}" for note in step.notes)
        lines.append("")
    return "\n".join(lines)

