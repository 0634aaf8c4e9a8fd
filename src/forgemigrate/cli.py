"""
Command-line interface for forgemigrate.

Provides commands for every migration step: backup on the source server,
restore on the destination server, Forge site setup, plan generation, and
configuration checks.

Uses Python's argparse module (no external CLI libraries).

Exit codes:
    0   success
    1   the operation failed
    2   configuration error
    3   aborted by the user at a confirmation gate
    130 interrupted (Ctrl-C)
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import NoReturn

from forgemigrate import __version__
from forgemigrate.config.settings import (
    ConfigurationError,
    Settings,
    example_env,
    get_config_path,
    load_config,
    save_config,
)
from forgemigrate.errors import MigrationError
from forgemigrate.prompter import ConsolePrompter, ForcedPrompter, Prompter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_ABORTED = 3
EXIT_INTERRUPTED = 130

PASSWORD_ENV_VAR = "FORGEMIGRATE_ARCHIVE_PASSWORD"

# Set during main() based on args
_quiet_mode = False


def set_output_mode(quiet: bool = False) -> None:
    global _quiet_mode
    _quiet_mode = quiet


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for output meant for pipes).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the forgemigrate CLI."""
    parser = argparse.ArgumentParser(
        prog="forgemigrate",
        description="Migrate a Laravel site from one Forge managed server to another",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"forgemigrate {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.forgemigrate/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Do not ask for confirmation (always yes, keep destination values)",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Create a migration archive of a Laravel site",
        description="Dump the database and pack .env, storage/app and the dump "
        "into one encrypted archive. The archive is built in memory: allow "
        "several times the size of storage/app in free RAM (a warning is "
        "logged above 1 GB).",
    )
    backup_parser.add_argument(
        "--root", "-r",
        metavar="PATH",
        default=".",
        help="Laravel project root folder (default: current directory)",
    )
    backup_parser.add_argument(
        "--domain", "-d",
        metavar="DOMAIN",
        help="Website domain name (default: host of APP_URL)",
    )
    backup_parser.add_argument(
        "--output", "-o",
        metavar="PATH",
        help="Archive path (default: migrate_<domain>_<date>.fmig)",
    )
    backup_parser.set_defaults(func=cmd_backup)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore a Laravel site from a migration archive",
        description="Merge .env, load the database and replace storage/app from "
        "an archive. Existing files are kept as *.pre-migrate.<timestamp>.",
    )
    restore_parser.add_argument(
        "archive",
        metavar="FILE",
        help="Migration archive (.fmig)",
    )
    restore_parser.add_argument(
        "--root", "-r",
        metavar="PATH",
        default=".",
        help="Laravel project root folder (default: current directory)",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # setup command
    setup_parser = subparsers.add_parser(
        "setup",
        help="Create the site on the destination Forge server",
        description="Copy a site definition (repository, PHP version, deployment "
        "script) between Forge servers. Requires FORGE_API_TOKEN.",
    )
    setup_parser.add_argument("--domain", "-d", required=True, help="Website domain name")
    setup_parser.add_argument(
        "--server", "-s",
        required=True,
        metavar="ID",
        help="Forge source server ID",
    )
    setup_parser.add_argument(
        "--dest-server", "-D",
        required=True,
        dest="dest_server",
        metavar="ID",
        help="Forge destination server ID",
    )
    setup_parser.set_defaults(func=cmd_setup)

    # plan command
    plan_parser = subparsers.add_parser(
        "plan",
        help="Print the steps for a complete migration",
        description="Generate the ordered commands to move a site between two "
        "SSH hosts.",
    )
    plan_parser.add_argument("source_host", metavar="SOURCE_HOST", help="SSH alias of the source server")
    plan_parser.add_argument("source_site", metavar="SITE", help="Site folder on the source server")
    plan_parser.add_argument("dest_host", metavar="DEST_HOST", help="SSH alias of the destination server")
    plan_parser.add_argument(
        "--dest-site",
        dest="dest_site",
        metavar="SITE",
        help="Site folder on the destination (default: same as source)",
    )
    plan_parser.add_argument(
        "--no-database",
        action="store_false",
        dest="include_database",
        help="Keep the destination database",
    )
    plan_parser.add_argument(
        "--no-storage",
        action="store_false",
        dest="include_storage",
        help="Keep the destination storage/app",
    )
    plan_parser.set_defaults(func=cmd_plan)

    # hosts command
    hosts_parser = subparsers.add_parser(
        "hosts",
        help="List SSH hosts from ~/.ssh/config",
    )
    hosts_parser.add_argument(
        "--ssh-config",
        dest="ssh_config",
        metavar="PATH",
        help="SSH config file (default: ~/.ssh/config)",
    )
    hosts_parser.set_defaults(func=cmd_hosts)

    # check command
    check_parser = subparsers.add_parser(
        "check",
        help="Show configuration and required tools",
    )
    check_parser.add_argument(
        "--write-config",
        action="store_true",
        dest="write_config",
        help="Write the effective configuration to the config file",
    )
    check_parser.set_defaults(func=cmd_check)

    # env command
    env_parser = subparsers.add_parser(
        "env",
        help="Print an example forgemigrate.env file",
    )
    env_parser.set_defaults(func=cmd_env)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def get_prompter(args: argparse.Namespace) -> Prompter:
    if args.force:
        return ForcedPrompter()
    return ConsolePrompter()


def get_archive_password(confirm: bool = False) -> str:
    """
    Read the archive password from the environment or the terminal.

    Args:
        confirm: Ask twice and require both answers to match.

    Raises:
        ValueError: If the password is empty or the confirmation differs.
    """
    password = os.environ.get(PASSWORD_ENV_VAR)
    if password:
        return password

    password = getpass.getpass("Archive password: ")
    if not password:
        raise ValueError("Archive password cannot be empty")
    if confirm and getpass.getpass("Confirm password: ") != password:
        raise ValueError("Passwords do not match")
    return password


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a migration archive."""
    from forgemigrate.migrate.backup import BackupOrchestrator
    from forgemigrate.services.mysql import MySQLClient

    settings = load_settings(args)

    try:
        password = get_archive_password(confirm=True)
    except ValueError as e:
        output_error(f"Error: {e}")
        return EXIT_FAILURE

    orchestrator = BackupOrchestrator(settings, MySQLClient())
    try:
        result = orchestrator.run(
            password,
            project_root=args.root,
            domain=args.domain,
            output=args.output,
        )
    except MigrationError as e:
        output_error(f"Backup failed: {e}")
        return EXIT_FAILURE

    output()
    output("Backup created successfully!")
    output()
    output(f"  File: {result.path}")
    output(f"  Size: {result.size_bytes:,} bytes ({result.size_bytes / 1024 / 1024:.2f} MB)")
    output(f"  Domain: {result.manifest.domain}")
    output(f"  Database: {result.manifest.db_database}")
    output()
    output("Next steps:")
    output(f"  1. Transfer to destination server: scp {result.path} dest-server:/tmp/")
    output(f"  2. On destination server, run: forgemigrate restore /tmp/{result.path.name}")
    return EXIT_OK


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a migration archive into a project."""
    from forgemigrate.migrate.restore import RestoreOrchestrator
    from forgemigrate.services.mysql import MySQLClient
    from forgemigrate.services.project import ProjectMaintenance

    archive_path = Path(args.archive)
    if not archive_path.is_file():
        output_error(f"Error: Archive not found: {archive_path}")
        return EXIT_FAILURE

    settings = load_settings(args)

    try:
        password = get_archive_password()
    except ValueError as e:
        output_error(f"Error: {e}")
        return EXIT_FAILURE

    orchestrator = RestoreOrchestrator(
        settings,
        MySQLClient(),
        get_prompter(args),
        ProjectMaintenance(settings.permissions),
    )
    try:
        result = orchestrator.run(archive_path, password, project_root=args.root)
    except MigrationError as e:
        output_error(f"Restore failed: {e}")
        return EXIT_FAILURE

    if result.aborted:
        output_error("Aborted by user")
        return EXIT_ABORTED

    output()
    output(f"Restore completed for {result.manifest.domain}")
    output()
    if result.merge is not None:
        summary = ", ".join(f"{k}={v}" for k, v in sorted(result.merge.summary().items()))
        output(f"  .env merge: {summary}")
    output(f"  Database restored: {'yes' if result.database_restored else 'no'}")
    output(f"  storage/app restored: {'yes' if result.storage_restored else 'no'}")
    for snapshot in result.snapshots:
        output(f"  Previous version kept: {snapshot}")
    if result.warnings:
        output()
        output("Warnings:")
        for warning in result.warnings:
            output(f"  - {warning}")
    return EXIT_OK


def cmd_setup(args: argparse.Namespace) -> int:
    """Create the site on the destination Forge server."""
    from forgemigrate.migrate.setup import SiteSetup
    from forgemigrate.services.forge import ForgeClient

    settings = load_settings(args)

    try:
        client = ForgeClient(settings.forge.api_token, base_url=settings.forge.base_url)
        result = SiteSetup(client, provision_delay=settings.forge.provision_delay).run(
            args.domain, args.server, args.dest_server
        )
    except MigrationError as e:
        output_error(f"Setup failed: {e}")
        return EXIT_FAILURE

    output()
    output(f"Site setup complete on server [{args.dest_server}] (site ID {result.site_id})")
    for warning in result.warnings:
        output(f"  - {warning}")
    output()
    output("Next steps:")
    output(f"  1. Run backup on source server: forgemigrate backup -d {args.domain}")
    output("  2. Transfer the archive to the destination server")
    output("  3. Restore on destination server: forgemigrate restore /tmp/<archive>")
    output(f"  4. Update DNS to point {args.domain} to the new server IP")
    return EXIT_OK


def cmd_plan(args: argparse.Namespace) -> int:
    """Print a migration plan."""
    from forgemigrate.migrate.plan import build_plan, format_plan

    settings = load_settings(args)

    try:
        steps = build_plan(
            args.source_host,
            args.source_site,
            args.dest_host,
            dest_site=args.dest_site,
            include_database=args.include_database,
            include_storage=args.include_storage,
            sites_root=settings.sites_root,
        )
    except MigrationError as e:
        output_error(f"Error: {e}")
        return EXIT_FAILURE

    output(format_plan(steps, args.source_host, args.dest_host), force=True)
    return EXIT_OK


def cmd_hosts(args: argparse.Namespace) -> int:
    """List SSH hosts."""
    from forgemigrate.migrate.plan import list_ssh_hosts

    try:
        hosts = list_ssh_hosts(Path(args.ssh_config) if args.ssh_config else None)
    except MigrationError as e:
        output_error(f"Error: {e}")
        return EXIT_FAILURE

    for host in hosts:
        output(host, force=True)
    return EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    """Show effective configuration and tool availability."""
    settings = load_settings(args)
    config_path = Path(args.config) if args.config else get_config_path()

    output("forgemigrate check")
    output("=" * 50)
    output()
    output(f"Version: {__version__}")
    output(f"Config file: {config_path} ({'found' if config_path.exists() else 'not found'})")
    output(f"Temp directory: {settings.tmp_dir}")
    output(f"Sites root: {settings.sites_root}")
    output(f"PBKDF2 iterations: {settings.archive.pbkdf2_iterations:,}")
    output(f"Forge API: {settings.forge.base_url}")
    output(f"Forge API token: {'set' if settings.forge.api_token else 'not set'}")
    output(f"Server-local keys: {', '.join(sorted(settings.server_local_keys))}")
    output()

    output("Required tools:")
    missing = 0
    for tool in ("mysqldump", "mysql", "php", "git"):
        path = shutil.which(tool)
        output(f"  {tool:<10} {path or 'NOT FOUND'}")
        if path is None:
            missing += 1

    if args.write_config:
        save_config(settings, config_path)
        output()
        output(f"Configuration written to {config_path}")

    return EXIT_OK if missing == 0 else EXIT_FAILURE


def cmd_env(args: argparse.Namespace) -> int:
    """Print an example env file."""
    settings = load_settings(args)
    output(example_env(settings), force=True)
    return EXIT_OK


def main() -> NoReturn:
    """Main entry point for the forgemigrate CLI."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet)

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_OK)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(EXIT_INTERRUPTED)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
