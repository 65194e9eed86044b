"""Backup, catalog, and restore commands for the billing-admin CLI.

Registered on the main parser by ``billing_admin.cli.main``; each command
reads the loaded ``AdminConfig`` from ``args.admin_config``.

Usage:
    billing-admin backup
    billing-admin backups
    billing-admin restore billing_backup_2025-01-01T00-00-00-000Z.db
    billing-admin restore billing_backup_2025-01-01T00-00-00-000Z.db --yes
"""

import argparse
import asyncio

from rich.console import Console
from rich.table import Table

from billing_admin.backup.backup_restore import backup_database, list_backups, restore_database
from billing_admin.config.models import AdminConfig

console = Console()


def _format_size(size: int) -> str:
    """Human-readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command."""
    config: AdminConfig = args.admin_config

    console.print(f"Backing up [bold]{config.paths.db_path}[/bold]...", style="dim")
    result = await backup_database(config.paths.db_path, config.paths.backup_dir)

    for warning in result.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")

    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.message}")
        return 1

    console.print(
        f"[bold green]v[/bold green] Backup created: [bold cyan]{result.backup_base}[/bold cyan]"
    )
    console.print(f"  Files: {', '.join(result.backup_files)}")
    console.print(f"  Total size: {_format_size(result.total_size)}")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command."""
    config: AdminConfig = args.admin_config

    result = await restore_database(
        config.paths.db_path, config.paths.backup_dir, args.backup_file
    )

    for warning in result.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")

    if result.results:
        table = Table(title="Restore Results")
        table.add_column("Table", style="cyan")
        table.add_column("Status")
        table.add_column("Restored", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Message", style="dim")
        for r in result.results:
            status = "[green]OK[/green]" if r.success else "[red]FAILED[/red]"
            if r.success and r.rows_skipped:
                status = "[yellow]PARTIAL[/yellow]"
            table.add_row(
                r.table, status, str(r.rows_restored), str(r.rows_skipped), r.message
            )
        console.print(table)

    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.message}")
        return 1

    console.print(f"[bold green]v[/bold green] {result.message}")
    if result.pre_restore_file:
        console.print(f"  Previous database saved as [bold]{result.pre_restore_file}[/bold]")
    return 0


# ============================================================================
# CLI command handlers (sync wrappers)
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a backup set of the live store.

    Wraps the async implementation with ``asyncio.run()``.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_backup(args))


def cmd_backups(args: argparse.Namespace) -> int:
    """List backup sets, newest first.

    Reads only the backup directory -- no database calls.
    """
    config: AdminConfig = args.admin_config
    backups = list_backups(config.paths.backup_dir)

    if not backups:
        console.print(f"[yellow]No backups in {config.paths.backup_dir}[/yellow]")
        return 0

    table = Table(title="Backup Sets")
    table.add_column("Filename", style="cyan")
    table.add_column("Created")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Members", style="dim")
    for b in backups:
        table.add_row(
            b.filename,
            b.created.strftime("%Y-%m-%d %H:%M:%S"),
            str(b.file_count),
            _format_size(b.size),
            ", ".join(f.type for f in b.files),
        )
    console.print(table)
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore the allow-listed tables from a backup set.

    Asks for confirmation unless ``--yes`` is given.
    """
    if not args.yes:
        console.print(f"[yellow]This will replace table data from:[/yellow] {args.backup_file}")
        console.print("  The current database is saved as a pre_restore snapshot first.")
        response = input("Continue? [y/N] ")
        if response.lower() not in ["y", "yes"]:
            console.print("Cancelled.")
            return 0

    return asyncio.run(_async_restore(args))


def register(subparsers: argparse._SubParsersAction) -> None:
    """Add the backup commands to the main parser."""
    p_backup = subparsers.add_parser(
        "backup",
        help="Checkpoint the WAL and copy the database into a backup set",
    )
    p_backup.set_defaults(func=cmd_backup)

    p_backups = subparsers.add_parser(
        "backups",
        help="List backup sets, newest first",
    )
    p_backups.set_defaults(func=cmd_backups)

    p_restore = subparsers.add_parser(
        "restore",
        help="Restore packages, customers, odps, cable_routes and network_segments",
    )
    p_restore.add_argument(
        "backup_file",
        help="Backup .db filename inside the backup directory",
    )
    p_restore.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip confirmation prompt",
    )
    p_restore.set_defaults(func=cmd_restore)
