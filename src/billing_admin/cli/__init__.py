"""CLI for billing system administration.

Provides commands for database backup/restore, schema verification and
migration, activity log viewing, Mikrotik isolation scripts, and logo
upload.

Usage:
    billing-admin backup
    billing-admin backups
    billing-admin restore billing_backup_2025-01-01T00-00-00-000Z.db --yes
    billing-admin verify
    billing-admin migrate --sql-dir migrations
    billing-admin logs --page 2 --limit 20 --types info,error
    billing-admin clear-logs --days 30
    billing-admin isolation-script --method dhcp_block --output isolir.rsc
    billing-admin upload-logo ./logo.png

Commands:
    backup            - Create a backup set of the live database
    backups           - List backup sets
    restore           - Selectively restore tables from a backup set
    verify            - Check required tables and columns
    migrate           - Apply schema migrations and .sql migration files
    logs              - Show activity log entries
    clear-logs        - Remove log entries older than N days
    isolation-script  - Generate the Mikrotik isolation script
    upload-logo       - Store a new logo image
"""

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from billing_admin.activity_log import clear_old_logs, install_file_handlers, read_activity_logs
from billing_admin.assets import store_logo
from billing_admin.cli import backup as backup_commands
from billing_admin.config.loader import load_admin_config
from billing_admin.config.models import AdminConfig
from billing_admin.factory import StoreNotFoundError, connect_and_validate, open_store
from billing_admin.mikrotik import ISOLATION_METHODS, generate_isolation_script
from billing_admin.schema.migrations import (
    BILLING_MIGRATIONS,
    apply_migrations,
    run_sql_migrations,
)

console = Console()

# Handlers installed by the last ``_configure_logging()`` call.
_installed_handlers: list[logging.Handler] = []


def _configure_logging(config: AdminConfig) -> None:
    """Console logging through rich, plus the activity log files."""
    package_logger = logging.getLogger("billing_admin")
    for handler in _installed_handlers:
        package_logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    package_logger.setLevel(logging.DEBUG)

    console_handler = RichHandler(console=Console(stderr=True), show_path=False)
    console_handler.setLevel(config.logging.level.upper())
    package_logger.addHandler(console_handler)
    _installed_handlers.append(console_handler)

    if config.logging.write_activity_logs:
        _installed_handlers.extend(install_file_handlers(config.paths.logs_dir))


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_verify(args: argparse.Namespace) -> int:
    """Async implementation for verify command.

    Returns:
        0 if every required table and column exists, 1 otherwise.
    """
    config: AdminConfig = args.admin_config

    console.print(f"Verifying [bold]{config.paths.db_path}[/bold]...", style="dim")
    result = await connect_and_validate(config.paths.db_path)

    if result.success:
        console.print()
        console.print("[bold green]v[/bold green] Schema is valid")
        if result.schema_report and result.schema_report.extra_tables:
            console.print(
                f"  Extra tables: [yellow]"
                f"{', '.join(result.schema_report.extra_tables)}[/yellow]"
            )
        return 0

    console.print()
    console.print(f"[bold red]x[/bold red] {result.error}")
    if result.schema_report:
        console.print("\n[bold]Schema validation report:[/bold]")
        console.print(result.schema_report.format_report())
        console.print("\n[dim]Run 'billing-admin migrate' to add missing columns.[/dim]")
    return 1


async def _async_migrate(args: argparse.Namespace) -> int:
    """Async implementation for migrate command."""
    config: AdminConfig = args.admin_config
    sql_dir = Path(args.sql_dir) if args.sql_dir else config.paths.migrations_dir

    try:
        async with open_store(config.paths.db_path) as store:
            console.print("Applying schema migrations...", style="dim")
            result = await apply_migrations(store, BILLING_MIGRATIONS, dry_run=args.dry_run)
            sql_results = [] if args.dry_run else await run_sql_migrations(store, sql_dir)
    except StoreNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    summary = Table(title="Schema Migrations" + (" (dry run)" if args.dry_run else ""))
    summary.add_column("Step", style="cyan")
    summary.add_column("Count", justify="right")
    summary.add_row("Tables created", str(result.tables_created))
    summary.add_row("Columns added", str(result.columns_added))
    summary.add_row("Indexes created", str(result.indexes_created))
    summary.add_row("Rows backfilled", str(result.rows_backfilled))
    console.print(summary)

    if result.skipped_tables:
        console.print(
            f"[yellow]Skipped missing tables: {', '.join(result.skipped_tables)}[/yellow]"
        )

    if sql_results:
        files = Table(title=f"SQL Migrations ({sql_dir})")
        files.add_column("File", style="cyan")
        files.add_column("Status")
        files.add_column("Detail", style="dim")
        for r in sql_results:
            if r.skipped:
                status, detail = "[dim]already applied[/dim]", ""
            elif r.success:
                status, detail = "[green]applied[/green]", f"{r.statements} statements"
            else:
                status, detail = "[red]failed[/red]", r.error or ""
            files.add_row(r.filename, status, detail)
        console.print(files)

    failed_files = [r for r in sql_results if not r.success]
    if result.errors or failed_files:
        for error in result.errors:
            console.print(f"[red]x {error}[/red]")
        console.print("[bold red]x[/bold red] Migration finished with errors")
        return 1

    console.print("[bold green]v[/bold green] Migration complete")
    return 0


# ============================================================================
# CLI command handlers (sync wrappers)
# ============================================================================


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify the live database has every required table and column.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_verify(args))


def cmd_migrate(args: argparse.Namespace) -> int:
    """Apply the built-in schema migrations, then pending ``.sql`` files."""
    return asyncio.run(_async_migrate(args))


def cmd_logs(args: argparse.Namespace) -> int:
    """Show one page of activity log entries, newest first."""
    config: AdminConfig = args.admin_config
    types = [t.strip() for t in args.types.split(",") if t.strip()]

    try:
        page = read_activity_logs(
            config.paths.logs_dir, page=args.page, limit=args.limit, types=types
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    if not page.logs:
        console.print("[yellow]No log entries found.[/yellow]")
        return 0

    level_styles = {"error": "red", "warn": "yellow", "info": "green", "debug": "dim"}
    table = Table(title=f"Activity Logs (page {page.page}/{page.total_pages}, {page.total} entries)")
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Level")
    table.add_column("Message")
    for entry in page.logs:
        style = level_styles.get(entry.level, "")
        message = entry.message
        if entry.data is not None:
            message += f"\n[dim]{entry.data}[/dim]"
        table.add_row(
            entry.created_at,
            f"[{style}]{entry.level.upper()}[/{style}]" if style else entry.level.upper(),
            message,
        )
    console.print(table)
    return 0


def cmd_clear_logs(args: argparse.Namespace) -> int:
    """Remove log entries older than ``--days`` days."""
    config: AdminConfig = args.admin_config
    try:
        cleared = clear_old_logs(config.paths.logs_dir, days=args.days)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    console.print(
        f"[bold green]v[/bold green] Removed {cleared} log entries older than {args.days} days"
    )
    return 0


def cmd_isolation_script(args: argparse.Namespace) -> int:
    """Print or save the Mikrotik isolation script."""
    try:
        result = generate_isolation_script(
            method=args.method,
            bandwidth_limit=args.bandwidth_limit,
            network_range=args.network_range,
            dns_servers=args.dns_servers,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    if args.output:
        Path(args.output).write_text(result.script, encoding="utf-8")
        console.print(
            f"[bold green]v[/bold green] {result.method} script written to "
            f"[bold]{args.output}[/bold]"
        )
    else:
        console.print(result.script, markup=False, highlight=False)
    return 0


def cmd_upload_logo(args: argparse.Namespace) -> int:
    """Store an image file as the application logo."""
    config: AdminConfig = args.admin_config
    source = Path(args.file)
    if not source.is_file():
        console.print(f"[red]Error: file not found: {source}[/red]")
        return 1

    content_type, _ = mimetypes.guess_type(source.name)
    result = store_logo(
        source.read_bytes(),
        source.name,
        content_type,
        config.paths.img_dir,
        previous_filename=args.previous,
    )
    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print(
        f"[bold green]v[/bold green] {result.message}: "
        f"[bold]{config.paths.img_dir / result.filename}[/bold]"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments, loads configuration, and dispatches to
    the appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="billing-admin",
        description="Billing system administration: backup, restore, migrations, logs",
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to billing-admin.toml (default: ./billing-admin.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_BILLING_DATA_DIR)"
        ),
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    backup_commands.register(subparsers)

    # verify command
    p_verify = subparsers.add_parser(
        "verify",
        help="Check the database has all required tables and columns",
    )
    p_verify.set_defaults(func=cmd_verify)

    # migrate command
    p_migrate = subparsers.add_parser(
        "migrate",
        help="Add missing columns/indexes and run pending .sql migrations",
    )
    p_migrate.add_argument(
        "--sql-dir",
        default=None,
        help="Directory of .sql migration files (default: paths.migrations_dir)",
    )
    p_migrate.add_argument(
        "--dry-run",
        action="store_true",
        help="Count pending changes without applying them",
    )
    p_migrate.set_defaults(func=cmd_migrate)

    # logs command
    p_logs = subparsers.add_parser(
        "logs",
        help="Show activity log entries, newest first",
    )
    p_logs.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    p_logs.add_argument("--limit", type=int, default=50, help="Entries per page (default: 50)")
    p_logs.add_argument(
        "--types",
        default="info,error,warn",
        help="Comma-separated log files to read (default: info,error,warn)",
    )
    p_logs.set_defaults(func=cmd_logs)

    # clear-logs command
    p_clear = subparsers.add_parser(
        "clear-logs",
        help="Remove log entries older than N days",
    )
    p_clear.add_argument("--days", type=int, default=30, help="Age limit in days (default: 30)")
    p_clear.set_defaults(func=cmd_clear_logs)

    # isolation-script command
    p_iso = subparsers.add_parser(
        "isolation-script",
        help="Generate the Mikrotik isolation script",
    )
    p_iso.add_argument("--method", choices=ISOLATION_METHODS, default="address_list")
    p_iso.add_argument("--bandwidth-limit", default="1k/1k")
    p_iso.add_argument("--network-range", default="192.168.1.0/24")
    p_iso.add_argument("--dns-servers", default="8.8.8.8,8.8.4.4")
    p_iso.add_argument("--output", "-o", default=None, help="Write to file instead of stdout")
    p_iso.set_defaults(func=cmd_isolation_script, needs_config=False)

    # upload-logo command
    p_logo = subparsers.add_parser(
        "upload-logo",
        help="Store an image file as the application logo",
    )
    p_logo.add_argument("file", help="Image file (max 2 MB; any image type or .svg)")
    p_logo.add_argument(
        "--previous",
        default=None,
        help="Currently configured logo filename, removed if the name changes",
    )
    p_logo.set_defaults(func=cmd_upload_logo)

    args = parser.parse_args(argv)

    if getattr(args, "needs_config", True):
        try:
            args.admin_config = load_admin_config(
                Path(args.config) if args.config else None,
                env_prefix=args.env_prefix,
            )
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1
        _configure_logging(args.admin_config)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
