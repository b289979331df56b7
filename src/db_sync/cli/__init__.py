"""CLI module for entity-model schema synchronization.

Provides commands to inspect profiles, check connectivity, report schema
drift against an entity model, and apply the planned DDL.

Usage:
    db-sync dialects
    db-sync profiles
    DB_PROFILE=local db-sync check
    db-sync --profile local diff --model model.json
    db-sync --profile local apply --model model.json --dry-run
    db-sync --profile prod apply --model model.json --confirm --transactional

Commands:
    dialects  - List supported database dialects
    profiles  - List available profiles
    check     - Check the active profile's connection
    diff      - Report differences between the model and the live schema
    apply     - Plan and apply the DDL that resolves the differences

The model file is the JSON form of ``db_sync.model.EntityModel``.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from db_sync.config.loader import load_db_config
from db_sync.dialects import get_dialect_class, supported_dialects
from db_sync.errors import DatabaseConnectionError, SyncError
from db_sync.factory import (
    ProfileNotFoundError,
    get_active_profile,
    get_synchronizer,
    resolve_url,
    try_connection,
)
from db_sync.model import EntityModel
from db_sync.schema.comparator import Diff
from db_sync.schema.sync import ApplyOptions, ApplyResult

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


def _load_model(model_file: str | Path) -> EntityModel:
    """Load an entity model from its JSON form.

    Raises:
        FileNotFoundError: If the model file does not exist.
        ValueError: If the content is not a valid entity model.
    """
    model_path = Path(model_file)
    if not model_path.exists():
        raise FileNotFoundError(f"Model file not found: {model_path}")
    return EntityModel.model_validate_json(model_path.read_text())


def _print_diffs(diffs: list[Diff]) -> None:
    table = Table(title="Schema Drift", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Entity", style="cyan")
    table.add_column("Change")

    for diff in diffs:
        style = "red" if diff.destructive else ""
        table.add_row(
            diff.kind.value,
            diff.entity,
            f"[{style}]{escape(diff.describe())}[/{style}]" if style else escape(diff.describe()),
        )

    console.print(table)


def _print_plan(result: ApplyResult) -> None:
    if not result.planned:
        console.print("[dim]No actions planned.[/dim]")
        return

    table = Table(title="Planned Actions", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Phase", justify="right")
    table.add_column("Action")

    for i, action in enumerate(result.planned, start=1):
        description = escape(action.describe())
        if action.destructive:
            description = f"[red]{description}[/red]"
        table.add_row(str(i), str(action.phase), description)

    console.print(table)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_check(args: argparse.Namespace) -> int:
    """Async implementation for check command.

    Returns:
        0 on success, 1 on failure.
    """
    config_path = _config_path(args)
    try:
        profile_name, profile, _ = get_active_profile(
            args.profile, args.env_prefix, config_path
        )
        url = resolve_url(profile, config_path.parent if config_path else None)
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    console.print(
        f"Connecting to profile: [bold cyan]{profile_name}[/bold cyan]", style="dim"
    )

    try:
        await try_connection(url)
    except DatabaseConnectionError as e:
        console.print(f"\n[bold red]x[/bold red] {escape(str(e))}")
        return 1

    console.print(
        f"\n[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{profile_name}[/bold cyan]"
    )
    return 0


async def _async_diff(args: argparse.Namespace) -> int:
    """Async implementation for diff command.

    Returns:
        0 if the schema is in sync, 1 on drift or error.
    """
    try:
        model = _load_model(args.model)
        synchronizer = get_synchronizer(
            model,
            profile_name=args.profile,
            env_prefix=args.env_prefix,
            config_path=_config_path(args),
        )
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    try:
        diffs = await synchronizer.diff()
    except SyncError as e:
        console.print(f"\n[bold red]x[/bold red] {escape(str(e))}")
        return 1
    finally:
        await synchronizer.engine.dispose()

    if not diffs:
        console.print("[bold green]v[/bold green] Schema in sync")
        return 0

    _print_diffs(diffs)
    console.print(f"\n[yellow]{len(diffs)} difference(s) found[/yellow]")
    return 1


async def _async_apply(args: argparse.Namespace) -> int:
    """Async implementation for apply command.

    Returns:
        0 on success (or nothing to do), 1 on failure.
    """
    try:
        model = _load_model(args.model)
        synchronizer = get_synchronizer(
            model,
            profile_name=args.profile,
            env_prefix=args.env_prefix,
            config_path=_config_path(args),
        )
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    # Without --transactional the profile's sync settings decide
    flags = {"dry_run": args.dry_run, "confirm": args.confirm}
    if args.transactional:
        flags["transactional"] = True
    options = ApplyOptions(**flags)

    try:
        diffs = await synchronizer.diff()
        if not diffs:
            console.print("[bold green]v[/bold green] Schema in sync, nothing to apply")
            return 0
        result = await synchronizer.apply(diffs, options)
    except SyncError as e:
        console.print(f"\n[bold red]x[/bold red] {escape(str(e))}")
        return 1
    finally:
        await synchronizer.engine.dispose()

    _print_plan(result)

    for warning in result.warnings:
        console.print(f"[yellow]! {escape(warning)}[/yellow]")

    if result.dry_run:
        console.print(
            f"\n[bold]Dry run:[/bold] {len(result.planned)} action(s) planned, nothing applied"
        )
        return 0

    if result.success:
        console.print(
            f"\n[bold green]v[/bold green] Applied {len(result.applied)} action(s)"
        )
        if result.skipped:
            console.print(f"  Skipped (unsupported): [yellow]{len(result.skipped)}[/yellow]")
        if result.withheld:
            console.print(
                f"  Withheld (need --confirm): [yellow]{len(result.withheld)}[/yellow]"
            )
        return 0

    console.print(
        f"\n[bold red]x[/bold red] Failed at {escape(result.failed_action.describe())}: {escape(result.error or '')}"
    )
    if result.rolled_back:
        console.print("  [yellow]Transaction rolled back, nothing applied[/yellow]")
    else:
        console.print(f"  Applied before failure: {len(result.applied)}")
        for action in result.applied:
            console.print(f"    - {escape(action.describe())}")
    return 1


# ============================================================================
# Command handlers
# ============================================================================


def cmd_dialects(args: argparse.Namespace) -> int:
    """List supported dialects and their capabilities."""
    table = Table(title="Dialects", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Adapter")
    table.add_column("Constraints")
    table.add_column("Transactional DDL")

    for name in supported_dialects():
        dialect = get_dialect_class(name)
        table.add_row(
            name,
            dialect.__name__,
            "yes" if dialect.supports_constraints else "no",
            "yes" if dialect.supports_transactional_ddl else "no",
        )

    console.print(table)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found or invalid.
    """
    try:
        config = load_db_config(_config_path(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    current = args.profile or os.environ.get(f"{args.env_prefix}DB_PROFILE")

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Type")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.type or profile.url.split("://", 1)[0],
            profile.description or "",
        )

    console.print(table)

    if current in config.profiles:
        console.print("\n[bold green]*[/bold green] = active profile")

    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Check the active profile's connection.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_check(args))


def cmd_diff(args: argparse.Namespace) -> int:
    """Report schema drift.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_diff(args))


def cmd_apply(args: argparse.Namespace) -> int:
    """Plan and apply schema changes.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_apply(args))


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="db-sync",
        description="Keep a live database schema in sync with an entity model",
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Profile name from db.toml (default: <prefix>DB_PROFILE)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # dialects command
    p_dialects = subparsers.add_parser("dialects", help="List supported dialects")
    p_dialects.set_defaults(func=cmd_dialects)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # check command
    p_check = subparsers.add_parser("check", help="Check the active profile's connection")
    p_check.set_defaults(func=cmd_check)

    # diff command
    p_diff = subparsers.add_parser(
        "diff", help="Report differences between the model and the live schema"
    )
    p_diff.add_argument("--model", required=True, help="Path to the entity model JSON file")
    p_diff.set_defaults(func=cmd_diff)

    # apply command
    p_apply = subparsers.add_parser(
        "apply", help="Plan and apply DDL to resolve schema differences"
    )
    p_apply.add_argument("--model", required=True, help="Path to the entity model JSON file")
    p_apply.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the planned actions without executing them",
    )
    p_apply.add_argument(
        "--confirm",
        action="store_true",
        help="Allow destructive actions (drop table, remove column, re-create column)",
    )
    p_apply.add_argument(
        "--transactional",
        action="store_true",
        help="Apply the whole plan in one transaction where the database supports it",
    )
    p_apply.set_defaults(func=cmd_apply)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
