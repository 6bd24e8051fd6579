"""CLI for data-migrator.

Usage:
    data-migrator run --plan export.json --source prod --target csvfile
    data-migrator plan --plan export.json --source prod --target warehouse
    data-migrator validate-csv --plan export.json --target warehouse
    data-migrator profiles

Commands:
    run           Run the migration described by a plan
    plan          Show execution, query and delete order without migrating
    validate-csv  Validate and repair source CSV files, then stop
    profiles      List endpoint profiles from migrate.toml
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from data_migrator.config.loader import DEFAULT_CONFIG_FILENAME, load_migration_config
from data_migrator.config.models import MigrationConfig
from data_migrator.constants import CSV_FILE_SOURCE
from data_migrator.engine.prompts import ConsolePrompt, StaticPrompt
from data_migrator.engine.runner import MigrationResult, inspect_plan, run_migration
from data_migrator.errors import MigrationError

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def configure_logging(verbose: bool = False) -> None:
    """Send log records to the console through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config(args: argparse.Namespace) -> MigrationConfig:
    """Load migrate.toml; a missing default file means csvfile-only runs.

    Raises:
        FileNotFoundError: If an explicit ``--config`` path does not exist.
        ValueError: If the file is invalid.
    """
    if args.config:
        return load_migration_config(Path(args.config))
    try:
        return load_migration_config()
    except FileNotFoundError:
        return MigrationConfig()


def _print_result(result: MigrationResult) -> int:
    table = Table(title="Records", show_header=True, header_style="bold")
    table.add_column("Object", style="dim")
    table.add_column("Source", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Processed", justify="right", style="green")

    for name in result.execution_order:
        source, target = result.retrieved.get(name, (0, 0))
        processed = result.processed.get(name, 0)
        table.add_row(
            name,
            str(source) if source else "-",
            str(target) if target else "-",
            str(processed) if processed else "-",
        )

    if result.execution_order:
        console.print(table)

    for name, count in result.reports.items():
        if count:
            console.print(f"[yellow]{name}:[/yellow] {count} rows")

    console.print()
    if result.validated_only:
        console.print("[bold green]v[/bold green] Source CSV files validated.")
        return 0
    if result.success:
        console.print("[bold green]v[/bold green] Migration complete.")
        return 0
    if result.aborted:
        console.print(f"[bold yellow]![/bold yellow] {result.error}")
        return 2

    where = " / ".join(part for part in (result.phase, result.object_name) if part)
    console.print(
        f"[bold red]x[/bold red] {result.error}" + (f" [dim]({where})[/dim]" if where else "")
    )
    return 1


# ============================================================================
# Async implementations
# ============================================================================


async def _async_run(args: argparse.Namespace) -> int:
    """Async implementation of ``run``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure, 2 when the user aborted.
    """
    try:
        config = _load_config(args)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    prompt = StaticPrompt(True) if args.yes else ConsolePrompt()
    console.print(
        f"Migrating [cyan]{args.source}[/cyan] -> [cyan]{args.target}[/cyan]...",
        style="dim",
    )
    result = await run_migration(
        Path(args.plan),
        args.source,
        args.target,
        config=config,
        prompt=prompt,
        mock_seed=args.seed,
    )
    return _print_result(result)


async def _async_validate_csv(args: argparse.Namespace) -> int:
    """Async implementation of ``validate-csv``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 when validation finished, 1 on failure, 2 when aborted.
    """
    try:
        config = _load_config(args)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    console.print("Validating source CSV files...", style="dim")
    result = await run_migration(
        Path(args.plan),
        CSV_FILE_SOURCE,
        args.target,
        config=config,
        prompt=StaticPrompt(True),
        validate_only=True,
    )
    return _print_result(result)


async def _async_plan(args: argparse.Namespace) -> int:
    """Async implementation of ``plan``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = _load_config(args)
        summary = await inspect_plan(Path(args.plan), args.source, args.target, config)
    except (FileNotFoundError, ValueError, MigrationError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    table = Table(title="Execution Order", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Object")
    table.add_column("Operation")
    table.add_column("Parents", style="dim")

    for i, name in enumerate(summary.execution_order, start=1):
        table.add_row(
            str(i),
            name,
            summary.operations.get(name, ""),
            ", ".join(summary.parents.get(name, [])) or "-",
        )

    console.print(table)
    console.print(f"[dim]Query order:[/dim] {', '.join(summary.query_order)}")
    console.print(f"[dim]Delete order:[/dim] {', '.join(summary.delete_order)}")
    return 0


# ============================================================================
# Sync command wrappers (cmd_profiles reads local files only)
# ============================================================================


def cmd_run(args: argparse.Namespace) -> int:
    """Run a migration.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_run(args))


def cmd_validate_csv(args: argparse.Namespace) -> int:
    """Validate source CSV files.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_validate_csv(args))


def cmd_plan(args: argparse.Namespace) -> int:
    """Show the computed orders of a plan.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_plan(args))


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from migrate.toml.

    Reads only local TOML config -- no network or database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if migrate.toml is missing or invalid.
    """
    try:
        config = load_migration_config(Path(args.config) if args.config else None)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    table = Table(title="Endpoint Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Kind")
    table.add_column("Location", style="dim")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        location = {
            "live": profile.instance_url,
            "database": (profile.url or "").split("@")[-1],
            "file": profile.directory,
        }[profile.kind]
        table.add_row(name, profile.kind, location or "", profile.description or "")

    console.print(table)
    console.print(
        f"\n[dim]{CSV_FILE_SOURCE} is always available: the CSV files next to the plan.[/dim]"
    )
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="data-migrator",
        description="Relationship-preserving record migration",
    )

    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to the profiles file (default: ./{DEFAULT_CONFIG_FILENAME})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log engine progress",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    p_run = subparsers.add_parser(
        "run",
        help="Run the migration described by a plan",
    )
    p_run.add_argument("--plan", required=True, help="Path to the plan (export.json)")
    p_run.add_argument(
        "--source",
        "-s",
        required=True,
        help=f"Source profile, or {CSV_FILE_SOURCE}",
    )
    p_run.add_argument(
        "--target",
        "-t",
        required=True,
        help=f"Target profile, or {CSV_FILE_SOURCE}",
    )
    p_run.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Answer yes to every confirmation prompt",
    )
    p_run.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for mock data generation",
    )
    p_run.set_defaults(func=cmd_run)

    # plan command
    p_plan = subparsers.add_parser(
        "plan",
        help="Show execution, query and delete order",
    )
    p_plan.add_argument("--plan", required=True, help="Path to the plan (export.json)")
    p_plan.add_argument("--source", "-s", required=True, help="Source profile")
    p_plan.add_argument("--target", "-t", required=True, help="Target profile")
    p_plan.set_defaults(func=cmd_plan)

    # validate-csv command
    p_validate = subparsers.add_parser(
        "validate-csv",
        help="Validate and repair source CSV files, then stop",
    )
    p_validate.add_argument("--plan", required=True, help="Path to the plan (export.json)")
    p_validate.add_argument(
        "--target",
        "-t",
        required=True,
        help="Target profile used to describe the objects",
    )
    p_validate.set_defaults(func=cmd_validate_csv)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List endpoint profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
