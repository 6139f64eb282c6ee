"""
Command-line interface for dbmerge.
"""

import asyncio
import sys
from functools import wraps
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import PRESET_TABLES, DatabaseConnection, ExportConfig, MergeConfig
from .exceptions import ConfigurationError, DbMergeError
from .logging_setup import configure_logging
from .naming import NamingMode, normalize


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DbMergeError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


NAMING_MODES = [mode.value for mode in NamingMode]


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """dbmerge: merge a source and a target PostgreSQL database into one SQL file."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    help="Output SQL file (overrides config)",
)
@click.option(
    "--exclude",
    "-e",
    multiple=True,
    help="Table whose data comes from target (repeatable, overrides config)",
)
@click.option(
    "--preset",
    "-p",
    type=click.Choice(sorted(PRESET_TABLES)),
    help="Preset table group (overrides config)",
)
@click.option(
    "--naming-mode",
    type=click.Choice(NAMING_MODES),
    help="Table name conversion (overrides config)",
)
@click.pass_context
@handle_errors
def export(
    ctx,
    config: str,
    output: Optional[str],
    exclude: Tuple[str, ...],
    preset: Optional[str],
    naming_mode: Optional[str],
):
    """Export source structure and data, merging excluded tables from target."""
    merge_config = MergeConfig.from_yaml(config)
    merge_config.export = _apply_overrides(
        merge_config.export, output, list(exclude), preset, naming_mode
    )

    configure_logging(merge_config.logging, debug=ctx.obj.get("debug", False))
    for warning in merge_config.validate_config():
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    # Import here to keep the lightweight commands free of asyncpg
    from .pipeline import MergeExportPipeline

    console.print("[blue]Starting merge export...[/blue]")
    console.print(f"Source: {merge_config.source.endpoint}")
    console.print(f"Target: {merge_config.target.endpoint}")

    pipeline = MergeExportPipeline(merge_config)
    report = asyncio.run(pipeline.run())

    _display_report(report)
    console.print(f"[green]✓[/green] Export complete: {report.output_file}")


def _apply_overrides(
    export_config: ExportConfig,
    output: Optional[str],
    exclude: List[str],
    preset: Optional[str],
    naming_mode: Optional[str],
) -> ExportConfig:
    """Apply command-line overrides to the export section."""
    updates = {}
    if output:
        updates["output_file"] = output
    if exclude:
        updates["exclude_tables"] = exclude
    if preset:
        updates["preset"] = preset
    if naming_mode:
        updates["naming_mode"] = NamingMode(naming_mode)
        updates["db_underscored"] = None
    if not updates:
        return export_config
    return export_config.model_copy(update=updates)


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="dbmerge-config.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new dbmerge configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config()
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the source and target connection details")
    console.print("2. List the tables whose data should come from target")
    console.print(f"3. Run: dbmerge validate-config -c {output}")
    console.print(f"4. Run: dbmerge export -c {output}")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        merge_config = MergeConfig.from_yaml(config)
        warnings = merge_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")
        for warning in warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")

        _display_config_summary(merge_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)


@main.command()
@handle_errors
def presets():
    """List preset table groups."""
    table = Table(title="Presets")
    table.add_column("Name", style="cyan")
    table.add_column("Tables", style="green")

    for name, tables in sorted(PRESET_TABLES.items()):
        table.add_row(name, "\n".join(tables))

    console.print(table)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--no-junctions",
    is_flag=True,
    help="Do not list junction tables",
)
@click.pass_context
@handle_errors
def tables(ctx, config: str, no_junctions: bool):
    """List business tables registered in the source database."""
    merge_config = MergeConfig.from_yaml(config)
    configure_logging(merge_config.logging, debug=ctx.obj.get("debug", False))

    business, junctions = asyncio.run(_list_business_tables(merge_config, not no_junctions))

    table = Table(title=f"Business tables in {merge_config.source.endpoint}")
    table.add_column("Table", style="cyan")
    table.add_column("Kind", style="magenta")

    for name in business:
        table.add_row(name, "collection")
    for name in junctions:
        table.add_row(name, "junction")

    console.print(table)
    if not business:
        console.print(
            f"[yellow]No collections found in "
            f"'{merge_config.export.collections_table}'[/yellow]"
        )


async def _list_business_tables(
    config: MergeConfig, with_junctions: bool
) -> Tuple[List[str], List[str]]:
    """Collections that physically exist in source, and their junction tables."""
    from .database.connection import DatabaseManager
    from .database.introspection import SchemaIntrospector
    from .schema.junctions import JunctionDiscoverer

    export_config = config.export
    mode = export_config.naming_mode

    async with DatabaseManager() as manager:
        pool = await manager.open("source", config.source)
        introspector = SchemaIntrospector(pool, config.source.schema_name)

        collections = await introspector.list_collections(export_config.collections_table)
        physical = set(await introspector.list_tables())

        registered = []
        business = []
        for name in collections:
            table_name = normalize(name, mode)
            if table_name in physical and table_name not in business:
                registered.append(name)
                business.append(table_name)

        junctions: List[str] = []
        if with_junctions and registered:
            discoverer = JunctionDiscoverer(
                pool,
                mode=mode,
                metadata_table=export_config.metadata_table,
                interface=export_config.m2m_interface,
                schema=config.source.schema_name,
            )
            found = await discoverer.discover(registered, max_depth=export_config.junction_depth)
            junctions = [name for name in found if name in physical and name not in business]

    return business, junctions


@main.command(name="normalize")
@click.argument("names", nargs=-1, required=True)
@click.option(
    "--mode",
    "-m",
    type=click.Choice(NAMING_MODES),
    default=NamingMode.TO_SEPARATED.value,
    show_default=True,
    help="Conversion to apply",
)
def normalize_names(names: Tuple[str, ...], mode: str):
    """Print table names converted with the given naming mode."""
    naming_mode = NamingMode(mode)
    for name in names:
        click.echo(normalize(name, naming_mode))


def _create_default_config() -> MergeConfig:
    """Create a default configuration with examples."""
    return MergeConfig(
        source=DatabaseConnection(
            host="127.0.0.1",
            port=5432,
            database="app_source",
            user="postgres",
            password="${SOURCE_DB_PASSWORD}",
        ),
        target=DatabaseConnection(
            host="127.0.0.1",
            port=5432,
            database="app_target",
            user="postgres",
            password="${TARGET_DB_PASSWORD}",
        ),
        export=ExportConfig(
            exclude_tables=["users", "roles"],
            output_file="./merged_export.sql",
        ),
    )


def _display_config_summary(config: MergeConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    db_table = Table(title="Databases")
    db_table.add_column("Role", style="cyan")
    db_table.add_column("Host", style="magenta")
    db_table.add_column("Database", style="green")
    db_table.add_column("User", style="yellow")
    db_table.add_column("Schema", style="blue")

    for role, db in (("source", config.source), ("target", config.target)):
        db_table.add_row(role, f"{db.host}:{db.port}", db.database, db.user, db.schema_name)

    console.print(db_table)

    export_config = config.export
    export_table = Table(title="Export")
    export_table.add_column("Setting", style="cyan")
    export_table.add_column("Value", style="green")

    export_table.add_row("Preset", export_config.preset or "-")
    export_table.add_row(
        "Tables from target", ", ".join(config.resolved_exclusions()) or "None"
    )
    export_table.add_row("Naming mode", export_config.naming_mode.value)
    export_table.add_row("Junction discovery", "on" if export_config.discover_junctions else "off")
    export_table.add_row("Batch size", str(export_config.batch_size))
    export_table.add_row("Output file", export_config.output_file)

    console.print(export_table)


def _display_report(report):
    """Display the outcome of a merge export."""
    from .export.artifact import format_size

    summary = Table(title="Merge Export Summary")
    summary.add_column("Item", style="cyan")
    summary.add_column("Value", style="green")

    summary.add_row("State", report.state.value)
    summary.add_row("Output file", str(report.output_file))
    summary.add_row("File size", format_size(report.artifact_size))
    summary.add_row("Tables from target", ", ".join(report.exclusions) or "None")
    summary.add_row("Junction tables found", ", ".join(report.discovered) or "None")
    summary.add_row("Duplicates removed", str(report.duplicates_removed))
    summary.add_row("Dropped (missing on one side)", ", ".join(report.table_set.dropped) or "None")
    if report.duration is not None:
        summary.add_row("Duration", f"{report.duration:.1f}s")

    console.print(summary)

    if not report.outcomes:
        return

    outcomes = Table(title="Tables merged from target")
    outcomes.add_column("Table", style="cyan")
    outcomes.add_column("Status", style="magenta")
    outcomes.add_column("Rows", style="yellow", justify="right")
    outcomes.add_column("Columns", style="green")

    styles = {"emitted": "green", "skipped": "yellow", "failed": "red"}
    for outcome in report.outcomes:
        status = outcome.status.value
        if outcome.reconciliation is not None:
            columns = outcome.reconciliation.summary()
        else:
            columns = outcome.error or "-"
        outcomes.add_row(
            outcome.table,
            f"[{styles[status]}]{status}[/{styles[status]}]",
            str(outcome.rows),
            columns,
        )

    console.print(outcomes)


if __name__ == "__main__":
    main()
