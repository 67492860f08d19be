"""CLI restore subcommands."""

from __future__ import annotations

import typer
from rich.console import Console

from ch_restore.core.models import RestoreRequest

restore_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
console = Console()

_TABLE_HELP = "Glob pattern of tables to restore, e.g. 'db1.*,db2.t?'."
_MAPPING_HELP = "Rename databases on restore: 'src:dst[,src2:dst2]'. Repeatable."
_PARTITIONS_HELP = "Partition ids '202301,202302' or key tuples \"('2023-01-15'),('2023-02-15')\". Repeatable."


def _execute(ctx: typer.Context, request: RestoreRequest, mode: str) -> None:
    from ch_restore.core.config import load_config
    from ch_restore.engines import get_client
    from ch_restore.logging import get_logger
    from ch_restore.restore import Restorer

    log = get_logger("restore")

    try:
        app_config = load_config((ctx.obj or {}).get("config_path"))
        restorer = Restorer(get_client(app_config.clickhouse), app_config)

        with console.status(f"[bold blue]Restoring {mode} of '{request.backup_name}'..."):
            restorer.restore(request)

    except Exception as exc:
        console.print(f"\n[bold red]✗ Restore failed: {exc}[/bold red]")
        available = getattr(exc, "available", None)
        if available:
            console.print("Local backups:")
            for name in available:
                console.print(f"  [cyan]{name}[/cyan]")
        log.error("restore_failed", error=str(exc), mode=mode)
        raise typer.Exit(code=1)

    console.print("[bold green]✓ Restore completed successfully![/bold green]")


@restore_app.command("run")
def restore_run(
        ctx: typer.Context,
        backup_name: str = typer.Argument("", help="Name of the local backup."),
        table_pattern: str = typer.Option("", "--table", "--tables", "-t", help=_TABLE_HELP),
        database_mapping: list[str] = typer.Option(
            [], "--restore-database-mapping", "-m", help=_MAPPING_HELP
        ),
        partitions: list[str] = typer.Option([], "--partitions", help=_PARTITIONS_HELP),
        schema_only: bool = typer.Option(False, "--schema", "-s", help="Restore schema only."),
        data_only: bool = typer.Option(False, "--data", "-d", help="Restore data only."),
        drop_table: bool = typer.Option(
            False, "--rm", "--drop", help="Drop existing schema objects before restore."
        ),
        ignore_dependencies: bool = typer.Option(
            False, "--ignore-dependencies", "-i",
            help="Ignore dependencies when dropping existing objects.",
        ),
        rbac_only: bool = typer.Option(False, "--rbac", help="Restore RBAC objects and restart."),
        configs_only: bool = typer.Option(
            False, "--configs", help="Restore server configs and restart."
        ),
) -> None:
    """Restore schema and data of a local backup.

    Examples:
        ch-restore restore run 2023-01-01
        ch-restore restore run 2023-01-01 -t 'db1.*' -m db1:db2
        ch-restore restore run 2023-01-01 --data --partitions 202301,202302
    """
    request = RestoreRequest(
        backup_name=backup_name,
        table_pattern=table_pattern,
        database_mapping=database_mapping,
        partitions=partitions,
        schema_only=schema_only,
        data_only=data_only,
        drop_table=drop_table,
        ignore_dependencies=ignore_dependencies,
        rbac_only=rbac_only,
        configs_only=configs_only,
    )
    _execute(ctx, request, "all")


@restore_app.command("schema")
def restore_schema(
        ctx: typer.Context,
        backup_name: str = typer.Argument(..., help="Name of the local backup."),
        table_pattern: str = typer.Option("", "--table", "--tables", "-t", help=_TABLE_HELP),
        database_mapping: list[str] = typer.Option(
            [], "--restore-database-mapping", "-m", help=_MAPPING_HELP
        ),
        drop_table: bool = typer.Option(
            False, "--rm", "--drop", help="Drop existing schema objects before restore."
        ),
        ignore_dependencies: bool = typer.Option(
            False, "--ignore-dependencies", "-i",
            help="Ignore dependencies when dropping existing objects.",
        ),
) -> None:
    """Recreate tables, views and dictionaries of a local backup."""
    request = RestoreRequest(
        backup_name=backup_name,
        table_pattern=table_pattern,
        database_mapping=database_mapping,
        schema_only=True,
        drop_table=drop_table,
        ignore_dependencies=ignore_dependencies,
    )
    _execute(ctx, request, "schema")


@restore_app.command("data")
def restore_data(
        ctx: typer.Context,
        backup_name: str = typer.Argument(..., help="Name of the local backup."),
        table_pattern: str = typer.Option("", "--table", "--tables", "-t", help=_TABLE_HELP),
        database_mapping: list[str] = typer.Option(
            [], "--restore-database-mapping", "-m", help=_MAPPING_HELP
        ),
        partitions: list[str] = typer.Option([], "--partitions", help=_PARTITIONS_HELP),
) -> None:
    """Attach captured parts to existing tables."""
    request = RestoreRequest(
        backup_name=backup_name,
        table_pattern=table_pattern,
        database_mapping=database_mapping,
        partitions=partitions,
        data_only=True,
    )
    _execute(ctx, request, "data")
