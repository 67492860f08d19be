"""CLI subcommands for inspecting local backups."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

backups_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
console = Console()


@backups_app.command("list")
def backups_list(ctx: typer.Context) -> None:
    """List backups available on the ClickHouse host's disks."""
    from ch_restore.core.config import load_config
    from ch_restore.engines import get_client
    from ch_restore.restore import Restorer

    try:
        app_config = load_config((ctx.obj or {}).get("config_path"))
        restorer = Restorer(get_client(app_config.clickhouse), app_config)
        with restorer.client:
            backups = restorer.list_local_backups(restorer.client.get_disks())
    except Exception as exc:
        console.print(f"[bold red]✗ Can't list backups: {exc}[/bold red]")
        raise typer.Exit(code=1)

    if not backups:
        console.print("[yellow]No backups found.[/yellow]")
        return

    table = Table(title="Local Backups", show_lines=True)
    table.add_column("Name", style="cyan")
    table.add_column("Created", style="magenta")
    table.add_column("Tables", justify="right")
    table.add_column("Kind", style="green")

    for b in backups:
        kind = "embedded" if b.embedded else "legacy" if b.legacy else "regular"
        created = b.creation_date.strftime("%Y-%m-%d %H:%M:%S") if b.creation_date else "-"
        table.add_row(b.backup_name, created, str(len(b.tables)), kind)

    console.print(table)
