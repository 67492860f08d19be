"""CLI config subcommands for managing ch-restore configuration."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.syntax import Syntax

from ch_restore.core.models import LogFormat, LoggingConfig

config_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
console = Console()


@config_app.command("init")
def config_init(
        path: Path | None = typer.Option(
            None, "--path", help="Custom config file location."
        ),
) -> None:
    """Create or update the configuration file interactively.

    If no --path is given, writes to the default location:
      macOS:  ~/Library/Application Support/ch-restore/config.toml
      Linux:  ~/.config/ch-restore/config.toml
    """
    from ch_restore.core.config import CONFIG_FILE, parse_mapping, save_config_file
    from ch_restore.core.exceptions import ConfigError
    from ch_restore.core.models import AppConfig, ClickHouseConfig, GeneralConfig

    target = path or CONFIG_FILE

    if target.exists():
        overwrite = typer.confirm(f"Config already exists at {target}. Overwrite?")
        if not overwrite:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit()

    console.print("[bold]ch-restore configuration wizard[/bold]\n")

    # ── ClickHouse ──
    console.print("[bold blue]ClickHouse Connection[/bold blue]")
    ch_kwargs: dict = {
        "host": typer.prompt("Host", default="localhost"),
        "port": typer.prompt("HTTP port", default=8123, type=int),
        "username": typer.prompt("Username", default="default"),
    }
    pw = typer.prompt("Password (leave empty to skip)", default="", hide_input=True)
    if pw:
        ch_kwargs["password"] = pw
    ch_kwargs["secure"] = typer.confirm("Use HTTPS?", default=False)
    ch_kwargs["restart_command"] = typer.prompt(
        "Restart command", default="systemctl restart clickhouse-server"
    )
    embedded_disk = typer.prompt("Embedded backup disk (leave empty to skip)", default="")
    if embedded_disk:
        ch_kwargs["embedded_backup_disk"] = embedded_disk
        ch_kwargs["use_embedded_backup_restore"] = typer.confirm(
            "Use native RESTORE for embedded backups?", default=True
        )

    # ── General ──
    console.print("\n[bold blue]Restore Defaults[/bold blue]")
    cluster = typer.prompt("Cluster for ON CLUSTER DDL (leave empty to skip)", default="")
    mapping = typer.prompt("Database mapping src:dst,... (leave empty to skip)", default="")
    try:
        general = GeneralConfig(
            restore_schema_on_cluster=cluster,
            restore_database_mapping=parse_mapping(mapping) if mapping else {},
        )
        clickhouse = ClickHouseConfig(**ch_kwargs)
    except (ConfigError, ValueError) as exc:
        console.print(f"[red]Invalid value: {exc}[/red]")
        raise typer.Exit(code=1)

    # ── Logging ──
    logging_config = LoggingConfig(level="INFO", format=LogFormat.CONSOLE)

    # ── Save ──
    config = AppConfig(clickhouse=clickhouse, general=general, logging=logging_config)

    saved_path = save_config_file(config, target)
    console.print(f"\n[green]✓[/green] Config saved to: {saved_path}")
    console.print("  File permissions set to 600 (owner-only read/write).")


@config_app.command("show")
def config_show(
        path: Path | None = typer.Option(
            None, "--path", help="Custom config file location."
        ),
) -> None:
    """Display the current configuration."""
    from ch_restore.core.config import CONFIG_FILE

    target = path or CONFIG_FILE

    if not target.exists():
        console.print(
            f"[yellow]No config file found at {target}.[/yellow]\n"
            f"Run [bold]ch-restore config init[/bold] to create one."
        )
        raise typer.Exit()

    content = target.read_text()
    syntax = Syntax(content, "toml", theme="monokai", line_numbers=True)
    console.print(f"[bold]Config: {target}[/bold]\n")
    console.print(syntax)


@config_app.command("path")
def config_path() -> None:
    """Show config and data directory paths."""
    from ch_restore.core.config import CONFIG_DIR, CONFIG_FILE, DATA_DIR, LOG_DIR

    console.print("[bold]ch-restore paths:[/bold]")
    console.print(f"  Config dir:    {CONFIG_DIR}")
    console.print(f"  Config file:   {CONFIG_FILE}")
    console.print(f"  Data dir:      {DATA_DIR}")
    console.print(f"  Logs dir:      {LOG_DIR}")
