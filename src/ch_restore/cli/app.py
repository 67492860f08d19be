"""Main Typer application entry point for ch-restore CLI."""

from __future__ import annotations

from pathlib import Path

import typer

from ch_restore import __version__
from ch_restore.cli.backup import backups_app
from ch_restore.cli.config_cmd import config_app
from ch_restore.cli.restore import restore_app
from ch_restore.core.config import ensure_dirs
from ch_restore.logging import setup_logging

app = typer.Typer(
    name="ch-restore",
    help="Restore ClickHouse backups: schema, data, RBAC and configs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=True,
)

# Register sub-command groups
app.add_typer(restore_app, name="restore", help="Restore operations")
app.add_typer(backups_app, name="backups", help="Inspect local backups")
app.add_typer(config_app, name="config", help="Configuration management")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ch-restore {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
        ctx: typer.Context,
        version: bool = typer.Option(
            False,
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
        verbose: bool = typer.Option(
            False,
            "--verbose",
            "-v",
            help="Enable verbose (DEBUG) logging.",
        ),
        log_json: bool = typer.Option(
            False,
            "--log-json",
            help="Output logs in JSON format.",
        ),
        config: Path | None = typer.Option(
            None,
            "--config",
            "-c",
            help="Path to the config file.",
            envvar="CH_RESTORE_CONFIG",
        ),
) -> None:
    """ch-restore: ClickHouse Restore Utility."""
    from ch_restore.core.models import LogFormat

    ensure_dirs()
    level = "DEBUG" if verbose else "INFO"
    fmt = LogFormat.JSON if log_json else LogFormat.CONSOLE
    setup_logging(level=level, log_format=fmt)
    ctx.obj = {"config_path": config}


# ──────────────────── test-connection command ────────────


@app.command("test-connection")
def test_connection(
        ctx: typer.Context,
        host: str | None = typer.Option(None, "--host", "-H", help="ClickHouse host."),
        port: int | None = typer.Option(None, "--port", "-P", help="ClickHouse HTTP port."),
        username: str | None = typer.Option(None, "--username", "-u", help="ClickHouse user."),
        password: str | None = typer.Option(
            None, "--password", "-p", help="ClickHouse password.", prompt=False, hide_input=True
        ),
        secure: bool | None = typer.Option(None, "--secure/--insecure", help="Use HTTPS."),
) -> None:
    """Test ClickHouse connectivity and show the server disks."""
    from ch_restore.core.config import load_config
    from ch_restore.core.models import ClickHouseConfig
    from ch_restore.engines import get_client

    try:
        app_config = load_config((ctx.obj or {}).get("config_path"))
        overrides = {
            key: value
            for key, value in {
                "host": host,
                "port": port,
                "username": username,
                "password": password,
                "secure": secure,
            }.items()
            if value is not None
        }
        ch_config = ClickHouseConfig.model_validate(
            {**app_config.clickhouse.model_dump(), **overrides}
        )
        client = get_client(ch_config)
        with client:
            version = client.get_version()
            disks = client.get_disks()
    except Exception as exc:
        typer.echo(
            typer.style(f"✗ Connection failed: {exc}", fg=typer.colors.RED, bold=True),
            err=True,
        )
        raise typer.Exit(code=1)

    typer.echo(
        typer.style("✓ Connection successful!", fg=typer.colors.GREEN, bold=True)
    )
    typer.echo(f"  Server:   {ch_config.url}")
    typer.echo(f"  Version:  {version}")
    typer.echo(f"  Disks:    {', '.join(f'{d.name} ({d.path})' for d in disks) or '(none)'}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
