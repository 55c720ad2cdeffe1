"""CLI commands for proc-manager."""

import click


def _load_config():
    from proc_manager.config import Config

    try:
        return Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(package_name="proc-manager")
def main() -> None:
    """List and terminate processes over a small HTTP API."""
    from proc_manager import logging as console

    # serve replaces this with the rotating file log
    console.configure_cli()


@main.command()
@click.option("--host", help="Bind address (default from config)")
@click.option("--port", type=int, help="Listen port (default from config)")
def serve(host: str | None, port: int | None) -> None:
    """Run the API server."""
    import asyncio

    from proc_manager.server import run_server

    cfg = _load_config()
    if host is not None:
        cfg.server.host = host
    if port is not None:
        cfg.server.port = port

    try:
        asyncio.run(run_server(cfg))
    except RuntimeError as e:
        raise click.ClickException(str(e)) from e
    except OSError as e:
        raise click.ClickException(f"Cannot listen on {cfg.server.host}:{cfg.server.port}: {e}")


@main.command()
@click.option(
    "--proc-root",
    type=click.Path(file_okay=False),
    help="Process-table root to read instead of /proc",
)
def snapshot(proc_root: str | None) -> None:
    """Collect a snapshot locally and print the payload."""
    from proc_manager.api import get_snapshot
    from proc_manager.collector import SnapshotCollector, SnapshotError

    cfg = _load_config()
    if proc_root is not None:
        cfg.collector.proc_root = proc_root

    try:
        payload = get_snapshot(SnapshotCollector.from_config(cfg))
    except SnapshotError as e:
        raise click.ClickException(f"Failed to read process list: {e}") from e
    click.echo(payload)


@main.command()
@click.argument("pid", type=int)
def kill(pid: int) -> None:
    """Send SIGTERM to PID."""
    from proc_manager.api import InvalidPid, TerminateFailed, terminate

    try:
        terminate(pid)
    except InvalidPid:
        raise click.ClickException(f"Invalid PID: {pid}")
    except TerminateFailed as e:
        raise click.ClickException(f"kill failed: {e.message} (errno {e.errno})")
    click.echo(f"Terminated PID {pid}")


@main.command()
def status() -> None:
    """Report whether an API server is running."""
    from proc_manager.server import running_server_pid

    cfg = _load_config()
    pid = running_server_pid(cfg)
    if pid is None:
        click.echo("Server: stopped")
    else:
        click.echo(f"Server: running (PID {pid})")
    click.echo(f"Listen: {cfg.server.host}:{cfg.server.port}")
    click.echo(f"Log: {cfg.log_path}")


@main.command()
@click.option("--url", help="API base URL (default from config)")
def tui(url: str | None) -> None:
    """Launch interactive dashboard."""
    from proc_manager.tui import run_tui

    cfg = _load_config()
    if url is not None:
        cfg.tui.api_url = url
    run_tui(cfg)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from dataclasses import fields

    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    for section in ("server", "collector", "system", "tui"):
        values = getattr(cfg, section)
        click.echo()
        click.echo(f"[{section}]")
        for f in fields(values):
            click.echo(f"  {f.name} = {getattr(values, f.name)!r}")


@config.command("path")
def config_path() -> None:
    """Print the config file path."""
    from proc_manager.config import Config

    click.echo(Config().config_path)


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from proc_manager import logging as console
    from proc_manager.config import Config

    cfg = Config()
    if not cfg.config_path.exists():
        cfg.save()
        console.config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from proc_manager.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
