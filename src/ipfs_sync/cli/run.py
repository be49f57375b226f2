"""Daemon commands: run, stop, status."""

from __future__ import annotations

import json
import os
import signal
from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from ._common import SYNC_HOME, console, fail, load_settings


def register_run_commands(main: click.Group) -> None:
    """Register run, stop and status."""

    @main.command("run")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="State directory.")
    @click.option("--config", "config_file", default=None, type=click.Path(), help="Path to config file to use.")
    @click.option("--basepath", default=None, help="Relative MFS directory path.")
    @click.option("--endpoint", default=None, help="Node to connect to over HTTP.")
    @click.option("--dirs", default=None, help='Dirs to monitor as JSON: [{"ID":"Example1", "Dir":"/home/user/Documents/"}]')
    @click.option("--sync", default=None, help="Time to sleep between IPNS syncs (ex: 120s).")
    @click.option("--timeout", default=None, help="Longest time to wait for bounded API calls (ex: 60s).")
    @click.option("--ignore", default=None, help='Suffixes to ignore as JSON: ["swp", "part"]')
    @click.option("--db", default=None, help="Path to file where the fingerprint DB should be stored.")
    @click.option("--ignorehidden", "ignore_hidden", is_flag=True, default=False, help='Ignore anything prefixed with ".".')
    @click.option("--pin-service", default=None, help="Remote pinning service for RemotePin dirs.")
    @click.option("-v", "--verbose", is_flag=True, help="Display verbose output.")
    def run(home, config_file, basepath, endpoint, dirs, sync, timeout, ignore, db, ignore_hidden, pin_service, verbose):
        """Run the sync daemon in the foreground (Ctrl+C to stop)."""
        from ..config import ConfigError, apply_overrides, validate
        from ..daemon import SyncDaemon, is_running
        from ..reconcile import StartupError
        from ..store import StoreError

        home_path = Path(home).expanduser()
        if is_running(home_path):
            console.print("[yellow]ipfs-sync is already running.[/]")
            return

        config = load_settings(config_file, home)
        try:
            config = apply_overrides(
                config,
                {
                    "base_path": basepath,
                    "endpoint": endpoint,
                    "dirs": dirs,
                    "sync": sync,
                    "timeout": timeout,
                    "ignore": ignore,
                    "db": db,
                    "ignore_hidden": ignore_hidden or None,
                    "pin_service": pin_service,
                },
            )
            validate(config)
        except ConfigError as exc:
            fail(str(exc))

        daemon = SyncDaemon(config, home=home_path)
        console.print(f"\n  [green]Starting ipfs-sync[/] against [cyan]{config.endpoint}[/]")
        console.print(f"  Dirs: {', '.join(dk.id for dk in config.dirs)} | Sync: {config.sync:g}s")
        console.print(f"  Log: {daemon.log_file}")
        console.print(f"  PID: {os.getpid()}\n")
        try:
            daemon.run_forever(verbose=verbose)
        except (StartupError, StoreError) as exc:
            fail(str(exc))

    @main.command("stop")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    def stop(home):
        """Stop the running daemon."""
        from ..daemon import PID_FILE, read_pid

        home_path = Path(home).expanduser()
        pid = read_pid(home_path)
        if pid is None:
            console.print("[yellow]ipfs-sync is not running.[/]")
            return

        try:
            os.kill(pid, signal.SIGTERM)
            console.print(f"\n  [green]Sent SIGTERM to ipfs-sync (PID {pid})[/]\n")
        except ProcessLookupError:
            console.print("[yellow]Process not found -- cleaning up PID file.[/]")
            (home_path / PID_FILE).unlink(missing_ok=True)

    @main.command("status")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def status(home, json_out):
        """Show daemon status and the last published CIDs."""
        from ..daemon import is_running, load_state

        home_path = Path(home).expanduser()
        running = is_running(home_path)
        state = load_state(home_path)

        if json_out:
            data = {"running": running}
            if state is not None:
                data.update(state.model_dump(mode="json"))
            click.echo(json.dumps(data, indent=2))
            return

        if state is None:
            label = "running" if running else "not running"
            console.print(f"\n  [yellow]ipfs-sync is {label}; no state recorded yet.[/]\n")
            return

        color = "green" if running else "yellow"
        console.print()
        console.print(
            Panel(
                f"PID: [bold]{state.pid if running else '-'}[/]\n"
                f"Started: {state.started_at or '[dim]unknown[/]'}\n"
                f"Last poll: {state.last_poll or '[dim]never[/]'}\n"
                f"Publishes: [bold]{state.publish_count}[/]",
                title=f"[{color}]ipfs-sync {'Running' if running else 'Stopped'}[/]",
                border_style=color,
            )
        )

        if state.directories:
            table = Table(show_header=True, header_style="bold")
            table.add_column("ID", style="cyan")
            table.add_column("Dir")
            table.add_column("CID", style="dim")
            table.add_column("Watcher")
            for d in state.directories:
                table.add_row(d.id, d.dir, d.cid or "-", d.watcher.value)
            console.print(table)

        if state.errors:
            console.print("[bold]Recent errors:[/]")
            for err in state.errors:
                console.print(f"  [red]{err}[/]")
        console.print()
