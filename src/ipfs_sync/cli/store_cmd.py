"""Fingerprint store commands: show, forget."""

from __future__ import annotations

from pathlib import Path

import click
from rich.panel import Panel

from ._common import SYNC_HOME, console, fail, load_settings


def _open_store(home, config_file, db):
    from ..store import FingerprintStore, StoreError

    db_path = db or load_settings(config_file, home).db
    if not db_path:
        fail("No fingerprint DB configured (set DB in the config or pass --db).")
    if not Path(db_path).expanduser().exists():
        fail(f"Fingerprint DB not found: {db_path}")
    try:
        return FingerprintStore(db_path)
    except StoreError as exc:
        fail(str(exc))


def register_store_commands(main: click.Group) -> None:
    """Register the store command group."""

    @main.group()
    def store():
        """Inspect the fingerprint database."""

    db_option = click.option("--db", default=None, help="Fingerprint DB (default: DB from config).")
    home_option = click.option("--home", default=SYNC_HOME, type=click.Path())
    config_option = click.option("--config", "config_file", default=None, type=click.Path())

    @store.command("show")
    @click.argument("path", type=click.Path())
    @home_option
    @config_option
    @db_option
    def store_show(path, home, config_file, db):
        """Show the stored fingerprint for PATH."""
        full = str(Path(path).expanduser().absolute())
        with _open_store(home, config_file, db) as fp_store:
            record = fp_store.get(full)
            total = fp_store.count()

        if record is None:
            console.print(f"\n  [yellow]No fingerprint stored for[/] {full}\n")
            return
        kind = "content (xxh64)" if record.content is not None else "size + mtime"
        console.print()
        console.print(
            Panel(
                f"Path: [bold]{record.path}[/]\n"
                f"Strategy: {kind}\n"
                f"Fingerprint: [cyan]{record.fingerprint.hex()}[/]\n"
                f"Outcome: {record.outcome.value}\n"
                f"[dim]{total} record(s) in store[/]",
                title="Fingerprint",
                border_style="cyan",
            )
        )

    @store.command("forget")
    @click.argument("path", type=click.Path())
    @home_option
    @config_option
    @db_option
    def store_forget(path, home, config_file, db):
        """Drop the fingerprints for PATH and everything beneath it.

        Forgotten files are re-uploaded by the next startup scan.
        """
        full = str(Path(path).expanduser().absolute())
        with _open_store(home, config_file, db) as fp_store:
            removed = fp_store.delete_prefix(full)
        console.print(f"\n  [green]Forgot {removed} fingerprint(s)[/] under {full}\n")
