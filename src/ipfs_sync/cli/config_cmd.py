"""Config commands: init, show."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml

from ._common import SYNC_HOME, console, load_settings


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Create or inspect the config file."""

    @config.command("init")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--path", "config_file", default=None, type=click.Path(), help="Where to write (default: <home>/config.yaml).")
    @click.option("--force", is_flag=True, help="Overwrite an existing file.")
    def config_init(home, config_file, force):
        """Write a commented sample config."""
        from ..config import default_config_path, write_sample_config

        path = Path(config_file) if config_file else default_config_path(Path(home))
        path = path.expanduser()
        if path.exists() and not force:
            console.print(f"[yellow]Config already exists:[/] {path} (use --force to overwrite)")
            sys.exit(1)
        write_sample_config(path)
        console.print(f"\n  [green]Wrote sample config:[/] {path}\n")

    @config.command("show")
    @click.option("--home", default=SYNC_HOME, type=click.Path())
    @click.option("--config", "config_file", default=None, type=click.Path(), help="Path to config file.")
    def config_show(home, config_file):
        """Print the effective configuration as YAML."""
        settings = load_settings(config_file, home)
        data = settings.model_dump(
            mode="json", by_alias=True, exclude={"dirs": {"__all__": {"cid", "mount"}}}
        )
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)
