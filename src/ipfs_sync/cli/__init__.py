"""
ipfs-sync CLI.

The main Click group is defined here; each command group lives in its
own module and is attached through a register function.

Entry point: ipfs_sync.cli:main
"""

from __future__ import annotations

import click

from .. import COPYRIGHT, __version__


def _print_copyright(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(COPYRIGHT)
    ctx.exit()


@click.group()
@click.version_option(version=__version__, prog_name="ipfs-sync")
@click.option(
    "--copyright",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_print_copyright,
    help="Display copyright and exit.",
)
def main():
    """ipfs-sync -- mirror local directories into IPFS.

    Each directory is copied into MFS, published under its own IPNS
    key, and kept up to date as files change.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .run import register_run_commands
from .config_cmd import register_config_commands
from .store_cmd import register_store_commands

register_run_commands(main)
register_config_commands(main)
register_store_commands(main)
