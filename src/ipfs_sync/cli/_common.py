"""Shared utilities for the CLI command modules."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

from .. import SYNC_HOME
from ..config import ConfigError, default_config_path, load_config
from ..models import SyncConfig

console = Console()


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[bold red]Error:[/] {escape(message)}")
    sys.exit(1)


def load_settings(config_file: Optional[str], home: str) -> SyncConfig:
    """Load ``config_file`` (sample written if missing) or the home config.

    Exits with status 1 on an unreadable config.
    """
    try:
        if config_file:
            return load_config(Path(config_file), create=True)
        return load_config(default_config_path(Path(home)))
    except ConfigError as exc:
        fail(str(exc))
