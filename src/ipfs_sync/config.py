"""
Configuration loading for ipfs-sync.

Config lives in a YAML file (``~/.ipfs-sync/config.yaml`` by default)
using the CamelCase keys of the original ipfs-sync config. Command-line
flags override whatever the file says.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from . import SYNC_HOME
from .models import SyncConfig

logger = logging.getLogger("ipfs_sync.config")

CONFIG_FILE = "config.yaml"

SAMPLE_CONFIG = """\
# ipfs-sync configuration

# MFS directory every synced folder is placed under.
BasePath: /ipfs-sync/

# IPFS node HTTP API.
EndPoint: http://127.0.0.1:5001

# Directories to sync. ID names the IPNS key (stored as "ipfs-sync.<ID>").
#   Nocopy:    add files to the filestore instead of copying them
#   DontHash:  detect changes by size + mtime instead of content hash
#   Pin:       keep the latest CID pinned locally
#   RemotePin: also pin on the remote pinning service (see PinService)
Dirs:
  - ID: Example1
    Dir: /home/user/Documents/
    Nocopy: false
    DontHash: false
    Pin: false

# Time between IPNS syncs.
Sync: 10s

# Longest time to wait for API calls like 'version' and 'files/mkdir'.
Timeout: 30s

# File suffixes to ignore.
Ignore:
  - kate-swp
  - swp
  - part
  - crdownload

# Ignore anything prefixed with ".".
IgnoreHidden: true

# File where the fingerprint DB should be stored (optional).
# DB: /home/user/.ipfs-sync/fingerprints.db

# Remote pinning service name, as registered with the node (optional).
# PinService: pinata
"""


class ConfigError(Exception):
    """The configuration is missing or invalid."""


def default_config_path(home: Optional[Path] = None) -> Path:
    return (home or Path(SYNC_HOME)).expanduser() / CONFIG_FILE


def write_sample_config(path: Path) -> Path:
    """Write the commented sample config to ``path``."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    return path


def load_config(path: Optional[Path] = None, create: bool = False) -> SyncConfig:
    """Load a config file.

    Args:
        path: Config file. Missing files yield the defaults.
        create: Write the sample config first when ``path`` is missing.

    Raises:
        ConfigError: If the file cannot be parsed or validated.
    """
    if path is None:
        return SyncConfig()
    path = Path(path).expanduser()
    logger.info("Loading config file %s", path)
    if not path.exists():
        if not create:
            return SyncConfig()
        logger.info("Config file not found, generating...")
        try:
            write_sample_config(path)
        except OSError as exc:
            logger.error("Error writing config file: %s", exc)
            return SyncConfig()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Error decoding config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    try:
        return SyncConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config file {path}: {exc}") from exc


def apply_overrides(config: SyncConfig, overrides: dict[str, Any]) -> SyncConfig:
    """Overlay command-line values (None means "not given").

    ``dirs`` and ``ignore`` may be JSON strings, as on the original
    command line.

    Raises:
        ConfigError: If a value does not validate.
    """
    data = config.model_dump()
    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("dirs", "ignore") and isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as exc:
                raise ConfigError(f"--{key} must be JSON: {exc}") from exc
        data[key] = value
    try:
        return SyncConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc


def normalize_dir(path: str) -> str:
    """Absolute, user-expanded path with exactly one trailing separator."""
    full = os.path.abspath(os.path.expanduser(path))
    return full.rstrip(os.sep) + os.sep


def validate(config: SyncConfig) -> SyncConfig:
    """Check the directory list and normalize every ``Dir``.

    Raises:
        ConfigError: On an empty directory list, an empty ``Dir``,
            a duplicate ``ID``, or a ``Dir`` that is not a directory.
    """
    if not config.dirs:
        raise ConfigError("dirs field is required as flag, or in config.")
    seen: set[str] = set()
    for dk in config.dirs:
        if not dk.dir:
            raise ConfigError(f"Dir entry path cannot be empty. (ID: {dk.id})")
        if dk.id in seen:
            raise ConfigError(f"Duplicate directory ID: {dk.id}")
        seen.add(dk.id)
        dk.dir = normalize_dir(dk.dir)
        if not Path(dk.dir).is_dir():
            raise ConfigError(f"Dir is not a directory: {dk.dir} (ID: {dk.id})")
    return config

