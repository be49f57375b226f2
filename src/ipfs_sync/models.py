"""
Data models for ipfs-sync.

Configuration (what to sync and how), fingerprint records (what has
already been synced), transient sync intents, and the persisted run
state of the daemon.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

DEFAULT_BASE_PATH = "/ipfs-sync/"
DEFAULT_ENDPOINT = "http://127.0.0.1:5001"
DEFAULT_SYNC_SECONDS = 10.0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_IGNORE = ["kate-swp", "swp", "part", "crdownload"]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a Go-style duration ("10s", "1m30s", "500ms") into seconds.

    Plain numbers (or numeric strings) are taken as seconds.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class IntentKind(str, Enum):
    """What happened to a path on disk."""

    CREATE = "create"
    MODIFY = "modify"
    REMOVE = "remove"


class SyncOutcome(str, Enum):
    """Result of the last remote sync recorded for a path."""

    SYNCED = "synced"


class WatcherState(str, Enum):
    """Lifecycle of a directory watcher."""

    INITIALIZING = "initializing"
    SCANNING = "scanning"
    LIVE = "live"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SyncIntent:
    """A single sync action produced by the watcher or a scan."""

    path: Path
    kind: IntentKind
    overwrite: bool = False


class DirKey(BaseModel):
    """A watched directory and the IPNS key it is published under.

    The config fields use the original CamelCase names as aliases so
    existing config files keep working. ``cid`` and ``mount`` are
    managed at runtime.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="ID")
    dir: str = Field(alias="Dir")
    nocopy: bool = Field(default=False, alias="Nocopy")
    dont_hash: bool = Field(default=False, alias="DontHash")
    pin: bool = Field(default=False, alias="Pin")
    remote_pin: bool = Field(default=False, alias="RemotePin")

    cid: str = ""
    mount: str = ""

    @property
    def root(self) -> Path:
        return Path(self.dir)


class SyncConfig(BaseModel):
    """Complete ipfs-sync configuration."""

    model_config = ConfigDict(populate_by_name=True)

    base_path: str = Field(default=DEFAULT_BASE_PATH, alias="BasePath")
    endpoint: str = Field(default=DEFAULT_ENDPOINT, alias="EndPoint")
    dirs: list[DirKey] = Field(default_factory=list, alias="Dirs")
    sync: float = Field(default=DEFAULT_SYNC_SECONDS, alias="Sync")
    timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, alias="Timeout")
    ignore: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE), alias="Ignore")
    ignore_hidden: bool = Field(default=False, alias="IgnoreHidden")
    db: Optional[str] = Field(default=None, alias="DB")
    pin_service: Optional[str] = Field(default=None, alias="PinService")

    @field_validator("sync", "timeout", mode="before")
    @classmethod
    def parse_durations(cls, value, info: ValidationInfo):
        if value is None or value == "":
            if info.field_name == "sync":
                return DEFAULT_SYNC_SECONDS
            return DEFAULT_TIMEOUT_SECONDS
        return parse_duration(value)

    @field_validator("base_path")
    @classmethod
    def slashed_base_path(cls, value: str) -> str:
        if not value.startswith("/"):
            value = "/" + value
        if not value.endswith("/"):
            value += "/"
        return value

    @field_validator("ignore", mode="before")
    @classmethod
    def default_ignore(cls, value):
        if not value:
            return list(DEFAULT_IGNORE)
        return value


class FingerprintRecord(BaseModel):
    """What the fingerprint store remembers about one file.

    ``content`` is absent when the directory uses the cheap
    (size + mtime) strategy.
    """

    path: str
    content: Optional[bytes] = None
    cheap: bytes
    outcome: SyncOutcome = SyncOutcome.SYNCED

    @property
    def fingerprint(self) -> bytes:
        """The value compared to decide whether a file changed."""
        return self.content if self.content is not None else self.cheap


class Identity(BaseModel):
    """An IPNS key known to the node."""

    id: str
    name: str


class FilestoreEntry(BaseModel):
    """One result of a filestore integrity scan."""

    status: int
    key: str
    file_path: str = ""
    error: str = ""


class DirectoryState(BaseModel):
    """Per-directory snapshot of runtime state."""

    id: str
    dir: str
    cid: str = ""
    watcher: WatcherState = WatcherState.INITIALIZING


class SyncState(BaseModel):
    """Daemon run state persisted to disk after every poll."""

    pid: Optional[int] = None
    started_at: Optional[datetime] = None
    last_poll: Optional[datetime] = None
    publish_count: int = 0
    directories: list[DirectoryState] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
