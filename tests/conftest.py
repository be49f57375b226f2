"""Shared test fixtures for ipfs-sync."""

from __future__ import annotations

import hashlib
from collections import Counter, defaultdict
from pathlib import Path
from typing import Iterator

import pytest

from ipfs_sync.models import DirKey, FilestoreEntry, Identity, SyncConfig
from ipfs_sync.remote import (
    PinnedBlockError,
    RemoteError,
    RemoteStore,
)
from ipfs_sync.store import FingerprintStore


def _digest(data: bytes) -> str:
    return "Qm" + hashlib.sha256(data).hexdigest()[:32]


class FakeRemote(RemoteStore):
    """In-memory remote store.

    ``files`` maps MFS paths (relative to the base path) to CIDs and
    ``dirs`` holds MFS directories. ``fail(name, exc)`` queues an
    exception for the next call to ``name``.
    """

    def __init__(self):
        self.files: dict[str, str] = {}
        self.dirs: set[str] = set()
        self.pins: set[str] = set()
        self.remote_pins: set[str] = set()
        self.identities: dict[str, Identity] = {}
        self.published: dict[str, str] = {}
        self.filestore: list[FilestoreEntry] = []
        self.block_pins: dict[str, str] = {}
        self.removed_blocks: list[str] = []
        self.calls: Counter = Counter()
        self.log: list[tuple] = []
        self._failures: dict[str, list[Exception]] = defaultdict(list)

    def fail(self, name: str, exc: Exception, times: int = 1) -> None:
        self._failures[name].extend([exc] * times)

    def _hit(self, name: str, *args) -> None:
        self.calls[name] += 1
        self.log.append((name, *args))
        if self._failures[name]:
            raise self._failures[name].pop(0)

    def version(self) -> str:
        self._hit("version")
        return "0.99.0-fake"

    def add_file(self, local_path, nocopy):
        self._hit("add_file", str(local_path), nocopy)
        return _digest(Path(local_path).read_bytes())

    def hash_only(self, local_path, nocopy):
        self._hit("hash_only", str(local_path), nocopy)
        return _digest(Path(local_path).read_bytes())

    def make_dir(self, remote_path):
        self._hit("make_dir", remote_path)
        parts = remote_path.strip("/").split("/")
        for i in range(1, len(parts) + 1):
            self.dirs.add("/".join(parts[:i]))

    def remove_entry(self, remote_path):
        self._hit("remove_entry", remote_path)
        prefix = remote_path + "/"
        found = remote_path in self.files or remote_path in self.dirs
        if not found:
            raise RemoteError("file does not exist")
        self.files = {p: c for p, c in self.files.items() if p != remote_path and not p.startswith(prefix)}
        self.dirs = {d for d in self.dirs if d != remote_path and not d.startswith(prefix)}

    def link_content(self, cid, remote_path, overwrite):
        self._hit("link_content", cid, remote_path, overwrite)
        parent = remote_path.rsplit("/", 1)[0] if "/" in remote_path else ""
        if parent and parent not in self.dirs:
            raise RemoteError("cp: cannot put node in path: file does not exist")
        if remote_path in self.files and not overwrite:
            raise RemoteError("cp: cannot put node in path: directory already has entry by that name")
        self.files[remote_path] = cid

    def current_snapshot_id(self, remote_path):
        self._hit("current_snapshot_id", remote_path)
        if remote_path not in self.dirs:
            return ""
        prefix = remote_path + "/"
        entries = sorted((p, c) for p, c in self.files.items() if p.startswith(prefix))
        entries += sorted((d, "") for d in self.dirs if d.startswith(prefix))
        return "Qmdir" + hashlib.sha256(repr(entries).encode()).hexdigest()[:28]

    def pin_add(self, cid):
        self._hit("pin_add", cid)
        self.pins.add(cid)

    def pin_update(self, old, new):
        self._hit("pin_update", old, new)
        if old not in self.pins:
            raise RemoteError("'from' cid was not recursively pinned already")
        self.pins.discard(old)
        self.pins.add(new)

    def pin_remove(self, cid):
        self._hit("pin_remove", cid)
        self.pins.discard(cid)

    def remote_pin_add(self, cid, service):
        self._hit("remote_pin_add", cid, service)
        self.remote_pins.add(cid)

    def remote_pin_remove(self, cid, service):
        self._hit("remote_pin_remove", cid, service)
        self.remote_pins.discard(cid)

    def publish(self, cid, name):
        self._hit("publish", cid, name)
        self.published[name] = cid

    def resolve(self, identity_id):
        self._hit("resolve", identity_id)
        for name, ident in self.identities.items():
            if ident.id == identity_id and name in self.published:
                return self.published[name]
        raise RemoteError("could not resolve name")

    def generate_identity(self, name):
        self._hit("generate_identity", name)
        ident = Identity(id=f"k51fake{name}", name=name)
        self.identities[name] = ident
        return ident

    def list_identities(self):
        self._hit("list_identities")
        return list(self.identities.values())

    def verify_integrity(self) -> Iterator[FilestoreEntry]:
        self._hit("verify_integrity")
        yield from list(self.filestore)

    def remove_backing_reference(self, ref):
        self._hit("remove_backing_reference", ref)
        pin = self.block_pins.get(ref)
        if pin and pin in self.pins:
            raise PinnedBlockError(f"pinned via {pin}", pin)
        self.removed_blocks.append(ref)


class FakeObserver:
    """Stand-in for a watchdog observer: records schedule/unschedule."""

    def __init__(self):
        self.scheduled: dict[object, str] = {}
        self.unscheduled: list[str] = []
        self.started = False

    def schedule(self, handler, path, recursive=False):
        assert recursive is False
        watch = object()
        self.scheduled[watch] = path
        return watch

    def unschedule(self, watch):
        self.unscheduled.append(self.scheduled.pop(watch))

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def join(self, timeout=None):
        pass


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture
def sync_dir(tmp_path: Path) -> Path:
    """A small directory tree to sync."""
    root = tmp_path / "docs"
    (root / "sub").mkdir(parents=True)
    (root / "index.html").write_text("<h1>hello</h1>")
    (root / "notes.txt").write_text("some notes")
    (root / "sub" / "deep.txt").write_text("deep")
    (root / "download.part").write_text("partial")
    return root


@pytest.fixture
def dir_key(sync_dir: Path) -> DirKey:
    return DirKey(ID="docs", Dir=str(sync_dir) + "/")


@pytest.fixture
def sync_config(dir_key: DirKey, tmp_path: Path) -> SyncConfig:
    return SyncConfig(Dirs=[dir_key], Sync="10ms", DB=str(tmp_path / "state" / "fp.db"))


@pytest.fixture
def store(tmp_path: Path) -> Iterator[FingerprintStore]:
    fp_store = FingerprintStore(tmp_path / "fp.db")
    yield fp_store
    fp_store.close()
