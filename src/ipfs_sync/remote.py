"""
Remote store interface -- what the sync engine needs from an IPFS node.

The engine only talks to ``RemoteStore``. ``ipfs_sync.ipfs.IpfsClient``
is the HTTP implementation; tests use an in-memory fake.

Remote paths are relative to the configured base path
(``<mount>/sub/file.txt``); identity names are relative to the
``ipfs-sync.`` key namespace.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator

from .models import FilestoreEntry, Identity

KEY_SPACE = "ipfs-sync."

# filestore/verify status for a block whose backing file is gone
FILESTORE_NO_FILE = 11


class RemoteError(Exception):
    """A remote call failed."""

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.message = message
        self.code = code


class RemoteUnavailable(RemoteError):
    """The node could not be reached or did not answer in time."""


class MalformedResponse(RemoteError):
    """The node answered with something that could not be decoded."""


class BadReferenceError(RemoteError):
    """A locally-backed block points at a file that is gone or corrupt."""


class PinnedBlockError(RemoteError):
    """A block could not be removed because a pin still holds it."""

    def __init__(self, message: str, pinned_by: str, code: int = 0):
        super().__init__(message, code)
        self.pinned_by = pinned_by


class RemoteStore(ABC):
    """Abstract content-addressed store with a mutable file system."""

    @abstractmethod
    def version(self) -> str:
        """Return the node version; raises if the node is unreachable."""

    @abstractmethod
    def add_file(self, local_path: Path, nocopy: bool) -> str:
        """Upload a file's bytes and return its content id."""

    @abstractmethod
    def hash_only(self, local_path: Path, nocopy: bool) -> str:
        """Compute the content id a file would get, without storing it."""

    @abstractmethod
    def make_dir(self, remote_path: str) -> None:
        """Create a directory and its parents. Idempotent."""

    @abstractmethod
    def remove_entry(self, remote_path: str) -> None:
        """Remove a file or directory from the mutable file system."""

    @abstractmethod
    def link_content(self, cid: str, remote_path: str, overwrite: bool) -> None:
        """Place content ``cid`` at ``remote_path``.

        With ``overwrite`` any existing entry is removed first.
        """

    @abstractmethod
    def current_snapshot_id(self, remote_path: str) -> str:
        """Return the content id at ``remote_path``, or "" if unknown."""

    @abstractmethod
    def pin_add(self, cid: str) -> None:
        """Recursively pin ``cid``."""

    @abstractmethod
    def pin_update(self, old: str, new: str) -> None:
        """Move a recursive pin from ``old`` to ``new``."""

    @abstractmethod
    def pin_remove(self, cid: str) -> None:
        """Drop the pin on ``cid``."""

    @abstractmethod
    def remote_pin_add(self, cid: str, service: str) -> None:
        """Ask a remote pinning service to pin ``cid``."""

    @abstractmethod
    def remote_pin_remove(self, cid: str, service: str) -> None:
        """Ask a remote pinning service to drop ``cid``."""

    @abstractmethod
    def publish(self, cid: str, name: str) -> None:
        """Point the identity ``name`` at ``cid``."""

    @abstractmethod
    def resolve(self, identity_id: str) -> str:
        """Return the content id an identity currently points at."""

    @abstractmethod
    def generate_identity(self, name: str) -> Identity:
        """Create a new identity called ``name``."""

    @abstractmethod
    def list_identities(self) -> list[Identity]:
        """List identities registered under the ipfs-sync namespace."""

    @abstractmethod
    def verify_integrity(self) -> Iterator[FilestoreEntry]:
        """Stream every locally-backed reference with its status."""

    @abstractmethod
    def remove_backing_reference(self, ref: str) -> None:
        """Remove a block from the store.

        Raises:
            PinnedBlockError: If a pin still holds the block.
        """
