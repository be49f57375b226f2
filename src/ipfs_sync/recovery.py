"""
Fault recovery for dangling filestore references.

Directories added with nocopy keep only a pointer to the local file
in the node's filestore. When that file changes or disappears, any
operation that touches the block fails with a bad-reference error.

``FaultRecovery.call`` runs a remote operation, and on such an error
repairs the store and retries exactly once:

    path known    re-hash the file (hash-only), drop the stale block
    path unknown  verify the whole filestore, drop every block whose
                  backing file is missing
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, TypeVar

from .remote import (
    FILESTORE_NO_FILE,
    BadReferenceError,
    PinnedBlockError,
    RemoteError,
    RemoteStore,
)

logger = logging.getLogger("ipfs_sync.recovery")

T = TypeVar("T")

MAX_ATTEMPTS = 2


class FaultRecovery:
    """Bounded repair-and-retry wrapper around remote operations."""

    def __init__(self, remote: RemoteStore):
        self.remote = remote
        self.recoveries = 0
        self._lock = threading.Lock()

    def call(
        self,
        operation: Callable[[], T],
        local_path: Optional[Path] = None,
        nocopy: bool = False,
    ) -> T:
        """Run ``operation``, repairing and retrying once on a bad reference.

        Args:
            operation: Zero-argument callable performing the remote call.
            local_path: File the operation concerns, if known.
            nocopy: Whether that file was added without copying.

        Raises:
            BadReferenceError: If the retry hits the same error again.
            RemoteError: Any other remote failure, unchanged.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return operation()
            except BadReferenceError as exc:
                if attempt == MAX_ATTEMPTS:
                    logger.error("Bad reference persists after recovery: %s", exc)
                    raise
                logger.warning("Bad reference (%s), attempting recovery", exc)
                self.recover(local_path, nocopy)
        raise AssertionError("unreachable")

    def recover(self, local_path: Optional[Path] = None, nocopy: bool = False) -> None:
        """Drop the stale block for ``local_path``, or clean the filestore."""
        with self._lock:
            self.recoveries += 1
        if local_path is not None:
            try:
                cid = self.remote.hash_only(local_path, nocopy)
            except (OSError, RemoteError) as exc:
                logger.warning("Cannot re-hash %s (%s), verifying filestore", local_path, exc)
            else:
                logger.info("Removing stale block %s for %s", cid, local_path)
                self.remove_block(cid)
                return
        self.clean_filestore()

    def remove_block(self, cid: str) -> bool:
        """Remove a block, unpinning whatever holds it first.

        Returns:
            True if the block was removed.
        """
        released: set[str] = set()
        while True:
            try:
                self.remote.remove_backing_reference(cid)
                return True
            except PinnedBlockError as exc:
                if exc.pinned_by in released:
                    logger.error("Block %s still pinned by %s", cid, exc.pinned_by)
                    return False
                logger.info("Block %s is pinned, removing pin: %s", cid, exc.pinned_by)
                released.add(exc.pinned_by)
                try:
                    self.remote.pin_remove(exc.pinned_by)
                except RemoteError as pin_exc:
                    logger.error("Error removing pin %s: %s", exc.pinned_by, pin_exc)
                    return False
            except RemoteError as exc:
                logger.error("Error removing bad block %s: %s", cid, exc)
                return False

    def clean_filestore(self) -> int:
        """Remove every filestore block whose backing file is missing.

        Returns:
            Number of blocks removed.
        """
        logger.info("Removing filestore blocks that point to missing files...")
        removed = 0
        try:
            for entry in self.remote.verify_integrity():
                if entry.status != FILESTORE_NO_FILE:
                    continue
                logger.info("Removing reference from filestore: %s", entry.key)
                if self.remove_block(entry.key):
                    removed += 1
        except RemoteError as exc:
            logger.error("Filestore verification failed: %s", exc)
        return removed
