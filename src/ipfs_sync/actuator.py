"""
Sync actuator -- turns one sync intent into remote operations.

    create/modify  mkdir -p parent (first time only) -> add -> cp
    remove         rm

The fingerprint store is only updated after the remote side
succeeded, so a crash or a failed call always leaves the file looking
"changed" to the next scan.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePath, PurePosixPath
from typing import Optional

from .fingerprint import record_for
from .models import DirKey, IntentKind, SyncIntent
from .recovery import FaultRecovery
from .remote import RemoteError, RemoteStore
from .store import FingerprintStore

logger = logging.getLogger("ipfs_sync.actuator")


def mfs_path(mount: str, rel: PurePath) -> str:
    """Join a relative local path of any flavour onto ``mount`` with forward slashes."""
    return str(PurePosixPath(mount, *rel.parts))


class SyncActuator:
    """Applies sync intents for one watched directory.

    Remembers which local parent directories already exist remotely
    for as long as the instance lives; a fresh instance costs at most
    one redundant (idempotent) mkdir per directory.

    Args:
        dir_key: The watched directory.
        remote: Remote store client.
        recovery: Fault recovery wrapper shared with the reconciler.
        store: Fingerprint store, or None when running without a DB.
    """

    def __init__(
        self,
        dir_key: DirKey,
        remote: RemoteStore,
        recovery: FaultRecovery,
        store: Optional[FingerprintStore] = None,
    ):
        self.dir_key = dir_key
        self.remote = remote
        self.recovery = recovery
        self.store = store
        self.root = dir_key.root
        self.mount = dir_key.mount or self.root.name
        self._made_dirs: set[Path] = set()

    def remote_path(self, path: Path) -> str:
        """Map a local path under the root to its MFS path (``mount/rel``)."""
        return mfs_path(self.mount, Path(path).relative_to(self.root))

    def apply(self, intent: SyncIntent) -> bool:
        """Carry out ``intent`` against the remote store.

        Returns:
            True if the remote side was updated.
        """
        try:
            if intent.kind is IntentKind.REMOVE:
                self._remove(intent.path)
            else:
                self._add(intent.path, intent.overwrite)
        except RemoteError as exc:
            logger.error("Sync of %s failed (%s): %s", intent.path, intent.kind.value, exc)
            return False
        except (OSError, ValueError) as exc:
            logger.error("Cannot sync %s: %s", intent.path, exc)
            return False
        return True

    def _add(self, path: Path, overwrite: bool) -> None:
        target = self.remote_path(path)
        nocopy = self.dir_key.nocopy

        parent = path.parent
        if parent not in self._made_dirs:
            remote_parent = str(PurePosixPath(target).parent)
            logger.debug("Creating parent directory '%s' in MFS...", remote_parent)
            self.recovery.call(lambda: self.remote.make_dir(remote_parent))
            self._made_dirs.add(parent)

        logger.info("Adding file to %s ...", target)
        cid = self.recovery.call(
            lambda: self.remote.add_file(path, nocopy), path, nocopy
        )
        logger.debug("File hash: %s", cid)
        self.recovery.call(
            lambda: self.remote.link_content(cid, target, overwrite), path, nocopy
        )

        if self.store is not None:
            record = record_for(path, self.dir_key.dont_hash)
            if record is None:
                logger.warning("File vanished before it could be fingerprinted: %s", path)
            elif self.store.put(record):
                logger.debug("Fingerprint updated: %s", path)

    def _remove(self, path: Path) -> None:
        target = self.remote_path(path)
        logger.info("Removing %s ...", target)
        # the file is gone, so recovery cannot re-hash it and verifies the filestore
        self.recovery.call(lambda: self.remote.remove_entry(target))

        self._made_dirs = {
            d for d in self._made_dirs if d != path and path not in d.parents
        }
        if self.store is not None:
            self.store.delete_prefix(path)
