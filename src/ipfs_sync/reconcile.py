"""
Reconciliation loop -- startup sync and periodic IPNS/pin upkeep.

Startup, per directory:

    1. list ipfs-sync keys on the node
    2. key known    -> resolve it (on failure republish the MFS root)
    3. key unknown  -> upload the whole tree, pin, generate key, publish
    4. with a DB    -> rescan and resync files changed while we were down
    5. start the directory watcher

Steady state: every ``sync`` seconds compare each directory's MFS root
against the last published CID; on drift publish the new CID and move
the pin along.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from watchdog.observers import Observer

from .actuator import SyncActuator
from .fingerprint import record_for
from .ignore import IgnoreRules, iter_files
from .models import DirKey, Identity, IntentKind, SyncConfig, SyncIntent
from .recovery import FaultRecovery
from .remote import RemoteError, RemoteStore
from .store import FingerprintStore
from .watcher import DirectoryWatcher

logger = logging.getLogger("ipfs_sync.reconcile")


class StartupError(Exception):
    """A directory could not be brought online."""


class Reconciler:
    """Brings every configured directory online and keeps it published.

    Args:
        config: Loaded configuration; its ``dirs`` are mutated in place
            (``mount`` and ``cid``).
        remote: Remote store client.
        store: Fingerprint store, or None to run without a DB.
        recovery: Shared fault recovery; built from ``remote`` if omitted.
        observer_factory: watchdog observer factory for the watchers.
    """

    def __init__(
        self,
        config: SyncConfig,
        remote: RemoteStore,
        store: Optional[FingerprintStore] = None,
        recovery: Optional[FaultRecovery] = None,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.config = config
        self.remote = remote
        self.store = store
        self.recovery = recovery or FaultRecovery(remote)
        self.rules = IgnoreRules(config.ignore, config.ignore_hidden)
        self.observer_factory = observer_factory
        self.actuators: dict[str, SyncActuator] = {}
        self.watchers: dict[str, DirectoryWatcher] = {}
        self.publish_count = 0

    @property
    def dirs(self) -> list[DirKey]:
        return self.config.dirs

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def initialize(self, watch: bool = True) -> None:
        """Run the startup sequence for every directory.

        Raises:
            StartupError: If the key list cannot be read or a
                directory cannot be published.
        """
        try:
            identities = self.remote.list_identities()
        except RemoteError as exc:
            raise StartupError(f"Cannot list keys: {exc}") from exc

        for dk in self.dirs:
            self.initialize_directory(dk, identities, watch=watch)

    def initialize_directory(
        self, dk: DirKey, identities: list[Identity], watch: bool = True
    ) -> None:
        dk.mount = dk.root.name
        actuator = SyncActuator(dk, self.remote, self.recovery, self.store)
        self.actuators[dk.id] = actuator

        known = next((ident for ident in identities if ident.name == dk.id), None)
        if known is not None:
            self._load_identity(dk, known)
        else:
            logger.info("%s not found, generating...", dk.id)
            self._create_identity(dk, actuator)

        if self.store is not None:
            logger.debug("Hashing %s ...", dk.dir)
            self.scan(dk, actuator)

        if watch:
            watcher = DirectoryWatcher(dk, actuator, self.rules, self.observer_factory)
            watcher.start()
            self.watchers[dk.id] = watcher

    def _load_identity(self, dk: DirKey, identity: Identity) -> None:
        try:
            dk.cid = self.remote.resolve(identity.id)
        except RemoteError as exc:
            logger.warning("Error resolving IPNS for %s: %s", dk.id, exc)
            logger.info("Republishing key...")
            dk.cid = self.remote.current_snapshot_id(dk.mount)
            if dk.cid:
                self._publish(dk, dk.cid)
        logger.info("%s loaded: %s", dk.id, identity.id)

    def _create_identity(self, dk: DirKey, actuator: SyncActuator) -> None:
        try:
            self.recovery.call(lambda: self.remote.make_dir(dk.mount))
        except RemoteError as exc:
            raise StartupError(f"Cannot create MFS directory for {dk.id}: {exc}") from exc

        uploaded = 0
        for path in iter_files(dk.root, self.rules):
            if actuator.apply(SyncIntent(path, IntentKind.CREATE, overwrite=True)):
                uploaded += 1
        logger.info("Uploaded %d file(s) from %s", uploaded, dk.dir)

        cid = self.remote.current_snapshot_id(dk.mount)
        if not cid:
            raise StartupError(f"Failed to add directory {dk.dir}: no CID for {dk.mount}")
        dk.cid = cid

        if dk.pin:
            try:
                self.recovery.call(lambda: self.remote.pin_add(cid))
            except RemoteError as exc:
                logger.error("Error pinning %s: %s", cid, exc)
            self._remote_pin(dk, None, cid)

        try:
            identity = self.remote.generate_identity(dk.id)
        except RemoteError as exc:
            raise StartupError(f"Cannot generate key for {dk.id}: {exc}") from exc
        self._publish(dk, cid)
        logger.info("%s loaded: %s", dk.id, identity.id)

    def scan(self, dk: DirKey, actuator: SyncActuator) -> int:
        """Resync every file whose fingerprint differs from the store.

        Returns:
            Number of files resynced.
        """
        synced = 0
        for path in iter_files(dk.root, self.rules):
            record = record_for(path, dk.dont_hash)
            if record is not None and not self.store.changed(record):
                continue
            logger.debug("File updated: %s", path)
            if actuator.apply(SyncIntent(path, IntentKind.MODIFY, overwrite=True)):
                synced += 1
        if synced:
            logger.info("Resynced %d changed file(s) in %s", synced, dk.dir)
        return synced

    # ------------------------------------------------------------------
    # Steady state
    # ------------------------------------------------------------------

    def run(
        self,
        stop_event: threading.Event,
        on_pass: Optional[Callable[[int], None]] = None,
    ) -> None:
        """Poll every ``config.sync`` seconds until ``stop_event`` is set."""
        while not stop_event.wait(timeout=self.config.sync):
            updated = self.poll_once()
            if on_pass is not None:
                on_pass(updated)

    def poll_once(self) -> int:
        """One pass over all directories.

        Returns:
            Number of directories whose CID changed and was published.
        """
        updated = 0
        for dk in self.dirs:
            cid = self.remote.current_snapshot_id(dk.mount)
            if not cid or cid == dk.cid:
                continue
            if not self._publish(dk, cid):
                continue
            if dk.pin:
                self._update_pin(dk.cid, cid)
                self._remote_pin(dk, dk.cid, cid)
            dk.cid = cid
            updated += 1
            logger.info("%s updated...", dk.mount)
        return updated

    def _publish(self, dk: DirKey, cid: str) -> bool:
        try:
            self.remote.publish(cid, dk.id)
        except RemoteError as exc:
            logger.error("Error publishing %s for %s: %s", cid, dk.id, exc)
            return False
        self.publish_count += 1
        return True

    def _update_pin(self, old: str, new: str) -> None:
        if not old:
            try:
                self.recovery.call(lambda: self.remote.pin_add(new))
            except RemoteError as exc:
                logger.error("Error adding pin: %s", exc)
            return
        try:
            self.recovery.call(lambda: self.remote.pin_update(old, new))
            return
        except RemoteError as exc:
            logger.error("Error updating pin: %s", exc)
            logger.debug("From CID: %s To CID: %s", old, new)
        try:
            self.remote.pin_add(new)
        except RemoteError as exc:
            logger.error("Error adding pin: %s", exc)

    def _remote_pin(self, dk: DirKey, old: Optional[str], new: str) -> None:
        service = self.config.pin_service
        if not dk.pin or not dk.remote_pin or not service:
            return
        try:
            self.remote.remote_pin_add(new, service)
        except RemoteError as exc:
            logger.error("Error pinning %s on %s: %s", new, service, exc)
            return
        if old:
            try:
                self.remote.remote_pin_remove(old, service)
            except RemoteError as exc:
                logger.error("Error unpinning %s on %s: %s", old, service, exc)

    def stop(self) -> None:
        """Stop every directory watcher."""
        for watcher in self.watchers.values():
            watcher.stop()
