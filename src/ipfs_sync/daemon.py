"""
ipfs-sync daemon -- the long-running sync process.

Checks the node, opens the fingerprint store, brings every directory
online (upload or rescan, then watch), and polls for changes to
publish. Run state is written to ``<home>/state.json`` after every
poll so ``ipfs-sync status`` can read it without talking to the
process.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError
from watchdog.observers import Observer

from . import SYNC_HOME
from .ipfs import IpfsClient
from .models import DirectoryState, SyncConfig, SyncState, WatcherState
from .reconcile import Reconciler, StartupError
from .recovery import FaultRecovery
from .remote import RemoteError, RemoteStore
from .store import FingerprintStore

logger = logging.getLogger("ipfs_sync.daemon")

PID_FILE = "ipfs-sync.pid"
STATE_FILE = "state.json"
LOG_DIR = "logs"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def sync_home(home: Optional[Path] = None) -> Path:
    return (home or Path(SYNC_HOME)).expanduser()


class DaemonState:
    """Thread-safe run state shared by the poll thread and ``stop``."""

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_poll: Optional[datetime] = None
        self.publish_count = 0
        self.errors: list[str] = []

    def record_poll(self, updated: int) -> None:
        with self._lock:
            self.last_poll = datetime.now(timezone.utc)
            self.publish_count += updated

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > 50:
                self.errors = self.errors[-50:]

    def snapshot(self, directories: list[DirectoryState]) -> SyncState:
        with self._lock:
            return SyncState(
                pid=os.getpid(),
                started_at=self.started_at,
                last_poll=self.last_poll,
                publish_count=self.publish_count,
                directories=directories,
                errors=self.errors[-10:],
            )


class SyncDaemon:
    """Runs the sync engine for one configuration.

    Args:
        config: Validated configuration.
        home: State directory (PID file, state, logs).
        remote: Remote store; an ``IpfsClient`` for ``config`` if omitted.
        observer_factory: watchdog observer factory for the watchers.
    """

    def __init__(
        self,
        config: SyncConfig,
        home: Optional[Path] = None,
        remote: Optional[RemoteStore] = None,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.config = config
        self.home = sync_home(home)
        self.remote = remote or IpfsClient(
            config.endpoint, base_path=config.base_path, timeout=config.timeout
        )
        self.observer_factory = observer_factory
        self.state = DaemonState()
        self.store: Optional[FingerprintStore] = None
        self.reconciler: Optional[Reconciler] = None
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._stopped = False

    @property
    def log_file(self) -> Path:
        return self.home / LOG_DIR / "ipfs-sync.log"

    @property
    def state_file(self) -> Path:
        return self.home / STATE_FILE

    def start(self) -> None:
        """Bring every directory online and start the poll thread.

        Raises:
            StartupError: If the node is unreachable or a directory
                cannot be initialized.
            StoreError: If the fingerprint database cannot be opened.
        """
        self.home.mkdir(parents=True, exist_ok=True)
        self._write_pid()
        self.state.started_at = datetime.now(timezone.utc)

        try:
            version = self.remote.version()
        except RemoteError as exc:
            self._remove_pid()
            raise StartupError(f"Failed to connect to end point: {exc}") from exc
        logger.info("Connected to IPFS %s at %s", version, self.config.endpoint)

        try:
            if self.config.db:
                self.store = FingerprintStore(self.config.db)

            recovery = FaultRecovery(self.remote)
            if any(dk.nocopy for dk in self.config.dirs):
                recovery.clean_filestore()

            self.reconciler = Reconciler(
                self.config,
                self.remote,
                store=self.store,
                recovery=recovery,
                observer_factory=self.observer_factory,
            )
            self.reconciler.initialize()
        except Exception as exc:
            self.state.record_error(str(exc))
            self.stop()
            raise

        poller = threading.Thread(target=self._poll_loop, name="ipfs-sync-poll", daemon=True)
        poller.start()
        self._threads.append(poller)
        self.save_state()
        logger.info("ipfs-sync started -- PID %d", os.getpid())

    def stop(self) -> None:
        """Stop watchers and the poll thread, then release resources."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("ipfs-sync stopping...")
        self._stop_event.set()

        if self.reconciler is not None:
            self.reconciler.stop()
        for t in self._threads:
            t.join(timeout=5)
        if self.reconciler is not None:
            self.save_state()
        if self.store is not None:
            self.store.close()
        self._remove_pid()
        logger.info("ipfs-sync stopped.")

    def run_forever(self, verbose: bool = False) -> None:
        """Foreground entry point: logging, signals, start, block until stopped."""
        self._setup_logging(verbose)
        self._setup_signals()
        self.start()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _poll_loop(self) -> None:
        self.reconciler.run(self._stop_event, on_pass=self._on_pass)

    def _on_pass(self, updated: int) -> None:
        self.state.record_poll(updated)
        self.save_state()

    def directory_states(self) -> list[DirectoryState]:
        states = []
        for dk in self.config.dirs:
            watcher = self.reconciler.watchers.get(dk.id) if self.reconciler else None
            states.append(
                DirectoryState(
                    id=dk.id,
                    dir=dk.dir,
                    cid=dk.cid,
                    watcher=watcher.state if watcher else WatcherState.INITIALIZING,
                )
            )
        return states

    def save_state(self) -> None:
        """Write the current run state to ``state.json``."""
        tmp = self.state_file.with_suffix(".tmp")
        with self._state_lock:
            snapshot = self.state.snapshot(self.directory_states())
            try:
                tmp.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
                tmp.replace(self.state_file)
            except OSError as exc:
                logger.error("Cannot write state file %s: %s", self.state_file, exc)

    def _setup_logging(self, verbose: bool = False) -> None:
        """Configure file and console logging."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        formatter = logging.Formatter(LOG_FORMAT)
        root = logging.getLogger()
        for handler in (logging.FileHandler(self.log_file), logging.StreamHandler(sys.stderr)):
            handler.setFormatter(formatter)
            root.addHandler(handler)
        root.setLevel(logging.DEBUG if verbose else logging.INFO)

    def _setup_signals(self) -> None:
        """Register signal handlers for graceful shutdown."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s -- stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _write_pid(self) -> None:
        pid_path = self.home / PID_FILE
        pid_path.write_text(str(os.getpid()), encoding="utf-8")

    def _remove_pid(self) -> None:
        (self.home / PID_FILE).unlink(missing_ok=True)


def read_pid(home: Optional[Path] = None) -> Optional[int]:
    """Read the daemon PID from the PID file.

    Stale PID files (dead process, garbage content) are removed.

    Returns:
        PID as int, or None if not running.
    """
    pid_path = sync_home(home) / PID_FILE
    if not pid_path.exists():
        return None
    try:
        pid = int(pid_path.read_text(encoding="utf-8").strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        pid_path.unlink(missing_ok=True)
        return None


def is_running(home: Optional[Path] = None) -> bool:
    return read_pid(home) is not None


def load_state(home: Optional[Path] = None) -> Optional[SyncState]:
    """Load the last state written by a daemon, or None."""
    path = sync_home(home) / STATE_FILE
    if not path.exists():
        return None
    try:
        return SyncState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        logger.warning("Cannot read state file %s: %s", path, exc)
        return None
