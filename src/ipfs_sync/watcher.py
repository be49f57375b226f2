"""
Filesystem watcher -- live filesystem events to sync intents.

One ``DirectoryWatcher`` per configured directory. Watches are
registered per directory (non-recursive) so coverage grows and shrinks
with the tree: new directories get a watch as they appear, removed
ones lose theirs.

watchdog delivers events on its own threads; they are pushed onto a
single queue and consumed by one worker thread per directory, so
intents for a directory are applied strictly in arrival order.

Event mapping:

    file created          -> create (overwrite)
    directory created     -> watch it, create every file already inside
    file modified         -> modify (overwrite)
    deleted / moved away  -> re-stat; still there -> drop, gone -> remove
    moved in              -> treated as created
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .actuator import SyncActuator
from .ignore import IgnoreRules, iter_dirs, iter_files
from .models import DirKey, IntentKind, SyncIntent, WatcherState

logger = logging.getLogger("ipfs_sync.watcher")

_STOP = None


class _QueueHandler(FileSystemEventHandler):
    """Forwards every watchdog event onto the watcher's queue."""

    def __init__(self, events: queue.Queue):
        self.events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.events.put(event)


class DirectoryWatcher:
    """Watches one directory tree and feeds the actuator.

    Args:
        dir_key: The watched directory.
        actuator: Applies the resulting intents.
        rules: Ignore rules shared with the startup scan.
        observer_factory: Builds the watchdog observer (tests pass a fake).
    """

    def __init__(
        self,
        dir_key: DirKey,
        actuator: SyncActuator,
        rules: IgnoreRules,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.dir_key = dir_key
        self.root = dir_key.root
        self.actuator = actuator
        self.rules = rules
        self.state = WatcherState.INITIALIZING

        self.events: queue.Queue = queue.Queue()
        self._handler = _QueueHandler(self.events)
        self._observer_factory = observer_factory
        self._observer = None
        self._watches: dict[Path, object] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def watched_paths(self) -> set[Path]:
        return set(self._watches)

    def start(self) -> None:
        """Register watches over the whole tree and start consuming events."""
        self._observer = self._observer_factory()
        self.state = WatcherState.SCANNING
        self._register_tree(self.root)
        self._observer.start()

        self._thread = threading.Thread(
            target=self._run, name=f"watcher-{self.dir_key.id}", daemon=True
        )
        self._thread.start()
        self.state = WatcherState.LIVE
        logger.info("Watching %s (%d directories)", self.root, len(self._watches))

    def stop(self, timeout: float = 5) -> None:
        """Close the event stream and wait for the worker to exit."""
        self._stop_event.set()
        self.events.put(_STOP)
        if self._observer is not None:
            self._observer.stop()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        if self._observer is not None:
            self._observer.join(timeout=timeout)
        self._watches.clear()
        self.state = WatcherState.STOPPED
        logger.info("Stopped watching %s", self.root)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            event = self.events.get()
            if event is _STOP:
                break
            try:
                self.handle(event)
            except Exception as exc:
                logger.error("Error handling %s: %s", event, exc)

    def handle(self, event: FileSystemEvent) -> None:
        """Translate one watchdog event into sync intents."""
        logger.debug("fsnotify event: %s", event)
        src = Path(os.fsdecode(event.src_path)) if event.src_path else None
        if event.event_type == "moved":
            if src is not None and not self.rules.is_ignored(src, self.root):
                self._on_gone(src)
            dest = Path(os.fsdecode(event.dest_path))
            if not self.rules.is_ignored(dest, self.root):
                self._on_created(dest)
            return

        if src is None or self.rules.is_ignored(src, self.root):
            return
        if event.event_type == "created":
            self._on_created(src)
        elif event.event_type == "modified":
            if not event.is_directory:
                self._emit(SyncIntent(src, IntentKind.MODIFY, overwrite=True))
        elif event.event_type == "deleted":
            self._on_gone(src)

    def _on_created(self, path: Path) -> None:
        try:
            is_dir = path.is_dir()
            exists = is_dir or path.is_file()
        except OSError as exc:
            logger.error("WATCHER ERROR %s", exc)
            return
        if not exists:
            logger.debug("Created path already gone: %s", path)
            return
        if not is_dir:
            self._emit(SyncIntent(path, IntentKind.CREATE, overwrite=True))
            return

        self._register_tree(path)
        for file_path in iter_files(self.root, self.rules, top=path):
            self._emit(SyncIntent(file_path, IntentKind.CREATE, overwrite=True))

    def _on_gone(self, path: Path) -> None:
        if os.path.lexists(path):
            logger.debug("Ignoring remove event, path still exists: %s", path)
            return
        self._unregister_tree(path)
        self._emit(SyncIntent(path, IntentKind.REMOVE))

    def _emit(self, intent: SyncIntent) -> None:
        self.actuator.apply(intent)

    def _register_tree(self, top: Path) -> None:
        for directory in iter_dirs(top, self.rules):
            if directory != self.root and self.rules.is_ignored(directory, self.root):
                continue
            self._register(directory)

    def _register(self, directory: Path) -> None:
        if directory in self._watches:
            return
        try:
            self._watches[directory] = self._observer.schedule(
                self._handler, str(directory), recursive=False
            )
        except OSError as exc:
            logger.error("Cannot watch %s: %s", directory, exc)

    def _unregister_tree(self, path: Path) -> None:
        for directory in [d for d in self._watches if d == path or path in d.parents]:
            watch = self._watches.pop(directory)
            try:
                self._observer.unschedule(watch)
            except (KeyError, OSError) as exc:
                logger.debug("Unschedule %s: %s", directory, exc)
