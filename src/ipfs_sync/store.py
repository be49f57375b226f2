"""SQLite-backed fingerprint store.

Remembers, per local file path, the fingerprint of the last version
that was synced to IPFS. On restart the reconciliation scan compares
fresh fingerprints against this table and only re-uploads what
changed while the daemon was down.

Every read-modify-write runs under one exclusive lock. Per-operation
SQLite errors are logged and reported as "no cached fingerprint",
which forces a resync instead of crashing the daemon.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from .models import FingerprintRecord, SyncOutcome

logger = logging.getLogger("ipfs_sync.store")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS fingerprints (
    path TEXT PRIMARY KEY,
    content BLOB,
    cheap BLOB NOT NULL,
    outcome TEXT NOT NULL DEFAULT 'synced',
    updated_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
"""

UPSERT_SQL = """
INSERT INTO fingerprints(path, content, cheap, outcome)
VALUES (?, ?, ?, ?)
ON CONFLICT(path) DO UPDATE SET
    content = excluded.content,
    cheap = excluded.cheap,
    outcome = excluded.outcome,
    updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
"""


class StoreError(Exception):
    """The fingerprint database could not be opened."""


class FingerprintStore:
    """Durable map from file path to last-synced fingerprint.

    Usage::

        store = FingerprintStore("~/.ipfs-sync/fingerprints.db")
        if store.put(record):
            ...  # fingerprint was new or different
        store.delete_prefix("/home/user/Documents/old-folder")
        store.close()
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path).expanduser()
        self._lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.executescript(SCHEMA_SQL)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"Cannot open fingerprint store {self.db_path}: {exc}") from exc
        logger.info("Fingerprint store opened: %s", self.db_path)

    def __enter__(self) -> "FingerprintStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        """Flush and close the database."""
        with self._lock:
            try:
                self.conn.commit()
                self.conn.close()
            except sqlite3.Error as exc:
                logger.error("Error closing fingerprint store: %s", exc)

    def get(self, path: Union[str, Path]) -> Optional[FingerprintRecord]:
        """Return the stored record for ``path``, or None."""
        with self._lock:
            return self._get(str(path))

    def changed(self, record: FingerprintRecord) -> bool:
        """Whether ``record`` differs from (or is missing in) the store.

        Read-only: the store is not touched, so callers can sync first
        and ``put`` afterwards.
        """
        with self._lock:
            stored = self._get(record.path)
        return stored is None or stored.fingerprint != record.fingerprint

    def put(self, record: FingerprintRecord) -> bool:
        """Store ``record`` unless the same fingerprint is already there.

        Returns:
            True if the record was written (new or changed), False if
            the stored fingerprint was identical.
        """
        with self._lock:
            stored = self._get(record.path)
            if stored is not None and stored.fingerprint == record.fingerprint:
                return False
            try:
                with self.conn:
                    self.conn.execute(
                        UPSERT_SQL,
                        (record.path, record.content, record.cheap, record.outcome.value),
                    )
            except sqlite3.Error as exc:
                logger.error("Cannot store fingerprint for %s: %s", record.path, exc)
            return True

    def delete_prefix(self, path: Union[str, Path]) -> int:
        """Remove the record for ``path`` and every record beneath it.

        ``/a/b`` removes ``/a/b`` and ``/a/b/c`` but leaves ``/a/bc``.

        Returns:
            Number of records removed.
        """
        exact = str(path).rstrip(os.sep) or os.sep
        prefix = exact if exact.endswith(os.sep) else exact + os.sep
        with self._lock:
            try:
                with self.conn:
                    cur = self.conn.execute(
                        "DELETE FROM fingerprints WHERE path = ? OR substr(path, 1, ?) = ?",
                        (exact, len(prefix), prefix),
                    )
            except sqlite3.Error as exc:
                logger.error("Cannot delete fingerprints under %s: %s", exact, exc)
                return 0
        if cur.rowcount:
            logger.debug("Deleted %d fingerprint(s) under %s", cur.rowcount, exact)
        return cur.rowcount

    def count(self) -> int:
        """Number of stored records."""
        with self._lock:
            try:
                row = self.conn.execute("SELECT COUNT(*) AS cnt FROM fingerprints").fetchone()
            except sqlite3.Error as exc:
                logger.error("Cannot count fingerprints: %s", exc)
                return 0
        return row["cnt"]

    def _get(self, path: str) -> Optional[FingerprintRecord]:
        try:
            row = self.conn.execute(
                "SELECT path, content, cheap, outcome FROM fingerprints WHERE path = ?",
                (path,),
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error("Cannot read fingerprint for %s: %s", path, exc)
            return None
        if row is None:
            return None
        return FingerprintRecord(
            path=row["path"],
            content=row["content"],
            cheap=row["cheap"],
            outcome=SyncOutcome(row["outcome"]),
        )
