"""
File fingerprints -- cheap change detection for synced files.

Two strategies:

    content  xxHash64 of the file bytes. Catches accidental change,
             not a defence against tampering.
    cheap    size + mtime packed into 16 bytes, for directories
             configured with DontHash.

Fingerprints are opaque bytes; they are only ever compared for
equality. ``None`` means the file could not be read and must be
treated as changed.
"""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from typing import Optional

import xxhash

from .models import FingerprintRecord

logger = logging.getLogger("ipfs_sync.fingerprint")

CHUNK_SIZE = 256 * 1024  # 256 KB

_CHEAP = struct.Struct(">qq")


def content_fingerprint(path: Path) -> Optional[bytes]:
    """Stream a file through xxHash64."""
    digest = xxhash.xxh64()
    try:
        with open(path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
    except OSError as exc:
        logger.debug("Cannot hash %s: %s", path, exc)
        return None
    return digest.digest()


def cheap_fingerprint(path: Path) -> Optional[bytes]:
    """Pack (size, mtime_ns) into a fixed-width big-endian encoding."""
    try:
        st = os.stat(path)
    except OSError as exc:
        logger.debug("Cannot stat %s: %s", path, exc)
        return None
    return _CHEAP.pack(st.st_size, st.st_mtime_ns)


def fingerprint(path: Path, cheap: bool) -> Optional[bytes]:
    """Fingerprint ``path`` with the selected strategy."""
    if cheap:
        return cheap_fingerprint(path)
    return content_fingerprint(path)


def record_for(path: Path, cheap: bool) -> Optional[FingerprintRecord]:
    """Build a fingerprint record for ``path``.

    The cheap fingerprint is always filled in; the content one only
    when ``cheap`` is off.

    Returns:
        The record, or None if the file could not be read.
    """
    quick = cheap_fingerprint(path)
    if quick is None:
        return None
    content = None
    if not cheap:
        content = content_fingerprint(path)
        if content is None:
            return None
    return FingerprintRecord(path=str(path), content=content, cheap=quick)
