"""
Ignore rules and tree walking.

The same rules apply when scanning a tree at startup and when
filtering live watcher events, so a path that is ignored at one time
is ignored at the other.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger("ipfs_sync.ignore")

HIDDEN_MARKER = "."


class IgnoreRules:
    """Hidden-path and suffix filter.

    Args:
        suffixes: Final extensions to skip, without the dot ("part", "swp").
        ignore_hidden: Skip anything with a path segment starting with ".".
    """

    def __init__(self, suffixes: Iterable[str] = (), ignore_hidden: bool = False):
        self.suffixes = frozenset(s.lstrip(".") for s in suffixes)
        self.ignore_hidden = ignore_hidden

    def is_ignored(self, path: Path, root: Path) -> bool:
        """Whether ``path`` (somewhere under ``root``) should be skipped.

        Paths outside ``root`` are always ignored.
        """
        try:
            rel = Path(path).relative_to(root)
        except ValueError:
            return True
        if self.ignore_hidden and any(
            part.startswith(HIDDEN_MARKER) for part in rel.parts
        ):
            return True
        return self.has_ignored_suffix(Path(path).name)

    def has_ignored_suffix(self, name: str) -> bool:
        if HIDDEN_MARKER not in name:
            return False
        return name.rsplit(HIDDEN_MARKER, 1)[1] in self.suffixes


def iter_dirs(root: Path, rules: IgnoreRules) -> Iterator[Path]:
    """Yield ``root`` and every non-ignored directory beneath it."""
    root = Path(root)
    for dirpath, dirnames, _ in os.walk(root, onerror=_log_walk_error):
        current = Path(dirpath)
        dirnames[:] = sorted(
            d for d in dirnames if not rules.is_ignored(current / d, root)
        )
        yield current


def iter_files(root: Path, rules: IgnoreRules, top: Path = None) -> Iterator[Path]:
    """Yield every non-ignored regular file beneath ``top``.

    ``root`` is the watch root the ignore rules are evaluated against;
    ``top`` defaults to it and can point at a subdirectory.
    """
    root = Path(root)
    top = Path(top) if top is not None else root
    for dirpath, dirnames, filenames in os.walk(top, onerror=_log_walk_error):
        current = Path(dirpath)
        dirnames[:] = sorted(
            d for d in dirnames if not rules.is_ignored(current / d, root)
        )
        for name in sorted(filenames):
            path = current / name
            if rules.is_ignored(path, root) or not path.is_file():
                continue
            yield path


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Cannot walk %s: %s", exc.filename, exc)
