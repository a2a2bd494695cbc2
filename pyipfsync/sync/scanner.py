"""Directory scanning utilities for sync operations."""

import asyncio
import logging
import os
import stat
from collections.abc import Iterable
from typing import Callable, Optional

logger = logging.getLogger(__name__)

IgnorePredicate = Callable[[str, Optional[os.stat_result]], bool]


def build_ignore_predicate(
    ignore_hidden: bool = False,
    ignore_suffixes: Iterable[str] = (),
) -> IgnorePredicate:
    """Build the predicate deciding which paths a walk skips.

    Args:
        ignore_hidden: Skip files and directories whose name starts with "."
        ignore_suffixes: Extensions to skip, with or without the leading dot

    Returns:
        A function ``(path, stat_result) -> bool``, True meaning "skip"

    Examples:
        >>> should_ignore = build_ignore_predicate(True, ["swp"])
        >>> should_ignore("/docs/.hidden", None)
        True
    """
    suffixes = {s.lstrip(".") for s in ignore_suffixes if s.strip(".")}

    def should_ignore(path: str, stats: Optional[os.stat_result]) -> bool:
        name = os.path.basename(path)
        if ignore_hidden and name.startswith("."):
            return True
        extension = os.path.splitext(name)[1].lstrip(".")
        return bool(extension) and extension in suffixes

    return should_ignore


def walk_directory(root: str, should_ignore: IgnorePredicate) -> list[str]:
    """Recursively collect the paths of all regular files under ``root``.

    Paths the predicate rejects are skipped; rejected directories are not
    descended into. Any failure to list a directory or stat an entry aborts
    the walk.

    Raises:
        OSError: If listing or stat fails anywhere in the tree
    """
    files: list[str] = []
    for name in sorted(os.listdir(root)):
        path = os.path.join(root, name)
        stats = os.stat(path)
        if should_ignore(path, stats):
            continue

        if stat.S_ISDIR(stats.st_mode):
            files.extend(walk_directory(path, should_ignore))
        elif stat.S_ISREG(stats.st_mode):
            files.append(path)
    return files


class DirectoryScanner:
    """Scans a monitored directory for files to fingerprint and upload.

    Examples:
        >>> scanner = DirectoryScanner(ignore_suffixes=["swp"], ignore_hidden=True)
        >>> files = await scanner.scan("/home/user/Documents/")
    """

    def __init__(
        self,
        ignore_suffixes: Iterable[str] = (),
        ignore_hidden: bool = False,
    ):
        """Initialize directory scanner.

        Args:
            ignore_suffixes: File extensions to ignore (e.g., ["swp", "part"])
            ignore_hidden: Whether to exclude files/folders starting with dot
        """
        self.ignore_suffixes = list(ignore_suffixes)
        self.ignore_hidden = ignore_hidden
        self.should_ignore = build_ignore_predicate(ignore_hidden, self.ignore_suffixes)

    def is_ignored(self, path: str, root: Optional[str] = None) -> bool:
        """Check a path found outside a walk against the ignore rules.

        When ``root`` is given, every directory between ``root`` and ``path``
        is checked too, as a walk would have skipped the whole subtree.
        Missing paths are checked by name only.
        """
        candidates = [path]
        if root is not None:
            root = root.rstrip(os.sep)
            parent = os.path.dirname(path)
            while parent.startswith(root) and len(parent) > len(root):
                candidates.append(parent)
                parent = os.path.dirname(parent)

        for candidate in candidates:
            try:
                stats: Optional[os.stat_result] = os.stat(candidate)
            except OSError:
                stats = None
            if self.should_ignore(candidate, stats):
                return True
        return False

    def walk(self, root: str) -> list[str]:
        return walk_directory(root, self.should_ignore)

    async def scan(self, root: str) -> list[str]:
        """Walk ``root`` without blocking the event loop."""
        files = await asyncio.to_thread(self.walk, root)
        logger.debug(f"Found {len(files)} file(s) under {root}")
        return files
