"""Durable fingerprint store and change tracking.

The store keeps two entries per tracked file in a single sqlite table:
``<path>`` holds the content digest and ``ts_<path>`` the quick digest.
Paths are stored flat, so removing a directory means removing every key
under it with a range scan. An in-memory ``hashmap`` mirrors the latest
fingerprint per path for fast lookups while handling watch events.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import aiosqlite

from .fingerprint import FileFingerprint

logger = logging.getLogger(__name__)

QUICK_PREFIX = "ts_"


def quick_key(path: str) -> str:
    """Return the store key holding the quick digest of a path."""
    return f"{QUICK_PREFIX}{path}"


def is_same_or_descendant(key: str, path: str) -> bool:
    """Check whether ``key`` is ``path`` itself or lies below it.

    Examples:
        >>> is_same_or_descendant("/a/b/c.txt", "/a/b")
        True
        >>> is_same_or_descendant("/a/bc", "/a/b")
        False
    """
    if key == path:
        return True
    prefix = path if path.endswith(os.sep) else path + os.sep
    return key.startswith(prefix)


class FingerprintStore:
    """Durable key/value store for file fingerprints.

    Examples:
        >>> store = FingerprintStore(Path("~/.ipfs-sync.db").expanduser())
        >>> await store.open()
        >>> await store.put("/home/user/docs/a.txt", "3f1c...")
    """

    def __init__(self, db_path: Path):
        """Initialize the store.

        Args:
            db_path: Path of the sqlite database file
        """
        self.db_path = Path(db_path)
        self.hashmap: dict[str, FileFingerprint] = {}
        self._db: Optional[aiosqlite.Connection] = None

    async def open(self) -> "FingerprintStore":
        """Open (and create if needed) the database."""
        if self._db is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
            await self._db.execute(
                "CREATE TABLE IF NOT EXISTS entries "
                "(key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            await self._db.commit()
            logger.debug(f"Opened fingerprint store at {self.db_path}")
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "FingerprintStore":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Fingerprint store is not open")
        return self._db

    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None."""
        async with self.db.execute(
            "SELECT value FROM entries WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        await self.db.execute(
            "INSERT INTO entries (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        await self.db.commit()

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM entries WHERE key = ?", (key,))
        await self.db.commit()

    async def keys_under(self, path: str) -> list[str]:
        """Return ``path`` and every stored key below it.

        Scans keys in order starting at ``path`` and stops at the first key
        that no longer shares ``path`` as a prefix. Keys that merely share a
        partial name (``/a/bc`` for ``/a/b``) are skipped.
        """
        keys = []
        async with self.db.execute(
            "SELECT key FROM entries WHERE key >= ? ORDER BY key", (path,)
        ) as cursor:
            async for (key,) in cursor:
                if not key.startswith(path):
                    break
                if is_same_or_descendant(key, path):
                    keys.append(key)
        return keys


class ChangeProcessor:
    """Compares fingerprints with the store and keeps it up to date.

    Without a store every operation is a no-op and ``update`` never reports
    a change, which is how the engine runs in stateless mode.
    """

    def __init__(self, store: Optional[FingerprintStore] = None):
        self.store = store

    @property
    def enabled(self) -> bool:
        return self.store is not None

    @property
    def hashmap(self) -> dict[str, FileFingerprint]:
        return self.store.hashmap if self.store is not None else {}

    async def load(self, path: str, dont_hash: bool = False) -> FileFingerprint:
        """Build a fingerprint from the stored digests of ``path``.

        The content digest is left empty when ``dont_hash`` is set.
        """
        if self.store is None:
            return FileFingerprint(path=path)
        quick = await self.store.get(quick_key(path))
        content = "" if dont_hash else await self.store.get(path)
        return FileFingerprint(
            path=path, content_digest=content or "", quick_digest=quick or ""
        )

    async def update(self, fingerprint: FileFingerprint) -> bool:
        """Write changed digests of ``fingerprint`` to the store.

        Returns:
            True only if both the content digest and the quick digest
            differed from the stored values
        """
        if self.store is None:
            return False

        content_changed = False
        quick_changed = False

        stored_content = await self.store.get(fingerprint.path)
        if stored_content != fingerprint.content_digest:
            await self.store.put(fingerprint.path, fingerprint.content_digest)
            content_changed = True

        stored_quick = await self.store.get(quick_key(fingerprint.path))
        if stored_quick != fingerprint.quick_digest:
            await self.store.put(quick_key(fingerprint.path), fingerprint.quick_digest)
            quick_changed = True

        return content_changed and quick_changed

    async def delete(self, path: str) -> None:
        """Delete the entries of a file, or of everything below a directory.

        Args:
            path: The path of a file or a directory
        """
        if self.store is None:
            return

        for key in await self.store.keys_under(path):
            logger.debug(f"Deleting {key} from db")
            await self.store.delete(key)
            await self.store.delete(quick_key(key))
            self.store.hashmap.pop(key, None)

        for key in [k for k in self.store.hashmap if is_same_or_descendant(k, path)]:
            del self.store.hashmap[key]
