"""Two-tier file fingerprints.

A fingerprint pairs a cheap *quick digest* derived from the file size and
modification time with a *content digest* of the file bytes. The quick
digest decides whether the content digest needs recomputing at all; the
content digest decides whether the file has to be uploaded again.

Both digests use XXH64 and are rendered as lowercase hex without padding.
"""

import os
import struct
from dataclasses import dataclass

import xxhash

READ_CHUNK_SIZE = 1024 * 1024


def _hexdigest(hasher: "xxhash.xxh64") -> str:
    return format(hasher.intdigest(), "x")


def quick_digest(path: str) -> str:
    """Hash the size and modification time (in milliseconds) of a file.

    The 16 byte buffer holds both values as little-endian unsigned 64-bit
    integers, size first.
    """
    stats = os.stat(path)
    mtime_ms = stats.st_mtime_ns // 1_000_000
    buffer = struct.pack(
        "<QQ", stats.st_size & 0xFFFFFFFFFFFFFFFF, mtime_ms & 0xFFFFFFFFFFFFFFFF
    )
    return _hexdigest(xxhash.xxh64(buffer))


def content_digest(path: str) -> str:
    """Hash the full content of a file."""
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(READ_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return _hexdigest(hasher)


@dataclass(frozen=True)
class FileFingerprint:
    """Fingerprint of a tracked file."""

    path: str
    """Absolute path to the file"""

    content_digest: str = ""
    """Hex XXH64 of the file bytes, empty when content hashing is disabled"""

    quick_digest: str = ""
    """Hex XXH64 of the size and modification time"""

    @classmethod
    def new(cls, path: str, dont_hash: bool = False) -> "FileFingerprint":
        """Fingerprint a file from scratch."""
        return cls(path=path).recalculate(dont_hash)

    def recalculate(self, dont_hash: bool = False) -> "FileFingerprint":
        """Return an up to date fingerprint for the same path.

        When the quick digest is unchanged this returns ``self`` without
        reading the file. Otherwise the content digest is recomputed, unless
        ``dont_hash`` is set, in which case the previous content digest is
        kept verbatim and changes are only visible through the quick digest.
        """
        recalculated = quick_digest(self.path)
        if recalculated == self.quick_digest:
            return self

        return FileFingerprint(
            path=self.path,
            content_digest=self.content_digest
            if dont_hash
            else content_digest(self.path),
            quick_digest=recalculated,
        )
