"""Typed views of the IPFS and Estuary API responses.

Every response the sync engine relies on is parsed into one of these
structures at the client boundary. A missing or mistyped field raises
``IpfsInvalidResponseError`` instead of leaking a half-parsed dict.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .exceptions import IpfsInvalidResponseError

# filestore/verify status for an entry whose backing file is gone
FILESTORE_NO_FILE = 11


def _require(data: Any, field: str, kind: type = str) -> Any:
    if not isinstance(data, dict):
        raise IpfsInvalidResponseError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    value = data.get(field)
    if not isinstance(value, kind):
        raise IpfsInvalidResponseError(
            f"Missing or invalid field {field!r} in response: {data!r}"
        )
    return value


@dataclass(frozen=True)
class Key:
    """A named IPNS key."""

    id: str
    name: str

    @classmethod
    def from_api_response(cls, data: Any) -> Key:
        return cls(id=_require(data, "Id"), name=_require(data, "Name"))


@dataclass(frozen=True)
class AddResult:
    """Result of ``add``."""

    hash: str
    name: str = ""
    size: str = ""

    @classmethod
    def from_api_response(cls, data: Any) -> AddResult:
        return cls(
            hash=_require(data, "Hash"),
            name=str(data.get("Name", "")),
            size=str(data.get("Size", "")),
        )


@dataclass(frozen=True)
class FileStat:
    """Result of ``files/stat``."""

    hash: str
    type: str = ""

    @classmethod
    def from_api_response(cls, data: Any) -> FileStat:
        return cls(hash=_require(data, "Hash"), type=str(data.get("Type", "")))


@dataclass(frozen=True)
class NameResolution:
    """Result of ``name/resolve``."""

    path: str

    @property
    def cid(self) -> str:
        """The CID part of an ``/ipfs/<cid>`` path."""
        parts = self.path.split("/")
        if len(parts) < 3 or not parts[2]:
            raise IpfsInvalidResponseError(
                f"Unexpected output from name/resolve: {self.path}"
            )
        return parts[2]

    @classmethod
    def from_api_response(cls, data: Any) -> NameResolution:
        return cls(path=_require(data, "Path"))


@dataclass(frozen=True)
class RefEntry:
    """One line of the streamed ``refs`` output."""

    ref: str
    err: str = ""

    @classmethod
    def from_api_response(cls, data: Any) -> RefEntry:
        if not isinstance(data, dict):
            raise IpfsInvalidResponseError(f"Invalid refs entry: {data!r}")
        return cls(ref=str(data.get("Ref") or ""), err=str(data.get("Err") or ""))


@dataclass(frozen=True)
class FilestoreEntry:
    """One line of the streamed ``filestore/verify`` output."""

    status: int
    key: str
    file_path: str = ""

    @property
    def missing_file(self) -> bool:
        return self.status == FILESTORE_NO_FILE

    @classmethod
    def from_api_response(cls, data: Any) -> FilestoreEntry:
        status = _require(data, "Status", int)
        key = _require(data, "Key", dict)
        return cls(
            status=status,
            key=_require(key, "/"),
            file_path=str(data.get("FilePath", "")),
        )


@dataclass(frozen=True)
class EstuaryPin:
    """A pin request stored by Estuary."""

    request_id: str
    cid: str
    name: str = ""

    @classmethod
    def from_api_response(cls, data: Any) -> EstuaryPin:
        pin = _require(data, "pin", dict)
        # the pinning service API uses "requestid", older Estuary builds "requestId"
        field = "requestid" if "requestid" in data else "requestId"
        return cls(
            request_id=str(_require(data, field, (str, int))),
            cid=_require(pin, "cid"),
            name=str(pin.get("name", "")),
        )
