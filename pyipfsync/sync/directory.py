"""Monitored directories and their runtime state."""

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..exceptions import IpfsConfigError
from ..models import Key
from ..utils import parent_path


def _get(data: dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return default


@dataclass
class MonitoredDirectory:
    """A local directory tree mirrored into MFS and published over IPNS.

    The local path is normalized to end with the path separator and the
    remote root (the last component of the local path) is derived once, at
    construction.
    """

    id: str
    """Stable identifier, also names the IPNS key"""

    path: str
    """Local root directory"""

    nocopy: bool = False
    """Add files through the filestore instead of copying their blocks"""

    dont_hash: bool = False
    """Detect changes from size and modification time only"""

    pin: bool = False
    """Pin the directory CID on the local daemon"""

    estuary: bool = False
    """Mirror the directory pin to Estuary"""

    ignore_hidden: Optional[bool] = None
    """Per-directory override of the global hidden file rule"""

    remote_root: str = field(init=False)
    """MFS directory name below the base path"""

    def __post_init__(self) -> None:
        if not self.path:
            raise IpfsConfigError(f"Dir entry path cannot be empty (ID: {self.id})")
        if not self.id:
            raise IpfsConfigError(f"Dir entry ID cannot be empty (Dir: {self.path})")
        if not self.path.endswith(os.sep):
            self.path += os.sep
        self.remote_root = os.path.basename(self.path.rstrip(os.sep))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonitoredDirectory":
        """Create a monitored directory from a config entry.

        Accepts the YAML key names (``ID``, ``Dir``, ``Nocopy``, ``DontHash``,
        ``Pin``, ``Estuary``, ``IgnoreHidden``) as well as snake_case names.
        """
        if not isinstance(data, dict):
            raise IpfsConfigError(f"Invalid Dirs entry: {data!r}")
        ignore_hidden = _get(data, "IgnoreHidden", "ignore_hidden")
        return cls(
            id=str(_get(data, "ID", "Id", "id", default="")),
            path=str(_get(data, "Dir", "dir", "path", default="") or ""),
            nocopy=bool(_get(data, "Nocopy", "NoCopy", "nocopy", default=False)),
            dont_hash=bool(_get(data, "DontHash", "dont_hash", default=False)),
            pin=bool(_get(data, "Pin", "pin", default=False)),
            estuary=bool(_get(data, "Estuary", "estuary", default=False)),
            ignore_hidden=None if ignore_hidden is None else bool(ignore_hidden),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ID": self.id,
            "Dir": self.path,
            "Nocopy": self.nocopy,
            "DontHash": self.dont_hash,
            "Pin": self.pin,
            "Estuary": self.estuary,
        }
        if self.ignore_hidden is not None:
            data["IgnoreHidden"] = self.ignore_hidden
        return data

    def relative_path(self, file_path: str) -> str:
        """Return a file path relative to the root, with forward slashes."""
        relative = os.path.relpath(file_path, self.path)
        return relative.replace(os.sep, "/")

    def remote_path(self, file_path: str) -> str:
        """Return the MFS path (relative to the base path) of a local file.

        Examples:
            >>> d = MonitoredDirectory(id="docs", path="/home/user/docs")
            >>> d.remote_path("/home/user/docs/notes/a.txt")
            'docs/notes/a.txt'
        """
        return f"{self.remote_root}/{self.relative_path(file_path)}"


class Phase(str, Enum):
    """Lifecycle of a monitored directory within one run."""

    UNINITIALIZED = "uninitialized"
    """Read from the configuration, not reconciled yet"""

    DISCOVERED = "discovered"
    """The IPNS key already existed"""

    GENERATING = "generating"
    """No key existed, the directory is being uploaded in full"""

    WATCHING = "watching"
    """A live watch is attached"""


@dataclass
class DirectoryState:
    """Mutable per-directory state owned by the sync engine."""

    directory: MonitoredDirectory
    key: Optional[Key] = None
    cid: str = ""
    """Last known root CID"""

    phase: Phase = Phase.UNINITIALIZED
    created_parents: set[str] = field(default_factory=set)
    """MFS parent directories created during this run"""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    """Guards read-modify-write of ``cid``"""

    @property
    def id(self) -> str:
        return self.directory.id

    def claim_parent(self, remote_path: str) -> bool:
        """Record the parent of ``remote_path``.

        Returns:
            True the first time a parent is seen, meaning it must be created
        """
        parent = parent_path(remote_path)
        if parent in self.created_parents:
            return False
        self.created_parents.add(parent)
        return True


def build_states(directories: list[MonitoredDirectory]) -> list[DirectoryState]:
    """Create one state per directory, rejecting duplicate IDs."""
    seen: set[str] = set()
    states = []
    for directory in directories:
        if directory.id in seen:
            raise IpfsConfigError(f"Duplicate directory ID: {directory.id}")
        seen.add(directory.id)
        states.append(DirectoryState(directory=directory))
    return states
