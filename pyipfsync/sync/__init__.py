"""Sync engine for pyipfsync - keeps local directories published on IPFS."""

from .directory import DirectoryState, MonitoredDirectory, Phase, build_states
from .engine import SyncEngine
from .fingerprint import FileFingerprint, content_digest, quick_digest
from .locks import PathLocks
from .operations import SyncOperations
from .recovery import BadBlockRecovery
from .scanner import DirectoryScanner, build_ignore_predicate, walk_directory
from .state import ChangeProcessor, FingerprintStore
from .watcher import WatchEvent, WatchEventType, translate_changes, watch_directory

__all__ = [
    "SyncEngine",
    "SyncOperations",
    "BadBlockRecovery",
    "MonitoredDirectory",
    "DirectoryState",
    "Phase",
    "build_states",
    "FileFingerprint",
    "quick_digest",
    "content_digest",
    "FingerprintStore",
    "ChangeProcessor",
    "DirectoryScanner",
    "build_ignore_predicate",
    "walk_directory",
    "PathLocks",
    "WatchEvent",
    "WatchEventType",
    "translate_changes",
    "watch_directory",
]
