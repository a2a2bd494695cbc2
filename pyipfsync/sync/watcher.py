"""Live filesystem watching.

Raw ``watchfiles`` change sets are turned into a stream of tagged
``WatchEvent`` values. Each monitored directory has exactly one consumer
of its stream, so events for that directory are handled in the order they
arrive.
"""

import asyncio
import os
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from watchfiles import Change, awatch


class WatchEventType(str, Enum):
    """Kinds of events delivered to the sync engine."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"
    DIR_REMOVED = "dir_removed"
    """The watched root itself was removed"""


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    path: str


# Signature of ``watch_directory``, replaceable in tests
WatchSource = Callable[[str, Optional[asyncio.Event]], AsyncIterator[WatchEvent]]


def translate_changes(
    changes: Iterable[tuple[Change, str]], root: str
) -> list[WatchEvent]:
    """Turn a ``watchfiles`` change set into ordered watch events.

    A change set is unordered, so several changes to one path in the same
    batch are collapsed into a single event decided by whether the path
    exists now.

    Examples:
        >>> translate_changes({(Change.modified, "/docs/a.txt")}, "/docs/")
        [WatchEvent(type=<WatchEventType.CHANGED: 'changed'>, path='/docs/a.txt')]
    """
    root = root.rstrip(os.sep)
    by_path: dict[str, set[Change]] = {}
    for change, path in changes:
        by_path.setdefault(path, set()).add(change)

    events = []
    for path in sorted(by_path):
        kinds = by_path[path]
        if len(kinds) > 1:
            if not os.path.exists(path):
                kinds = {Change.deleted}
            elif Change.added in kinds:
                kinds = {Change.added}
            else:
                kinds = {Change.modified}
        (change,) = kinds

        if change == Change.deleted:
            kind = (
                WatchEventType.DIR_REMOVED
                if path.rstrip(os.sep) == root
                else WatchEventType.REMOVED
            )
        elif change == Change.added:
            kind = WatchEventType.ADDED
        else:
            kind = WatchEventType.CHANGED
        events.append(WatchEvent(type=kind, path=path))
    return events


async def watch_directory(
    root: str, stop_event: Optional[asyncio.Event] = None
) -> AsyncIterator[WatchEvent]:
    """Yield watch events for everything below ``root`` until stopped.

    Filtering is left to the ignore rules of the engine, so no watchfiles
    filter is applied.
    """
    async for changes in awatch(
        root, watch_filter=None, stop_event=stop_event, recursive=True
    ):
        for event in translate_changes(changes, root):
            yield event
        if not os.path.isdir(root):
            # some backends never report the root itself going away
            yield WatchEvent(type=WatchEventType.DIR_REMOVED, path=root)
            return
