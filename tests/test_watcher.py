"""Tests for watch event translation."""

import os
from unittest.mock import patch

import pytest
from watchfiles import Change

from pyipfsync.sync.watcher import (
    WatchEvent,
    WatchEventType,
    translate_changes,
    watch_directory,
)


class TestTranslateChanges:
    """Tests for translate_changes."""

    def test_change_kinds(self):
        """Each watchfiles change maps to one event type."""
        events = translate_changes(
            {
                (Change.added, "/docs/new.txt"),
                (Change.modified, "/docs/a.txt"),
                (Change.deleted, "/docs/old.txt"),
            },
            "/docs/",
        )
        assert events == [
            WatchEvent(WatchEventType.CHANGED, "/docs/a.txt"),
            WatchEvent(WatchEventType.ADDED, "/docs/new.txt"),
            WatchEvent(WatchEventType.REMOVED, "/docs/old.txt"),
        ]

    def test_root_removal(self):
        """Deleting the watched root is reported as such."""
        events = translate_changes({(Change.deleted, "/docs")}, "/docs/")
        assert events == [WatchEvent(WatchEventType.DIR_REMOVED, "/docs")]

    def test_replaced_file_is_added(self, tmp_path):
        """A file moved away and written again in one batch still exists."""
        path = tmp_path / "a.txt"
        path.write_text("saved")

        events = translate_changes(
            {(Change.deleted, str(path)), (Change.added, str(path))}, str(tmp_path)
        )

        assert events == [WatchEvent(WatchEventType.ADDED, str(path))]

    def test_modified_then_deleted(self, tmp_path):
        """Several changes to a path that is gone collapse into a removal."""
        path = str(tmp_path / "a.txt")
        events = translate_changes(
            {(Change.modified, path), (Change.deleted, path)}, str(tmp_path)
        )
        assert events == [WatchEvent(WatchEventType.REMOVED, path)]

    def test_deleted_and_modified_existing(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("x")
        events = translate_changes(
            [(Change.deleted, str(path)), (Change.modified, str(path))], str(tmp_path)
        )
        assert events == [WatchEvent(WatchEventType.CHANGED, str(path))]


class TestWatchDirectory:
    """Tests for watch_directory."""

    @pytest.mark.asyncio
    async def test_no_builtin_filter(self, tmp_path):
        """Paths watchfiles filters by default still reach the engine."""
        hidden_by_default = tmp_path / "node_modules" / "x.txt"
        hidden_by_default.parent.mkdir()
        hidden_by_default.write_text("x")
        calls = []

        async def fake_awatch(*args, **kwargs):
            calls.append(kwargs)
            yield {(Change.added, str(hidden_by_default))}

        with patch("pyipfsync.sync.watcher.awatch", fake_awatch):
            events = [e async for e in watch_directory(str(tmp_path) + os.sep)]

        assert events == [WatchEvent(WatchEventType.ADDED, str(hidden_by_default))]
        assert "watch_filter" in calls[0]
        assert calls[0]["watch_filter"] is None

    @pytest.mark.asyncio
    async def test_root_gone(self, tmp_path):
        """A root that vanished ends the stream with a root removal."""
        root = tmp_path / "docs"

        async def fake_awatch(*args, **kwargs):
            yield {(Change.deleted, str(root / "a.txt"))}

        with patch("pyipfsync.sync.watcher.awatch", fake_awatch):
            events = [e async for e in watch_directory(str(root))]

        assert [e.type for e in events] == [
            WatchEventType.REMOVED,
            WatchEventType.DIR_REMOVED,
        ]
