"""Tests for the note change detector."""

import queue
import tempfile
import time
from pathlib import Path

from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from daybook.errors import WatchUnavailable
from daybook.ingest.watcher import NoteChanged, NoteDeleted, NoteEventHandler, NoteWatcher, WatcherError, WatcherReady


def _handler(root, quiet_period=0.0):
    emitted = []
    return NoteEventHandler(Path(root), ".index", emitted.append, quiet_period), emitted


def test_accepts_only_note_files():
    handler, _ = _handler("/notes")
    assert handler.accepts("/notes/2025/01/2025-01-01.md")
    assert not handler.accepts("/notes/2025/01/todo.md")
    assert not handler.accepts("/notes/.index/2025-01-01.md")
    assert not handler.accepts("/notes/.git/2025-01-01.md")
    assert not handler.accepts("/notes/2025/01/2025-01-01.md.swp")


def test_events_are_filtered():
    handler, emitted = _handler("/notes")
    handler.dispatch(FileCreatedEvent("/notes/2025/01/2025-01-01.md"))
    handler.dispatch(FileModifiedEvent("/notes/2025/01/scratch.txt"))
    handler.dispatch(DirCreatedEvent("/notes/2025/02"))
    handler.dispatch(FileDeletedEvent("/notes/.index/2025-01-01.md"))
    handler.dispatch(FileDeletedEvent("/notes/2025/01/2025-01-02.md"))
    assert emitted == [
        NoteChanged("/notes/2025/01/2025-01-01.md"),
        NoteDeleted("/notes/2025/01/2025-01-02.md"),
    ]


def test_move_is_delete_plus_change():
    handler, emitted = _handler("/notes")
    handler.dispatch(FileMovedEvent("/notes/2025/01/2025-01-01.md", "/notes/2025/01/2025-01-09.md"))
    handler.dispatch(FileMovedEvent("/notes/2025/01/draft.md", "/notes/2025/01/2025-01-10.md"))
    assert emitted == [
        NoteDeleted("/notes/2025/01/2025-01-01.md"),
        NoteChanged("/notes/2025/01/2025-01-09.md"),
        NoteChanged("/notes/2025/01/2025-01-10.md"),
    ]


def test_rapid_writes_coalesce():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "2025-01-01.md"
        path.write_text("partial")
        handler, emitted = _handler(tmpdir, quiet_period=0.05)
        for _ in range(5):
            handler.dispatch(FileModifiedEvent(str(path)))
        assert emitted == []
        time.sleep(0.5)
        assert emitted == [NoteChanged(str(path))]
        assert handler.pending() == 0


def test_delete_cancels_pending_change():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "2025-01-01.md"
        path.write_text("x")
        handler, emitted = _handler(tmpdir, quiet_period=0.1)
        handler.dispatch(FileModifiedEvent(str(path)))
        handler.dispatch(FileDeletedEvent(str(path)))
        time.sleep(0.4)
        assert emitted == [NoteDeleted(str(path))]


def test_missing_root_reports_error_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        watcher = NoteWatcher(Path(tmpdir) / "missing")
        assert watcher.start() is False
        assert not watcher.is_running
        event = watcher.events.get_nowait()
        assert isinstance(event, WatcherError)
        assert isinstance(event.error, WatchUnavailable)
        assert watcher.events.empty()


def test_initial_scan_then_ready():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "2025" / "01").mkdir(parents=True)
        (root / ".index").mkdir()
        note = root / "2025" / "01" / "2025-01-01.md"
        note.write_text("hello")
        (root / "2025" / "01" / "ideas.md").write_text("not a note")
        (root / ".index" / "2025-01-02.md").write_text("ignored")

        watcher = NoteWatcher(root, quiet_period=0.05)
        try:
            assert watcher.start() is True
            assert watcher.events.get(timeout=2) == NoteChanged(str(note))
            assert watcher.events.get(timeout=2) == WatcherReady()
        finally:
            watcher.stop()
        assert not watcher.is_running
        try:
            leftover = watcher.events.get_nowait()
        except queue.Empty:
            leftover = None
        assert leftover is None
