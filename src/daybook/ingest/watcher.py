"""Watch the notes root and queue change events for the ingestion pipeline."""

import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import WatchUnavailable
from ..notes.parser import is_note_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoteChanged:
    path: str


@dataclass(frozen=True)
class NoteDeleted:
    path: str


@dataclass(frozen=True)
class WatcherReady:
    pass


@dataclass(frozen=True)
class WatcherError:
    error: Exception


WatchEvent = NoteChanged | NoteDeleted | WatcherReady | WatcherError


class NoteEventHandler(FileSystemEventHandler):
    """Filters raw filesystem events down to note files and debounces writes.

    Every write to a path restarts that path's quiet-period timer; one
    NoteChanged is emitted once the file has gone quiet.
    """

    def __init__(self, root: Path, index_dir: str, emit: Callable[[WatchEvent], None], quiet_period: float = 0.5):
        super().__init__()
        self.root = root
        self.index_dir = index_dir
        self._emit = emit
        self._quiet_period = quiet_period
        self._lock = threading.Lock()
        self._timers: dict[str, threading.Timer] = {}

    def accepts(self, path: str | Path) -> bool:
        """True for YYYY-MM-DD.md files outside dot-directories and the index directory."""
        path = Path(path)
        if not is_note_file(path):
            return False
        try:
            parts = path.relative_to(self.root).parts
        except ValueError:
            parts = path.parts
        return not any(p.startswith(".") or p == self.index_dir for p in parts)

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory and self.accepts(event.src_path):
            self._schedule(str(event.src_path))

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory and self.accepts(event.src_path):
            self._schedule(str(event.src_path))

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory and self.accepts(event.src_path):
            self._delete(str(event.src_path))

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            return
        if self.accepts(event.src_path):
            self._delete(str(event.src_path))
        if self.accepts(event.dest_path):
            self._schedule(str(event.dest_path))

    def _schedule(self, path: str):
        if self._quiet_period <= 0:
            self._emit(NoteChanged(path))
            return
        with self._lock:
            if timer := self._timers.get(path):
                timer.cancel()
            timer = threading.Timer(self._quiet_period, self._flush, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _flush(self, path: str):
        with self._lock:
            timer = self._timers.get(path)
            # A newer write replaced this timer after it fired
            if timer is None or timer is not threading.current_thread():
                return
            del self._timers[path]
        if Path(path).exists():
            self._emit(NoteChanged(path))

    def _delete(self, path: str):
        with self._lock:
            if timer := self._timers.pop(path, None):
                timer.cancel()
        self._emit(NoteDeleted(path))

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def cancel_all(self):
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()


class NoteWatcher:
    """Observes a notes root and delivers ordered events on a bounded queue.

    ``start()`` first queues a NoteChanged for every note already on disk,
    then a single WatcherReady. If the root cannot be watched a single
    WatcherError is queued instead and no note events follow.
    """

    def __init__(
        self,
        notes_path: str | Path,
        index_dir: str = ".index",
        quiet_period: float = 0.5,
        queue_size: int = 1000,
    ):
        self.notes_path = Path(notes_path)
        self.events: queue.Queue[WatchEvent] = queue.Queue(maxsize=queue_size)
        self.handler = NoteEventHandler(self.notes_path, index_dir, self.events.put, quiet_period)
        self.observer = None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "NoteWatcher":
        watcher_cfg = config.get("watcher", {})
        return cls(
            config["notes_path"],
            index_dir=config.get("index_dir", ".index"),
            quiet_period=watcher_cfg.get("quiet_period", 0.5),
            queue_size=watcher_cfg.get("queue_size", 1000),
        )

    @property
    def is_running(self) -> bool:
        return self.observer is not None

    def start(self) -> bool:
        """Begin watching. Returns False (after queueing a WatcherError) on failure."""
        if self.observer is not None:
            return True
        if not self.notes_path.is_dir():
            self._report(WatchUnavailable(f"Notes directory not found: {self.notes_path}"))
            return False

        observer = Observer()
        try:
            observer.schedule(self.handler, str(self.notes_path), recursive=True)
            observer.start()
            initial = [p for p in sorted(self.notes_path.rglob("*.md")) if p.is_file() and self.handler.accepts(p)]
        except OSError as e:
            if observer.is_alive():
                observer.stop()
                observer.join()
            self._report(WatchUnavailable(f"Cannot watch {self.notes_path}: {e}"))
            return False

        self.observer = observer
        for path in initial:
            self.events.put(NoteChanged(str(path)))
        self.events.put(WatcherReady())
        logger.info(f"Watching {self.notes_path} ({len(initial)} existing note(s))")
        return True

    def stop(self):
        self.handler.cancel_all()
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            logger.info(f"Stopped watching {self.notes_path}")

    def _report(self, error: WatchUnavailable):
        logger.error(str(error))
        self.events.put(WatcherError(error))
