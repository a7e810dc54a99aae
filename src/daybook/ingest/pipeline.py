"""Ingestion pipeline: apply watcher events to the index, one at a time."""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

from ..errors import MalformedDocument, StorageError
from ..index.store import IndexStore
from ..notes.parser import note_id_from_path, read_note
from .watcher import NoteChanged, NoteDeleted, WatchEvent, WatcherError, WatcherReady

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoteIndexed:
    note_id: str
    path: str


@dataclass(frozen=True)
class NoteRemoved:
    note_id: str


@dataclass(frozen=True)
class NoteSkipped:
    path: str
    reason: str


IngestOutcome = NoteIndexed | NoteRemoved | NoteSkipped


class IngestionPipeline:
    """Single consumer of a watcher's event queue.

    Successful mutations are published on ``outbox`` (if given) so that other
    components, such as a sync job, can react to indexed or removed notes.
    """

    def __init__(
        self,
        store: IndexStore,
        events: "queue.Queue[WatchEvent]",
        default_category: str,
        outbox: "queue.Queue[IngestOutcome] | None" = None,
    ):
        self.store = store
        self.events = events
        self.default_category = default_category
        self.outbox = outbox
        self.ready = threading.Event()
        self.failed: Exception | None = None
        self.counts = {"indexed": 0, "removed": 0, "skipped": 0, "errors": 0}

    @classmethod
    def from_config(cls, store: IndexStore, events: "queue.Queue[WatchEvent]", config: dict[str, Any], **kwargs) -> "IngestionPipeline":
        return cls(store, events, config["default_category"], **kwargs)

    def process(self, event: WatchEvent) -> IngestOutcome | None:
        """Apply one event. StorageError propagates after being logged."""
        if isinstance(event, NoteChanged):
            return self._publish(self._index(event.path))
        if isinstance(event, NoteDeleted):
            note_id = note_id_from_path(event.path)
            self._guard(lambda: self.store.remove(note_id), event.path)
            self.counts["removed"] += 1
            logger.info(f"Removed {note_id} from index")
            return self._publish(NoteRemoved(note_id))
        if isinstance(event, WatcherReady):
            self.ready.set()
            logger.info("Initial scan complete; watching for changes")
            return None
        if isinstance(event, WatcherError):
            if self.failed is None:
                self.failed = event.error
                logger.error(f"File watching unavailable, ingestion idle: {event.error}")
            return None
        raise TypeError(f"Unknown watch event: {event!r}")

    def _index(self, path: str) -> IngestOutcome:
        try:
            note = read_note(path, self.default_category)
        except MalformedDocument as e:
            self.counts["skipped"] += 1
            logger.warning(f"Skipping {path}: {e.reason}")
            return NoteSkipped(path, e.reason)
        except OSError as e:
            # Usually deleted between the event and the read; the delete event follows
            self.counts["skipped"] += 1
            logger.warning(f"Skipping unreadable {path}: {e}")
            return NoteSkipped(path, str(e))
        self._guard(lambda: self.store.upsert(note), path)
        self.counts["indexed"] += 1
        logger.info(f"Indexed {note.id}")
        return NoteIndexed(note.id, path)

    def _guard(self, action, path: str) -> None:
        try:
            action()
        except StorageError:
            self.counts["errors"] += 1
            logger.exception(f"Index update failed for {path}")
            raise

    def _publish(self, outcome: IngestOutcome) -> IngestOutcome:
        if self.outbox is not None and not isinstance(outcome, NoteSkipped):
            self.outbox.put(outcome)
        return outcome

    def drain(self) -> int:
        """Process every event currently queued without blocking. Returns how many."""
        handled = 0
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                return handled
            self._handle(event)
            handled += 1

    def run(self, stop: threading.Event, poll_interval: float = 0.5) -> None:
        """Consume events until ``stop`` is set."""
        while not stop.is_set():
            try:
                event = self.events.get(timeout=poll_interval)
            except queue.Empty:
                continue
            self._handle(event)

    def _handle(self, event: WatchEvent) -> None:
        try:
            self.process(event)
        except StorageError:
            # Already logged; the failed mutation was rolled back, keep consuming
            pass
        finally:
            self.events.task_done()
