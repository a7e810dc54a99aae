"""SQLite index over daily notes: note rows, an FTS5 table and person entities.

One ``IndexStore`` owns one connection. Every mutation runs in its own
transaction, so a failed upsert or remove leaves the committed state as it
was. A process-local lock serialises access to the connection; nothing
protects the database file against a second writer process.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..config import ensure_directories, get_database_path
from ..errors import RebuildError, StorageError
from ..models import Entity, IndexStats, Note, SearchResult
from .snippets import DEFAULT_WIDTH, make_snippet, split_terms

logger = logging.getLogger(__name__)

PERSON = "person"

# bm25() weights, one per FTS5 column in declaration order (id is unindexed)
FTS_COLUMNS = [
    ("id", 0.0),
    ("title", 2.0),
    ("content", 1.0),
    ("tags", 1.0),
    ("mentions", 1.5),
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    id          TEXT PRIMARY KEY,
    file_path   TEXT NOT NULL,
    date        TEXT NOT NULL,
    title       TEXT NOT NULL,
    category    TEXT NOT NULL DEFAULT '',
    tags        TEXT NOT NULL DEFAULT '',
    mentions    TEXT NOT NULL DEFAULT '',
    content     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    indexed_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entities (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name          TEXT NOT NULL,
    type          TEXT NOT NULL,
    first_seen    TEXT NOT NULL,
    last_seen     TEXT NOT NULL,
    mention_count INTEGER NOT NULL DEFAULT 1,
    UNIQUE(name, type)
);

CREATE TABLE IF NOT EXISTS note_entities (
    note_id   TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    entity_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    PRIMARY KEY (note_id, entity_id)
);

CREATE INDEX IF NOT EXISTS idx_notes_date ON notes(date);
CREATE INDEX IF NOT EXISTS idx_notes_category ON notes(category);
CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name);
CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type);
"""

_NOTE_COLUMNS = "n.id, n.file_path, n.date, n.title, n.category, n.tags, n.mentions, n.content"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _join(values: Iterable[str]) -> str:
    return ",".join(v.replace(",", " ") for v in values)


def _split(value: str | None) -> list[str]:
    return [v for v in (value or "").split(",") if v]


def _fold(value: str | None) -> str | None:
    return value.lower() if isinstance(value, str) else value


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class IndexStore:
    """Persistent search index for daily notes."""

    def __init__(
        self,
        db_path: str | Path,
        enable_entity_extraction: bool = True,
        snippet_width: int = DEFAULT_WIDTH,
        clock: Callable[[], str] = _utcnow,
    ):
        self.db_path = str(db_path)
        self.enable_entity_extraction = enable_entity_extraction
        self.snippet_width = snippet_width
        self._clock = clock
        self._lock = threading.RLock()
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            # SQLite lower() only folds ASCII; match Python str.lower() on both sides
            self.conn.create_function("py_lower", 1, _fold)
            self.conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.executescript(_SCHEMA)
            self.fts_enabled = self._init_fts()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open index at {self.db_path}: {e}") from e

    @classmethod
    def open(cls, config: dict[str, Any]) -> "IndexStore":
        """Open the store configured for a notes root, creating it if needed."""
        ensure_directories(config)
        search_cfg = config.get("search", {})
        return cls(
            get_database_path(config),
            enable_entity_extraction=search_cfg.get("enable_entity_extraction", True),
            snippet_width=search_cfg.get("snippet_width", DEFAULT_WIDTH),
        )

    def _init_fts(self) -> bool:
        cols = ", ".join(f"{col} UNINDEXED" if col == "id" else col for col, _ in FTS_COLUMNS)
        try:
            self.conn.execute(
                f"CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5({cols}, tokenize='unicode61')"
            )
            self.conn.commit()
        except sqlite3.OperationalError as e:
            if "fts5" not in str(e).lower():
                raise
            logger.warning("SQLite was built without FTS5; falling back to weighted term matching")
            return False
        return True

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self.conn:
                    yield self.conn
            except sqlite3.Error as e:
                logger.error(f"{action} failed, rolled back: {e}")
                raise StorageError(f"{action} failed: {e}") from e

    def _fetch(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Index query failed: {e}") from e

    # -- mutations -----------------------------------------------------------

    def upsert(self, note: Note) -> None:
        """Insert or replace a note and refresh its full-text row and entity links."""
        meta = note.metadata
        now = self._clock()
        with self._transaction(f"Indexing {note.id}") as conn:
            conn.execute(
                """INSERT INTO notes
                   (id, file_path, date, title, category, tags, mentions, content,
                    created_at, updated_at, indexed_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     file_path = excluded.file_path, date = excluded.date,
                     title = excluded.title, category = excluded.category,
                     tags = excluded.tags, mentions = excluded.mentions,
                     content = excluded.content, created_at = excluded.created_at,
                     updated_at = excluded.updated_at, indexed_at = excluded.indexed_at""",
                (
                    note.id, note.path, note.date, meta.title, meta.category,
                    _join(meta.tags), _join(meta.mentions), note.content,
                    meta.created, meta.updated, now,
                ),
            )
            if self.fts_enabled:
                conn.execute("DELETE FROM notes_fts WHERE id = ?", (note.id,))
                conn.execute(
                    "INSERT INTO notes_fts (id, title, content, tags, mentions) VALUES (?, ?, ?, ?, ?)",
                    (note.id, meta.title, note.content, " ".join(meta.tags), " ".join(meta.mentions)),
                )
            if self.enable_entity_extraction:
                self._index_entities(conn, note, now)
        logger.debug(f"Indexed note {note.id}")

    def _index_entities(self, conn: sqlite3.Connection, note: Note, now: str) -> None:
        linked = {
            row["entity_id"]
            for row in conn.execute("SELECT entity_id FROM note_entities WHERE note_id = ?", (note.id,))
        }
        wanted: set[int] = set()
        for mention in dict.fromkeys(m.lower() for m in note.metadata.mentions):
            row = conn.execute(
                "SELECT id FROM entities WHERE name = ? AND type = ?", (mention, PERSON)
            ).fetchone()
            if row is None:
                cur = conn.execute(
                    "INSERT INTO entities (name, type, first_seen, last_seen, mention_count) VALUES (?, ?, ?, ?, 1)",
                    (mention, PERSON, now, now),
                )
                entity_id = cur.lastrowid
            else:
                entity_id = row["id"]
                # A note counts once per entity, however often it is re-indexed
                increment = 0 if entity_id in linked else 1
                conn.execute(
                    """UPDATE entities
                       SET last_seen = MAX(last_seen, ?), mention_count = mention_count + ?
                       WHERE id = ?""",
                    (now, increment, entity_id),
                )
            wanted.add(entity_id)
            conn.execute(
                "INSERT OR IGNORE INTO note_entities (note_id, entity_id) VALUES (?, ?)",
                (note.id, entity_id),
            )
        for entity_id in linked - wanted:
            conn.execute(
                "DELETE FROM note_entities WHERE note_id = ? AND entity_id = ?", (note.id, entity_id)
            )

    def remove(self, note_id: str) -> None:
        """Delete a note from every table.

        Entity mention counts are left alone on purpose: they only go down
        through ``rebuild``.
        """
        with self._transaction(f"Removing {note_id}") as conn:
            conn.execute("DELETE FROM note_entities WHERE note_id = ?", (note_id,))
            if self.fts_enabled:
                conn.execute("DELETE FROM notes_fts WHERE id = ?", (note_id,))
            conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        logger.debug(f"Removed note {note_id}")

    def clear(self) -> None:
        with self._transaction("Clearing index") as conn:
            conn.execute("DELETE FROM note_entities")
            conn.execute("DELETE FROM entities")
            if self.fts_enabled:
                conn.execute("DELETE FROM notes_fts")
            conn.execute("DELETE FROM notes")

    def rebuild(self, notes: Iterable[Note]) -> int:
        """Drop all index state and re-index ``notes``. Returns how many were indexed.

        Holds the store lock throughout, so no query or ingestion event
        interleaves with a rebuild.
        """
        processed = 0
        with self._lock:
            try:
                self.clear()
                for note in notes:
                    self.upsert(note)
                    processed += 1
            except StorageError as e:
                raise RebuildError(f"Rebuild failed: {e}", processed) from e
        logger.info(f"Rebuilt index with {processed} note(s)")
        return processed

    # -- queries ---------------------------------------------------------------

    def _to_results(self, rows: list[sqlite3.Row], terms: list[str], scores: list[float] | None = None) -> list[SearchResult]:
        results = []
        for i, row in enumerate(rows):
            results.append(SearchResult(
                id=row["id"],
                path=row["file_path"],
                date=row["date"],
                title=row["title"],
                category=row["category"],
                tags=_split(row["tags"]),
                mentions=_split(row["mentions"]),
                snippet=make_snippet(row["content"], terms, self.snippet_width),
                rank=scores[i] if scores else 0.0,
            ))
        return results

    @staticmethod
    def _limit(limit: int | None) -> int:
        # SQLite treats a negative LIMIT as no limit
        return -1 if limit is None else limit

    def query_text(self, terms: str | list[str], limit: int | None = None) -> list[SearchResult]:
        """Full-text search over title, body, tags and mentions; best match first.

        Every term must match somewhere in the note.
        """
        if isinstance(terms, str):
            terms = split_terms(terms)
        else:
            terms = [t for term in terms for t in split_terms(term)]
        if not terms:
            return []
        if not self.fts_enabled:
            return self._scan_text(terms, limit)

        # Quote every term so user text cannot inject FTS5 operators
        fts_query = " ".join(f'"{t}"' for t in terms)
        weights = ", ".join(str(w) for _, w in FTS_COLUMNS)
        rows = self._fetch(
            f"""SELECT {_NOTE_COLUMNS}, bm25(notes_fts, {weights}) AS score
                FROM notes_fts
                JOIN notes n ON n.id = notes_fts.id
                WHERE notes_fts MATCH ?
                ORDER BY score, n.date DESC
                LIMIT ?""",
            (fts_query, self._limit(limit)),
        )
        # bm25() is negative, lower is better
        return self._to_results(rows, terms, [-row["score"] for row in rows])

    def _scan_text(self, terms: list[str], limit: int | None) -> list[SearchResult]:
        weights = dict(FTS_COLUMNS)
        wanted = [t.lower() for t in terms]
        scored = []
        for row in self._fetch(f"SELECT {_NOTE_COLUMNS} FROM notes n ORDER BY n.date DESC"):
            fields = {
                "title": row["title"],
                "content": row["content"],
                "tags": row["tags"].replace(",", " "),
                "mentions": row["mentions"].replace(",", " "),
            }
            tokens = {name: [t.lower() for t in split_terms(value)] for name, value in fields.items()}
            score = 0.0
            for term in wanted:
                hits = sum(weights[name] * toks.count(term) for name, toks in tokens.items())
                if hits == 0:
                    break
                score += hits
            else:
                scored.append((score, row))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        if limit is not None:
            scored = scored[:limit]
        return self._to_results([row for _, row in scored], terms, [score for score, _ in scored])

    def query_by_person(self, name: str, limit: int | None = None) -> list[SearchResult]:
        name = name.strip().lstrip("@").lower()
        if not name:
            return []
        rows = self._fetch(
            f"""SELECT {_NOTE_COLUMNS} FROM notes n
                WHERE ',' || n.mentions || ',' LIKE ? ESCAPE '\\'
                ORDER BY n.date DESC
                LIMIT ?""",
            (f"%,{_like_escape(name)},%", self._limit(limit)),
        )
        return self._to_results(rows, [name])

    def query_by_tag(self, tag: str, limit: int | None = None) -> list[SearchResult]:
        tag = tag.strip().lstrip("#")
        if not tag:
            return []
        rows = self._fetch(
            f"""SELECT {_NOTE_COLUMNS} FROM notes n
                WHERE ',' || py_lower(n.tags) || ',' LIKE ? ESCAPE '\\'
                ORDER BY n.date DESC
                LIMIT ?""",
            (f"%,{_like_escape(tag.lower())},%", self._limit(limit)),
        )
        return self._to_results(rows, [tag])

    def query_by_category(self, category: str, limit: int | None = None) -> list[SearchResult]:
        rows = self._fetch(
            f"""SELECT {_NOTE_COLUMNS} FROM notes n
                WHERE py_lower(n.category) = ?
                ORDER BY n.date DESC
                LIMIT ?""",
            (category.strip().lower(), self._limit(limit)),
        )
        return self._to_results(rows, [category])

    def query_by_date_range(self, start: str, end: str, limit: int | None = None) -> list[SearchResult]:
        """Notes dated between ``start`` and ``end`` inclusive, newest first."""
        rows = self._fetch(
            f"""SELECT {_NOTE_COLUMNS} FROM notes n
                WHERE n.date >= ? AND n.date <= ?
                ORDER BY n.date DESC
                LIMIT ?""",
            (start, end, self._limit(limit)),
        )
        return self._to_results(rows, [])

    def get(self, note_id: str) -> SearchResult | None:
        rows = self._fetch(f"SELECT {_NOTE_COLUMNS} FROM notes n WHERE n.id = ?", (note_id,))
        return self._to_results(rows, [])[0] if rows else None

    def regenerate_snippets(self, results: list[SearchResult], terms: str | list[str]) -> list[SearchResult]:
        """Return copies of ``results`` snippetted around ``terms``."""
        if not results:
            return []
        if isinstance(terms, str):
            terms = split_terms(terms) or [terms]
        placeholders = ", ".join("?" for _ in results)
        rows = self._fetch(
            f"SELECT id, content FROM notes WHERE id IN ({placeholders})", [r.id for r in results]
        )
        bodies = {row["id"]: row["content"] for row in rows}
        return [
            replace(r, snippet=make_snippet(bodies[r.id], terms, self.snippet_width)) if r.id in bodies else r
            for r in results
        ]

    def list_entities(self, type: str | None = None) -> list[Entity]:
        """Entities ordered by how many notes mention them."""
        sql = "SELECT name, type, first_seen, last_seen, mention_count FROM entities"
        params: tuple = ()
        if type:
            sql += " WHERE type = ?"
            params = (type,)
        sql += " ORDER BY mention_count DESC, name"
        return [
            Entity(
                name=row["name"],
                type=row["type"],
                first_seen=row["first_seen"],
                last_seen=row["last_seen"],
                mention_count=row["mention_count"],
            )
            for row in self._fetch(sql, params)
        ]

    def stats(self) -> IndexStats:
        row = self._fetch(
            """SELECT (SELECT COUNT(*) FROM notes) AS note_count,
                      (SELECT COUNT(*) FROM entities) AS entity_count,
                      (SELECT MAX(indexed_at) FROM notes) AS last_indexed"""
        )[0]
        return IndexStats(
            note_count=row["note_count"],
            entity_count=row["entity_count"],
            last_indexed=row["last_indexed"],
        )
