"""Read and write daily notes under the notes root."""

import logging
import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

import yaml

from ..errors import MalformedDocument
from ..models import DailySummary, Note, NoteEntry
from .parser import is_note_file, read_note

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"@([\w-]+)")
TAG_RE = re.compile(r"#([\w-]+)")
ENTRY_RE = re.compile(r"^## (\d{2}:\d{2}) - (.+?)$\n?(.*?)(?=^## \d{2}:\d{2} - |\Z)", re.DOTALL | re.MULTILINE)
CATEGORY_LINE_RE = re.compile(r"^\*\*Category:\*\* *(\S+)", re.MULTILINE)


def extract_mentions(text: str) -> list[str]:
    return list(dict.fromkeys(m.lower() for m in MENTION_RE.findall(text)))


def extract_tags(text: str) -> list[str]:
    return list(dict.fromkeys(TAG_RE.findall(text)))


def render_note(metadata: dict[str, Any], content: str) -> str:
    fm = yaml.safe_dump(metadata, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"---\n{fm}---\n{content.strip()}\n"


class NoteManager:
    """Owns the on-disk layout: ``<root>/YYYY/MM/YYYY-MM-DD.md``."""

    def __init__(self, notes_path: str | Path, default_category: str = "personal", categories: list[str] | None = None):
        self.notes_path = Path(notes_path)
        self.default_category = default_category
        self.categories = categories or [default_category]

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "NoteManager":
        return cls(config["notes_path"], config["default_category"], config.get("categories"))

    def get_date_path(self, note_date: str) -> Path:
        year, month, _ = note_date.split("-")
        return self.notes_path / year / month / f"{note_date}.md"

    def create_note(
        self,
        title: str,
        content: str,
        note_date: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        now: datetime | None = None,
    ) -> Note:
        """Append a timestamped entry to the day's note, creating the file if needed."""
        now = now or datetime.now().astimezone()
        note_date = note_date or now.date().isoformat()
        _validate_date(note_date)
        category = category or self.default_category
        path = self.get_date_path(note_date)
        path.parent.mkdir(parents=True, exist_ok=True)

        mentions = extract_mentions(content)
        all_tags = list(dict.fromkeys([*(tags or []), *extract_tags(content)]))
        entry = NoteEntry(
            time=now.strftime("%H:%M"),
            category=category,
            title=title,
            content=content,
            tags=all_tags,
            mentions=mentions,
        )
        stamp = now.astimezone(timezone.utc).isoformat()

        existing = read_note(path, self.default_category) if path.exists() else None
        if existing:
            meta = existing.metadata
            body = existing.content + "\n\n" + self._format_entry(entry)
            metadata = {
                "title": meta.title,
                "category": meta.category,
                "tags": list(dict.fromkeys([*meta.tags, *all_tags])),
                "created": meta.created,
                "updated": stamp,
                "mentions": list(dict.fromkeys([*meta.mentions, *mentions])),
            }
        else:
            body = self._format_entry(entry)
            metadata = {
                "title": f"Notes for {note_date}",
                "category": self.default_category,
                "tags": all_tags,
                "created": stamp,
                "updated": stamp,
                "mentions": mentions,
            }

        path.write_text(render_note(metadata, body), encoding="utf-8")
        logger.debug(f"Wrote entry '{title}' to {path}")
        return read_note(path, self.default_category)

    def append_note(self, content: str, title: str = "Note", **kwargs) -> Note:
        return self.create_note(title=title, content=content, **kwargs)

    def _format_entry(self, entry: NoteEntry) -> str:
        lines = [f"## {entry.time} - {entry.title}"]
        if entry.category != self.default_category:
            lines.append(f"**Category:** {entry.category}")
        lines.append("")
        lines.append(entry.content)
        if entry.tags:
            lines.append("")
            lines.append("Tags: " + " ".join(f"#{t}" for t in entry.tags))
        return "\n".join(lines)

    def get_note(self, note_date: str) -> Note | None:
        path = self.get_date_path(note_date)
        if not path.exists():
            return None
        return read_note(path, self.default_category)

    def get_today(self) -> Note | None:
        return self.get_note(date.today().isoformat())

    def get_recent_notes(self, days: int = 7, today: date | None = None) -> list[Note]:
        today = today or date.today()
        notes = []
        for i in range(days):
            note = self.get_note((today - timedelta(days=i)).isoformat())
            if note:
                notes.append(note)
        return notes

    def iter_note_files(self) -> Iterator[Path]:
        """Every YYYY-MM-DD.md under ``<root>/YYYY/MM/``."""
        if not self.notes_path.exists():
            return
        for year in sorted(self.notes_path.iterdir()):
            if not (year.is_dir() and re.fullmatch(r"\d{4}", year.name)):
                continue
            for month in sorted(year.iterdir()):
                if not (month.is_dir() and re.fullmatch(r"\d{2}", month.name)):
                    continue
                for path in sorted(month.iterdir()):
                    if path.is_file() and is_note_file(path):
                        yield path

    def get_all_notes(self) -> list[Note]:
        """All readable notes, newest first. Malformed files are logged and skipped."""
        notes = []
        for path in self.iter_note_files():
            try:
                notes.append(read_note(path, self.default_category))
            except MalformedDocument as e:
                logger.warning(f"Skipping {path}: {e.reason}")
            except OSError as e:
                logger.warning(f"Skipping unreadable {path}: {e}")
        return sorted(notes, key=lambda n: n.date, reverse=True)

    def get_daily_summary(self, note_date: str | None = None) -> DailySummary | None:
        note_date = note_date or date.today().isoformat()
        note = self.get_note(note_date)
        if note is None:
            return None

        entries = []
        for m in ENTRY_RE.finditer(note.content):
            body = m.group(3).strip()
            cat_match = CATEGORY_LINE_RE.search(body)
            entries.append(NoteEntry(
                time=m.group(1),
                title=m.group(2).strip(),
                category=cat_match.group(1) if cat_match else self.default_category,
                content=body,
                tags=extract_tags(body),
                mentions=extract_mentions(body),
            ))

        categories: dict[str, int] = {}
        for e in entries:
            categories[e.category] = categories.get(e.category, 0) + 1

        return DailySummary(
            date=note_date,
            entries=entries,
            categories=categories,
            tags=note.metadata.tags,
            mentions=note.metadata.mentions,
        )

    def get_all_tags(self) -> list[str]:
        tags: set[str] = set()
        for note in self.get_all_notes():
            tags.update(note.metadata.tags)
            tags.update(extract_tags(note.content))
        return sorted(tags)

    def get_all_mentions(self) -> list[str]:
        mentions: set[str] = set()
        for note in self.get_all_notes():
            mentions.update(note.metadata.mentions)
            mentions.update(extract_mentions(note.content))
        return sorted(mentions)


def _validate_date(value: str) -> None:
    try:
        date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Expected a YYYY-MM-DD date, got {value!r}") from e
