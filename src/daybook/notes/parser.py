"""Parse daily note files into Note records."""

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from ..errors import MalformedDocument
from ..models import Note, NoteMetadata

NOTE_SUFFIX = ".md"
NOTE_FILENAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}\.md$")

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)


def is_note_file(path: str | Path) -> bool:
    """True if the file name is a strict YYYY-MM-DD.md."""
    return bool(NOTE_FILENAME_RE.match(Path(path).name))


def note_id_from_path(path: str | Path) -> str:
    name = Path(path).name
    if name.endswith(NOTE_SUFFIX):
        return name[: -len(NOTE_SUFFIX)]
    return name


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """Return (raw frontmatter or None, body)."""
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end():]


def parse_note(raw: bytes | str, path: str | Path, default_category: str, now: datetime | None = None) -> Note:
    """Build a Note from raw file contents.

    Fields missing from the frontmatter (or a missing frontmatter block) take
    their defaults: title "Notes for <id>", the configured category, empty
    tag and mention lists, and created/updated set to ``now``.

    Raises:
        MalformedDocument: the frontmatter block exists but is not a YAML mapping.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    note_id = note_id_from_path(path)
    stamp = _iso(now or datetime.now(timezone.utc))

    fm_text, body = split_frontmatter(text)
    data: dict[str, Any] = {}
    if fm_text is not None:
        try:
            loaded = yaml.safe_load(fm_text)
        except yaml.YAMLError as e:
            raise MalformedDocument(str(path), f"invalid YAML frontmatter: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise MalformedDocument(str(path), "frontmatter is not a key/value mapping")
        data = loaded

    created = _timestamp(data.get("created"), stamp)
    updated = _timestamp(data.get("updated"), stamp)
    if _is_before(updated, created):
        updated = created

    metadata = NoteMetadata(
        title=str(data.get("title") or f"Notes for {note_id}"),
        category=str(data.get("category") or default_category),
        created=created,
        updated=updated,
        tags=_string_list(data.get("tags"), path, "tags", prefix="#"),
        mentions=[m.lower() for m in _string_list(data.get("mentions"), path, "mentions", prefix="@")],
    )
    metadata.mentions = list(dict.fromkeys(metadata.mentions))

    return Note(id=note_id, path=str(path), metadata=metadata, content=body.strip())


def read_note(path: str | Path, default_category: str, now: datetime | None = None) -> Note:
    """Read a note from disk. OSError propagates to the caller."""
    return parse_note(Path(path).read_bytes(), path, default_category, now=now)


def _string_list(value: Any, path: str | Path, field_name: str, prefix: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        raise MalformedDocument(str(path), f"'{field_name}' must be a list")
    items = []
    for item in value:
        if item is None or isinstance(item, (dict, list)):
            continue
        s = str(item).strip()
        if s.startswith(prefix):
            s = s[len(prefix):]
        if s:
            items.append(s)
    return list(dict.fromkeys(items))


def _iso(value: datetime) -> str:
    return value.isoformat()


def _timestamp(value: Any, default: str) -> str:
    # PyYAML turns unquoted ISO values into date/datetime objects
    if value is None or value == "":
        return default
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _is_before(a: str, b: str) -> bool:
    pa, pb = _parse_iso(a), _parse_iso(b)
    if pa is None or pb is None:
        return a < b
    return pa < pb


def _parse_iso(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
