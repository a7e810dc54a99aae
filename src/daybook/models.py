"""Data models used throughout daybook."""

from dataclasses import dataclass, field


@dataclass
class NoteMetadata:
    """Frontmatter of a daily note, with defaults already applied."""
    title: str
    category: str
    created: str
    updated: str
    tags: list[str] = field(default_factory=list)
    mentions: list[str] = field(default_factory=list)


@dataclass
class Note:
    """One dated note, keyed by its YYYY-MM-DD date."""
    id: str
    path: str
    metadata: NoteMetadata
    content: str

    @property
    def date(self) -> str:
        return self.id


@dataclass
class SearchResult:
    """A note matched by a query, with a snippet of its body."""
    id: str
    path: str
    date: str
    title: str
    category: str
    tags: list[str]
    mentions: list[str]
    snippet: str
    rank: float = 0.0


@dataclass
class Entity:
    """A mentioned person and how often notes mention them."""
    name: str
    type: str
    first_seen: str
    last_seen: str
    mention_count: int


@dataclass
class IndexStats:
    note_count: int
    entity_count: int
    last_indexed: str | None


@dataclass
class ParsedQuery:
    """Structured predicates pulled out of a free-form query string."""
    original_query: str = ""
    text: str | None = None
    person: str | None = None
    tag: str | None = None
    category: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    limit: int | None = None

    @property
    def has_date_range(self) -> bool:
        return bool(self.start_date and self.end_date)

    def is_empty(self) -> bool:
        """True when no predicate would filter anything."""
        return not (self.text or self.person or self.tag or self.category or self.has_date_range)


@dataclass
class NoteEntry:
    """A single timestamped entry inside a daily note."""
    time: str
    title: str
    category: str
    content: str
    tags: list[str] = field(default_factory=list)
    mentions: list[str] = field(default_factory=list)


@dataclass
class DailySummary:
    date: str
    entries: list[NoteEntry]
    categories: dict[str, int]
    tags: list[str]
    mentions: list[str]
