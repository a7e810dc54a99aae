"""Retrieval engine: run parsed predicates against the index and merge the results."""

import logging
from dataclasses import replace
from datetime import date, timedelta

from ..index.store import IndexStore
from ..models import Entity, IndexStats, ParsedQuery, SearchResult
from .parser import parse_query

logger = logging.getLogger(__name__)

RECENT_DAYS = 7


def intersect_results(left: list[SearchResult], right: list[SearchResult]) -> list[SearchResult]:
    """Keep entries of ``left`` whose id also appears in ``right``, in ``left``'s order."""
    right_ids = {r.id for r in right}
    return [r for r in left if r.id in right_ids]


class SearchEngine:
    """Answers structured and natural-language queries against an IndexStore.

    Holds no state between calls besides the store it was given.
    """

    def __init__(self, store: IndexStore, max_results: int = 20):
        self.store = store
        self.max_results = max_results

    def search(self, query: str | ParsedQuery, limit: int | None = None, today: date | None = None) -> list[SearchResult]:
        """Run every predicate in ``query`` and return the intersection.

        Predicates run unbounded in the order date range, person, tag,
        category, text. Snippets are regenerated around the primary term and
        the list is truncated to ``limit`` only at the very end.
        """
        today = today or date.today()
        parsed = parse_query(query, today=today) if isinstance(query, str) else replace(query)
        limit = limit or parsed.limit or self.max_results

        if parsed.is_empty():
            start = (today - timedelta(days=RECENT_DAYS)).isoformat()
            results = self.store.query_by_date_range(start, today.isoformat())
        else:
            results = self._run_predicates(parsed)

        snippet_term = parsed.text or parsed.person or parsed.tag
        if snippet_term and results:
            results = self.store.regenerate_snippets(results, snippet_term)

        logger.debug(f"Query {parsed.original_query!r} matched {len(results)} note(s)")
        return results[:limit]

    def _run_predicates(self, parsed: ParsedQuery) -> list[SearchResult]:
        steps = []
        if parsed.has_date_range:
            steps.append(lambda: self.store.query_by_date_range(parsed.start_date, parsed.end_date))
        if parsed.person:
            steps.append(lambda: self.store.query_by_person(parsed.person))
        if parsed.tag:
            steps.append(lambda: self.store.query_by_tag(parsed.tag))
        if parsed.category:
            steps.append(lambda: self.store.query_by_category(parsed.category))
        if parsed.text:
            steps.append(lambda: self.store.query_text(parsed.text))

        results: list[SearchResult] | None = None
        for step in steps:
            # An empty running set stays empty; later predicates never restore entries
            if results is not None and not results:
                break
            found = step()
            results = found if results is None else intersect_results(results, found)
        return results or []

    def search_by_person(self, name: str, start: str | None = None, end: str | None = None) -> list[SearchResult]:
        results = self.store.query_by_person(name)
        if start and end:
            results = intersect_results(results, self.store.query_by_date_range(start, end))
        return results[:self.max_results]

    def search_full_text(self, text: str) -> list[SearchResult]:
        return self.store.query_text(text, limit=self.max_results)

    def list_entities(self, type: str | None = None) -> list[Entity]:
        return self.store.list_entities(type)

    def stats(self) -> IndexStats:
        return self.store.stats()
