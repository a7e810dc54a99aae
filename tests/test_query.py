"""Tests for query parsing and the retrieval engine."""

from datetime import date

from daybook.index.store import IndexStore
from daybook.models import Note, NoteMetadata, ParsedQuery, SearchResult
from daybook.query.engine import SearchEngine, intersect_results
from daybook.query.parser import parse_query

TODAY = date(2025, 1, 8)


def _make_note(note_id, content="", tags=None, mentions=None, category="personal", title=None):
    return Note(
        id=note_id,
        path=f"/notes/{note_id[:4]}/{note_id[5:7]}/{note_id}.md",
        metadata=NoteMetadata(
            title=title or f"Notes for {note_id}",
            category=category,
            created=f"{note_id}T09:00:00+00:00",
            updated=f"{note_id}T09:00:00+00:00",
            tags=tags or [],
            mentions=mentions or [],
        ),
        content=content,
    )


def _engine(*notes, max_results=20):
    store = IndexStore(":memory:")
    for note in notes:
        store.upsert(note)
    return SearchEngine(store, max_results=max_results)


def _example_engine():
    return _engine(
        _make_note("2025-01-01", "Sprint meeting with @hannah about the roadmap.", tags=["meeting"], mentions=["hannah"]),
        _make_note("2025-01-03", "Lunch with @bob.", mentions=["bob"], category="work"),
    )


# -- parser ---------------------------------------------------------------------

def test_parse_all_fields():
    q = parse_query("@Hannah #meeting category:work roadmap notes", today=TODAY)
    assert q.person == "hannah"
    assert q.tag == "meeting"
    assert q.category == "work"
    assert q.text == "roadmap notes"
    assert q.start_date is None
    assert q.original_query == "@Hannah #meeting category:work roadmap notes"


def test_parse_empty_query():
    assert parse_query("", today=TODAY).is_empty()
    assert parse_query("   ", today=TODAY).text is None


def test_parse_explicit_ranges():
    q = parse_query("standup from 2025-01-01 to 2025-01-03", today=TODAY)
    assert (q.start_date, q.end_date) == ("2025-01-01", "2025-01-03")
    assert q.text == "standup"

    q = parse_query("between 2025-01-05 and 2025-01-02", today=TODAY)
    assert (q.start_date, q.end_date) == ("2025-01-02", "2025-01-05")
    assert q.text is None


def test_parse_relative_ranges():
    cases = {
        "today": ("2025-01-08", "2025-01-08"),
        "yesterday": ("2025-01-07", "2025-01-07"),
        "this week": ("2025-01-01", "2025-01-08"),
        "past week": ("2025-01-01", "2025-01-08"),
        "last 7 days": ("2025-01-01", "2025-01-08"),
        "last week": ("2024-12-25", "2025-01-01"),
        "this month": ("2024-12-09", "2025-01-08"),
        "last 30 days": ("2024-12-09", "2025-01-08"),
        "past 3 days": ("2025-01-05", "2025-01-08"),
        "past 1 day": ("2025-01-07", "2025-01-08"),
    }
    for text, expected in cases.items():
        q = parse_query(text, today=TODAY)
        assert (q.start_date, q.end_date) == expected, text
        assert q.text is None, text


def test_parse_relative_is_case_insensitive():
    q = parse_query("Meetings Past Week", today=TODAY)
    assert q.start_date == "2025-01-01"
    assert q.text == "Meetings"


def test_first_person_wins_and_rest_stays_in_text():
    q = parse_query("@hannah @bob sync", today=TODAY)
    assert q.person == "hannah"
    assert q.text == "@bob sync"


def test_first_relative_range_wins():
    q = parse_query("today yesterday", today=TODAY)
    assert (q.start_date, q.end_date) == ("2025-01-08", "2025-01-08")
    assert q.text == "yesterday"


def test_explicit_range_beats_relative():
    q = parse_query("today from 2025-01-01 to 2025-01-02", today=TODAY)
    assert (q.start_date, q.end_date) == ("2025-01-01", "2025-01-02")
    assert q.text == "today"


# -- engine ---------------------------------------------------------------------

def test_query_by_person_example():
    engine = _example_engine()
    assert [r.id for r in engine.store.query_by_person("hannah")] == ["2025-01-01"]


def test_past_week_returns_both_notes():
    engine = _example_engine()
    assert [r.id for r in engine.search("past week", today=TODAY)] == ["2025-01-03", "2025-01-01"]


def test_person_and_tag_intersect():
    engine = _example_engine()
    assert [r.id for r in engine.search("@hannah #meeting", today=TODAY)] == ["2025-01-01"]
    assert engine.search("@bob #meeting", today=TODAY) == []


def test_empty_date_range_is_not_refilled_by_later_predicates():
    engine = _example_engine()
    assert engine.search("@hannah yesterday", today=TODAY) == []


def test_text_and_category():
    engine = _example_engine()
    assert [r.id for r in engine.search("lunch category:work", today=TODAY)] == ["2025-01-03"]
    assert engine.search("roadmap category:work", today=TODAY) == []


def test_empty_query_returns_recent_notes():
    engine = _example_engine()
    assert [r.id for r in engine.search("", today=TODAY)] == ["2025-01-03", "2025-01-01"]
    assert engine.search("", today=date(2025, 2, 1)) == []


def test_intersection_keeps_left_order():
    def result(note_id):
        return SearchResult(note_id, "", note_id, "", "", [], [], "")

    left = [result("c"), result("a"), result("b")]
    right = [result("b"), result("c"), result("x")]
    assert [r.id for r in intersect_results(left, right)] == ["c", "b"]


def test_person_results_are_snippetted_around_the_name():
    body = "filler " * 80 + "then @hannah presented " + "more " * 80
    engine = _engine(_make_note("2025-01-01", body, mentions=["hannah"]))
    (result,) = engine.search("@hannah", today=TODAY)
    assert "hannah" in result.snippet


def test_truncation_happens_after_intersection():
    notes = [
        _make_note(f"2025-01-{day:02d}", "with @hannah", mentions=["hannah"], tags=["rare"] if day == 1 else [])
        for day in range(1, 26)
    ]
    engine = _engine(*notes)
    results = engine.search("@hannah #rare", limit=5, today=TODAY)
    assert [r.id for r in results] == ["2025-01-01"]


def test_default_limit_is_max_results():
    notes = [_make_note(f"2025-01-{day:02d}", "daily log", tags=["log"]) for day in range(1, 11)]
    engine = _engine(*notes, max_results=3)
    results = engine.search("#log", today=TODAY)
    assert [r.id for r in results] == ["2025-01-10", "2025-01-09", "2025-01-08"]


def test_search_accepts_parsed_query():
    engine = _example_engine()
    parsed = ParsedQuery(person="bob", start_date="2025-01-01", end_date="2025-01-05")
    assert [r.id for r in engine.search(parsed, today=TODAY)] == ["2025-01-03"]


def test_search_by_person_with_dates():
    engine = _example_engine()
    assert [r.id for r in engine.search_by_person("Hannah")] == ["2025-01-01"]
    assert engine.search_by_person("hannah", "2025-01-02", "2025-01-05") == []


def test_huge_day_count_is_clamped():
    parsed = parse_query("notes past 1000000 days", today=TODAY)
    assert (parsed.start_date, parsed.end_date) == ("0001-01-01", "2025-01-08")
    assert parsed.text == "notes"
    parsed = parse_query("past " + "9" * 5000 + " days", today=TODAY)
    assert parsed.start_date == "0001-01-01"


def test_search_over_huge_day_count():
    engine = _example_engine()
    assert [r.id for r in engine.search("past 1000000 days", today=TODAY)] == ["2025-01-03", "2025-01-01"]


def test_search_by_non_ascii_tag():
    engine = _engine(_make_note("2025-01-01", "Cafe notes", tags=["Über"]))
    assert [r.id for r in engine.search("#Über", today=TODAY)] == ["2025-01-01"]


def test_search_full_text_respects_max_results():
    notes = [_make_note(f"2025-01-{day:02d}", "roadmap review") for day in range(1, 6)]
    engine = _engine(*notes, max_results=2)
    results = engine.search_full_text("roadmap")
    assert len(results) == 2
    assert all("roadmap" in r.snippet for r in results)
