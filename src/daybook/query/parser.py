"""Turn a free-form query string into structured search predicates.

This is a best-effort parse, not a grammar. Each predicate takes the first
fragment that matches it and leaves any later duplicates in the free text:

    "@hannah @bob notes"  ->  person="hannah", text="@bob notes"

Explicit date ranges are tried before relative expressions, and relative
expressions in the order of ``RELATIVE_RANGES``; the first hit wins.
"""

import re
from datetime import date, timedelta
from typing import Callable

from ..models import ParsedQuery

PERSON_RE = re.compile(r"@([\w-]+)")
TAG_RE = re.compile(r"#([\w-]+)")
CATEGORY_RE = re.compile(r"\bcategory:([\w-]+)", re.IGNORECASE)

_ISO = r"(\d{4}-\d{2}-\d{2})"
EXPLICIT_RANGES = [
    re.compile(rf"\bfrom\s+{_ISO}\s+to\s+{_ISO}", re.IGNORECASE),
    re.compile(rf"\bbetween\s+{_ISO}\s+and\s+{_ISO}", re.IGNORECASE),
]

RangeFn = Callable[[date, re.Match], tuple[date, date]]


def _back(today: date, days: int) -> date:
    # Clamp instead of overflowing past the first representable date
    return today - timedelta(days=min(days, (today - date.min).days))


def _past_days(today: date, m: re.Match) -> tuple[date, date]:
    digits = m.group(1).lstrip("0") or "0"
    # Anything this long reaches past date.min anyway; skips int() digit limits
    days = int(digits) if len(digits) < 10 else (today - date.min).days
    return _back(today, days), today


def _days_back(days: int) -> RangeFn:
    return lambda today, _m: (_back(today, days), today)


RELATIVE_RANGES: list[tuple[re.Pattern, RangeFn]] = [
    (re.compile(r"\btoday\b", re.IGNORECASE), lambda today, _m: (today, today)),
    (re.compile(r"\byesterday\b", re.IGNORECASE),
     lambda today, _m: (today - timedelta(days=1), today - timedelta(days=1))),
    (re.compile(r"\b(?:this week|past week|last 7 days)\b", re.IGNORECASE), _days_back(7)),
    (re.compile(r"\blast week\b", re.IGNORECASE),
     lambda today, _m: (today - timedelta(days=14), today - timedelta(days=7))),
    (re.compile(r"\b(?:this month|past month|last 30 days)\b", re.IGNORECASE), _days_back(30)),
    (re.compile(r"\bpast (\d+) days?\b", re.IGNORECASE), _past_days),
]


def _strip(query: str, match: re.Match) -> str:
    return query[:match.start()] + " " + query[match.end():]


def parse_query(query: str, today: date | None = None) -> ParsedQuery:
    """Extract person, tag, category and date-range predicates from ``query``.

    Whatever is left once the matched fragments are removed becomes the
    free-text term. Never raises.
    """
    today = today or date.today()
    parsed = ParsedQuery(original_query=query)
    rest = query

    if m := PERSON_RE.search(rest):
        parsed.person = m.group(1).lower()
        rest = _strip(rest, m)

    if m := TAG_RE.search(rest):
        parsed.tag = m.group(1)
        rest = _strip(rest, m)

    if m := CATEGORY_RE.search(rest):
        parsed.category = m.group(1)
        rest = _strip(rest, m)

    for pattern in EXPLICIT_RANGES:
        if m := pattern.search(rest):
            start, end = sorted((m.group(1), m.group(2)))
            parsed.start_date, parsed.end_date = start, end
            rest = _strip(rest, m)
            break
    else:
        for pattern, to_range in RELATIVE_RANGES:
            if m := pattern.search(rest):
                start, end = to_range(today, m)
                parsed.start_date, parsed.end_date = start.isoformat(), end.isoformat()
                rest = _strip(rest, m)
                break

    text = " ".join(rest.split())
    parsed.text = text or None
    return parsed
