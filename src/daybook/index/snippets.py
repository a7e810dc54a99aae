"""Snippet extraction around matched terms."""

import re

ELLIPSIS = "..."
DEFAULT_WIDTH = 200

_WORD_RE = re.compile(r"\w+")


def split_terms(text: str) -> list[str]:
    """Split free text into the word terms a lexical index matches on."""
    return _WORD_RE.findall(text)


def find_first_match(body: str, terms: list[str]) -> tuple[int, int] | None:
    """Return (start, end) of the earliest case-insensitive occurrence of any term."""
    lowered = body.lower()
    best: tuple[int, int] | None = None
    for term in terms:
        term = term.strip().lower()
        if not term:
            continue
        pos = lowered.find(term)
        if pos == -1:
            continue
        if best is None or pos < best[0] or (pos == best[0] and pos + len(term) > best[1]):
            best = (pos, pos + len(term))
    return best


def make_snippet(body: str, terms: list[str] | str | None = None, width: int = DEFAULT_WIDTH) -> str:
    """Cut a window of ``width`` characters out of ``body``.

    The window is centred on the first occurrence of any term and trimmed
    inward to word boundaries, never past the match itself. Each truncated
    side gets an ellipsis. Without a match the leading window is used.
    Stripped of its ellipses, the snippet is always a substring of ``body``.
    """
    if isinstance(terms, str):
        terms = [terms]
    terms = terms or []
    if len(body) <= width:
        return body.strip()

    match = find_first_match(body, terms)
    if match is None:
        start, end = 0, width
        keep_start, keep_end = 0, 0
    else:
        m_start, m_end = match
        if m_end - m_start >= width:
            start, end = m_start, m_end
        else:
            centre = (m_start + m_end) // 2
            start = max(0, centre - width // 2)
            end = min(len(body), start + width)
            start = max(0, end - width)
        keep_start, keep_end = m_start, m_end

    # Trim partial words at the edges; widen instead when trimming would cut the match
    if start > 0 and not body[start - 1].isspace():
        nxt = _next_space(body, start, end)
        if nxt is not None and (match is None or nxt < keep_start):
            start = nxt
        else:
            start = _prev_space(body, start) + 1
    if end < len(body) and not body[end].isspace():
        prev = _prev_space(body, end, start)
        if prev > start and (match is None or prev >= keep_end):
            end = prev
        else:
            end = _next_space(body, end, len(body)) or len(body)

    window = body[start:end].strip()
    prefix = ELLIPSIS if start > 0 else ""
    suffix = ELLIPSIS if end < len(body) else ""
    return f"{prefix}{window}{suffix}"


def _next_space(body: str, start: int, end: int) -> int | None:
    for i in range(start, end):
        if body[i].isspace():
            return i
    return None


def _prev_space(body: str, before: int, floor: int = 0) -> int:
    """Index of the last whitespace in ``body[floor:before]``, or ``floor - 1``."""
    for i in range(before - 1, floor - 1, -1):
        if body[i].isspace():
            return i
    return floor - 1
