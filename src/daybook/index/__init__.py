"""Persistent note index and snippet helpers."""

from .snippets import make_snippet
from .store import IndexStore

__all__ = ["IndexStore", "make_snippet"]
