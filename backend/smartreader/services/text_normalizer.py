"""
Text normalization shared by the indexers and the search matchers.

Index-time and query-time code must go through the same functions here,
otherwise substring matches silently stop lining up.
"""

import re

_WHITESPACE_RE = re.compile(r"\s+")


def compact_whitespace(value) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def normalize_text(value) -> str:
    """Lowercase, whitespace-collapsed form used for substring search."""
    return compact_whitespace(value).lower()


def normalize_href(href: str | None) -> str:
    """Strip the fragment and query parts of an href."""
    if not href:
        return ""
    return str(href).split("#", 1)[0].split("?", 1)[0]


def build_snippet(value, query: str, radius: int = 56) -> str:
    """
    Build a short excerpt around the first occurrence of ``query``.

    Falls back to the first 120 characters when the query is empty or absent.
    """
    source = compact_whitespace(value)
    if not source:
        return ""
    needle = normalize_text(query)
    if not needle:
        return source[:120]

    index = source.lower().find(needle)
    if index < 0:
        return source[:120]

    start = max(0, index - radius)
    end = min(len(source), index + len(needle) + radius)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(source) else ""
    return f"{prefix}{source[start:end]}{suffix}"
