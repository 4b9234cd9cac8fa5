"""
Genre classification from EPUB subject/type metadata.

Rules are checked in order and the first match wins, so "Historical Fiction"
lands on Historical before the generic Fiction rule sees it.
"""

import re
from typing import Any, Iterable

from ..text_normalizer import compact_whitespace

_TAG_RE = re.compile(r"<[^>]*>")
_NBSP_RE = re.compile(r"&nbsp;", re.IGNORECASE)
_TOKEN_SPLIT_RE = re.compile(r"[,;|/]")

GENRE_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b(science fiction|sci[- ]?fi)\b"), "Science Fiction"),
    (re.compile(r"\b(fantasy)\b"), "Fantasy"),
    (re.compile(r"\b(horror)\b"), "Horror"),
    (re.compile(r"\b(thriller|suspense)\b"), "Thriller"),
    (re.compile(r"\b(mystery|crime|detective)\b"), "Mystery"),
    (re.compile(r"\b(romance|love story)\b"), "Romance"),
    (re.compile(r"\b(classic|classics)\b"), "Classic"),
    (re.compile(r"\b(historical fiction|historical)\b"), "Historical"),
    (re.compile(r"\b(poetry|poems)\b"), "Poetry"),
    (re.compile(r"\b(drama|plays?)\b"), "Drama"),
    (re.compile(r"\b(biography|memoir|autobiography)\b"), "Biography"),
    (re.compile(r"\b(history)\b"), "History"),
    (re.compile(r"\b(philosophy)\b"), "Philosophy"),
    (re.compile(r"\b(non[- ]?fiction)\b"), "Nonfiction"),
    (re.compile(r"\b(fiction)\b"), "Fiction"),
]

# Keys searched on metadata mappings, in priority order
GENRE_SOURCE_KEYS = (
    "genre",
    "subject",
    "subjects",
    "type",
    "types",
    "dc:subject",
    "dc:type",
    "subjectterm",
    "tags",
)
_NESTED_KEYS = ("genre", "subject", "subjects", "type", "types", "value", "label", "name", "text")


def clean_genre_token(value: Any) -> str:
    text = _TAG_RE.sub(" ", str(value or ""))
    text = _NBSP_RE.sub(" ", text)
    return compact_whitespace(text)


def _title_case_token(clean: str) -> str:
    words = []
    for word in clean.split(" "):
        if not word:
            words.append(word)
            continue
        upper = word.upper()
        if len(upper) <= 3:
            words.append(upper)
        else:
            words.append(upper[0] + word[1:].lower())
    return " ".join(words)


def normalize_genre_label(value: Any) -> str:
    """Map a raw subject/type token to a canonical genre label."""
    clean = clean_genre_token(value)
    if not clean:
        return ""
    lower = clean.lower()
    for pattern, label in GENRE_RULES:
        if pattern.search(lower):
            return label
    return _title_case_token(clean)


def _push_candidates(source: Any, out: list[str]) -> None:
    if source is None:
        return
    if isinstance(source, (list, tuple)):
        for item in source:
            _push_candidates(item, out)
        return
    if isinstance(source, dict):
        for key in _NESTED_KEYS:
            if key in source:
                _push_candidates(source[key], out)
        return
    if not isinstance(source, str):
        return
    for token in _TOKEN_SPLIT_RE.split(source):
        clean = clean_genre_token(token)
        if clean:
            out.append(clean)


def genre_candidates(metadata: dict) -> list[str]:
    candidates: list[str] = []
    for key in GENRE_SOURCE_KEYS:
        _push_candidates(metadata.get(key), candidates)
    return candidates


def extract_genre(metadata: dict | None) -> str:
    """Return the first classifiable genre label found in ``metadata``."""
    return first_genre(genre_candidates(metadata or {}))


def first_genre(candidates: Iterable[str]) -> str:
    for candidate in candidates:
        normalized = normalize_genre_label(candidate)
        if normalized:
            return normalized
    return ""
