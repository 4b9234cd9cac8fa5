"""
Search Index Service

Maintains the cross-book search snapshot over metadata, highlights, notes
and bookmarks, persisted under searchIndex.global. Each record carries a
signature over its searchable inputs; a record is rebuilt only when that
signature changes, and unchanged records are carried over as-is.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from smartreader.models.book import Book
from smartreader.models.search_index import (
    SEARCH_INDEX_VERSION,
    SearchEntry,
    SearchIndexSnapshot,
    SearchRecord,
)

from .kv_store_service import KeyValueStoreService
from .signatures import search_signature
from .text_normalizer import compact_whitespace, normalize_text

logger = logging.getLogger(__name__)

SEARCH_INDEX_NAMESPACE = "searchIndex"
SEARCH_INDEX_KEY = "global"

# ISO 639-1 codes for the languages EPUB producers use most often
LANGUAGE_NAMES = {
    "ar": "Arabic",
    "cs": "Czech",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "fi": "Finnish",
    "fr": "French",
    "he": "Hebrew",
    "hi": "Hindi",
    "hu": "Hungarian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "la": "Latin",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sv": "Swedish",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "zh": "Chinese",
}


def normalize_language(value: Optional[str]) -> str:
    """Display name for a language tag ("en-US" -> "English")."""
    if not isinstance(value, str) or not value.strip():
        return ""
    primary_code = value.strip().replace("_", "-").split("-")[0].lower()
    return LANGUAGE_NAMES.get(primary_code, primary_code.upper())


def _build_entries(book_id: str, kind: str, items: List[tuple]) -> List[SearchEntry]:
    entries = []
    for index, (locator, raw_text) in enumerate(items):
        text = compact_whitespace(raw_text)
        if not text:
            continue
        entries.append(
            SearchEntry(
                id=f"{book_id or 'book'}-{kind}-{locator or index}",
                cfi=locator or "",
                text=text,
                normalized=normalize_text(text),
            )
        )
    return entries


def build_metadata_text(book: Book) -> str:
    parts = [
        book.title or "",
        book.author or "",
        normalize_language(book.language or ""),
        book.genre or "",
    ]
    return normalize_text(" ".join(part for part in parts if part))


def build_book_search_record(book: Book) -> SearchRecord:
    """Build the search record for one book. Pure apart from the timestamp."""
    metadata_text = build_metadata_text(book)

    highlight_entries = _build_entries(
        book.id, "highlight", [(h.cfi_range, h.text) for h in book.highlights]
    )
    note_entries = _build_entries(
        book.id, "note", [(h.cfi_range, h.note) for h in book.highlights]
    )
    bookmark_entries = _build_entries(
        book.id,
        "bookmark",
        [
            (b.cfi, " ".join(part for part in (b.label, b.text) if part))
            for b in book.bookmarks
        ],
    )

    annotation_entries = highlight_entries + note_entries + bookmark_entries
    full_text = normalize_text(
        " ".join([metadata_text] + [entry.text for entry in annotation_entries])
    )

    return SearchRecord(
        id=book.id,
        metadata_text=metadata_text,
        full_text=full_text,
        highlights=highlight_entries,
        notes=note_entries,
        bookmarks=bookmark_entries,
        signature=search_signature(
            book.id,
            metadata_text,
            [(entry.cfi, entry.normalized) for entry in annotation_entries],
        ),
        updated_at=datetime.now().isoformat(),
    )


class SearchIndexService:
    """Keeps the persisted search snapshot in sync with the book collection."""

    def __init__(self, store: KeyValueStoreService):
        self.store = store

    def _load_raw_snapshot(self) -> Optional[SearchIndexSnapshot]:
        raw = self.store.get_item(SEARCH_INDEX_NAMESPACE, SEARCH_INDEX_KEY)
        if not isinstance(raw, dict) or raw.get("version") != SEARCH_INDEX_VERSION:
            return None
        try:
            return SearchIndexSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable search index snapshot: {e}")
            return None

    def get_snapshot(self) -> Dict[str, SearchRecord]:
        snapshot = self._load_raw_snapshot()
        return dict(snapshot.books) if snapshot else {}

    def sync_from_books(self, books: Iterable[Book]) -> Dict[str, SearchRecord]:
        """
        Rebuild changed records and persist the snapshot when anything moved.

        A record is reused, object and all, when its signature is unchanged.
        The snapshot counts as changed when any record was rebuilt, when the
        set of book ids differs, or when no valid snapshot existed yet.
        """
        snapshot = self._load_raw_snapshot()
        previous_books = snapshot.books if snapshot else {}

        active_books = [
            book
            for book in books or []
            if book is not None and not book.is_deleted and isinstance(book.id, str)
        ]

        changed = snapshot is None
        next_books: Dict[str, SearchRecord] = {}
        rebuilt = 0

        for book in active_books:
            next_record = build_book_search_record(book)
            previous_record = previous_books.get(book.id)
            if (
                previous_record is not None
                and previous_record.version == SEARCH_INDEX_VERSION
                and previous_record.signature == next_record.signature
            ):
                next_books[book.id] = previous_record
                continue
            next_books[book.id] = next_record
            rebuilt += 1
            changed = True

        if not changed and set(previous_books) != set(next_books):
            changed = True

        if not changed:
            return previous_books

        next_snapshot = SearchIndexSnapshot(
            updated_at=datetime.now().isoformat(),
            books=next_books,
        )
        self.store.set_item(
            SEARCH_INDEX_NAMESPACE, SEARCH_INDEX_KEY, next_snapshot.model_dump()
        )
        logger.info(
            f"Search index updated - {len(next_books)} books, {rebuilt} records rebuilt"
        )
        return next_books

    def clear(self) -> None:
        self.store.remove_item(SEARCH_INDEX_NAMESPACE, SEARCH_INDEX_KEY)
