"""
Global Search Service

Answers library-wide queries from the search index snapshot, grouping hits
into books, highlights, notes, bookmarks and book content.
"""

from typing import Dict, Iterable, List, Optional

from smartreader.models.book import Book
from smartreader.models.content_index import ContentSearchCandidate
from smartreader.models.search_index import (
    GlobalSearchGroups,
    GlobalSearchResult,
    SearchEntry,
    SearchRecord,
)

from .text_normalizer import build_snippet, normalize_text


def _entry_results(
    entries: List[SearchEntry], book: Book, query: str, panel: str
) -> List[GlobalSearchResult]:
    return [
        GlobalSearchResult(
            id=entry.id,
            book_id=book.id,
            panel=panel,
            cfi=entry.cfi,
            query=query,
            title=book.title,
            subtitle=book.author,
            snippet=build_snippet(entry.text, query),
        )
        for entry in entries
        if query in entry.normalized
    ]


def search_snapshot(
    snapshot: Dict[str, SearchRecord],
    books: Iterable[Book],
    query: str,
    content_matches: Optional[Dict[str, List[ContentSearchCandidate]]] = None,
) -> GlobalSearchGroups:
    """
    Match ``query`` against every non-deleted book's search record.

    Books without a snapshot record are skipped; run
    SearchIndexService.sync_from_books first to pick them up.
    """
    groups = GlobalSearchGroups()
    normalized_query = normalize_text(query)
    if not normalized_query:
        return groups
    content_matches = content_matches or {}

    for book in books:
        if book is None or book.is_deleted:
            continue
        record = snapshot.get(book.id)
        if record is None:
            continue

        book_result: Optional[GlobalSearchResult] = None
        if normalized_query in record.metadata_text:
            book_result = GlobalSearchResult(
                id=f"{book.id}-book",
                book_id=book.id,
                query=normalized_query,
                title=book.title,
                subtitle=book.author,
                snippet=f"Book match: {book.title} by {book.author}",
            )
            groups.books.append(book_result)

        groups.highlights.extend(
            _entry_results(record.highlights, book, normalized_query, "highlights")
        )
        groups.notes.extend(_entry_results(record.notes, book, normalized_query, "highlights"))
        groups.bookmarks.extend(
            _entry_results(record.bookmarks, book, normalized_query, "bookmarks")
        )

        candidates = content_matches.get(book.id) or []
        for index, candidate in enumerate(candidates):
            groups.content.append(
                GlobalSearchResult(
                    id=f"{book.id}-content-{candidate.id or index}",
                    book_id=book.id,
                    cfi=candidate.href,
                    query=normalized_query,
                    title=book.title,
                    subtitle=" · ".join(
                        part for part in (book.author, candidate.chapter_label) if part
                    ),
                    snippet=build_snippet(candidate.preview, normalized_query),
                )
            )

        if candidates:
            first_href = candidates[0].href
            if book_result is None:
                count = len(candidates)
                groups.books.append(
                    GlobalSearchResult(
                        id=f"{book.id}-book",
                        book_id=book.id,
                        cfi=first_href,
                        query=normalized_query,
                        title=book.title,
                        subtitle=book.author,
                        snippet=f"Found {count} content match{'' if count == 1 else 'es'}",
                    )
                )
            elif not book_result.cfi:
                book_result.cfi = first_href

    return groups
