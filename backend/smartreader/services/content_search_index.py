"""
Content Search Index Service

Builds and incrementally maintains one plain-text content record per book,
plus a manifest summarizing which books are indexed and under which payload
signature.

Persisted keys (namespace "contentSearch"):
    __manifest__     ContentIndexManifest
    book:{book_id}   ContentIndexRecord

A book is re-indexed if and only if its payload signature (id, size,
last-modified, name) differs from its manifest entry. Records or manifests
written under another schema version are treated as absent.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from smartreader.models.book import Book
from smartreader.models.content_index import (
    CONTENT_INDEX_VERSION,
    ContentIndexManifest,
    ContentIndexRecord,
    ContentSection,
    ManifestEntry,
)

from .epub.epub_document import EPUBDocument
from .epub.epub_navigation_service import EPUBNavigationService
from .kv_store_service import KeyValueStoreService
from .signatures import book_content_signature
from .text_normalizer import compact_whitespace, normalize_href, normalize_text

logger = logging.getLogger(__name__)

CONTENT_SEARCH_NAMESPACE = "contentSearch"
MANIFEST_KEY = "__manifest__"
BOOK_KEY_PREFIX = "book:"
SECTION_PREVIEW_LENGTH = 420


def get_book_store_key(book_id: str) -> str:
    return f"{BOOK_KEY_PREFIX}{book_id}"


def _never_cancelled() -> bool:
    return False


class ContentSearchIndexService:
    """
    Maintains the per-book content index.

    Books are processed one at a time so that at most one EPUB document is
    open, and the manifest is persisted after every book that gets indexed.
    """

    def __init__(
        self,
        store: KeyValueStoreService,
        document_factory: Callable[[str], EPUBDocument] = EPUBDocument,
    ):
        """
        Args:
            store: Persistent key-value store holding the index
            document_factory: Builds an EPUB document model from a file path
        """
        self.store = store
        self.document_factory = document_factory
        self.navigation_service = EPUBNavigationService()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_manifest(self) -> ContentIndexManifest:
        raw = self.store.get_item(CONTENT_SEARCH_NAMESPACE, MANIFEST_KEY)
        if not isinstance(raw, dict) or raw.get("version") != CONTENT_INDEX_VERSION:
            return ContentIndexManifest()
        try:
            return ContentIndexManifest.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable content index manifest: {e}")
            return ContentIndexManifest()

    def get_record(self, book_id: str) -> Optional[ContentIndexRecord]:
        if not book_id:
            return None
        raw = self.store.get_item(CONTENT_SEARCH_NAMESPACE, get_book_store_key(book_id))
        if not isinstance(raw, dict) or raw.get("version") != CONTENT_INDEX_VERSION:
            return None
        try:
            return ContentIndexRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable content index record for {book_id}: {e}")
            return None

    def is_stale(self, book: Book, manifest: Optional[ContentIndexManifest] = None) -> bool:
        """True when ``book`` has no manifest entry under its current signature."""
        manifest = manifest or self.load_manifest()
        entry = manifest.books.get(book.id)
        return not (
            entry is not None
            and entry.version == CONTENT_INDEX_VERSION
            and entry.signature == book_content_signature(book)
        )

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    async def build_book_record(self, book: Book) -> Optional[ContentIndexRecord]:
        """
        Open the book's EPUB and extract normalized text for each linear
        spine section.

        Each section is unloaded right after it is read and the document is
        destroyed on exit, whether or not reading succeeded.
        """
        if not book.id or book.payload is None or not book.payload.path:
            return None

        document = self.document_factory(book.payload.path)
        try:
            await document.ready()
            navigation = await document.load_navigation()
            toc_entries = self.navigation_service.flatten_toc(navigation)

            sections: List[ContentSection] = []
            for index, section in enumerate(document.spine_items):
                if section is None or not section.linear:
                    continue
                try:
                    await section.load()
                    raw_text = compact_whitespace(section.text)
                    if not raw_text:
                        continue
                    sections.append(
                        ContentSection(
                            id=section.idref or section.href or f"section-{index}",
                            href=normalize_href(section.href),
                            chapter_label=self.navigation_service.resolve_chapter_label(
                                section.href, toc_entries
                            ),
                            preview=raw_text[:SECTION_PREVIEW_LENGTH],
                            text=normalize_text(raw_text),
                        )
                    )
                finally:
                    section.unload()

            return ContentIndexRecord(
                book_id=book.id,
                signature=book_content_signature(book),
                built_at=datetime.now().isoformat(),
                sections=sections,
            )
        finally:
            try:
                document.destroy()
            except Exception as e:
                logger.error(f"Failed to release EPUB document for {book.id}: {e}")

    def _persist_manifest(self, books: Dict[str, ManifestEntry]) -> ContentIndexManifest:
        manifest = ContentIndexManifest(
            updated_at=datetime.now().isoformat(),
            books=dict(books),
        )
        self.store.set_item(CONTENT_SEARCH_NAMESPACE, MANIFEST_KEY, manifest.model_dump())
        return manifest

    async def ensure_indexes(
        self,
        books: Iterable[Book],
        is_cancelled: Optional[Callable[[], bool]] = None,
        on_book_indexed: Optional[Callable[[str, ManifestEntry], None]] = None,
    ) -> ContentIndexManifest:
        """
        Bring the content index in line with ``books``.

        Prunes records of books that are gone or in the trash, then rebuilds
        every book whose payload signature changed. ``is_cancelled`` is polled
        before each deletion and each book; once it returns True nothing else
        is written.

        Returns:
            The manifest as it stands after this pass
        """
        is_cancelled = is_cancelled or _never_cancelled
        start_time = datetime.now()

        active_books = [
            book
            for book in books or []
            if book is not None
            and not book.is_deleted
            and book.payload is not None
            and book.payload.path
            and isinstance(book.id, str)
            and book.id
        ]
        active_ids = {book.id for book in active_books}

        manifest = self.load_manifest()
        next_books: Dict[str, ManifestEntry] = dict(manifest.books)

        pruned = 0
        stale_ids = [book_id for book_id in next_books if book_id not in active_ids]
        for stale_id in stale_ids:
            if is_cancelled():
                logger.info("Content indexing cancelled while pruning")
                return ContentIndexManifest(updated_at=manifest.updated_at, books=next_books)
            self.store.remove_item(CONTENT_SEARCH_NAMESPACE, get_book_store_key(stale_id))
            del next_books[stale_id]
            pruned += 1

        if pruned and not is_cancelled():
            manifest = self._persist_manifest(next_books)

        rebuilt = 0
        skipped = 0
        failed = 0
        for book in active_books:
            if is_cancelled():
                logger.info("Content indexing cancelled")
                break

            signature = book_content_signature(book)
            existing = next_books.get(book.id)
            if (
                existing is not None
                and existing.version == CONTENT_INDEX_VERSION
                and existing.signature == signature
            ):
                skipped += 1
                continue

            try:
                record = await self.build_book_record(book)
            except Exception as e:
                failed += 1
                logger.error(f"Content index build failed for {book.id}: {e}", exc_info=True)
                continue

            if record is None or is_cancelled():
                break

            self.store.set_item(
                CONTENT_SEARCH_NAMESPACE, get_book_store_key(book.id), record.model_dump()
            )
            entry = ManifestEntry(
                signature=signature,
                section_count=len(record.sections),
                updated_at=record.built_at,
            )
            next_books[book.id] = entry
            manifest = self._persist_manifest(next_books)
            rebuilt += 1

            if on_book_indexed is not None:
                on_book_indexed(book.id, entry)

        elapsed_time = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Content index pass completed in {elapsed_time:.2f}s - rebuilt: {rebuilt}, "
            f"skipped: {skipped}, pruned: {pruned}, failed: {failed}"
        )
        return ContentIndexManifest(updated_at=manifest.updated_at, books=next_books)
