"""
Library Index Service

Ties the book store, the worker clients and both search indexes together:
imports EPUB uploads, keeps the content index and the global search
snapshot in line with the collection, and answers library-wide and
per-book searches.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from smartreader.models.book import Book
from smartreader.models.content_index import ContentIndexManifest, ContentSearchCandidate
from smartreader.models.search_index import GlobalSearchGroups

from .content_search_index import ContentSearchIndexService
from .content_search_matcher import DEFAULT_MAX_CANDIDATES
from .errors import WorkerFailureError, WorkerTimeoutError
from .global_search_service import search_snapshot
from .kv_store_service import KeyValueStoreService
from .library_books_service import LibraryBooksService
from .search_index_service import SearchIndexService
from .text_normalizer import normalize_text
from .workers import ContentSearchWorkerClient, EPUBMetadataWorkerClient, WorkerHost

logger = logging.getLogger(__name__)

MIN_CONTENT_QUERY_LENGTH = 2


class LibraryIndexService:
    def __init__(
        self,
        books: LibraryBooksService,
        store: KeyValueStoreService,
        host: Optional[WorkerHost] = None,
        content_index: Optional[ContentSearchIndexService] = None,
    ):
        self.books = books
        self.store = store
        self.host = host or WorkerHost()
        self.metadata_client = EPUBMetadataWorkerClient(self.host)
        self.content_client = ContentSearchWorkerClient(self.host)
        self.content_index = content_index or ContentSearchIndexService(store)
        self.search_index = SearchIndexService(store)
        self._refresh_lock = asyncio.Lock()
        self._refresh_generation = 0

    async def import_epub(
        self, data: bytes, file_name: str, title_override: Optional[str] = None
    ) -> Book:
        """
        Store an uploaded EPUB and register it in the library.

        A metadata failure does not reject the upload: the book is kept with
        placeholder metadata.
        """
        file_path = await asyncio.to_thread(self.books.store_epub_file, data, file_name)

        extraction = None
        try:
            extraction = await self.metadata_client.extract(data, file_name)
        except (WorkerFailureError, WorkerTimeoutError) as e:
            logger.warning(f"Storing {file_name} with placeholder metadata: {e}")

        return await asyncio.to_thread(
            self.books.add_book, file_path, extraction, title_override
        )

    async def refresh_indexes(
        self, is_cancelled: Optional[Callable[[], bool]] = None
    ) -> ContentIndexManifest:
        """
        Sync the search snapshot and run a content index pass.

        Passes are serialized; starting a new pass cancels any pass still
        running, which stops at its next cancellation check.
        """
        self._refresh_generation += 1
        generation = self._refresh_generation

        def cancelled() -> bool:
            if generation != self._refresh_generation:
                return True
            return bool(is_cancelled and is_cancelled())

        async with self._refresh_lock:
            start_time = datetime.now()
            books = await asyncio.to_thread(self.books.get_all_books)
            if cancelled():
                logger.info("Index refresh superseded before it started")
                return self.content_index.load_manifest()

            await asyncio.to_thread(self.search_index.sync_from_books, books)
            manifest = await self.content_index.ensure_indexes(books, is_cancelled=cancelled)

            elapsed_time = (datetime.now() - start_time).total_seconds()
            logger.info(f"Index refresh for {len(books)} books finished in {elapsed_time:.2f}s")
            return manifest

    def get_manifest(self) -> ContentIndexManifest:
        return self.content_index.load_manifest()

    async def search_library(self, query: str) -> GlobalSearchGroups:
        books = await asyncio.to_thread(self.books.get_all_books)
        snapshot = await asyncio.to_thread(self.search_index.sync_from_books, books)

        content_matches: Dict[str, List[ContentSearchCandidate]] = {}
        if len(normalize_text(query)) >= MIN_CONTENT_QUERY_LENGTH:
            for book in books:
                if book.is_deleted:
                    continue
                candidates = await self._search_record(book.id, query, DEFAULT_MAX_CANDIDATES)
                if candidates:
                    content_matches[book.id] = candidates

        return search_snapshot(snapshot, books, query, content_matches)

    async def search_book_content(
        self, book_id: str, query: str, max_candidates: int = DEFAULT_MAX_CANDIDATES
    ) -> Optional[List[ContentSearchCandidate]]:
        """
        Search one book's content index.

        Returns:
            Ranked candidates, an empty list when the book has no index yet,
            or None for an unknown book
        """
        book = await asyncio.to_thread(self.books.get_book, book_id)
        if book is None:
            return None
        return await self._search_record(book_id, query, max_candidates)

    async def _search_record(
        self, book_id: str, query: str, max_candidates: int
    ) -> List[ContentSearchCandidate]:
        record = await asyncio.to_thread(self.content_index.get_record, book_id)
        if record is None or not record.sections:
            return []
        return await self.content_client.find_candidates(record.sections, query, max_candidates)

    def shutdown(self) -> None:
        self.host.shutdown()
