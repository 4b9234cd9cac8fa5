"""
Integration tests for LibraryIndexService: import, refresh and search.
"""

import pytest

from smartreader.services.kv_store_service import KeyValueStoreService
from smartreader.services.library_books_service import LibraryBooksService
from smartreader.services.library_index_service import LibraryIndexService
from smartreader.services.workers import WorkerHost


@pytest.fixture
def library(temp_db, tmp_path):
    books = LibraryBooksService(db_path=temp_db, epub_dir=str(tmp_path / "epubs"))
    service = LibraryIndexService(books, KeyValueStoreService(db_path=temp_db), host=WorkerHost(2))
    yield service
    service.shutdown()


class TestImportEPUB:
    @pytest.mark.asyncio
    async def test_import_extracts_metadata(self, library, epub_bytes):
        book = await library.import_epub(epub_bytes, "test-book.epub")

        assert book.title == "Test Book"
        assert book.genre == "Fantasy"
        assert library.books.get_book(book.id) is not None

    @pytest.mark.asyncio
    async def test_import_failure_stores_placeholder(self, library):
        book = await library.import_epub(b"this is not an epub", "broken.epub")

        assert book.title == "broken"
        assert book.author == "Unknown Author"
        assert book.cover is None
        assert book.payload.size == len(b"this is not an epub")


class TestRefreshAndSearch:
    @pytest.mark.asyncio
    async def test_refresh_builds_content_index(self, library, epub_bytes):
        book = await library.import_epub(epub_bytes, "test-book.epub")

        manifest = await library.refresh_indexes()

        assert manifest.books[book.id].section_count == 2
        assert library.get_manifest().books[book.id].signature.startswith(f"{book.id}:")

    @pytest.mark.asyncio
    async def test_refresh_with_broken_book_still_indexes_others(self, library, epub_bytes):
        await library.import_epub(b"junk", "broken.epub")
        good = await library.import_epub(epub_bytes, "test-book.epub")

        manifest = await library.refresh_indexes()

        assert set(manifest.books) == {good.id}

    @pytest.mark.asyncio
    async def test_cancelled_refresh(self, library, epub_bytes):
        await library.import_epub(epub_bytes, "test-book.epub")
        manifest = await library.refresh_indexes(is_cancelled=lambda: True)
        assert manifest.books == {}

    @pytest.mark.asyncio
    async def test_search_library_includes_content(self, library, epub_bytes):
        book = await library.import_epub(epub_bytes, "test-book.epub")
        await library.refresh_indexes()

        groups = await library.search_library("wizard")

        assert [result.cfi for result in groups.content] == [
            section.href for section in library.content_index.get_record(book.id).sections
        ]
        assert groups.books[0].snippet == "Found 2 content matches"

    @pytest.mark.asyncio
    async def test_single_character_query_skips_content(self, library, epub_bytes):
        await library.import_epub(epub_bytes, "test-book.epub")
        await library.refresh_indexes()

        groups = await library.search_library("w")

        assert groups.content == []

    @pytest.mark.asyncio
    async def test_trashed_books_are_not_searched(self, library, epub_bytes):
        book = await library.import_epub(epub_bytes, "test-book.epub")
        await library.refresh_indexes()
        library.books.move_to_trash(book.id)

        groups = await library.search_library("wizard")
        manifest = await library.refresh_indexes()

        assert groups.total == 0
        assert manifest.books == {}

    @pytest.mark.asyncio
    async def test_search_book_content(self, library, epub_bytes):
        book = await library.import_epub(epub_bytes, "test-book.epub")
        await library.refresh_indexes()

        candidates = await library.search_book_content(book.id, "dusk")

        assert [c.id for c in candidates] == ["chap2"]
        assert candidates[0].chapter_label == "Chapter Two"

    @pytest.mark.asyncio
    async def test_search_book_content_before_indexing(self, library, epub_bytes):
        book = await library.import_epub(epub_bytes, "test-book.epub")
        assert await library.search_book_content(book.id, "wizard") == []

    @pytest.mark.asyncio
    async def test_search_unknown_book(self, library):
        assert await library.search_book_content("missing", "wizard") is None
