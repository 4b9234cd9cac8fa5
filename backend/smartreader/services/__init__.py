"""
Services Package

Storage, indexing and search services for the EPUB library: the SQLite
book store and key-value store, the content and global search indexes,
and the worker host that keeps EPUB parsing off the event loop.
"""

from .content_search_index import ContentSearchIndexService
from .kv_store_service import KeyValueStoreService
from .library_books_service import LibraryBooksService
from .library_index_service import LibraryIndexService
from .search_index_service import SearchIndexService
from .workers import WorkerHost

__all__ = [
    "ContentSearchIndexService",
    "KeyValueStoreService",
    "LibraryBooksService",
    "LibraryIndexService",
    "SearchIndexService",
    "WorkerHost",
]
