"""
Library Books Service - SQLite-backed book collection

Stores one row per imported book together with its annotations and trash
state. EPUB payloads live as files under epub_dir; the row keeps the file
name, size and modification time that make up the payload descriptor.

Schema:
    library_books (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        author TEXT,
        language TEXT,
        genre TEXT,
        estimated_pages INTEGER,
        publisher TEXT,
        pub_date TEXT,
        cover TEXT,
        epub_metadata_json TEXT,
        metadata_version INTEGER NOT NULL DEFAULT 0,
        file_name TEXT,
        file_path TEXT,
        file_size INTEGER,
        last_modified INTEGER,
        highlights_json TEXT,
        bookmarks_json TEXT,
        is_favorite INTEGER NOT NULL DEFAULT 0,
        is_deleted INTEGER NOT NULL DEFAULT 0,
        deleted_at TEXT,
        added_at TEXT,
        last_read TEXT
    )

Mutations are read-modify-write under a per-service lock so that concurrent
annotation edits on the same book do not lose each other's changes.
"""

import json
import logging
import os
import re
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from smartreader.models.book import Book, Bookmark, BookPayload, Highlight
from smartreader.models.epub_metadata import MetadataExtractionResult

from .epub.epub_metadata_extractor import UNKNOWN_AUTHOR, EPUBMetadataExtractor
from .epub.genre_classifier import extract_genre

logger = logging.getLogger(__name__)

BOOK_METADATA_VERSION = 2
TRASH_RETENTION_DAYS = 30

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._ -]+")
_WHITESPACE_RE = re.compile(r"\s+")


def to_positive_integer(value) -> Optional[int]:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed <= 0:  # NaN or non-positive
        return None
    return max(1, round(parsed))


def needs_metadata_backfill(book: Book) -> bool:
    """True for stored books whose language, page estimate or genre were never filled in."""
    if book is None or book.payload is None:
        return False
    if (book.metadata_version or 0) < BOOK_METADATA_VERSION:
        return True
    missing_language = not str(book.language or "").strip()
    missing_pages = to_positive_integer(book.estimated_pages) is None
    missing_genre_field = not isinstance(book.genre, str)
    return missing_language or missing_pages or missing_genre_field


def payload_from_file(file_path: Path) -> BookPayload:
    stat = file_path.stat()
    return BookPayload(
        name=file_path.name,
        size=stat.st_size,
        last_modified=int(stat.st_mtime * 1000),
        path=str(file_path),
    )


class LibraryBooksService:
    """CRUD, trash and annotation operations on the library_books table."""

    def __init__(self, db_path: str = "data/smartreader.db", epub_dir: str = "epubs"):
        """
        Args:
            db_path: Path to the SQLite database file
            epub_dir: Directory where imported EPUB files are stored
        """
        self.db_path = db_path
        self.epub_dir = Path(epub_dir)
        self._lock = threading.Lock()
        self._ensure_dirs()
        self._init_table()

    def _ensure_dirs(self) -> None:
        data_dir = os.path.dirname(self.db_path)
        if data_dir and not os.path.exists(data_dir):
            os.makedirs(data_dir)
        self.epub_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_table(self) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS library_books (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT,
                    language TEXT,
                    genre TEXT,
                    estimated_pages INTEGER,
                    publisher TEXT,
                    pub_date TEXT,
                    cover TEXT,
                    epub_metadata_json TEXT,
                    metadata_version INTEGER NOT NULL DEFAULT 0,
                    file_name TEXT,
                    file_path TEXT,
                    file_size INTEGER,
                    last_modified INTEGER,
                    highlights_json TEXT,
                    bookmarks_json TEXT,
                    is_favorite INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    deleted_at TEXT,
                    added_at TEXT,
                    last_read TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_library_books_deleted
                ON library_books(is_deleted)
                """
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_book(self, row: sqlite3.Row) -> Book:
        payload = None
        if row["file_name"]:
            payload = BookPayload(
                name=row["file_name"],
                size=row["file_size"] or 0,
                last_modified=row["last_modified"] or 0,
                path=row["file_path"],
            )
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"] or UNKNOWN_AUTHOR,
            language=row["language"] or "",
            genre=row["genre"],
            estimated_pages=row["estimated_pages"],
            publisher=row["publisher"] or "",
            pub_date=row["pub_date"] or "",
            cover=row["cover"],
            epub_metadata=json.loads(row["epub_metadata_json"] or "{}"),
            metadata_version=row["metadata_version"] or 0,
            payload=payload,
            highlights=[Highlight(**h) for h in json.loads(row["highlights_json"] or "[]")],
            bookmarks=[Bookmark(**b) for b in json.loads(row["bookmarks_json"] or "[]")],
            is_favorite=bool(row["is_favorite"]),
            is_deleted=bool(row["is_deleted"]),
            deleted_at=row["deleted_at"],
            added_at=row["added_at"],
            last_read=row["last_read"],
        )

    def _save(self, conn: sqlite3.Connection, book: Book) -> None:
        payload = book.payload
        conn.execute(
            """
            INSERT INTO library_books (
                id, title, author, language, genre, estimated_pages, publisher,
                pub_date, cover, epub_metadata_json, metadata_version, file_name,
                file_path, file_size, last_modified, highlights_json, bookmarks_json,
                is_favorite, is_deleted, deleted_at, added_at, last_read
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                author = excluded.author,
                language = excluded.language,
                genre = excluded.genre,
                estimated_pages = excluded.estimated_pages,
                publisher = excluded.publisher,
                pub_date = excluded.pub_date,
                cover = excluded.cover,
                epub_metadata_json = excluded.epub_metadata_json,
                metadata_version = excluded.metadata_version,
                file_name = excluded.file_name,
                file_path = excluded.file_path,
                file_size = excluded.file_size,
                last_modified = excluded.last_modified,
                highlights_json = excluded.highlights_json,
                bookmarks_json = excluded.bookmarks_json,
                is_favorite = excluded.is_favorite,
                is_deleted = excluded.is_deleted,
                deleted_at = excluded.deleted_at,
                last_read = excluded.last_read
            """,
            (
                book.id,
                book.title,
                book.author,
                book.language,
                book.genre,
                book.estimated_pages,
                book.publisher,
                book.pub_date,
                book.cover,
                json.dumps(book.epub_metadata or {}),
                book.metadata_version,
                payload.name if payload else None,
                payload.path if payload else None,
                payload.size if payload else None,
                payload.last_modified if payload else None,
                json.dumps([h.model_dump() for h in book.highlights]),
                json.dumps([b.model_dump() for b in book.bookmarks]),
                int(book.is_favorite),
                int(book.is_deleted),
                book.deleted_at,
                book.added_at,
                book.last_read,
            ),
        )

    def _mutate(self, book_id: str, mutator: Callable[[Book], Optional[Book]]) -> Optional[Book]:
        """Load, transform and store one book atomically with respect to this service."""
        with self._lock:
            with self.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM library_books WHERE id = ?", (book_id,)
                ).fetchone()
                if row is None:
                    return None
                book = self._row_to_book(row)
                next_book = mutator(book) or book
                self._save(conn, next_book)
                conn.commit()
                return next_book

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def store_epub_file(self, data: bytes, file_name: str) -> Path:
        """Write an uploaded EPUB under epub_dir with a collision-free name."""
        safe_name = _UNSAFE_FILENAME_RE.sub("_", Path(file_name or "book.epub").name) or "book.epub"
        if not safe_name.lower().endswith(".epub"):
            safe_name = f"{safe_name}.epub"
        target = self.epub_dir / safe_name
        if target.exists():
            target = self.epub_dir / f"{target.stem}-{uuid.uuid4().hex[:8]}{target.suffix}"
        target.write_bytes(data)
        return target

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_book(self, book_id: str) -> Optional[Book]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM library_books WHERE id = ?", (book_id,)
            ).fetchone()
        return self._row_to_book(row) if row else None

    def get_all_books(self) -> List[Book]:
        """All books, favorites first, then most recently added."""
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM library_books ORDER BY is_favorite DESC, added_at DESC"
            ).fetchall()
        return [self._row_to_book(row) for row in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_book(
        self,
        file_path: Path,
        extraction: Optional[MetadataExtractionResult] = None,
        title_override: Optional[str] = None,
    ) -> Book:
        """
        Register an EPUB already stored on disk.

        Without an extraction result the book gets placeholder metadata
        (file stem as title, unknown author, no cover) and is left for the
        metadata backfill pass.
        """
        file_path = Path(file_path)
        payload = payload_from_file(file_path)
        now = datetime.now().isoformat()

        if extraction is not None:
            metadata = extraction.metadata
            book = Book(
                id=uuid.uuid4().hex,
                title=title_override or metadata.title or file_path.stem,
                author=metadata.creator or UNKNOWN_AUTHOR,
                language=metadata.language or "",
                genre=extraction.genre or extract_genre(metadata.model_dump()) or "",
                estimated_pages=extraction.estimated_pages,
                publisher=metadata.publisher or "Unknown Publisher",
                pub_date=metadata.pubdate or "",
                cover=extraction.cover,
                epub_metadata=metadata.model_dump(),
                metadata_version=BOOK_METADATA_VERSION,
                payload=payload,
                added_at=now,
                last_read=now,
            )
        else:
            book = Book(
                id=uuid.uuid4().hex,
                title=title_override or file_path.stem,
                author=UNKNOWN_AUTHOR,
                genre=None,
                payload=payload,
                added_at=now,
                last_read=now,
            )

        with self._lock:
            with self.get_connection() as conn:
                self._save(conn, book)
                conn.commit()
        logger.info(f"Added book {book.id} ({book.title})")
        return book

    def move_to_trash(self, book_id: str) -> Optional[Book]:
        def mutator(book: Book) -> Book:
            book.is_deleted = True
            book.deleted_at = datetime.now().isoformat()
            return book

        return self._mutate(book_id, mutator)

    def restore_from_trash(self, book_id: str) -> Optional[Book]:
        def mutator(book: Book) -> Book:
            book.is_deleted = False
            book.deleted_at = None
            return book

        return self._mutate(book_id, mutator)

    def toggle_favorite(self, book_id: str) -> Optional[Book]:
        def mutator(book: Book) -> Book:
            book.is_favorite = not book.is_favorite
            return book

        return self._mutate(book_id, mutator)

    def delete_book(self, book_id: str, remove_file: bool = True) -> bool:
        """Permanently delete a book row and, by default, its EPUB file."""
        book = self.get_book(book_id)
        if book is None:
            return False
        with self._lock:
            with self.get_connection() as conn:
                conn.execute("DELETE FROM library_books WHERE id = ?", (book_id,))
                conn.commit()
        if remove_file and book.payload and book.payload.path:
            try:
                Path(book.payload.path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove EPUB file for {book_id}: {e}")
        return True

    def purge_expired_trash(self, retention_days: int = TRASH_RETENTION_DAYS) -> int:
        """Delete trashed books whose deleted_at is older than the retention window."""
        cutoff = datetime.now() - timedelta(days=retention_days)
        expired_ids = []
        for book in self.get_all_books():
            if not book.is_deleted:
                continue
            # Trashed without a timestamp counts as expired
            if not book.deleted_at:
                expired_ids.append(book.id)
                continue
            try:
                deleted_at = datetime.fromisoformat(book.deleted_at)
            except ValueError:
                continue
            if deleted_at <= cutoff:
                expired_ids.append(book.id)

        for book_id in expired_ids:
            self.delete_book(book_id)
        if expired_ids:
            logger.info(f"Purged {len(expired_ids)} expired books from trash")
        return len(expired_ids)

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def save_highlight(self, book_id: str, highlight: Highlight) -> List[Highlight]:
        """Insert or update a highlight by locator, keeping any existing note."""

        def mutator(book: Book) -> Book:
            for index, previous in enumerate(book.highlights):
                if previous.cfi_range == highlight.cfi_range:
                    merged = previous.model_copy(update=highlight.model_dump(exclude_unset=True))
                    merged.note = previous.note or highlight.note or ""
                    book.highlights[index] = merged
                    break
            else:
                book.highlights.append(highlight)
            return book

        updated = self._mutate(book_id, mutator)
        return updated.highlights if updated else []

    def update_highlight_note(self, book_id: str, cfi_range: str, note: str) -> List[Highlight]:
        """
        Set the note of the highlight matching ``cfi_range``.

        Locators are compared with whitespace removed and match when either
        one contains the other.
        """

        def strip(value: str) -> str:
            return _WHITESPACE_RE.sub("", value or "")

        target = strip(cfi_range)

        def mutator(book: Book) -> Book:
            for highlight in book.highlights:
                source = strip(highlight.cfi_range)
                if not source or not target:
                    continue
                if source == target or target in source or source in target:
                    highlight.note = note
                    break
            return book

        updated = self._mutate(book_id, mutator)
        return updated.highlights if updated else []

    def delete_highlight(self, book_id: str, cfi_range: str) -> List[Highlight]:
        def mutator(book: Book) -> Book:
            book.highlights = [h for h in book.highlights if h.cfi_range != cfi_range]
            return book

        updated = self._mutate(book_id, mutator)
        return updated.highlights if updated else []

    def save_bookmark(self, book_id: str, bookmark: Bookmark) -> List[Bookmark]:
        def mutator(book: Book) -> Book:
            if not any(b.cfi == bookmark.cfi for b in book.bookmarks):
                book.bookmarks.append(bookmark)
            return book

        updated = self._mutate(book_id, mutator)
        return updated.bookmarks if updated else []

    def delete_bookmark(self, book_id: str, cfi: str) -> List[Bookmark]:
        def mutator(book: Book) -> Book:
            book.bookmarks = [b for b in book.bookmarks if b.cfi != cfi]
            return book

        updated = self._mutate(book_id, mutator)
        return updated.bookmarks if updated else []

    # ------------------------------------------------------------------
    # Metadata backfill
    # ------------------------------------------------------------------

    def backfill_book_metadata(
        self, book_id: str, extractor: Optional[EPUBMetadataExtractor] = None
    ) -> Optional[Book]:
        """
        Fill language, page estimate and genre for books imported before
        those fields existed. Populated fields are never overwritten and a
        failed extraction leaves the book untouched.
        """
        extractor = extractor or EPUBMetadataExtractor()

        def mutator(book: Book) -> Book:
            if not needs_metadata_backfill(book) or not book.payload.path:
                return book
            try:
                extraction = extractor.extract_file(Path(book.payload.path))
            except Exception as e:
                logger.error(f"Book metadata backfill failed for {book.id}: {e}")
                return book

            metadata = extraction.metadata
            language = str(book.language or "").strip() or metadata.language or ""
            pages = to_positive_integer(book.estimated_pages) or extraction.estimated_pages
            genre = (
                book.genre.strip()
                if isinstance(book.genre, str) and book.genre.strip()
                else (extraction.genre or "")
            )

            changed = (
                language != (book.language or "")
                or pages != book.estimated_pages
                or genre != (book.genre or "")
                or (book.metadata_version or 0) < BOOK_METADATA_VERSION
            )
            if not changed:
                return book

            return book.model_copy(
                update={
                    "language": language,
                    "estimated_pages": pages,
                    "genre": genre,
                    "epub_metadata": metadata.model_dump() or book.epub_metadata,
                    "metadata_version": BOOK_METADATA_VERSION,
                }
            )

        return self._mutate(book_id, mutator)

    def backfill_legacy_books(self, extractor: Optional[EPUBMetadataExtractor] = None) -> Dict[str, bool]:
        """Run the metadata backfill for every book that needs it."""
        results: Dict[str, bool] = {}
        for book in self.get_all_books():
            if needs_metadata_backfill(book):
                updated = self.backfill_book_metadata(book.id, extractor)
                results[book.id] = bool(updated and not needs_metadata_backfill(updated))
        return results
