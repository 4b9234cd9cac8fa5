import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel

from smartreader.models.book import Book, Bookmark, Highlight
from smartreader.models.content_index import ContentIndexManifest, ContentSearchCandidate
from smartreader.models.search_index import GlobalSearchGroups
from smartreader.services.content_search_matcher import DEFAULT_MAX_CANDIDATES
from smartreader.services.library_books_service import LibraryBooksService
from smartreader.services.library_index_service import LibraryIndexService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/library", tags=["library"])

# Wired by main.py
books_service: Optional[LibraryBooksService] = None
index_service: Optional[LibraryIndexService] = None


def configure(books: LibraryBooksService, index: LibraryIndexService) -> None:
    global books_service, index_service
    books_service = books
    index_service = index


def get_books_service() -> LibraryBooksService:
    if books_service is None:
        raise HTTPException(status_code=500, detail="Library is not configured")
    return books_service


def get_index_service() -> LibraryIndexService:
    if index_service is None:
        raise HTTPException(status_code=500, detail="Library is not configured")
    return index_service


# Helper function to get a book by ID or raise 404
def get_book_or_404(book_id: str) -> Book:
    """
    Look up a book by ID and return it, or raise HTTPException(404) if not found.

    Raises:
        HTTPException: 404 if the book does not exist
    """
    book = get_books_service().get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


async def refresh_in_background() -> None:
    try:
        await get_index_service().refresh_indexes()
    except Exception as e:
        logger.error(f"Background index refresh failed: {e}", exc_info=True)


class HighlightNoteRequest(BaseModel):
    cfi_range: str
    note: str = ""


class HighlightDeleteRequest(BaseModel):
    cfi_range: str


class BookmarkDeleteRequest(BaseModel):
    cfi: str


class ContentSearchResponse(BaseModel):
    book_id: str
    query: str
    candidates: List[ContentSearchCandidate]


# ========================================
# BOOKS
# ========================================


@router.post("/books", response_model=Book)
async def upload_book(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
) -> Book:
    """Import an EPUB file into the library."""
    if not file.filename or not file.filename.lower().endswith(".epub"):
        raise HTTPException(status_code=400, detail="Only .epub files are supported")

    try:
        data = await file.read()
        if not data:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        book = await get_index_service().import_epub(data, file.filename, title)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error importing {file.filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error importing book: {str(e)}")

    background_tasks.add_task(refresh_in_background)
    return book


@router.get("/books", response_model=List[Book])
async def list_books() -> List[Book]:
    return get_books_service().get_all_books()


@router.get("/books/{book_id}", response_model=Book)
async def get_book(book_id: str) -> Book:
    return get_book_or_404(book_id)


@router.post("/books/{book_id}/trash", response_model=Book)
async def trash_book(book_id: str, background_tasks: BackgroundTasks) -> Book:
    get_book_or_404(book_id)
    book = get_books_service().move_to_trash(book_id)
    background_tasks.add_task(refresh_in_background)
    return book


@router.post("/books/{book_id}/restore", response_model=Book)
async def restore_book(book_id: str, background_tasks: BackgroundTasks) -> Book:
    get_book_or_404(book_id)
    book = get_books_service().restore_from_trash(book_id)
    background_tasks.add_task(refresh_in_background)
    return book


@router.post("/books/{book_id}/favorite", response_model=Book)
async def toggle_favorite(book_id: str) -> Book:
    get_book_or_404(book_id)
    return get_books_service().toggle_favorite(book_id)


@router.delete("/books/{book_id}")
async def delete_book(book_id: str, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Permanently delete a book and its EPUB file."""
    get_book_or_404(book_id)
    deleted = get_books_service().delete_book(book_id)
    background_tasks.add_task(refresh_in_background)
    return {"success": deleted, "book_id": book_id}


# ========================================
# ANNOTATIONS
# ========================================


@router.post("/books/{book_id}/highlights", response_model=List[Highlight])
async def save_highlight(
    book_id: str, highlight: Highlight, background_tasks: BackgroundTasks
) -> List[Highlight]:
    get_book_or_404(book_id)
    highlights = get_books_service().save_highlight(book_id, highlight)
    background_tasks.add_task(refresh_in_background)
    return highlights


@router.patch("/books/{book_id}/highlights/note", response_model=List[Highlight])
async def update_highlight_note(
    book_id: str, payload: HighlightNoteRequest, background_tasks: BackgroundTasks
) -> List[Highlight]:
    get_book_or_404(book_id)
    highlights = get_books_service().update_highlight_note(
        book_id, payload.cfi_range, payload.note
    )
    background_tasks.add_task(refresh_in_background)
    return highlights


@router.delete("/books/{book_id}/highlights", response_model=List[Highlight])
async def delete_highlight(
    book_id: str, payload: HighlightDeleteRequest, background_tasks: BackgroundTasks
) -> List[Highlight]:
    get_book_or_404(book_id)
    highlights = get_books_service().delete_highlight(book_id, payload.cfi_range)
    background_tasks.add_task(refresh_in_background)
    return highlights


@router.post("/books/{book_id}/bookmarks", response_model=List[Bookmark])
async def save_bookmark(
    book_id: str, bookmark: Bookmark, background_tasks: BackgroundTasks
) -> List[Bookmark]:
    get_book_or_404(book_id)
    bookmarks = get_books_service().save_bookmark(book_id, bookmark)
    background_tasks.add_task(refresh_in_background)
    return bookmarks


@router.delete("/books/{book_id}/bookmarks", response_model=List[Bookmark])
async def delete_bookmark(
    book_id: str, payload: BookmarkDeleteRequest, background_tasks: BackgroundTasks
) -> List[Bookmark]:
    get_book_or_404(book_id)
    bookmarks = get_books_service().delete_bookmark(book_id, payload.cfi)
    background_tasks.add_task(refresh_in_background)
    return bookmarks


# ========================================
# INDEXES AND SEARCH
# ========================================


@router.post("/index/refresh", response_model=ContentIndexManifest)
async def refresh_indexes() -> ContentIndexManifest:
    """Run a search snapshot sync and content index pass now."""
    try:
        return await get_index_service().refresh_indexes()
    except Exception as e:
        logger.error(f"Index refresh failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error refreshing indexes: {str(e)}")


@router.get("/index/manifest", response_model=ContentIndexManifest)
async def get_manifest() -> ContentIndexManifest:
    return get_index_service().get_manifest()


@router.get("/search", response_model=GlobalSearchGroups)
async def search_library(q: str = Query("", description="Search query")) -> GlobalSearchGroups:
    """Search titles, annotations and indexed book content."""
    try:
        return await get_index_service().search_library(q)
    except Exception as e:
        logger.error(f"Library search failed for '{q}': {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error searching library: {str(e)}")


@router.get("/books/{book_id}/content-search", response_model=ContentSearchResponse)
async def search_book_content(
    book_id: str,
    q: str = Query("", description="Search query"),
    limit: int = Query(DEFAULT_MAX_CANDIDATES, ge=1, le=100),
) -> ContentSearchResponse:
    candidates = await get_index_service().search_book_content(book_id, q, limit)
    if candidates is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return ContentSearchResponse(book_id=book_id, query=q, candidates=candidates)
