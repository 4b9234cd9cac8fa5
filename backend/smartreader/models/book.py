"""
Library Book Models

Pydantic models for books held by the library store. The indexing services
only read these; annotation edits and trash operations go through
LibraryBooksService.
"""

from pydantic import BaseModel, Field


class BookPayload(BaseModel):
    """
    Descriptor of the stored EPUB file.

    Only name, size and last_modified feed the content index signature;
    path is where the bytes can be read from.
    """

    name: str
    size: int = 0
    last_modified: int = 0  # milliseconds since epoch
    path: str | None = None


class Highlight(BaseModel):
    """A highlighted range; cfi_range is the reader's locator string."""

    cfi_range: str
    text: str = ""
    note: str = ""
    color: str = "yellow"
    created_at: str | None = None


class Bookmark(BaseModel):
    cfi: str
    label: str = ""
    text: str = ""
    created_at: str | None = None


class Book(BaseModel):
    id: str
    title: str
    author: str = "Unknown Author"
    language: str = ""
    genre: str | None = ""
    estimated_pages: int | None = None
    publisher: str = ""
    pub_date: str = ""
    cover: str | None = None  # data: URL
    epub_metadata: dict = Field(default_factory=dict)
    metadata_version: int = 0
    payload: BookPayload | None = None
    highlights: list[Highlight] = Field(default_factory=list)
    bookmarks: list[Bookmark] = Field(default_factory=list)
    is_favorite: bool = False
    is_deleted: bool = False
    deleted_at: str | None = None
    added_at: str | None = None
    last_read: str | None = None
