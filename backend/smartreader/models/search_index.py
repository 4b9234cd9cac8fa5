"""
Search Index Models

One SearchRecord per non-deleted book, collected into a single snapshot
persisted under searchIndex.global.
"""

from pydantic import BaseModel, Field

SEARCH_INDEX_VERSION = 1


class SearchEntry(BaseModel):
    """A highlight, note or bookmark prepared for substring search."""

    id: str
    cfi: str = ""
    text: str
    normalized: str


class SearchRecord(BaseModel):
    version: int = SEARCH_INDEX_VERSION
    id: str
    metadata_text: str = ""
    full_text: str = ""
    highlights: list[SearchEntry] = Field(default_factory=list)
    notes: list[SearchEntry] = Field(default_factory=list)
    bookmarks: list[SearchEntry] = Field(default_factory=list)
    signature: str
    updated_at: str


class SearchIndexSnapshot(BaseModel):
    version: int = SEARCH_INDEX_VERSION
    updated_at: str | None = None
    books: dict[str, SearchRecord] = Field(default_factory=dict)


class GlobalSearchResult(BaseModel):
    id: str
    book_id: str
    panel: str = ""
    cfi: str = ""
    query: str
    title: str
    subtitle: str = ""
    snippet: str = ""


class GlobalSearchGroups(BaseModel):
    books: list[GlobalSearchResult] = Field(default_factory=list)
    highlights: list[GlobalSearchResult] = Field(default_factory=list)
    notes: list[GlobalSearchResult] = Field(default_factory=list)
    bookmarks: list[GlobalSearchResult] = Field(default_factory=list)
    content: list[GlobalSearchResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.books)
            + len(self.highlights)
            + len(self.notes)
            + len(self.bookmarks)
            + len(self.content)
        )
