"""
Content Index Models

Per-book section text records, the manifest that summarizes them, and the
public-facing search candidates returned to callers.
"""

from pydantic import BaseModel, Field

CONTENT_INDEX_VERSION = 1


class ContentSection(BaseModel):
    id: str
    href: str = ""
    chapter_label: str = ""
    preview: str = ""
    text: str = ""  # normalized full text, never sent back to search callers


class ContentIndexRecord(BaseModel):
    """Persisted under contentSearch.book:{book_id}."""

    version: int = CONTENT_INDEX_VERSION
    book_id: str
    signature: str
    built_at: str
    sections: list[ContentSection] = Field(default_factory=list)


class ManifestEntry(BaseModel):
    version: int = CONTENT_INDEX_VERSION
    signature: str
    section_count: int = 0
    updated_at: str


class ContentIndexManifest(BaseModel):
    """Persisted under contentSearch.__manifest__."""

    version: int = CONTENT_INDEX_VERSION
    updated_at: str | None = None
    books: dict[str, ManifestEntry] = Field(default_factory=dict)


class ContentSearchCandidate(BaseModel):
    id: str
    href: str = ""
    chapter_label: str = ""
    preview: str = ""
