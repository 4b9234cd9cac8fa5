"""
EPUB Metadata Models

Values produced by EPUBMetadataExtractor. An extraction result is transient:
the library store copies its fields onto a Book and discards it.
"""

from pydantic import BaseModel, Field


class EPUBMetadata(BaseModel):
    """
    Bibliographic fields read from the OPF package document.

    Single-valued fields hold the first match; subjects and types keep
    every occurrence in document order.
    """

    title: str
    creator: str = "Unknown Author"
    language: str = ""
    publisher: str = ""
    pubdate: str = ""
    identifier: str = ""
    subject: str = ""
    subjects: list[str] = Field(default_factory=list)
    type: str = ""
    types: list[str] = Field(default_factory=list)


class MetadataExtractionResult(BaseModel):
    metadata: EPUBMetadata
    estimated_pages: int | None = None
    genre: str = ""
    cover: str | None = None  # data:<mime>;base64,<payload>
