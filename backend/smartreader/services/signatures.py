"""
Change signatures for the content index and the search index.

A content index signature only looks at the payload descriptor (the file is
never read), a search signature hashes the searchable metadata and every
annotation's locator and normalized text.
"""

from typing import Iterable

from smartreader.models.book import Book, BookPayload

_FNV_OFFSET = 2166136261
_MASK_32 = 0xFFFFFFFF


def hash_string(value: str) -> str:
    """32-bit FNV-1a style hash rendered as lowercase hex."""
    hash_value = _FNV_OFFSET
    for char in str(value or ""):
        hash_value ^= ord(char)
        hash_value = (
            hash_value
            + (hash_value << 1)
            + (hash_value << 4)
            + (hash_value << 7)
            + (hash_value << 8)
            + (hash_value << 24)
        ) & _MASK_32
    return format(hash_value, "x")


def payload_signature(book_id: str, payload: BookPayload | None) -> str:
    """Signature over ``book_id`` and the payload's size, mtime and name."""
    if payload is None:
        return f"{book_id}:0:0:"
    return f"{book_id}:{int(payload.size or 0)}:{int(payload.last_modified or 0)}:{payload.name or ''}"


def book_content_signature(book: Book) -> str:
    return payload_signature(book.id, book.payload)


def search_signature(
    book_id: str,
    metadata_text: str,
    annotation_pairs: Iterable[tuple[str, str]],
) -> str:
    """
    Signature over normalized metadata text plus ordered (locator, text) pairs.

    The payload length is kept as a prefix so that a hash collision also has
    to match the exact serialized length.
    """
    parts = [book_id or "", metadata_text]
    parts.extend(f"{locator}::{text}" for locator, text in annotation_pairs)
    payload = "|".join(parts)
    return f"{len(payload)}:{hash_string(payload)}"
