"""
Unit tests for content and search signatures.
"""

import pytest

from smartreader.models.book import BookPayload
from smartreader.services.signatures import (
    book_content_signature,
    hash_string,
    payload_signature,
    search_signature,
)


class TestPayloadSignature:
    def test_format(self):
        payload = BookPayload(name="a.epub", size=10, last_modified=123)
        assert payload_signature("b1", payload) == "b1:10:123:a.epub"

    def test_missing_payload(self):
        assert payload_signature("b1", None) == "b1:0:0:"

    def test_same_input_gives_same_signature(self, book_factory):
        assert book_content_signature(book_factory()) == book_content_signature(book_factory())

    @pytest.mark.parametrize(
        "field, value",
        [("size", 2048), ("last_modified", 1700000000001), ("name", "renamed.epub")],
    )
    def test_book_signature_tracks_payload_changes(self, book_factory, field, value):
        book = book_factory()
        before = book_content_signature(book)
        setattr(book.payload, field, value)
        assert book_content_signature(book) != before

    def test_annotations_do_not_affect_content_signature(self, book_factory, annotated_book):
        assert book_content_signature(book_factory()) == book_content_signature(annotated_book)


class TestSearchSignature:
    def test_hash_is_deterministic_hex(self):
        value = hash_string("hello")
        assert value == hash_string("hello")
        int(value, 16)
        assert hash_string("hello") != hash_string("hellp")

    def test_length_prefix(self):
        signature = search_signature("b1", "meta", [("c1", "text")])
        assert signature.split(":", 1)[0] == str(len("b1|meta|c1::text"))

    def test_order_matters(self):
        first = search_signature("b1", "m", [("c1", "a"), ("c2", "b")])
        second = search_signature("b1", "m", [("c2", "b"), ("c1", "a")])
        assert first != second
