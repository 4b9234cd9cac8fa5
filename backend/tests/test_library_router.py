"""
API tests for the /library router using FastAPI's TestClient.
"""

import importlib
import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from smartreader.routers import library
from smartreader.services.kv_store_service import KeyValueStoreService
from smartreader.services.library_books_service import LibraryBooksService
from smartreader.services.library_index_service import LibraryIndexService
from smartreader.services.workers import WorkerHost


@pytest.fixture
def client(temp_db, tmp_path):
    books = LibraryBooksService(db_path=temp_db, epub_dir=str(tmp_path / "epubs"))
    index = LibraryIndexService(books, KeyValueStoreService(db_path=temp_db), host=WorkerHost(2))
    library.configure(books, index)

    app = FastAPI()
    app.include_router(library.router)
    with TestClient(app) as test_client:
        yield test_client

    index.shutdown()
    library.configure(None, None)


@pytest.fixture
def uploaded(client, epub_bytes):
    response = client.post(
        "/library/books",
        files={"file": ("test-book.epub", epub_bytes, "application/epub+zip")},
    )
    assert response.status_code == 200
    return response.json()


class TestBooksEndpoints:
    def test_upload(self, uploaded):
        assert uploaded["title"] == "Test Book"
        assert uploaded["author"] == "Jane Doe"
        assert uploaded["estimated_pages"] == 24

    def test_upload_with_title_override(self, client, epub_bytes):
        response = client.post(
            "/library/books",
            files={"file": ("test-book.epub", epub_bytes, "application/epub+zip")},
            data={"title": "My Copy"},
        )
        assert response.json()["title"] == "My Copy"

    def test_upload_rejects_other_files(self, client):
        response = client.post(
            "/library/books", files={"file": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 400

    def test_upload_rejects_empty_file(self, client):
        response = client.post(
            "/library/books", files={"file": ("empty.epub", b"", "application/epub+zip")}
        )
        assert response.status_code == 400

    def test_upload_unreadable_epub_keeps_placeholder(self, client):
        response = client.post(
            "/library/books",
            files={"file": ("broken-book.epub", b"not a zip archive", "application/epub+zip")},
        )
        assert response.status_code == 200
        assert response.json()["title"] == "broken-book"
        assert response.json()["author"] == "Unknown Author"

    def test_list_and_get(self, client, uploaded):
        listed = client.get("/library/books").json()
        assert [book["id"] for book in listed] == [uploaded["id"]]
        assert client.get(f"/library/books/{uploaded['id']}").json()["title"] == "Test Book"

    def test_get_unknown_book(self, client):
        assert client.get("/library/books/missing").status_code == 404

    def test_trash_restore_and_favorite(self, client, uploaded):
        book_id = uploaded["id"]
        assert client.post(f"/library/books/{book_id}/trash").json()["is_deleted"] is True
        assert client.post(f"/library/books/{book_id}/restore").json()["is_deleted"] is False
        assert client.post(f"/library/books/{book_id}/favorite").json()["is_favorite"] is True

    def test_delete(self, client, uploaded):
        response = client.delete(f"/library/books/{uploaded['id']}")
        assert response.json() == {"success": True, "book_id": uploaded["id"]}
        assert client.get(f"/library/books/{uploaded['id']}").status_code == 404
        assert client.delete(f"/library/books/{uploaded['id']}").status_code == 404


class TestAnnotationEndpoints:
    def test_highlight_lifecycle(self, client, uploaded):
        base = f"/library/books/{uploaded['id']}/highlights"

        saved = client.post(base, json={"cfi_range": "c1", "text": "The wizard"}).json()
        assert [h["cfi_range"] for h in saved] == ["c1"]

        noted = client.patch(f"{base}/note", json={"cfi_range": "c1", "note": "Mine"}).json()
        assert noted[0]["note"] == "Mine"

        remaining = client.request("DELETE", base, json={"cfi_range": "c1"}).json()
        assert remaining == []

    def test_bookmark_lifecycle(self, client, uploaded):
        base = f"/library/books/{uploaded['id']}/bookmarks"

        client.post(base, json={"cfi": "b1", "label": "Start"})
        saved = client.post(base, json={"cfi": "b1", "label": "Again"}).json()
        assert len(saved) == 1

        assert client.request("DELETE", base, json={"cfi": "b1"}).json() == []

    def test_annotations_on_unknown_book(self, client):
        response = client.post("/library/books/missing/highlights", json={"cfi_range": "c1"})
        assert response.status_code == 404


class TestSearchEndpoints:
    def test_upload_triggers_indexing(self, client, uploaded):
        manifest = client.get("/library/index/manifest").json()
        assert uploaded["id"] in manifest["books"]

    def test_refresh(self, client, uploaded):
        manifest = client.post("/library/index/refresh").json()
        assert manifest["books"][uploaded["id"]]["section_count"] == 2

    def test_library_search(self, client, uploaded):
        client.post(
            f"/library/books/{uploaded['id']}/highlights",
            json={"cfi_range": "c1", "text": "circled above"},
        )
        groups = client.get("/library/search", params={"q": "circled"}).json()

        assert len(groups["highlights"]) == 1
        assert len(groups["content"]) == 1
        assert groups["content"][0]["subtitle"] == "Jane Doe · Part One"

    def test_book_content_search(self, client, uploaded):
        response = client.get(
            f"/library/books/{uploaded['id']}/content-search", params={"q": "wizard", "limit": 1}
        )
        body = response.json()
        assert body["query"] == "wizard"
        assert [c["id"] for c in body["candidates"]] == ["chap1"]
        assert "text" not in body["candidates"][0]

    def test_book_content_search_unknown_book(self, client):
        response = client.get("/library/books/missing/content-search", params={"q": "x"})
        assert response.status_code == 404


class TestApplication:
    def test_root_and_health(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SMARTREADER_DB_PATH", str(tmp_path / "data" / "app.db"))
        monkeypatch.setenv("SMARTREADER_EPUB_DIR", str(tmp_path / "epubs"))
        monkeypatch.setenv("SMARTREADER_WORKERS", "1")
        main = importlib.reload(sys.modules["main"]) if "main" in sys.modules else importlib.import_module("main")

        with TestClient(main.app) as test_client:
            assert test_client.get("/health").json() == {"status": "healthy"}
            assert test_client.get("/").json()["status"] == "running"
            assert test_client.get("/library/books").json() == []
