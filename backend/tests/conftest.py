"""
Shared fixtures: temporary SQLite databases and EPUB archives built in memory.
"""

import io
import os
import tempfile
import zipfile

import pytest
from PIL import Image

from smartreader.models.book import Book, Bookmark, BookPayload, Highlight
from smartreader.services.kv_store_service import KeyValueStoreService

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

CHAPTER_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>{title}</title></head>
<body>
  <h1>{title}</h1>
  <p>{body}</p>
</body>
</html>
"""

NCX_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="urn:uuid:test-book"/>
  </head>
  <docTitle><text>{title}</text></docTitle>
  <navMap>
    <navPoint id="nav-1" playOrder="1">
      <navLabel><text>Part One</text></navLabel>
      <content src="Text/chap1.xhtml"/>
      <navPoint id="nav-2" playOrder="2">
        <navLabel><text>Chapter One</text></navLabel>
        <content src="Text/chap1.xhtml#c1"/>
      </navPoint>
    </navPoint>
    <navPoint id="nav-3" playOrder="3">
      <navLabel><text>Chapter Two</text></navLabel>
      <content src="Text/chap2.xhtml"/>
    </navPoint>
  </navMap>
</ncx>
"""

CHAPTERS = [
    ("chap1", "Chapter One", "The wizard walked into the tower. Dragons circled above."),
    ("chap2", "Chapter Two", "A quiet morning in the village. The wizard returned at dusk."),
    ("notes", "Notes", "Endnotes about the wizard and his tower."),
]


def make_png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (2, 2), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def build_opf(
    title: str = "Test Book",
    creator: str = "Jane Doe",
    language: str = "en",
    subjects=("Fantasy", "Adventure"),
    cover_mode: str = "property",
) -> str:
    subject_tags = "\n    ".join(f"<dc:subject>{s}</dc:subject>" for s in subjects)
    cover_meta = '<meta name="cover" content="cover-img"/>' if cover_mode == "meta" else ""
    cover_props = ' properties="cover-image"' if cover_mode == "property" else ""
    cover_item = (
        f'<item id="cover-img" href="Images/cover.png" media-type="image/png"{cover_props}/>'
        if cover_mode
        else ""
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>{title}</dc:title>
    <dc:creator>{creator}</dc:creator>
    <dc:language>{language}</dc:language>
    <dc:publisher>Example Press</dc:publisher>
    <dc:date>2020-05-01</dc:date>
    <dc:identifier id="bookid">urn:uuid:test-book</dc:identifier>
    {subject_tags}
    {cover_meta}
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="chap1" href="Text/chap1.xhtml" media-type="application/xhtml+xml"/>
    <item id="chap2" href="Text/chap2.xhtml" media-type="application/xhtml+xml"/>
    <item id="notes" href="Text/notes.xhtml" media-type="application/xhtml+xml"/>
    {cover_item}
  </manifest>
  <spine toc="ncx">
    <itemref idref="chap1"/>
    <itemref idref="chap2"/>
    <itemref idref="notes" linear="no"/>
  </spine>
</package>
"""


def build_epub_bytes(
    title: str = "Test Book",
    creator: str = "Jane Doe",
    language: str = "en",
    subjects=("Fantasy", "Adventure"),
    cover_mode: str = "property",
    opf_xml: str | None = None,
    include_container: bool = True,
    include_opf: bool = True,
) -> bytes:
    """Assemble a small EPUB 2 archive with three chapters and an NCX."""
    buffer = io.BytesIO()
    opf_path = "OEBPS/content.opf"
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        if include_container:
            archive.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        if include_opf:
            archive.writestr(
                opf_path,
                opf_xml
                or build_opf(
                    title=title,
                    creator=creator,
                    language=language,
                    subjects=subjects,
                    cover_mode=cover_mode,
                ),
            )
        archive.writestr("OEBPS/toc.ncx", NCX_XML.format(title=title))
        for item_id, chapter_title, body in CHAPTERS:
            archive.writestr(
                f"OEBPS/Text/{item_id}.xhtml",
                CHAPTER_TEMPLATE.format(title=chapter_title, body=body),
            )
        if cover_mode:
            archive.writestr("OEBPS/Images/cover.png", make_png_bytes())
    return buffer.getvalue()


def make_book(book_id: str = "book-1", **overrides) -> Book:
    values = {
        "id": book_id,
        "title": "Test Book",
        "author": "Jane Doe",
        "language": "en",
        "genre": "Fantasy",
        "payload": BookPayload(name=f"{book_id}.epub", size=1024, last_modified=1700000000000),
    }
    values.update(overrides)
    return Book(**values)


@pytest.fixture
def epub_factory():
    return build_epub_bytes


@pytest.fixture
def book_factory():
    return make_book


@pytest.fixture
def png_bytes():
    return make_png_bytes()


@pytest.fixture
def epub_bytes():
    return build_epub_bytes()


@pytest.fixture
def epub_file(tmp_path, epub_bytes):
    path = tmp_path / "test-book.epub"
    path.write_bytes(epub_bytes)
    return path


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing"""
    with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".db") as f:
        db_path = f.name

    yield db_path

    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def kv_store(temp_db):
    return KeyValueStoreService(db_path=temp_db)


@pytest.fixture
def annotated_book():
    return make_book(
        highlights=[
            Highlight(cfi_range="epubcfi(/6/4!/4/2,/1:0,/1:12)", text="The Wizard walked", note="Remember the tower"),
        ],
        bookmarks=[
            Bookmark(cfi="epubcfi(/6/6!/4/2/1:0)", label="Village", text="A quiet morning"),
        ],
    )
