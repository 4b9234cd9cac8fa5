"""
EPUB document model backed by ebooklib.

Mirrors the lifecycle a rendering engine exposes: await readiness, load the
navigation lazily, then load and unload spine sections one at a time. The
caller owns every handle obtained here and must unload sections and destroy
the document when done.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub

logger = logging.getLogger(__name__)


class SpineSection:
    """A single spine item whose text is only held between load() and unload()."""

    def __init__(self, index: int, idref: str, href: str, linear: bool, item: Any):
        self.index = index
        self.idref = idref
        self.href = href
        self.linear = linear
        self._item = item
        self._text: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self._text is not None

    @property
    def text(self) -> str:
        """Raw body text of the loaded section (empty when not loaded)."""
        return self._text or ""

    async def load(self) -> str:
        self._text = await asyncio.to_thread(self._extract_body_text)
        return self._text

    def unload(self) -> None:
        self._text = None

    def _extract_body_text(self) -> str:
        if self._item is None:
            return ""
        content = self._item.get_content()
        if not content:
            return ""
        soup = BeautifulSoup(content, "html.parser")
        root = soup.body or soup
        return root.get_text()


class EPUBDocument:
    """Readiness-gated wrapper around ``ebooklib.epub.read_epub``."""

    def __init__(self, file_path: Path | str):
        self.file_path = Path(file_path)
        self._book: Optional[epub.EpubBook] = None
        self._toc: Optional[list] = None
        self._destroyed = False

    async def ready(self) -> "EPUBDocument":
        if self._destroyed:
            raise RuntimeError("EPUB document has been destroyed")
        if self._book is None:
            self._book = await asyncio.to_thread(
                epub.read_epub, str(self.file_path), {"ignore_ncx": False}
            )
        return self

    def _require_book(self) -> epub.EpubBook:
        if self._book is None:
            raise RuntimeError("EPUB document is not ready")
        return self._book

    async def load_navigation(self) -> list:
        """Return the raw ebooklib TOC (Links and (Section, children) tuples)."""
        if self._toc is None:
            book = self._require_book()
            self._toc = list(book.toc or [])
        return self._toc

    @property
    def spine_items(self) -> List[SpineSection]:
        book = self._require_book()
        sections: List[SpineSection] = []
        for index, entry in enumerate(book.spine):
            idref, linear = entry if isinstance(entry, tuple) else (entry, "yes")
            item = book.get_item_with_id(idref)
            if item is None or item.get_type() not in {ebooklib.ITEM_DOCUMENT, 0}:
                continue
            sections.append(
                SpineSection(
                    index=index,
                    idref=idref,
                    href=item.get_name(),
                    linear=str(linear).lower() != "no",
                    item=item,
                )
            )
        return sections

    def destroy(self) -> None:
        self._book = None
        self._toc = None
        self._destroyed = True
