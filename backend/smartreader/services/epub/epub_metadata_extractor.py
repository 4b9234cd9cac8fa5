"""
EPUB Metadata Extractor

Reads bibliographic metadata, a page estimate, a genre label and the cover
image straight from the EPUB's ZIP entries, without building a document
model. The package document is scanned with regular expressions rather than
parsed as XML: producers routinely ship OPF files that strict parsers reject.
"""

import base64
import io
import logging
import re
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from smartreader.models.epub_metadata import EPUBMetadata, MetadataExtractionResult

from ..errors import MalformedContainerError, MissingPackageDocumentError
from ..text_normalizer import compact_whitespace
from .archive_reader import EPUBArchive, resolve_path
from .genre_classifier import extract_genre

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
UNKNOWN_AUTHOR = "Unknown Author"

IMAGE_MIME_BY_EXT = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}

# Checked in order; &amp; last so "&amp;lt;" decodes to "&lt;" and not "<"
_XML_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&#39;", "'"),
    ("&nbsp;", " "),
    ("&amp;", "&"),
)

_FULL_PATH_RE = re.compile(r"""full-path\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
_ATTRIBUTE_RE = re.compile(r"""([:@A-Za-z0-9._-]+)\s*=\s*(['"])(.*?)\2""", re.DOTALL)
_ITEM_TAG_RE = re.compile(r"<item\b[^>]*>", re.IGNORECASE)
_META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_ITEMREF_RE = re.compile(r"<itemref\b", re.IGNORECASE)
_HTML_REF_RE = re.compile(r"\.x?html", re.IGNORECASE)
_COVER_PROPERTY_RE = re.compile(r"\bcover-image\b", re.IGNORECASE)
_EPUB_SUFFIX_RE = re.compile(r"\.epub$", re.IGNORECASE)
_EXTENSION_RE = re.compile(r"\.([A-Za-z0-9]+)$")


def decode_entities(value: str | None) -> str:
    text = str(value or "")
    for entity, replacement in _XML_ENTITIES:
        text = text.replace(entity, replacement)
    return text


def clean_text(value: str | None) -> str:
    """Decode XML entities and collapse whitespace."""
    return compact_whitespace(decode_entities(value))


def parse_attributes(tag_text: str) -> dict[str, str]:
    return {
        match.group(1).lower(): match.group(3)
        for match in _ATTRIBUTE_RE.finditer(tag_text or "")
    }


def collect_tag_texts(xml: str, tag_name: str) -> list[str]:
    """Return the cleaned, non-empty text of every ``tag_name`` element."""
    if not xml:
        return []
    escaped = re.escape(tag_name)
    pattern = re.compile(rf"<{escaped}[^>]*>([\s\S]*?)</{escaped}>", re.IGNORECASE)
    values = []
    for match in pattern.finditer(xml):
        text = clean_text(match.group(1))
        if text:
            values.append(text)
    return values


def first_tag_text(xml: str, tag_names: list[str]) -> str:
    for tag_name in tag_names:
        values = collect_tag_texts(xml, tag_name)
        if values:
            return values[0]
    return ""


def read_container_opf_path(container_xml: str | None) -> str:
    match = _FULL_PATH_RE.search(container_xml or "")
    return match.group(1) if match else ""


def estimate_pages_from_opf(opf_xml: str) -> int | None:
    """
    Rough page count: 8 per spine itemref, else 4 per (x)html reference.

    Returns None rather than 0 when the package gives no signal at all.
    """
    spine_count = len(_ITEMREF_RE.findall(opf_xml or ""))
    if spine_count > 0:
        return max(1, round(spine_count * 8))
    html_count = len(_HTML_REF_RE.findall(opf_xml or ""))
    if html_count > 0:
        return max(1, round(html_count * 4))
    return None


def detect_cover_href(opf_xml: str) -> str:
    """
    Find the cover image href declared by the package document.

    EPUB 3 ``properties="cover-image"`` wins over the EPUB 2
    ``<meta name="cover" content="item-id">`` convention.
    """
    items = [parse_attributes(match.group(0)) for match in _ITEM_TAG_RE.finditer(opf_xml or "")]

    for attrs in items:
        if _COVER_PROPERTY_RE.search(attrs.get("properties", "")) and attrs.get("href"):
            return attrs["href"]

    for match in _META_TAG_RE.finditer(opf_xml or ""):
        attrs = parse_attributes(match.group(0))
        if attrs.get("name", "").lower() != "cover" or not attrs.get("content"):
            continue
        cover_id = attrs["content"]
        for item in items:
            if item.get("id") == cover_id and item.get("href"):
                return item["href"]

    return ""


def extract_opf_metadata(opf_xml: str, file_name: str) -> EPUBMetadata:
    title = first_tag_text(opf_xml, ["dc:title", "title"]) or _EPUB_SUFFIX_RE.sub(
        "", str(file_name or "")
    )
    subjects = collect_tag_texts(opf_xml, "dc:subject")
    types = collect_tag_texts(opf_xml, "dc:type")

    return EPUBMetadata(
        title=title,
        creator=first_tag_text(opf_xml, ["dc:creator", "creator"]) or UNKNOWN_AUTHOR,
        language=first_tag_text(opf_xml, ["dc:language", "language"]),
        publisher=first_tag_text(opf_xml, ["dc:publisher", "publisher"]),
        pubdate=first_tag_text(opf_xml, ["dc:date", "dc:pubdate", "date"]),
        identifier=first_tag_text(opf_xml, ["dc:identifier", "identifier"]),
        subject=subjects[0] if subjects else "",
        subjects=subjects,
        type=types[0] if types else "",
        types=types,
    )


def guess_image_mime(path: str, data: bytes | None = None) -> str:
    """MIME type from the file extension, sniffing the bytes when it is unknown."""
    match = _EXTENSION_RE.search(path or "")
    ext = match.group(1).lower() if match else ""
    if ext in IMAGE_MIME_BY_EXT:
        return IMAGE_MIME_BY_EXT[ext]

    if data:
        try:
            with Image.open(io.BytesIO(data)) as img:
                if img.format:
                    return Image.MIME.get(img.format, "image/jpeg")
        except (UnidentifiedImageError, OSError):
            logger.debug(f"Could not identify cover image format for {path}")
    return "image/jpeg"


class EPUBMetadataExtractor:
    """Extracts a MetadataExtractionResult from raw EPUB bytes."""

    def extract(self, data: bytes, file_name: str = "") -> MetadataExtractionResult:
        """
        Parse ``data`` and return metadata, page estimate, genre and cover.

        Raises:
            MalformedContainerError: If the archive or its container.xml is missing
            MissingPackageDocumentError: If the OPF path or OPF entry is missing
        """
        with EPUBArchive.from_bytes(data) as archive:
            container_xml = archive.read_text(CONTAINER_PATH)
            if container_xml is None:
                raise MalformedContainerError(f"Missing {CONTAINER_PATH}")

            opf_path = read_container_opf_path(container_xml)
            if not opf_path:
                raise MissingPackageDocumentError("Unable to locate OPF path")

            opf_xml = archive.read_text(opf_path)
            if opf_xml is None:
                raise MissingPackageDocumentError(f"Missing OPF file: {opf_path}")

            metadata = extract_opf_metadata(opf_xml, file_name)
            cover = self._build_cover_data_url(archive, opf_path, detect_cover_href(opf_xml))

            return MetadataExtractionResult(
                metadata=metadata,
                estimated_pages=estimate_pages_from_opf(opf_xml),
                genre=extract_genre(metadata.model_dump()),
                cover=cover,
            )

    def extract_file(self, file_path: Path) -> MetadataExtractionResult:
        """Convenience wrapper reading the EPUB from disk."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"EPUB {file_path.name} not found")
        return self.extract(file_path.read_bytes(), file_path.name)

    def _build_cover_data_url(
        self, archive: EPUBArchive, opf_path: str, href: str
    ) -> str | None:
        """Embed the cover as a data URL; a missing or unreadable cover yields None."""
        if not href:
            return None
        try:
            resolved_path = resolve_path(opf_path, href)
            if not resolved_path:
                return None
            data = archive.read_bytes(resolved_path)
            if not data:
                logger.debug(f"Cover entry not found in archive: {resolved_path}")
                return None
            encoded = base64.b64encode(data).decode("ascii")
            mime = guess_image_mime(resolved_path, data)
            return f"data:{mime};base64,{encoded}"
        except Exception as e:
            logger.warning(f"Failed to read cover image {href}: {e}")
            return None
