# EPUB Service Components
from .archive_reader import EPUBArchive
from .epub_document import EPUBDocument, SpineSection
from .epub_metadata_extractor import EPUBMetadataExtractor
from .epub_navigation_service import EPUBNavigationService

__all__ = [
    "EPUBArchive",
    "EPUBDocument",
    "SpineSection",
    "EPUBMetadataExtractor",
    "EPUBNavigationService",
]
