"""SmartReader library backend: EPUB metadata extraction, content indexing and search."""

__version__ = "1.0.0"
