"""
Table-of-contents flattening and chapter labels for spine sections.

ebooklib TOCs mix Link objects with (Section, children) tuples; both are
reduced to ordered href/label pairs here.
"""

from typing import Any, Dict, List

from ..text_normalizer import normalize_href


class EPUBNavigationService:
    """Flattens EPUB tables of contents and maps sections to chapter labels."""

    def flatten_toc(self, toc_items) -> List[Dict[str, str]]:
        """
        Flatten a nested ebooklib TOC into ordered ``{"href", "label"}`` pairs.

        Walks depth-first so a parent precedes its children. Entries missing
        either an href or a label are dropped, but their children are kept.
        """
        flat: List[Dict[str, str]] = []
        self._walk_toc(toc_items or [], flat)
        return flat

    def _walk_toc(self, toc_items, acc: List[Dict[str, str]]) -> None:
        for item in toc_items:
            if not item:
                continue
            if isinstance(item, tuple):
                # Nested section: (Section, [children])
                section, children = item[0], item[1] if len(item) > 1 else []
                self._append_entry(section, acc)
                self._walk_toc(children or [], acc)
            elif isinstance(item, list):
                self._walk_toc(item, acc)
            else:
                self._append_entry(item, acc)

    def _append_entry(self, entry: Any, acc: List[Dict[str, str]]) -> None:
        href = getattr(entry, "href", None)
        label = getattr(entry, "title", None)
        href = href if isinstance(href, str) else ""
        label = label.strip() if isinstance(label, str) else ""
        if href and label:
            acc.append({"href": normalize_href(href), "label": label})

    def resolve_chapter_label(
        self, section_href: str, toc_entries: List[Dict[str, str]]
    ) -> str:
        """
        Return the label of the first TOC entry whose href contains, or is
        contained in, the section href.

        Containment is approximate on aliased paths; callers that need exact
        path equivalence should replace this method rather than patch around it.
        """
        normalized_section_href = normalize_href(section_href)
        if not normalized_section_href:
            return ""
        for entry in toc_entries:
            toc_href = normalize_href(entry.get("href", ""))
            if not toc_href:
                continue
            if toc_href in normalized_section_href or normalized_section_href in toc_href:
                return entry.get("label", "")
        return ""
