"""
Content Search Matcher

Stateless substring matching over content index sections. Runs inside a
worker; both the request and the response are plain dicts, and every
response echoes the caller's request_id.
"""

import logging
from typing import Any, Dict, List, Optional

from smartreader.models.worker_messages import WorkerResponse

from .text_normalizer import normalize_text

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANDIDATES = 12

PUBLIC_FIELDS = ("id", "href", "chapter_label", "preview")


def _coerce_limit(max_candidates: Any) -> int:
    try:
        limit = int(max_candidates)
    except (TypeError, ValueError):
        return DEFAULT_MAX_CANDIDATES
    if limit == 0:
        return DEFAULT_MAX_CANDIDATES
    return max(1, limit)


def find_candidates(
    sections: List[Dict[str, Any]],
    query: str,
    max_candidates: Any = DEFAULT_MAX_CANDIDATES,
) -> List[Dict[str, str]]:
    """
    Return the sections whose normalized text contains the normalized query.

    Results are ordered by the offset of the first match (ties keep input
    order), truncated to ``max_candidates`` and stripped of the section
    text.
    """
    normalized_query = normalize_text(query)
    if not normalized_query:
        return []
    limit = _coerce_limit(max_candidates)

    matches = []
    for section in sections if isinstance(sections, list) else []:
        if not isinstance(section, dict):
            continue
        text = section.get("text")
        if not isinstance(text, str):
            continue
        rank = text.find(normalized_query)
        if rank < 0:
            continue
        matches.append((rank, section))

    # list.sort is stable, so equal ranks stay in section order
    matches.sort(key=lambda match: match[0])
    return [
        {field: section.get(field) or "" for field in PUBLIC_FIELDS}
        for _, section in matches[:limit]
    ]


def handle_content_search_request(request: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Worker entry point: ``{request_id, sections, query, max_candidates}``.

    Requests without a request_id are ignored. Exceptions never escape;
    they come back as a failure envelope.
    """
    request_id = (request or {}).get("request_id")
    if not request_id:
        return None

    try:
        payload = find_candidates(
            request.get("sections") or [],
            request.get("query") or "",
            request.get("max_candidates", DEFAULT_MAX_CANDIDATES),
        )
        return WorkerResponse.success(request_id, payload).model_dump()
    except Exception as e:
        logger.error(f"Content search request {request_id} failed: {e}")
        return WorkerResponse.failure(
            request_id, str(e) or "content-search-worker-failed"
        ).model_dump()
