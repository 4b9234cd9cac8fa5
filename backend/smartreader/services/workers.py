"""
Worker host and clients for off-loop EPUB parsing and content search.

Handlers are stateless functions ``handler(request: dict) -> dict | None``.
They run on a thread pool and exchange only plain values with the caller.
Each request carries a caller-generated request_id which the handler
echoes back.
"""

import asyncio
import itertools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from smartreader.models.content_index import ContentSearchCandidate, ContentSection
from smartreader.models.epub_metadata import MetadataExtractionResult
from smartreader.models.worker_messages import WorkerResponse

from .content_search_matcher import (
    DEFAULT_MAX_CANDIDATES,
    find_candidates,
    handle_content_search_request,
)
from .epub.epub_metadata_extractor import EPUBMetadataExtractor
from .errors import WorkerFailureError, WorkerTimeoutError

logger = logging.getLogger(__name__)

METADATA_WORKER_TIMEOUT = 30.0
CONTENT_SEARCH_WORKER_TIMEOUT = 10.0

Handler = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def handle_metadata_request(request: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Worker entry point: ``{request_id, file_name, data}``.

    Any failure, typed or not, is returned as a failure envelope.
    """
    request_id = (request or {}).get("request_id")
    if not request_id:
        return None

    try:
        result = EPUBMetadataExtractor().extract(
            request.get("data") or b"", request.get("file_name") or ""
        )
        return WorkerResponse.success(request_id, result.model_dump()).model_dump()
    except Exception as e:
        logger.warning(f"Metadata extraction request {request_id} failed: {e}")
        return WorkerResponse.failure(request_id, str(e)).model_dump()


class WorkerHost:
    """Runs worker handlers on a thread pool without blocking the event loop."""

    def __init__(self, max_workers: int = 4):
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="smartreader-worker"
            )
        return self._executor

    async def submit(
        self, handler: Handler, request: Dict[str, Any], timeout: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._get_executor(), handler, request)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise WorkerTimeoutError(
                f"Worker timed out after {timeout}s (request {request.get('request_id')})"
            ) from e

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


class _WorkerClient:
    def __init__(self, host: WorkerHost, timeout: float):
        self.host = host
        self.timeout = timeout
        self._counter = itertools.count(1)

    def next_request_id(self) -> str:
        return f"{int(time.time() * 1000)}-{next(self._counter)}"

    async def _call(self, handler: Handler, request: Dict[str, Any]) -> WorkerResponse:
        request_id = request["request_id"]
        raw = await self.host.submit(handler, request, timeout=self.timeout)
        if raw is None:
            raise WorkerFailureError(request_id, "Worker ignored the request")
        response = WorkerResponse.model_validate(raw)
        if response.request_id != request_id:
            raise WorkerFailureError(
                request_id, f"Mismatched worker response {response.request_id}"
            )
        return response


class EPUBMetadataWorkerClient(_WorkerClient):
    def __init__(self, host: WorkerHost, timeout: float = METADATA_WORKER_TIMEOUT):
        super().__init__(host, timeout)

    async def extract(self, data: bytes, file_name: str = "") -> MetadataExtractionResult:
        """
        Extract metadata on a worker thread.

        Raises:
            WorkerFailureError: If the worker reports a parse failure
            WorkerTimeoutError: If the worker does not answer in time
        """
        request_id = self.next_request_id()
        response = await self._call(
            handle_metadata_request,
            {"request_id": request_id, "file_name": file_name, "data": data},
        )
        if not response.ok:
            raise WorkerFailureError(request_id, response.error or "EPUB worker failed")
        return MetadataExtractionResult.model_validate(response.payload)


class ContentSearchWorkerClient(_WorkerClient):
    """
    Client for the content search worker.

    Keeps the id of the most recent request so callers issuing searches
    while the user types can drop answers to superseded queries.
    """

    def __init__(self, host: WorkerHost, timeout: float = CONTENT_SEARCH_WORKER_TIMEOUT):
        super().__init__(host, timeout)
        self.latest_request_id: Optional[str] = None

    def is_latest(self, request_id: str) -> bool:
        return request_id == self.latest_request_id

    async def search(
        self,
        sections: List[ContentSection],
        query: str,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
    ) -> tuple[str, List[ContentSearchCandidate]]:
        """
        Run a search and return ``(request_id, candidates)``.

        Worker failures and timeouts fall back to matching on the calling
        thread.
        """
        request_id = self.next_request_id()
        self.latest_request_id = request_id
        if not sections or not query:
            return request_id, []

        section_dicts = [section.model_dump() for section in sections]
        try:
            response = await self._call(
                handle_content_search_request,
                {
                    "request_id": request_id,
                    "sections": section_dicts,
                    "query": query,
                    "max_candidates": max_candidates,
                },
            )
            if not response.ok:
                raise WorkerFailureError(
                    request_id, response.error or "content-search-worker-failed"
                )
            payload = response.payload
        except (WorkerFailureError, WorkerTimeoutError) as e:
            logger.warning(f"Content search worker fallback: {e}")
            payload = find_candidates(section_dicts, query, max_candidates)

        return request_id, [ContentSearchCandidate.model_validate(item) for item in payload]

    async def find_candidates(
        self,
        sections: List[ContentSection],
        query: str,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
    ) -> List[ContentSearchCandidate]:
        _, candidates = await self.search(sections, query, max_candidates)
        return candidates
