"""
Worker Message Envelope Types

Requests carry a caller-chosen request_id which the worker echoes back so
callers can discard superseded responses.
"""

from typing import Any

from pydantic import BaseModel


class WorkerResponse(BaseModel):
    request_id: str
    ok: bool
    payload: Any = None
    error: str | None = None

    @classmethod
    def success(cls, request_id: str, payload: Any) -> "WorkerResponse":
        return cls(request_id=request_id, ok=True, payload=payload)

    @classmethod
    def failure(cls, request_id: str, error: str) -> "WorkerResponse":
        return cls(request_id=request_id, ok=False, error=error)
