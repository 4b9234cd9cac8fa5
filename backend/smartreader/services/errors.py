"""
Error types raised by the indexing and extraction services.

Format errors are fatal to a single extraction, storage errors propagate to
the caller untouched, and worker errors carry the failure envelope text.
"""


class EPUBMetadataError(Exception):
    """Base class for EPUB container/package parsing failures."""


class MalformedContainerError(EPUBMetadataError):
    """The archive is not a ZIP or has no META-INF/container.xml."""


class MissingPackageDocumentError(EPUBMetadataError):
    """The container does not point at a readable OPF package document."""


class StorageError(Exception):
    """A persistent store read or write failed."""


class WorkerTimeoutError(Exception):
    """A worker did not answer within its timeout."""


class WorkerFailureError(Exception):
    """A worker answered with a failure envelope."""

    def __init__(self, request_id: str, message: str):
        super().__init__(message)
        self.request_id = request_id
