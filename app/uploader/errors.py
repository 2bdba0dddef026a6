from typing import Iterable, Optional


class UploadError(Exception):
    """Base class for failures of the client upload pipeline."""


class TransportError(UploadError):
    """
    A request to the upload API failed.

    ``retryable`` is True for network failures, timeouts, 5xx, 429 and
    malformed response bodies; validation errors (other 4xx) are final.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class InitError(UploadError):
    """The init call failed, so no chunk was attempted."""


class ChunkUploadError(UploadError):
    """One or more chunks failed permanently."""

    def __init__(self, failed_indices: Iterable[int]):
        self.failed_indices = sorted(failed_indices)
        super().__init__(f"Failed to upload {len(self.failed_indices)} chunks")


class CompletionError(UploadError):
    """The server refused or failed to reassemble the upload."""


class OperationCancelled(UploadError):
    """Raised inside the pipeline when a cancellation token fires mid-request."""
