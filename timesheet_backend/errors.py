"""Error kinds raised by the intake layer.

Each class carries a stable ``code``, a generic ``public_message`` and the HTTP
status the API maps it to, so handlers match on the type and clients can tell
retryable from non-retryable failures without parsing free text. The
constructor message is the detailed, log-only description.
"""
from __future__ import annotations

from typing import Optional, Sequence

__all__ = [
    "StorageError",
    "ValidationError",
    "FileSizeExceeded",
    "TraversalError",
    "OwnershipError",
    "StorageFileNotFound",
    "UnsupportedFormat",
    "AdmissionTimeout",
    "BatchFailure",
]


class StorageError(Exception):
    """Base class for intake, storage and conversion failures."""

    code = "storage_error"
    status_code = 500
    public_message = "The file could not be processed."


class ValidationError(StorageError):
    """Upload is empty, malformed, forged or otherwise unacceptable."""

    code = "invalid_upload"
    status_code = 400
    public_message = "The uploaded file is not a valid timesheet or archive."

    def __init__(self, message: str, *, reason: str = "invalid") -> None:
        super().__init__(message)
        self.reason = reason


class FileSizeExceeded(ValidationError):
    code = "file_too_large"
    status_code = 413
    public_message = "The uploaded file exceeds the size limit for its type."

    def __init__(self, message: str) -> None:
        super().__init__(message, reason="file_too_large")


class TraversalError(StorageError):
    """A file or archive entry name resolves outside its root."""

    code = "invalid_path"
    status_code = 400
    public_message = "The file name is not allowed."


class OwnershipError(StorageError):
    code = "forbidden"
    status_code = 403
    public_message = "You do not have access to this file."


class StorageFileNotFound(StorageError):
    code = "not_found"
    status_code = 404
    public_message = "File not found."


class UnsupportedFormat(StorageError):
    """A valid upload in a format the converter cannot render (legacy .xls, binary .xlsb)."""

    code = "unsupported_format"
    status_code = 415
    public_message = "This spreadsheet format cannot be converted. Please save it as .xlsx and try again."


class AdmissionTimeout(StorageError):
    """No conversion slot became free within the wait window."""

    code = "too_many_requests"
    status_code = 429
    public_message = "Server is currently processing too many requests. Please try again in a few moments."

    def __init__(self, message: str, *, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class BatchFailure(StorageError):
    """An archive produced no converted output at all."""

    code = "batch_failed"
    status_code = 422
    public_message = "None of the files in the archive could be converted."

    def __init__(self, message: str, *, failed_files: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.failed_files = list(failed_files or ())
