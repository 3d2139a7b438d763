"""
Exception hierarchy for the vale audit pipeline.

Oracle errors carry the HTTP status (when there is one) so the retry policy can
decide whether a failure is worth another attempt.
"""
from typing import Any, Dict, Optional


class ValeAuditError(Exception):
    """Base exception for all vale audit errors."""

    def __init__(self, message: str = "Vale audit error", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class OracleError(ValeAuditError):
    """Failure talking to the vision model."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)

    @property
    def retriable(self) -> bool:
        return False


class TransientOracleError(OracleError):
    """Rate limit (429) or server error (5xx); worth retrying."""

    def __init__(self, message: str, status: int, retry_delay: Optional[float] = None, **kwargs):
        self.retry_delay = retry_delay
        super().__init__(message, status=status, **kwargs)

    @property
    def retriable(self) -> bool:
        return True


class PermanentOracleError(OracleError):
    """Any other HTTP status, or a transport failure without a status."""


class MalformedResponseError(OracleError):
    """Model output that is not parseable JSON."""

    def __init__(self, message: str, raw_text: str = "", **kwargs):
        self.raw_text = raw_text
        super().__init__(message, **kwargs)

    @property
    def retriable(self) -> bool:
        return True


class ResponseShapeError(OracleError):
    """Model output that parses as JSON but does not have the expected fields."""

    def __init__(self, message: str, raw_text: str = "", **kwargs):
        self.raw_text = raw_text
        super().__init__(message, **kwargs)


class StorageError(ValeAuditError):
    """Blob store read/write/list failure."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        self.path = path
        details = kwargs.pop("details", None) or {}
        if path:
            details.setdefault("path", path)
        super().__init__(message, details=details, **kwargs)


class ImageUnavailableError(StorageError):
    """The vale image could not be fetched from the blob store."""


class TabularSourceError(ValeAuditError):
    """The reference table could not be fetched."""

    def __init__(self, table: str, message: str, **kwargs):
        self.table = table
        super().__init__(f"{table}: {message}", **kwargs)


class ImageSourceError(ValeAuditError):
    """Google Drive could not be reached, searched or downloaded from."""

    def __init__(self, message: str, file_name: Optional[str] = None, **kwargs):
        self.file_name = file_name
        details = kwargs.pop("details", None) or {}
        if file_name:
            details.setdefault("file_name", file_name)
        super().__init__(message, details=details, **kwargs)
