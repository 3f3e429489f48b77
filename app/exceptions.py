"""
Error taxonomy for the ingestion and sync pipeline.

Each error carries the HTTP status the API layer answers with. Bulk operations
catch these per item and record them instead of aborting the run.
"""
from typing import Any, Optional


class StoreSyncError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(StoreSyncError):
    """Missing or malformed input. Not retried."""

    status_code = 400


class AuthError(StoreSyncError):
    """Missing/invalid credential or webhook signature."""

    status_code = 401


class NotFoundUpstream(StoreSyncError):
    """Entity no longer exists on the platform; the local copy must be removed."""

    status_code = 404


class UpstreamUnavailable(StoreSyncError):
    """Network failure, 5xx or rate limiting from the platform."""

    status_code = 503

    def __init__(self, message: str, details: Optional[Any] = None, upstream_status: Optional[int] = None):
        super().__init__(message, details)
        self.upstream_status = upstream_status


class PersistenceError(StoreSyncError):
    """Local store write failed."""

    status_code = 500


class DuplicateDelivery(StoreSyncError):
    """Idempotency hit. Callers treat this as success."""

    status_code = 200
