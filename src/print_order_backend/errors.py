"""
Error taxonomy for the print order backend.

Every failure a caller can observe is one of the classes below. Each class
carries a machine-checkable ``category`` and the HTTP status it maps to, so
the API layer can render a uniform envelope without knowing about domain
details:

    {"error": "<message>", "category": "<category>", "details": {...}}
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PrintOrderError(Exception):
    """Base class for all reportable domain and storage failures."""

    category = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "category": self.category}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PrintOrderError):
    category = "validation_error"
    status_code = 400


class NotFoundError(PrintOrderError):
    category = "not_found"
    status_code = 404


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__("Order not found", details={"orderId": order_id})
        self.order_id = order_id


class StoredFileNotFoundError(NotFoundError):
    def __init__(self, filename: str) -> None:
        super().__init__("File not found")
        self.filename = filename


class UnauthorizedError(PrintOrderError):
    category = "unauthorized"
    status_code = 401


class RateLimitedError(PrintOrderError):
    category = "rate_limited"
    status_code = 429


class StorageFailure(PrintOrderError):
    category = "storage_failure"
    status_code = 500


class StoreConflictError(StorageFailure):
    """Raised when a compare-and-swap write sees a stale version."""


class UploadTimeoutError(StorageFailure):
    pass
