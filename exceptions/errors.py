"""
Custom exception classes for the application.

Validation and not-found errors fail a call before any partial result is
produced. Storage errors are not represented here: they propagate as raised
by the Supabase client.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "PO_ITEM_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


# ===================
# REQUEST VALIDATION
# ===================

class MissingIdentifierError(ValidationError):
    """A required identifier was empty or missing."""

    def __init__(self, field: str):
        super().__init__(
            code=f"{field.upper()}_REQUIRED",
            message=f"{field} is required",
            details={"field": field}
        )


# ===================
# PURCHASE ORDER ERRORS
# ===================

class PurchaseOrderNotFoundError(NotFoundError):
    """Purchase order not found for tenant."""

    def __init__(self, po_id: str):
        super().__init__(
            resource="Purchase order",
            identifier=po_id,
            code="PURCHASE_ORDER_NOT_FOUND"
        )


class POItemNotFoundError(NotFoundError):
    """PO item not found for tenant."""

    def __init__(self, po_item_id: str):
        super().__init__(
            resource="PO item",
            identifier=po_item_id,
            code="PO_ITEM_NOT_FOUND"
        )


# ===================
# LOCATION ERRORS
# ===================

class LocationNotFoundError(NotFoundError):
    """Location not found for tenant."""

    def __init__(self, location_id: str):
        super().__init__(
            resource="Location",
            identifier=location_id,
            code="LOCATION_NOT_FOUND"
        )
