"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,

    # Request validation
    MissingIdentifierError,

    # Purchase orders
    PurchaseOrderNotFoundError,
    POItemNotFoundError,

    # Locations
    LocationNotFoundError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",

    # Request validation
    "MissingIdentifierError",

    # Purchase orders
    "PurchaseOrderNotFoundError",
    "POItemNotFoundError",

    # Locations
    "LocationNotFoundError",
]
