"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.allocation_utilities import router as allocation_utilities_router
from routes.allocation_optimizer import router as allocation_optimizer_router

__all__ = [
    "allocation_utilities_router",
    "allocation_optimizer_router",
]
