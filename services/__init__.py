"""
Business logic services.

Each service handles one domain area.
"""

from services.allocation_query_service import AllocationQueryService, require_identifier
from services.allocation_utilities_service import (
    AllocationUtilitiesService,
    get_allocation_utilities_service,
)
from services.allocation_optimizer_service import (
    AllocationOptimizerService,
    get_allocation_optimizer_service,
)

__all__ = [
    "AllocationQueryService",
    "require_identifier",
    "AllocationUtilitiesService",
    "get_allocation_utilities_service",
    "AllocationOptimizerService",
    "get_allocation_optimizer_service",
]
