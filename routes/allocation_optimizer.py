"""
Allocation optimizer API routes.

Smart suggestions, rebalancing, conflict detection, demand patterns and
feasibility checks. The tenant is taken from the X-Tenant-ID header.
"""

from typing import List, Optional

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse
import structlog

from models.allocation_optimizer import (
    AllocationConflict,
    AllocationSuggestion,
    FeasibilityRequest,
    FeasibilityResult,
    LocationDemandPattern,
    OptimizationResult,
    OptimizeDistributionRequest,
    RebalancingRecommendation,
    SmartSuggestionsRequest,
)
from services.allocation_optimizer_service import get_allocation_optimizer_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/allocation-optimizer", tags=["Allocation Optimizer"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def _split_ids(value: Optional[str]) -> Optional[List[str]]:
    """Comma-separated query value to a list, None when absent or empty."""
    if not value:
        return None
    ids = [part.strip() for part in value.split(",") if part.strip()]
    return ids or None


# ===================
# SUGGESTIONS
# ===================

@router.post("/smart-suggestions", response_model=List[AllocationSuggestion])
async def generate_smart_suggestions(
    data: SmartSuggestionsRequest,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """
    Suggest where each item's unallocated quantity should go.

    Uses the Balanced Optimization strategy when none is given.
    """
    try:
        service = get_allocation_optimizer_service()
        return service.generate_smart_suggestions(tenant_id, data.po_id, data.strategy)

    except Exception as e:
        return handle_error(e)


# ===================
# ANALYSIS
# ===================

@router.get("/rebalancing-opportunities", response_model=List[RebalancingRecommendation])
async def get_rebalancing_opportunities(
    po_id: Optional[str] = Query(None, description="Restrict to one purchase order"),
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Pending allocations that should be increased, decreased or moved."""
    try:
        service = get_allocation_optimizer_service()
        return service.analyze_rebalancing_opportunities(tenant_id, po_id)

    except Exception as e:
        return handle_error(e)


@router.get("/conflicts", response_model=List[AllocationConflict])
async def get_allocation_conflicts(
    po_id: Optional[str] = Query(None, description="Restrict to one purchase order"),
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Stored allocations that break an allocation invariant, most severe first."""
    try:
        service = get_allocation_optimizer_service()
        return service.detect_allocation_conflicts(tenant_id, po_id)

    except Exception as e:
        return handle_error(e)


@router.get("/demand-patterns", response_model=List[LocationDemandPattern])
async def get_demand_patterns(
    location_ids: Optional[str] = Query(None, description="Comma-separated location IDs"),
    product_ids: Optional[str] = Query(None, description="Comma-separated product IDs"),
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Historical demand per location and product."""
    try:
        service = get_allocation_optimizer_service()
        return service.get_location_demand_patterns(
            tenant_id,
            location_ids=_split_ids(location_ids),
            product_ids=_split_ids(product_ids),
        )

    except Exception as e:
        return handle_error(e)


# ===================
# FEASIBILITY & OPTIMIZATION
# ===================

@router.post("/validate-feasibility", response_model=FeasibilityResult)
async def validate_feasibility(
    data: FeasibilityRequest,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Check a suggestion set before applying it. Issues are data, not errors."""
    try:
        service = get_allocation_optimizer_service()
        return service.validate_optimization_feasibility(tenant_id, data.suggestions)

    except Exception as e:
        return handle_error(e)


@router.post("/optimize-distribution", response_model=OptimizationResult)
async def optimize_distribution(
    data: OptimizeDistributionRequest,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """
    Full optimization of one purchase order.

    Combines suggestions, rebalancing and conflicts, then checks the
    suggestions for feasibility. An infeasible plan returns success=false.
    """
    try:
        service = get_allocation_optimizer_service()
        return service.optimize_allocation_distribution(tenant_id, data.po_id, data.strategy)

    except Exception as e:
        return handle_error(e)
