"""
Allocation utilities API routes.

Read-only summaries of existing allocations per PO item, per purchase
order and per location. The tenant is taken from the X-Tenant-ID header.
"""

from typing import List, Optional

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse
import structlog

from models.allocation_utilities import (
    AllocationRecommendation,
    AllocationSummary,
    AllocationTotals,
    BalanceOptimizationResult,
    LocationEfficiencyMetrics,
    UnallocatedAnalysis,
)
from services.allocation_utilities_service import get_allocation_utilities_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/allocation-utilities", tags=["Allocation Utilities"])


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


# ===================
# PO ITEM ROUTES
# ===================

@router.get("/po-items/{po_item_id}/summary", response_model=AllocationSummary)
async def get_allocation_summary(
    po_item_id: str,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """
    Allocation summary of one PO item.

    Includes total allocated, unallocated remainder and each allocation's
    share of the allocated total.
    """
    try:
        service = get_allocation_utilities_service()
        return service.calculate_allocation_summary(po_item_id, tenant_id)

    except Exception as e:
        return handle_error(e)


@router.get("/po-items/{po_item_id}/balance", response_model=BalanceOptimizationResult)
async def get_allocation_balance(
    po_item_id: str,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """
    Balance check of one PO item.

    Returns the current dispersion and, when unbalanced, the allocations
    that would change under an even split.
    """
    try:
        service = get_allocation_utilities_service()
        return service.optimize_allocation_balance(po_item_id, tenant_id)

    except Exception as e:
        return handle_error(e)


# ===================
# PURCHASE ORDER ROUTES
# ===================

@router.get("/purchase-orders/{po_id}/totals", response_model=AllocationTotals)
async def get_allocation_totals(
    po_id: str,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Ordered, allocated and unallocated totals of a purchase order."""
    try:
        service = get_allocation_utilities_service()
        return service.calculate_allocation_totals(po_id, tenant_id)

    except Exception as e:
        return handle_error(e)


@router.get("/purchase-orders/{po_id}/unallocated", response_model=List[UnallocatedAnalysis])
async def get_unallocated_quantities(
    po_id: str,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Items of the order with quantity still unallocated, with suggested actions."""
    try:
        service = get_allocation_utilities_service()
        return service.analyze_unallocated_quantities(po_id, tenant_id)

    except Exception as e:
        return handle_error(e)


@router.get("/purchase-orders/{po_id}/recommendations", response_model=List[AllocationRecommendation])
async def get_allocation_recommendations(
    po_id: str,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """Order-level recommendations (unallocated inventory, low efficiency)."""
    try:
        service = get_allocation_utilities_service()
        return service.generate_allocation_recommendations(po_id, tenant_id)

    except Exception as e:
        return handle_error(e)


# ===================
# LOCATION ROUTES
# ===================

@router.get("/locations/{location_id}/efficiency", response_model=LocationEfficiencyMetrics)
async def get_location_efficiency(
    location_id: str,
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")
):
    """How heavily a location is used as an allocation target."""
    try:
        service = get_allocation_utilities_service()
        return service.calculate_location_efficiency(location_id, tenant_id)

    except Exception as e:
        return handle_error(e)
