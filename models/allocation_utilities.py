"""
Allocation utility schemas.

Read-side summaries of existing allocations: per PO item, per order,
per location, plus the guidance derived from them. All computed per
call, never stored.
"""

from enum import Enum
from typing import List, Optional

from pydantic import Field

from models.base import BaseSchema


class Priority(str, Enum):
    """Priority of a recommendation."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class UnallocatedActionType(str, Enum):
    """Ways to deal with an unallocated remainder."""
    ALLOCATE_TO_CENTRAL = "ALLOCATE_TO_CENTRAL"
    DISTRIBUTE_EVENLY = "DISTRIBUTE_EVENLY"
    ALLOCATE_BY_DEMAND = "ALLOCATE_BY_DEMAND"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class BalanceRecommendationType(str, Enum):
    """Kinds of balance adjustments."""
    REDISTRIBUTE = "REDISTRIBUTE"
    INCREASE_MIN = "INCREASE_MIN"
    DECREASE_MAX = "DECREASE_MAX"
    ADD_LOCATION = "ADD_LOCATION"


class RecommendationType(str, Enum):
    """Kinds of order-level recommendations."""
    BALANCE_IMPROVEMENT = "BALANCE_IMPROVEMENT"
    EFFICIENCY_GAIN = "EFFICIENCY_GAIN"
    COST_OPTIMIZATION = "COST_OPTIMIZATION"
    RISK_MITIGATION = "RISK_MITIGATION"


# ===================
# SUMMARIES
# ===================

class LocationDistribution(BaseSchema):
    """Share of a PO item's allocated total held by one allocation."""

    allocation_id: str
    location_id: str
    location_name: str
    quantity_allocated: int
    percentage_of_total: float = Field(
        ..., description="quantity_allocated / total_allocated × 100"
    )


class AllocationSummary(BaseSchema):
    """Allocation state of a single PO item."""

    po_item_id: str
    quantity_ordered: int
    total_allocated: int
    unallocated_quantity: int
    allocation_count: int
    average_allocation: float
    location_distribution: List[LocationDistribution] = Field(default_factory=list)


class AllocationTotals(BaseSchema):
    """Allocation state of a whole purchase order."""

    total_quantity_ordered: int = 0
    total_quantity_allocated: int = 0
    total_unallocated: int = 0
    allocation_efficiency: float = Field(
        default=0.0, description="Percentage of ordered quantity that is allocated"
    )
    location_count: int = Field(default=0, description="Distinct target locations")
    average_allocation_per_location: float = 0.0


# ===================
# UNALLOCATED ANALYSIS
# ===================

class UnallocatedAction(BaseSchema):
    """Suggested handling of an unallocated remainder."""

    action: UnallocatedActionType
    description: str
    estimated_quantity: Optional[int] = None
    target_locations: Optional[List[str]] = None


class UnallocatedAnalysis(BaseSchema):
    """PO item that still has quantity without a destination."""

    po_item_id: str
    product_name: str
    quantity_ordered: int
    quantity_allocated: int
    unallocated_quantity: int
    unallocated_percentage: float
    suggested_actions: List[UnallocatedAction] = Field(..., min_length=1)


# ===================
# BALANCE OPTIMIZATION
# ===================

class AllocationBalance(BaseSchema):
    """Dispersion of a PO item's allocations across locations."""

    variance: float = 0.0
    standard_deviation: float = 0.0
    coefficient_of_variation: float = 0.0
    is_balanced: bool = True


class OptimizedAllocation(BaseSchema):
    """Proposed change to one existing allocation."""

    allocation_id: str
    location_id: str
    current_quantity: int
    recommended_quantity: int
    quantity_change: int
    reason: str


class BalanceRecommendation(BaseSchema):
    """Narrative guidance attached to a balance result."""

    type: BalanceRecommendationType
    description: str
    impact: float
    priority: Priority


class BalanceOptimizationResult(BaseSchema):
    """Outcome of optimize_allocation_balance."""

    current_balance: AllocationBalance
    is_balanced: bool
    optimized_allocations: List[OptimizedAllocation] = Field(default_factory=list)
    improvement_score: float = Field(default=0.0, ge=0, le=100)
    balance_achieved: bool
    recommendations: List[BalanceRecommendation] = Field(default_factory=list)


# ===================
# LOCATION EFFICIENCY
# ===================

class LocationEfficiencyMetrics(BaseSchema):
    """How heavily one location is used as an allocation target."""

    location_id: str
    location_name: str
    total_allocations: int
    total_quantity_allocated: int
    average_allocation_size: float
    allocation_frequency: float = Field(..., description="Allocations per distinct PO")
    utilization_rate: Optional[float] = Field(
        None,
        description="Capacity utilization; None until locations carry a capacity",
    )
    po_coverage_rate: float = Field(
        ..., description="Percentage of the tenant's POs that include this location"
    )


# ===================
# RECOMMENDATIONS
# ===================

class RecommendationImpact(BaseSchema):
    """Expected effect of acting on a recommendation."""

    balance_improvement: Optional[float] = None
    cost_savings: Optional[float] = None
    risk_reduction: Optional[float] = None


class RecommendedAction(BaseSchema):
    """Concrete step within a recommendation."""

    action: str
    target_location_id: Optional[str] = None
    quantity_change: Optional[int] = None
    expected_outcome: str


class AllocationRecommendation(BaseSchema):
    """Order-level allocation recommendation."""

    type: RecommendationType
    title: str
    description: str
    impact: RecommendationImpact
    actions: List[RecommendedAction] = Field(default_factory=list)
    priority: Priority
