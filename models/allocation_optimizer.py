"""
Allocation optimizer schemas.

Strategy configuration supplied by callers, and the forward-looking
outputs of the optimizer: demand patterns, suggestions, rebalancing
recommendations, conflicts and the combined optimization result.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from models.base import BaseSchema


class Complexity(str, Enum):
    """Effort needed to act on a recommendation."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RebalancingActionType(str, Enum):
    """Kinds of changes to an existing allocation."""
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    REDISTRIBUTE = "REDISTRIBUTE"


class ConflictType(str, Enum):
    """Invariant violations found in stored allocations."""
    OVER_ALLOCATION = "OVER_ALLOCATION"
    DUPLICATE_LOCATION = "DUPLICATE_LOCATION"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    ORPHANED_LOCATION = "ORPHANED_LOCATION"


class ConflictSeverity(str, Enum):
    """Severity of a conflict."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_ORDER = {
    ConflictSeverity.CRITICAL: 4,
    ConflictSeverity.HIGH: 3,
    ConflictSeverity.MEDIUM: 2,
    ConflictSeverity.LOW: 1,
}


# ===================
# STRATEGY
# ===================

class StrategyParameters(BaseSchema):
    """
    Tuning knobs of an optimization strategy.

    Weights are used as given. Callers are responsible for keeping them
    summing to 1.0; see weights_normalized.
    """

    prioritize_utilization: bool = True
    minimize_waste: bool = True
    balance_distribution: bool = True
    consider_historical_demand: bool = True
    location_capacity_weight: float = Field(default=0.3, ge=0, le=1)
    demand_prediction_weight: float = Field(default=0.4, ge=0, le=1)
    cost_optimization_weight: float = Field(default=0.3, ge=0, le=1)

    @property
    def weights_total(self) -> float:
        return (
            self.location_capacity_weight
            + self.demand_prediction_weight
            + self.cost_optimization_weight
        )

    @property
    def weights_normalized(self) -> bool:
        return abs(self.weights_total - 1.0) <= 0.01


class OptimizationStrategy(BaseSchema):
    """Named strategy passed to the optimizer."""

    name: str = "Custom Strategy"
    description: str = "Custom optimization strategy"
    parameters: StrategyParameters = Field(default_factory=StrategyParameters)


DEFAULT_STRATEGY = OptimizationStrategy(
    name="Balanced Optimization",
    description="Balances utilization, waste minimization, and distribution",
)


# ===================
# DEMAND PATTERNS
# ===================

class LocationDemandPattern(BaseSchema):
    """Historical demand of one product at one location."""

    location_id: str
    location_name: str
    product_id: str
    product_name: str
    allocation_count: int
    average_demand: float
    demand_variability: float = Field(..., ge=0, le=100)
    seasonality_factor: float
    utilization_rate: float
    last_order_date: Optional[datetime] = None
    predicted_demand: float


# ===================
# SUGGESTIONS
# ===================

class CurrentAllocation(BaseSchema):
    """Existing allocation echoed inside a suggestion."""

    location_id: str
    location_name: str
    current_quantity: int
    suggested_quantity: int
    reason: str


class SuggestedAllocation(BaseSchema):
    """Proposed new allocation for part of the unallocated remainder."""

    location_id: str
    location_name: str
    suggested_quantity: int
    confidence: float = Field(..., ge=0, le=100)
    reasoning: List[str] = Field(default_factory=list)


class AllocationSuggestion(BaseSchema):
    """Suggested split of one PO item's unallocated remainder."""

    po_item_id: str
    product_name: str
    total_quantity: int
    current_allocations: List[CurrentAllocation] = Field(default_factory=list)
    unallocated_quantity: int
    suggested_allocations: List[SuggestedAllocation] = Field(default_factory=list)
    optimization_score: float = Field(default=0.0, ge=0, le=100)


# ===================
# REBALANCING
# ===================

class RebalancingAction(BaseSchema):
    """Change proposed for the allocations of one location."""

    type: RebalancingActionType
    allocation_id: str
    location_id: str
    location_name: str
    current_quantity: int
    suggested_quantity: int
    target_location_id: Optional[str] = None
    target_location_name: Optional[str] = None
    impact: float
    reasoning: str


class RebalancingRecommendation(BaseSchema):
    """Rebalancing plan for one purchase order."""

    po_id: str
    po_number: str
    current_efficiency: float
    projected_efficiency: float
    rebalancing_actions: List[RebalancingAction] = Field(default_factory=list)
    total_impact: float
    implementation_complexity: Complexity


# ===================
# CONFLICTS
# ===================

class AffectedLocation(BaseSchema):
    """Location involved in a conflict."""

    location_id: str
    location_name: str
    issue: str
    current_quantity: int
    recommended_quantity: int


class ResolutionOption(BaseSchema):
    """One way to resolve a conflict."""

    action: str
    description: str
    impact: float
    complexity: Complexity


class AllocationConflict(BaseSchema):
    """Invariant violation in stored allocations."""

    type: ConflictType
    severity: ConflictSeverity
    po_item_id: str
    product_name: str
    description: str
    affected_locations: List[AffectedLocation] = Field(default_factory=list)
    resolution_options: List[ResolutionOption] = Field(default_factory=list)


# ===================
# FEASIBILITY & RESULT
# ===================

class FeasibilityResult(BaseSchema):
    """Whether a suggestion set can be applied as-is."""

    feasible: bool
    issues: List[str] = Field(default_factory=list)


class OptimizationSummary(BaseSchema):
    """Headline numbers of an optimization run."""

    total_items_optimized: int
    total_quantity_optimized: int
    estimated_efficiency_gain: float
    implementation_complexity: Complexity


class OptimizationResult(BaseSchema):
    """Combined output of optimize_allocation_distribution."""

    success: bool
    optimization_score: float
    improvement_percentage: float
    suggested_allocations: List[AllocationSuggestion] = Field(default_factory=list)
    rebalancing_recommendations: List[RebalancingRecommendation] = Field(default_factory=list)
    conflicts_resolved: List[AllocationConflict] = Field(default_factory=list)
    feasibility_issues: List[str] = Field(default_factory=list)
    summary: OptimizationSummary


# ===================
# REQUESTS
# ===================

class SmartSuggestionsRequest(BaseSchema):
    """Body of POST /smart-suggestions."""

    po_id: str = Field(..., min_length=1)
    strategy: Optional[OptimizationStrategy] = None


class OptimizeDistributionRequest(BaseSchema):
    """Body of POST /optimize-distribution."""

    po_id: str = Field(..., min_length=1)
    strategy: OptimizationStrategy


class FeasibilityRequest(BaseSchema):
    """Body of POST /validate-feasibility."""

    suggestions: List[AllocationSuggestion]
