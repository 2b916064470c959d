"""
Pydantic models for validation and serialization.

Stored row shapes live in models.allocation; derived results in
models.allocation_utilities and models.allocation_optimizer.
"""

from models.base import BaseSchema
from models.allocation import (
    AllocationStatus,
    LocationType,
    PurchaseOrderRecord,
    POItemRecord,
    ProductRecord,
    LocationRecord,
    AllocationRecord,
)
from models.allocation_utilities import (
    Priority,
    UnallocatedActionType,
    BalanceRecommendationType,
    RecommendationType,
    LocationDistribution,
    AllocationSummary,
    AllocationTotals,
    UnallocatedAction,
    UnallocatedAnalysis,
    AllocationBalance,
    OptimizedAllocation,
    BalanceRecommendation,
    BalanceOptimizationResult,
    LocationEfficiencyMetrics,
    RecommendationImpact,
    RecommendedAction,
    AllocationRecommendation,
)
from models.allocation_optimizer import (
    Complexity,
    RebalancingActionType,
    ConflictType,
    ConflictSeverity,
    StrategyParameters,
    OptimizationStrategy,
    DEFAULT_STRATEGY,
    LocationDemandPattern,
    CurrentAllocation,
    SuggestedAllocation,
    AllocationSuggestion,
    RebalancingAction,
    RebalancingRecommendation,
    AffectedLocation,
    ResolutionOption,
    AllocationConflict,
    FeasibilityResult,
    OptimizationSummary,
    OptimizationResult,
    SmartSuggestionsRequest,
    OptimizeDistributionRequest,
    FeasibilityRequest,
)

__all__ = [
    # Base
    "BaseSchema",

    # Stored records
    "AllocationStatus",
    "LocationType",
    "PurchaseOrderRecord",
    "POItemRecord",
    "ProductRecord",
    "LocationRecord",
    "AllocationRecord",

    # Utilities
    "Priority",
    "UnallocatedActionType",
    "BalanceRecommendationType",
    "RecommendationType",
    "LocationDistribution",
    "AllocationSummary",
    "AllocationTotals",
    "UnallocatedAction",
    "UnallocatedAnalysis",
    "AllocationBalance",
    "OptimizedAllocation",
    "BalanceRecommendation",
    "BalanceOptimizationResult",
    "LocationEfficiencyMetrics",
    "RecommendationImpact",
    "RecommendedAction",
    "AllocationRecommendation",

    # Optimizer
    "Complexity",
    "RebalancingActionType",
    "ConflictType",
    "ConflictSeverity",
    "StrategyParameters",
    "OptimizationStrategy",
    "DEFAULT_STRATEGY",
    "LocationDemandPattern",
    "CurrentAllocation",
    "SuggestedAllocation",
    "AllocationSuggestion",
    "RebalancingAction",
    "RebalancingRecommendation",
    "AffectedLocation",
    "ResolutionOption",
    "AllocationConflict",
    "FeasibilityResult",
    "OptimizationSummary",
    "OptimizationResult",
    "SmartSuggestionsRequest",
    "OptimizeDistributionRequest",
    "FeasibilityRequest",
]
