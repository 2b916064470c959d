"""
Allocation Utilities Service — read-side arithmetic over existing allocations.

Summarizes a PO item, totals a whole order, finds unallocated remainders,
measures how evenly an item is spread, how heavily a location is used,
and turns those numbers into recommendations.

Balance is measured with the coefficient of variation (population
std-dev / mean) of each allocation's share of the allocated total:
    CV < balance_cv_threshold (0.3)  -> balanced
    CV > 0.5                         -> high variability
"""

import math
from typing import Dict, List, Optional

import structlog

from config import settings
from models.allocation import AllocationRecord, POItemRecord
from models.allocation_utilities import (
    AllocationBalance,
    AllocationRecommendation,
    AllocationSummary,
    AllocationTotals,
    BalanceOptimizationResult,
    BalanceRecommendation,
    BalanceRecommendationType,
    LocationDistribution,
    LocationEfficiencyMetrics,
    OptimizedAllocation,
    Priority,
    RecommendationImpact,
    RecommendationType,
    RecommendedAction,
    UnallocatedAction,
    UnallocatedActionType,
    UnallocatedAnalysis,
)
from services.allocation_query_service import (
    AllocationQueryService,
    distinct_locations,
    require_identifier,
    safe_ratio,
    sum_allocated_by_item,
)

logger = structlog.get_logger(__name__)

UNKNOWN_LOCATION = "Unknown Location"
HIGH_VARIABILITY_CV = 0.5
HIGH_PRIORITY_UNALLOCATED_UNITS = 100
LOW_EFFICIENCY_PCT = 70.0
STORAGE_COST_PER_UNIT = 0.1


class AllocationUtilitiesService:
    """Read-only allocation calculations for dashboards and the optimizer."""

    def __init__(self, queries: Optional[AllocationQueryService] = None):
        self.queries = queries or AllocationQueryService()

    # ===================
    # SUMMARIES
    # ===================

    def calculate_allocation_summary(self, po_item_id: str, tenant_id: str) -> AllocationSummary:
        """
        Summarize the allocations of one PO item.

        Args:
            po_item_id: PO item UUID
            tenant_id: Tenant owning the item's purchase order

        Returns:
            AllocationSummary with totals and per-location distribution

        Raises:
            ValidationError: If an identifier is empty
            POItemNotFoundError: If the item is not the tenant's
        """
        require_identifier(tenant_id, "tenant_id")
        require_identifier(po_item_id, "po_item_id")

        logger.debug("calculating_allocation_summary", po_item_id=po_item_id, tenant_id=tenant_id)

        item = self.queries.get_po_item(po_item_id, tenant_id)
        allocations = self.queries.list_allocations_for_items([item.id], tenant_id)
        location_names = self._location_names(tenant_id, allocations)

        return self._build_summary(item, allocations, location_names)

    def calculate_allocation_totals(self, po_id: str, tenant_id: str) -> AllocationTotals:
        """
        Total the allocations of a whole purchase order.

        An order without items yields all-zero totals.

        Raises:
            ValidationError: If an identifier is empty
            PurchaseOrderNotFoundError: If the order is not the tenant's
        """
        require_identifier(tenant_id, "tenant_id")
        require_identifier(po_id, "po_id")

        logger.debug("calculating_allocation_totals", po_id=po_id, tenant_id=tenant_id)

        items = self.queries.list_po_items(po_id, tenant_id)
        if not items:
            return AllocationTotals()

        allocations = self.queries.list_allocations_for_items(
            [item.id for item in items], tenant_id
        )
        allocated_by_item = sum_allocated_by_item(allocations)

        total_ordered = sum(item.quantity_ordered for item in items)
        total_allocated = sum(allocated_by_item.get(item.id, 0) for item in items)
        location_count = len(distinct_locations(allocations))

        totals = AllocationTotals(
            total_quantity_ordered=total_ordered,
            total_quantity_allocated=total_allocated,
            total_unallocated=max(0, total_ordered - total_allocated),
            allocation_efficiency=safe_ratio(total_allocated, total_ordered, 100),
            location_count=location_count,
            average_allocation_per_location=safe_ratio(total_allocated, location_count),
        )

        logger.info(
            "allocation_totals_calculated",
            po_id=po_id,
            items=len(items),
            efficiency=round(totals.allocation_efficiency, 2)
        )

        return totals

    # ===================
    # UNALLOCATED ANALYSIS
    # ===================

    def analyze_unallocated_quantities(self, po_id: str, tenant_id: str) -> List[UnallocatedAnalysis]:
        """
        List the items of an order that still have unallocated quantity.

        Fully allocated items are omitted. Each entry carries at least one
        suggested action, chosen by how large the remainder is.
        """
        require_identifier(tenant_id, "tenant_id")
        require_identifier(po_id, "po_id")

        items = self.queries.list_po_items(po_id, tenant_id)
        if not items:
            return []

        allocations = self.queries.list_allocations_for_items(
            [item.id for item in items], tenant_id
        )
        location_names = self._location_names(tenant_id, allocations)
        product_names = self.queries.get_product_names(
            tenant_id, [item.product_id for item in items]
        )

        analyses = []
        for item in items:
            item_allocations = [a for a in allocations if a.po_item_id == item.id]
            summary = self._build_summary(item, item_allocations, location_names)

            if summary.unallocated_quantity <= 0:
                continue

            unallocated_pct = summary.unallocated_quantity / item.quantity_ordered * 100

            analyses.append(UnallocatedAnalysis(
                po_item_id=item.id,
                product_name=product_names.get(item.product_id, f"Product {item.product_id}"),
                quantity_ordered=item.quantity_ordered,
                quantity_allocated=summary.total_allocated,
                unallocated_quantity=summary.unallocated_quantity,
                unallocated_percentage=unallocated_pct,
                suggested_actions=self._unallocated_actions(
                    summary.unallocated_quantity,
                    unallocated_pct,
                    summary.location_distribution,
                ),
            ))

        logger.info(
            "unallocated_quantities_analyzed",
            po_id=po_id,
            items=len(items),
            with_remainder=len(analyses)
        )

        return analyses

    # ===================
    # BALANCE
    # ===================

    def optimize_allocation_balance(self, po_item_id: str, tenant_id: str) -> BalanceOptimizationResult:
        """
        Check how evenly a PO item is spread and propose an even split if not.

        An item with no allocations is trivially balanced. When the item is
        unbalanced, every allocation whose quantity would change under an even
        split of the allocated total is returned; the total is conserved.
        """
        summary = self.calculate_allocation_summary(po_item_id, tenant_id)

        if summary.allocation_count == 0:
            return BalanceOptimizationResult(
                current_balance=AllocationBalance(),
                is_balanced=True,
                optimized_allocations=[],
                improvement_score=0,
                balance_achieved=True,
                recommendations=[],
            )

        distribution = summary.location_distribution
        current = self._calculate_balance([d.percentage_of_total for d in distribution])

        if current.is_balanced:
            return BalanceOptimizationResult(
                current_balance=current,
                is_balanced=True,
                optimized_allocations=[],
                improvement_score=0,
                balance_achieved=True,
                recommendations=[],
            )

        targets = self._even_split(summary.total_allocated, [d.quantity_allocated for d in distribution])

        optimized = [
            OptimizedAllocation(
                allocation_id=d.allocation_id,
                location_id=d.location_id,
                current_quantity=d.quantity_allocated,
                recommended_quantity=target,
                quantity_change=target - d.quantity_allocated,
                reason="Reduce over-allocation" if d.quantity_allocated > target
                else "Increase under-allocation",
            )
            for d, target in zip(distribution, targets)
            if target != d.quantity_allocated
        ]

        projected = self._calculate_balance(
            [safe_ratio(t, summary.total_allocated, 100) for t in targets]
        )
        improvement = self._improvement_score(current, projected)

        logger.info(
            "allocation_balance_optimized",
            po_item_id=po_item_id,
            current_cv=round(current.coefficient_of_variation, 3),
            projected_cv=round(projected.coefficient_of_variation, 3),
            changes=len(optimized)
        )

        return BalanceOptimizationResult(
            current_balance=current,
            is_balanced=False,
            optimized_allocations=optimized,
            improvement_score=improvement,
            balance_achieved=projected.is_balanced,
            recommendations=self._balance_recommendations(current),
        )

    # ===================
    # LOCATION EFFICIENCY
    # ===================

    def calculate_location_efficiency(self, location_id: str, tenant_id: str) -> LocationEfficiencyMetrics:
        """
        Measure how heavily a location is used as an allocation target.

        utilization_rate stays None: locations have no capacity column, so a
        capacity ratio cannot be computed.

        Raises:
            ValidationError: If an identifier is empty
            LocationNotFoundError: If the location is not the tenant's
        """
        require_identifier(tenant_id, "tenant_id")
        require_identifier(location_id, "location_id")

        location = self.queries.get_location(location_id, tenant_id)
        allocations = self.queries.list_allocations(tenant_id, location_ids=[location_id])

        total_allocations = len(allocations)
        total_quantity = sum(a.quantity_allocated for a in allocations)
        distinct_orders = self.queries.count_distinct_orders_for_location(location_id, tenant_id)
        tenant_orders = self.queries.count_purchase_orders(tenant_id)

        return LocationEfficiencyMetrics(
            location_id=location.id,
            location_name=location.name,
            total_allocations=total_allocations,
            total_quantity_allocated=total_quantity,
            average_allocation_size=safe_ratio(total_quantity, total_allocations),
            allocation_frequency=safe_ratio(total_allocations, distinct_orders),
            utilization_rate=None,
            po_coverage_rate=safe_ratio(distinct_orders, tenant_orders, 100),
        )

    # ===================
    # RECOMMENDATIONS
    # ===================

    def generate_allocation_recommendations(self, po_id: str, tenant_id: str) -> List[AllocationRecommendation]:
        """
        Order-level recommendations.

        EFFICIENCY_GAIN when any item has unallocated quantity;
        BALANCE_IMPROVEMENT when allocation efficiency is below
        efficiency_threshold. Empty when neither applies.
        """
        recommendations = []

        analyses = self.analyze_unallocated_quantities(po_id, tenant_id)
        if analyses:
            total_unallocated = sum(a.unallocated_quantity for a in analyses)
            recommendations.append(AllocationRecommendation(
                type=RecommendationType.EFFICIENCY_GAIN,
                title="Address Unallocated Inventory",
                description=(
                    f"{total_unallocated} units across {len(analyses)} items remain unallocated. "
                    "Consider distributing to locations or central warehouse."
                ),
                impact=RecommendationImpact(
                    balance_improvement=15,
                    cost_savings=total_unallocated * STORAGE_COST_PER_UNIT,
                ),
                actions=[RecommendedAction(
                    action="Allocate unallocated quantities to central warehouse",
                    quantity_change=total_unallocated,
                    expected_outcome="Improved inventory tracking and reduced storage costs",
                )],
                priority=Priority.HIGH if total_unallocated > HIGH_PRIORITY_UNALLOCATED_UNITS
                else Priority.MEDIUM,
            ))

        totals = self.calculate_allocation_totals(po_id, tenant_id)
        efficiency = totals.allocation_efficiency

        if totals.total_quantity_ordered > 0 and efficiency < settings.efficiency_threshold:
            recommendations.append(AllocationRecommendation(
                type=RecommendationType.BALANCE_IMPROVEMENT,
                title="Improve Allocation Efficiency",
                description=(
                    f"Current allocation efficiency is {efficiency:.1f}%. "
                    "Consider optimizing distribution across locations."
                ),
                impact=RecommendationImpact(balance_improvement=100 - efficiency),
                actions=[RecommendedAction(
                    action="Review allocation strategy and redistribute quantities",
                    expected_outcome="More balanced distribution and improved efficiency",
                )],
                priority=Priority.HIGH if efficiency < LOW_EFFICIENCY_PCT else Priority.MEDIUM,
            ))

        logger.info(
            "allocation_recommendations_generated",
            po_id=po_id,
            count=len(recommendations)
        )

        return recommendations

    # ===================
    # HELPERS
    # ===================

    def _location_names(self, tenant_id: str, allocations: List[AllocationRecord]) -> Dict[str, str]:
        """Names of the tenant's locations referenced by the allocations."""
        locations = self.queries.list_locations(
            tenant_id, location_ids=distinct_locations(allocations)
        )
        return {location.id: location.name for location in locations}

    def _build_summary(
        self,
        item: POItemRecord,
        allocations: List[AllocationRecord],
        location_names: Dict[str, str],
    ) -> AllocationSummary:
        """Summary arithmetic shared by the per-item and per-order paths."""
        total_allocated = sum(a.quantity_allocated for a in allocations)

        distribution = [
            LocationDistribution(
                allocation_id=a.id,
                location_id=a.target_location_id,
                location_name=location_names.get(a.target_location_id, UNKNOWN_LOCATION),
                quantity_allocated=a.quantity_allocated,
                percentage_of_total=safe_ratio(a.quantity_allocated, total_allocated, 100),
            )
            for a in allocations
        ]

        return AllocationSummary(
            po_item_id=item.id,
            quantity_ordered=item.quantity_ordered,
            total_allocated=total_allocated,
            unallocated_quantity=max(0, item.quantity_ordered - total_allocated),
            allocation_count=len(allocations),
            average_allocation=safe_ratio(total_allocated, len(allocations)),
            location_distribution=distribution,
        )

    def _unallocated_actions(
        self,
        unallocated: int,
        unallocated_pct: float,
        distribution: List[LocationDistribution],
    ) -> List[UnallocatedAction]:
        """
        Pick actions by severity of the remainder.

        > 50%  manual review, then demand-based placement
        > 20%  spread evenly over the item's current locations
        >= 10% demand-based placement
        < 10%  small remainder, send to central warehouse
        """
        location_ids = sorted({d.location_id for d in distribution})
        by_demand = UnallocatedAction(
            action=UnallocatedActionType.ALLOCATE_BY_DEMAND,
            description=f"Allocate the remaining {unallocated} units to locations with the strongest demand",
            estimated_quantity=unallocated,
        )

        if unallocated_pct > 50:
            return [
                UnallocatedAction(
                    action=UnallocatedActionType.MANUAL_REVIEW,
                    description=(
                        f"High unallocated percentage ({unallocated_pct:.1f}%) requires "
                        "manual review of allocation strategy"
                    ),
                ),
                by_demand,
            ]

        if unallocated_pct > 20:
            if not location_ids:
                return [by_demand]
            return [UnallocatedAction(
                action=UnallocatedActionType.DISTRIBUTE_EVENLY,
                description="Distribute remaining quantity evenly across existing locations",
                estimated_quantity=unallocated // len(location_ids),
                target_locations=location_ids,
            )]

        if unallocated_pct >= 10:
            return [by_demand]

        return [UnallocatedAction(
            action=UnallocatedActionType.ALLOCATE_TO_CENTRAL,
            description=f"Small remainder: allocate the remaining {unallocated} units to central warehouse",
            estimated_quantity=unallocated,
        )]

    def _calculate_balance(self, values: List[float]) -> AllocationBalance:
        """Population variance, std-dev and CV of values."""
        if not values:
            return AllocationBalance()

        mean = sum(values) / len(values)
        variance = sum((v - mean) ** 2 for v in values) / len(values)
        std_dev = math.sqrt(variance)
        cv = std_dev / mean if mean > 0 else 0.0

        return AllocationBalance(
            variance=variance,
            standard_deviation=std_dev,
            coefficient_of_variation=cv,
            is_balanced=cv < settings.balance_cv_threshold,
        )

    def _even_split(self, total: int, current: List[int]) -> List[int]:
        """
        Split total evenly over len(current) slots, conserving the total.

        The remainder units go to the slots that currently hold the most,
        so over-represented locations give up as little as needed.
        """
        count = len(current)
        base, remainder = divmod(total, count)
        targets = [base] * count

        largest_first = sorted(range(count), key=lambda i: current[i], reverse=True)
        for index in largest_first[:remainder]:
            targets[index] += 1

        return targets

    def _improvement_score(self, current: AllocationBalance, projected: AllocationBalance) -> float:
        """Relative CV reduction as a 0-100 score."""
        if current.coefficient_of_variation == 0:
            return 0.0

        improvement = (
            (current.coefficient_of_variation - projected.coefficient_of_variation)
            / current.coefficient_of_variation
        )
        return max(0.0, min(100.0, improvement * 100))

    def _balance_recommendations(self, balance: AllocationBalance) -> List[BalanceRecommendation]:
        if balance.coefficient_of_variation > HIGH_VARIABILITY_CV:
            return [BalanceRecommendation(
                type=BalanceRecommendationType.REDISTRIBUTE,
                description=(
                    "High variability detected. Consider redistributing quantities "
                    "more evenly across locations."
                ),
                impact=30,
                priority=Priority.HIGH,
            )]

        return [BalanceRecommendation(
            type=BalanceRecommendationType.REDISTRIBUTE,
            description="Moderate imbalance detected. Minor adjustments could improve distribution.",
            impact=15,
            priority=Priority.MEDIUM,
        )]


# Singleton instance
_allocation_utilities_service: Optional[AllocationUtilitiesService] = None


def get_allocation_utilities_service() -> AllocationUtilitiesService:
    """Get or create AllocationUtilitiesService instance."""
    global _allocation_utilities_service
    if _allocation_utilities_service is None:
        _allocation_utilities_service = AllocationUtilitiesService()
    return _allocation_utilities_service
