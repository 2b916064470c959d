"""
Allocation Optimizer Service — forward-looking allocation guidance.

Builds demand patterns from allocation history and uses them to suggest
where unallocated quantity should go, which pending allocations should be
rebalanced, which stored allocations break an invariant, and whether a
set of suggestions can be applied as-is.

Demand pattern (per location + product, non-cancelled history):
    average_demand     = mean allocation size
    demand_variability = CV × 100, capped at 100
    utilization_rate   = received / allocated × 100
    seasonality_factor = recent mean / overall mean, clamped to [0.5, 1.5]
    predicted_demand   = average × seasonality × demand_buffer

Confidence of a suggestion:
    no history -> 30
    otherwise  -> 50 + 30·util - 20·variability (+10 if recently active)
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import structlog

from config import settings
from models.allocation import (
    AllocationRecord,
    AllocationStatus,
    LocationRecord,
    POItemRecord,
)
from models.allocation_optimizer import (
    DEFAULT_STRATEGY,
    SEVERITY_ORDER,
    AffectedLocation,
    AllocationConflict,
    AllocationSuggestion,
    Complexity,
    ConflictSeverity,
    ConflictType,
    CurrentAllocation,
    FeasibilityResult,
    LocationDemandPattern,
    OptimizationResult,
    OptimizationStrategy,
    OptimizationSummary,
    RebalancingAction,
    RebalancingActionType,
    RebalancingRecommendation,
    ResolutionOption,
    StrategyParameters,
    SuggestedAllocation,
)
from services.allocation_query_service import (
    AllocationQueryService,
    distinct_locations,
    group_by_location,
    require_identifier,
    safe_ratio,
    sum_allocated_by_item,
)

logger = structlog.get_logger(__name__)

UNKNOWN_LOCATION = "Unknown Location"

# Confidence model
NO_HISTORY_CONFIDENCE = 30.0
BASE_CONFIDENCE = 50.0
UTILIZATION_CONFIDENCE_WEIGHT = 30.0
VARIABILITY_CONFIDENCE_PENALTY = 20.0
RECENT_ACTIVITY_BONUS = 10.0

# Reasoning thresholds
HIGH_UTILIZATION_PCT = 80.0
CONSISTENT_VARIABILITY_PCT = 20.0
VARIABLE_VARIABILITY_PCT = 50.0
RECENT_REASONING_DAYS = 7

# Rebalancing rules
LOW_UTILIZATION_PCT = 50.0
LOW_UTILIZATION_MIN_ALLOCATED = 10
DECREASE_FRACTION = 0.3
DECREASE_IMPACT = 15.0
OVER_UTILIZATION_PCT = 90.0
OVER_UTILIZATION_MAX_ALLOCATED = 100
INCREASE_FRACTION = 0.2
INCREASE_IMPACT = 10.0

# Seasonality clamp
SEASONALITY_MIN = 0.5
SEASONALITY_MAX = 1.5

OVER_ALLOCATION_HIGH_FRACTION = 0.1


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps from storage as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _days_since(value: Optional[datetime], now: datetime) -> Optional[float]:
    if value is None:
        return None
    return (now - _as_utc(value)).total_seconds() / 86400


def _rebalancing_complexity(action_count: int) -> Complexity:
    if action_count <= 2:
        return Complexity.LOW
    if action_count <= 5:
        return Complexity.MEDIUM
    return Complexity.HIGH


def _overall_complexity(action_count: int) -> Complexity:
    if action_count <= 3:
        return Complexity.LOW
    if action_count <= 8:
        return Complexity.MEDIUM
    return Complexity.HIGH


class AllocationOptimizerService:
    """Suggestions, rebalancing, conflicts and feasibility for allocations."""

    def __init__(self, queries: Optional[AllocationQueryService] = None):
        self.queries = queries or AllocationQueryService()

    # ===================
    # SMART SUGGESTIONS
    # ===================

    def generate_smart_suggestions(
        self,
        tenant_id: str,
        po_id: str,
        strategy: Optional[OptimizationStrategy] = None
    ) -> List[AllocationSuggestion]:
        """
        Suggest how to split each item's unallocated remainder over active locations.

        Args:
            tenant_id: Tenant owning the order
            po_id: Purchase order UUID
            strategy: Optimization strategy (default: Balanced Optimization)

        Returns:
            Suggestions sorted by optimization_score, highest first. Items
            where no location qualifies are left out.

        Raises:
            ValidationError: If an identifier is empty
            PurchaseOrderNotFoundError: If the order is not the tenant's
        """
        require_identifier(tenant_id, "tenant_id")
        require_identifier(po_id, "po_id")

        strategy = strategy or DEFAULT_STRATEGY
        params = self._check_strategy(strategy)

        logger.info(
            "generating_smart_suggestions",
            tenant_id=tenant_id,
            po_id=po_id,
            strategy=strategy.name
        )

        items = self.queries.list_po_items(po_id, tenant_id)
        allocations = self.queries.list_allocations_for_items(
            [item.id for item in items], tenant_id
        )
        allocated_by_item = sum_allocated_by_item(allocations)

        open_items = [
            item for item in items
            if item.quantity_ordered - allocated_by_item.get(item.id, 0) > 0
        ]
        if not open_items:
            logger.info("no_unallocated_items", po_id=po_id)
            return []

        active_locations = self.queries.list_locations(tenant_id, active_only=True)
        if not active_locations:
            logger.warning("no_active_locations", tenant_id=tenant_id)
            return []

        product_ids = [item.product_id for item in open_items]
        product_names = self.queries.get_product_names(tenant_id, product_ids)

        patterns: Dict[Tuple[str, str], LocationDemandPattern] = {}
        if params.consider_historical_demand:
            for pattern in self.get_location_demand_patterns(
                tenant_id,
                location_ids=[location.id for location in active_locations],
                product_ids=product_ids,
            ):
                patterns[(pattern.location_id, pattern.product_id)] = pattern

        current_names = {
            location.id: location.name
            for location in self.queries.list_locations(
                tenant_id, location_ids=distinct_locations(allocations)
            )
        }

        patterns_by_product: Dict[str, List[LocationDemandPattern]] = defaultdict(list)
        for pattern in patterns.values():
            patterns_by_product[pattern.product_id].append(pattern)

        now = datetime.now(timezone.utc)
        suggestions = []

        for item in open_items:
            unallocated = item.quantity_ordered - allocated_by_item.get(item.id, 0)
            item_patterns = patterns_by_product.get(item.product_id, [])

            suggested = self._suggest_for_item(
                item, unallocated, active_locations, patterns, params, now
            )
            if not suggested:
                continue

            current = [
                CurrentAllocation(
                    location_id=a.target_location_id,
                    location_name=current_names.get(a.target_location_id, UNKNOWN_LOCATION),
                    current_quantity=a.quantity_allocated,
                    suggested_quantity=a.quantity_allocated,
                    reason="Existing allocation",
                )
                for a in allocations if a.po_item_id == item.id
            ]

            suggestions.append(AllocationSuggestion(
                po_item_id=item.id,
                product_name=product_names.get(item.product_id, f"Product {item.product_id}"),
                total_quantity=item.quantity_ordered,
                current_allocations=current,
                unallocated_quantity=unallocated,
                suggested_allocations=suggested,
                optimization_score=self._optimization_score(suggested, item_patterns, params),
            ))

        suggestions.sort(key=lambda s: s.optimization_score, reverse=True)

        logger.info(
            "smart_suggestions_generated",
            po_id=po_id,
            open_items=len(open_items),
            suggestions=len(suggestions)
        )

        return suggestions

    # ===================
    # REBALANCING
    # ===================

    def analyze_rebalancing_opportunities(
        self,
        tenant_id: str,
        po_id: Optional[str] = None
    ) -> List[RebalancingRecommendation]:
        """
        Find pending allocations whose receipt history suggests moving quantity.

        Orders are only recommended when the projected efficiency gain
        exceeds rebalance_min_impact points.
        """
        require_identifier(tenant_id, "tenant_id")
        if po_id is not None:
            require_identifier(po_id, "po_id")

        orders = self._scoped_orders(tenant_id, po_id)
        if not orders:
            return []

        items = self.queries.list_tenant_po_items(tenant_id, po_id=po_id)
        allocations = self.queries.list_allocations_for_items(
            [item.id for item in items], tenant_id
        )
        pending = [a for a in allocations if a.status == AllocationStatus.PENDING]
        if not pending:
            return []

        locations = {
            location.id: location
            for location in self.queries.list_locations(
                tenant_id, location_ids=distinct_locations(pending)
            )
        }
        pending = [a for a in pending if a.target_location_id in locations]

        items_by_id = {item.id: item for item in items}
        active_ids = {
            location.id for location in self.queries.list_locations(tenant_id, active_only=True)
        }
        patterns = self.get_location_demand_patterns(
            tenant_id,
            product_ids=sorted({item.product_id for item in items}),
        )

        recommendations = []

        for order in orders:
            order_items = [item for item in items if item.po_id == order.id]
            order_item_ids = {item.id for item in order_items}
            order_pending = [a for a in pending if a.po_item_id in order_item_ids]
            if not order_pending:
                continue

            actions = self._rebalancing_actions(
                order_pending, items_by_id, locations, patterns, active_ids
            )
            if not actions:
                continue

            current_efficiency = self._order_efficiency(
                order_items,
                [a for a in allocations if a.po_item_id in order_item_ids],
            )
            projected_efficiency = min(100.0, current_efficiency + sum(a.impact for a in actions))
            total_impact = projected_efficiency - current_efficiency

            if total_impact <= settings.rebalance_min_impact:
                logger.debug(
                    "rebalancing_below_threshold",
                    po_id=order.id,
                    total_impact=round(total_impact, 2)
                )
                continue

            recommendations.append(RebalancingRecommendation(
                po_id=order.id,
                po_number=order.po_number or "N/A",
                current_efficiency=current_efficiency,
                projected_efficiency=projected_efficiency,
                rebalancing_actions=actions,
                total_impact=total_impact,
                implementation_complexity=_rebalancing_complexity(len(actions)),
            ))

        recommendations.sort(key=lambda r: r.total_impact, reverse=True)

        logger.info(
            "rebalancing_opportunities_analyzed",
            tenant_id=tenant_id,
            po_id=po_id,
            orders=len(orders),
            recommendations=len(recommendations)
        )

        return recommendations

    # ===================
    # CONFLICTS
    # ===================

    def detect_allocation_conflicts(
        self,
        tenant_id: str,
        po_id: Optional[str] = None
    ) -> List[AllocationConflict]:
        """
        Report stored allocations that break an allocation invariant.

        Returns conflicts sorted by severity, most severe first. A
        consistent dataset yields an empty list.
        """
        require_identifier(tenant_id, "tenant_id")
        if po_id is not None:
            require_identifier(po_id, "po_id")

        if not self._scoped_orders(tenant_id, po_id):
            return []

        items = self.queries.list_tenant_po_items(tenant_id, po_id=po_id)
        allocations = self.queries.list_allocations_for_items(
            [item.id for item in items], tenant_id
        )
        if not allocations:
            return []

        product_names = self.queries.get_product_names(
            tenant_id, [item.product_id for item in items]
        )
        location_names = {
            location.id: location.name
            for location in self.queries.list_locations(
                tenant_id, location_ids=distinct_locations(allocations)
            )
        }

        conflicts: List[AllocationConflict] = []

        for item in items:
            item_allocations = [a for a in allocations if a.po_item_id == item.id]
            if not item_allocations:
                continue

            product_name = product_names.get(item.product_id, f"Product {item.product_id}")

            conflicts.extend(self._over_allocation_conflicts(
                item, item_allocations, product_name, location_names
            ))
            conflicts.extend(self._duplicate_location_conflicts(
                item, item_allocations, product_name, location_names
            ))
            conflicts.extend(self._invalid_quantity_conflicts(
                item, item_allocations, product_name, location_names
            ))
            conflicts.extend(self._orphaned_location_conflicts(
                item, item_allocations, product_name, location_names
            ))

        conflicts.sort(key=lambda c: SEVERITY_ORDER[c.severity], reverse=True)

        logger.info(
            "allocation_conflicts_detected",
            tenant_id=tenant_id,
            po_id=po_id,
            count=len(conflicts)
        )

        return conflicts

    # ===================
    # DEMAND PATTERNS
    # ===================

    def get_location_demand_patterns(
        self,
        tenant_id: str,
        location_ids: Optional[List[str]] = None,
        product_ids: Optional[List[str]] = None
    ) -> List[LocationDemandPattern]:
        """
        Historical demand per (location, product) from the tenant's allocations.

        Empty filters are treated as no filter. Cancelled allocations and
        allocations whose location or item does not resolve under the tenant
        are ignored.
        """
        require_identifier(tenant_id, "tenant_id")

        allocations = self.queries.list_allocations(
            tenant_id, location_ids=location_ids or None
        )
        allocations = [a for a in allocations if a.status != AllocationStatus.CANCELLED]
        if not allocations:
            return []

        items_by_id = {item.id: item for item in self.queries.list_tenant_po_items(tenant_id)}
        product_filter = set(product_ids) if product_ids else None

        history: Dict[Tuple[str, str], List[AllocationRecord]] = {}
        for allocation in allocations:
            item = items_by_id.get(allocation.po_item_id)
            if item is None:
                continue
            if product_filter is not None and item.product_id not in product_filter:
                continue
            history.setdefault((allocation.target_location_id, item.product_id), []).append(allocation)

        if not history:
            return []

        location_names = {
            location.id: location.name
            for location in self.queries.list_locations(
                tenant_id, location_ids={location_id for location_id, _ in history}
            )
        }
        product_names = self.queries.get_product_names(
            tenant_id, {product_id for _, product_id in history}
        )

        now = datetime.now(timezone.utc)
        patterns = []

        for (location_id, product_id), rows in history.items():
            if location_id not in location_names:
                continue
            patterns.append(self._build_pattern(
                location_id,
                location_names[location_id],
                product_id,
                product_names.get(product_id, f"Product {product_id}"),
                rows,
                now,
            ))

        patterns.sort(key=lambda p: (p.location_name, p.product_name))

        logger.debug(
            "demand_patterns_calculated",
            tenant_id=tenant_id,
            patterns=len(patterns)
        )

        return patterns

    # ===================
    # FEASIBILITY
    # ===================

    def validate_optimization_feasibility(
        self,
        tenant_id: str,
        suggestions: List[AllocationSuggestion]
    ) -> FeasibilityResult:
        """
        Check that a suggestion set can be applied without breaking invariants.

        Findings are returned as issues, never raised.
        """
        require_identifier(tenant_id, "tenant_id")

        location_ids = {
            sa.location_id
            for suggestion in suggestions
            for sa in suggestion.suggested_allocations
        }
        locations = {
            location.id: location
            for location in self.queries.list_locations(tenant_id, location_ids=location_ids)
        }

        issues = []

        for suggestion in suggestions:
            total_suggested = sum(sa.suggested_quantity for sa in suggestion.suggested_allocations)
            current_total = sum(ca.current_quantity for ca in suggestion.current_allocations)
            combined = total_suggested + current_total

            if combined > suggestion.total_quantity:
                issues.append(
                    f"Over-allocation detected for {suggestion.product_name}: "
                    f"suggested {combined} but only {suggestion.total_quantity} available"
                )

            for sa in suggestion.suggested_allocations:
                location = locations.get(sa.location_id)
                if location is None:
                    issues.append(f"Location {sa.location_id} not found or not accessible")
                elif not location.active:
                    issues.append(f"Location {location.name} ({sa.location_id}) is inactive")

            for sa in suggestion.suggested_allocations:
                if sa.suggested_quantity <= 0:
                    issues.append(
                        f"Invalid quantity {sa.suggested_quantity} suggested for location {sa.location_id}"
                    )

        if issues:
            logger.warning(
                "optimization_infeasible",
                tenant_id=tenant_id,
                issues=len(issues)
            )

        return FeasibilityResult(feasible=not issues, issues=issues)

    # ===================
    # ORCHESTRATION
    # ===================

    def optimize_allocation_distribution(
        self,
        tenant_id: str,
        po_id: str,
        strategy: OptimizationStrategy
    ) -> OptimizationResult:
        """
        Run suggestions, rebalancing and conflict detection for one order,
        then check the suggestions for feasibility.

        An infeasible result is still returned, with success=False.
        """
        require_identifier(tenant_id, "tenant_id")
        require_identifier(po_id, "po_id")

        strategy = strategy or DEFAULT_STRATEGY

        logger.info(
            "optimizing_allocation_distribution",
            tenant_id=tenant_id,
            po_id=po_id,
            strategy=strategy.name
        )

        suggestions = self.generate_smart_suggestions(tenant_id, po_id, strategy)
        rebalancing = self.analyze_rebalancing_opportunities(tenant_id, po_id)
        conflicts = self.detect_allocation_conflicts(tenant_id, po_id)

        current_score = self._po_efficiency(po_id, tenant_id)
        projected_score = self._projected_score(suggestions, rebalancing)
        improvement = (
            (projected_score - current_score) / current_score * 100
            if current_score > 0 else 0.0
        )

        feasibility = self.validate_optimization_feasibility(tenant_id, suggestions)

        result = OptimizationResult(
            success=feasibility.feasible,
            optimization_score=projected_score,
            improvement_percentage=improvement,
            suggested_allocations=suggestions,
            rebalancing_recommendations=rebalancing,
            conflicts_resolved=conflicts,
            feasibility_issues=feasibility.issues,
            summary=OptimizationSummary(
                total_items_optimized=len(suggestions),
                total_quantity_optimized=sum(s.unallocated_quantity for s in suggestions),
                estimated_efficiency_gain=improvement,
                implementation_complexity=_overall_complexity(len(suggestions) + len(rebalancing)),
            ),
        )

        logger.info(
            "allocation_distribution_optimized",
            po_id=po_id,
            success=result.success,
            score=round(projected_score, 2),
            conflicts=len(conflicts)
        )

        return result

    # ===================
    # SUGGESTION HELPERS
    # ===================

    def _check_strategy(self, strategy: OptimizationStrategy) -> StrategyParameters:
        params = strategy.parameters
        if not params.weights_normalized:
            logger.warning(
                "strategy_weights_not_normalized",
                strategy=strategy.name,
                weights_total=round(params.weights_total, 3)
            )
        return params

    def _suggest_for_item(
        self,
        item: POItemRecord,
        unallocated: int,
        locations: List[LocationRecord],
        patterns: Dict[Tuple[str, str], LocationDemandPattern],
        params: StrategyParameters,
        now: datetime
    ) -> List[SuggestedAllocation]:
        """Per-location quantities for one item, never summing past unallocated."""
        candidates = []

        for location in locations:
            pattern = patterns.get((location.id, item.product_id))
            quantity = self._suggested_quantity(unallocated, pattern, params, len(locations))
            if quantity is None or quantity <= 0:
                continue
            candidates.append((location, pattern, quantity))

        total = sum(quantity for _, _, quantity in candidates)
        if total > unallocated:
            scale = unallocated / total
            candidates = [
                (location, pattern, int(math.floor(quantity * scale)))
                for location, pattern, quantity in candidates
            ]
            candidates = [c for c in candidates if c[2] > 0]

        suggested = [
            SuggestedAllocation(
                location_id=location.id,
                location_name=location.name,
                suggested_quantity=quantity,
                confidence=self._confidence(pattern, now),
                reasoning=self._reasoning(pattern, params, now),
            )
            for location, pattern, quantity in candidates
        ]
        suggested.sort(key=lambda sa: sa.confidence, reverse=True)

        return suggested

    def _suggested_quantity(
        self,
        unallocated: int,
        pattern: Optional[LocationDemandPattern],
        params: StrategyParameters,
        location_count: int
    ) -> Optional[int]:
        """Quantity for one location, or None when the location does not qualify."""
        if pattern is None:
            if not params.balance_distribution:
                return None
            return unallocated // location_count

        # Zero utilization means nothing received yet, not waste
        received = pattern.utilization_rate > 0
        if params.minimize_waste and received and pattern.utilization_rate < settings.waste_utilization_floor:
            return None

        quantity = pattern.predicted_demand * params.demand_prediction_weight
        if params.prioritize_utilization and received:
            quantity *= pattern.utilization_rate / 100

        return min(int(math.floor(quantity)), unallocated)

    def _confidence(self, pattern: Optional[LocationDemandPattern], now: datetime) -> float:
        if pattern is None:
            return NO_HISTORY_CONFIDENCE

        confidence = BASE_CONFIDENCE
        confidence += pattern.utilization_rate / 100 * UTILIZATION_CONFIDENCE_WEIGHT
        confidence -= pattern.demand_variability / 100 * VARIABILITY_CONFIDENCE_PENALTY

        days = _days_since(pattern.last_order_date, now)
        if days is not None and days < settings.recent_activity_days:
            confidence += RECENT_ACTIVITY_BONUS

        return max(0.0, min(100.0, confidence))

    def _reasoning(
        self,
        pattern: Optional[LocationDemandPattern],
        params: StrategyParameters,
        now: datetime
    ) -> List[str]:
        if pattern is None:
            reasoning = ["No historical demand data available"]
            if params.balance_distribution:
                reasoning.append("Suggested for balanced distribution across locations")
            return reasoning

        reasoning = []

        if pattern.utilization_rate > HIGH_UTILIZATION_PCT:
            reasoning.append(f"High utilization rate ({pattern.utilization_rate:.1f}%)")

        if pattern.average_demand > 0:
            reasoning.append(f"Historical average demand: {pattern.average_demand:.1f} units")

        if pattern.demand_variability < CONSISTENT_VARIABILITY_PCT:
            reasoning.append("Consistent demand pattern")
        elif pattern.demand_variability > VARIABLE_VARIABILITY_PCT:
            reasoning.append("Variable demand pattern - conservative allocation")

        days = _days_since(pattern.last_order_date, now)
        if days is not None and days < RECENT_REASONING_DAYS:
            reasoning.append("Recent allocation activity")

        return reasoning

    def _optimization_score(
        self,
        suggested: List[SuggestedAllocation],
        item_patterns: List[LocationDemandPattern],
        params: StrategyParameters
    ) -> float:
        """
        Weighted mean of confidence, demand coverage and distribution balance.

        Coverage is suggested locations per location with history for the
        product (50 with no history at all).
        """
        if not suggested:
            return 0.0

        score = 0.0
        total_weight = 0.0

        avg_confidence = sum(sa.confidence for sa in suggested) / len(suggested)
        score += avg_confidence * params.demand_prediction_weight
        total_weight += params.demand_prediction_weight

        coverage = (
            min(100.0, len(suggested) / len(item_patterns) * 100)
            if item_patterns else 50.0
        )
        score += coverage * params.location_capacity_weight
        total_weight += params.location_capacity_weight

        if params.balance_distribution:
            score += self._distribution_balance(suggested) * params.cost_optimization_weight
            total_weight += params.cost_optimization_weight

        if total_weight <= 0:
            return 0.0

        return max(0.0, min(100.0, score / total_weight))

    def _distribution_balance(self, suggested: List[SuggestedAllocation]) -> float:
        """100 for a perfectly even split, falling with the CV of quantities."""
        if len(suggested) <= 1:
            return 100.0

        quantities = [sa.suggested_quantity for sa in suggested]
        mean = sum(quantities) / len(quantities)
        if mean <= 0:
            return 0.0

        variance = sum((q - mean) ** 2 for q in quantities) / len(quantities)
        return max(0.0, 100 - math.sqrt(variance) / mean * 100)

    # ===================
    # DEMAND HELPERS
    # ===================

    def _build_pattern(
        self,
        location_id: str,
        location_name: str,
        product_id: str,
        product_name: str,
        rows: List[AllocationRecord],
        now: datetime
    ) -> LocationDemandPattern:
        sizes = [row.quantity_allocated for row in rows]
        average = sum(sizes) / len(sizes)

        if average > 0:
            std_dev = math.sqrt(sum((s - average) ** 2 for s in sizes) / len(sizes))
            variability = min(100.0, std_dev / average * 100)
        else:
            variability = 0.0

        total_allocated = sum(sizes)
        total_received = sum(row.quantity_received for row in rows)

        window_start = now - timedelta(days=settings.seasonality_window_days)
        recent = [
            row.quantity_allocated for row in rows
            if row.created_at is not None and _as_utc(row.created_at) >= window_start
        ]
        if recent and average > 0:
            seasonality = sum(recent) / len(recent) / average
            seasonality = max(SEASONALITY_MIN, min(SEASONALITY_MAX, seasonality))
        else:
            seasonality = 1.0

        timestamps = [_as_utc(row.created_at) for row in rows if row.created_at is not None]

        return LocationDemandPattern(
            location_id=location_id,
            location_name=location_name,
            product_id=product_id,
            product_name=product_name,
            allocation_count=len(rows),
            average_demand=average,
            demand_variability=variability,
            seasonality_factor=seasonality,
            utilization_rate=safe_ratio(total_received, total_allocated, 100),
            last_order_date=max(timestamps) if timestamps else None,
            predicted_demand=average * seasonality * settings.demand_buffer,
        )

    # ===================
    # REBALANCING HELPERS
    # ===================

    def _scoped_orders(self, tenant_id: str, po_id: Optional[str]):
        """Tenant orders in scope; a named order must exist."""
        if po_id is not None:
            return [self.queries.get_purchase_order(po_id, tenant_id)]
        return self.queries.list_purchase_orders(tenant_id)

    def _order_efficiency(
        self,
        items: List[POItemRecord],
        allocations: List[AllocationRecord]
    ) -> float:
        """Mean of allocation rate and utilization rate, 0 without ordered quantity."""
        total_ordered = sum(item.quantity_ordered for item in items)
        if total_ordered <= 0:
            return 0.0

        total_allocated = sum(a.quantity_allocated for a in allocations)
        total_received = sum(a.quantity_received for a in allocations)

        allocation_rate = total_allocated / total_ordered * 100
        utilization_rate = safe_ratio(total_received, total_allocated, 100)

        return (allocation_rate + utilization_rate) / 2

    def _po_efficiency(self, po_id: str, tenant_id: str) -> float:
        items = self.queries.list_po_items(po_id, tenant_id)
        allocations = self.queries.list_allocations_for_items(
            [item.id for item in items], tenant_id
        )
        return self._order_efficiency(items, allocations)

    def _projected_score(
        self,
        suggestions: List[AllocationSuggestion],
        rebalancing: List[RebalancingRecommendation]
    ) -> float:
        avg_suggestion = (
            sum(s.optimization_score for s in suggestions) / len(suggestions)
            if suggestions else 0.0
        )
        avg_projected = (
            sum(r.projected_efficiency for r in rebalancing) / len(rebalancing)
            if rebalancing else 0.0
        )
        return (avg_suggestion + avg_projected) / 2

    def _rebalancing_actions(
        self,
        pending: List[AllocationRecord],
        items_by_id: Dict[str, POItemRecord],
        locations: Dict[str, LocationRecord],
        patterns: List[LocationDemandPattern],
        active_ids: set
    ) -> List[RebalancingAction]:
        """
        Per-location rules over pending allocations of one order.

        Low receipt rate on a sizeable allocation moves 30% toward a better
        used location for the same product, or just decreases it. Near-full
        receipt on a small allocation increases it by 20%.
        """
        actions = []

        for location_id, rows in group_by_location(pending).items():
            location = locations[location_id]
            total_allocated = sum(a.quantity_allocated for a in rows)
            total_received = sum(a.quantity_received for a in rows)
            utilization = safe_ratio(total_received, total_allocated, 100)

            if utilization < LOW_UTILIZATION_PCT and total_allocated > LOW_UTILIZATION_MIN_ALLOCATED:
                reduction = int(math.floor(total_allocated * DECREASE_FRACTION))
                product_ids = {
                    items_by_id[a.po_item_id].product_id
                    for a in rows if a.po_item_id in items_by_id
                }
                target = self._redistribution_target(
                    location_id, product_ids, utilization, patterns, active_ids
                )

                if target is not None:
                    actions.append(RebalancingAction(
                        type=RebalancingActionType.REDISTRIBUTE,
                        allocation_id=rows[0].id,
                        location_id=location_id,
                        location_name=location.name,
                        current_quantity=total_allocated,
                        suggested_quantity=total_allocated - reduction,
                        target_location_id=target.location_id,
                        target_location_name=target.location_name,
                        impact=DECREASE_IMPACT,
                        reasoning=(
                            f"Low utilization rate ({utilization:.1f}%) suggests over-allocation; "
                            f"move {reduction} units to {target.location_name} "
                            f"({target.utilization_rate:.1f}% utilization)"
                        ),
                    ))
                else:
                    actions.append(RebalancingAction(
                        type=RebalancingActionType.DECREASE,
                        allocation_id=rows[0].id,
                        location_id=location_id,
                        location_name=location.name,
                        current_quantity=total_allocated,
                        suggested_quantity=total_allocated - reduction,
                        impact=DECREASE_IMPACT,
                        reasoning=f"Low utilization rate ({utilization:.1f}%) suggests over-allocation",
                    ))

            if utilization > OVER_UTILIZATION_PCT and total_allocated < OVER_UTILIZATION_MAX_ALLOCATED:
                increase = int(math.floor(total_allocated * INCREASE_FRACTION))
                actions.append(RebalancingAction(
                    type=RebalancingActionType.INCREASE,
                    allocation_id=rows[0].id,
                    location_id=location_id,
                    location_name=location.name,
                    current_quantity=total_allocated,
                    suggested_quantity=total_allocated + increase,
                    impact=INCREASE_IMPACT,
                    reasoning=f"High utilization rate ({utilization:.1f}%) suggests under-allocation",
                ))

        return actions

    def _redistribution_target(
        self,
        location_id: str,
        product_ids: set,
        utilization: float,
        patterns: List[LocationDemandPattern],
        active_ids: set
    ) -> Optional[LocationDemandPattern]:
        """Active location with the best history for the same products, if better than here."""
        candidates = [
            p for p in patterns
            if p.product_id in product_ids
            and p.location_id != location_id
            and p.location_id in active_ids
            and p.utilization_rate > utilization
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: (p.utilization_rate, p.location_name))

    # ===================
    # CONFLICT DETECTORS
    # ===================

    def _over_allocation_conflicts(
        self,
        item: POItemRecord,
        allocations: List[AllocationRecord],
        product_name: str,
        location_names: Dict[str, str]
    ) -> List[AllocationConflict]:
        total_allocated = sum(a.quantity_allocated for a in allocations)
        if total_allocated <= item.quantity_ordered:
            return []

        excess = total_allocated - item.quantity_ordered
        severity = (
            ConflictSeverity.HIGH
            if excess > item.quantity_ordered * OVER_ALLOCATION_HIGH_FRACTION
            else ConflictSeverity.MEDIUM
        )

        affected = [
            AffectedLocation(
                location_id=a.target_location_id,
                location_name=location_names.get(a.target_location_id, UNKNOWN_LOCATION),
                issue="Share of over-allocated item",
                current_quantity=a.quantity_allocated,
                recommended_quantity=int(math.floor(
                    max(0, a.quantity_allocated) * item.quantity_ordered / total_allocated
                )),
            )
            for a in allocations
        ]

        return [AllocationConflict(
            type=ConflictType.OVER_ALLOCATION,
            severity=severity,
            po_item_id=item.id,
            product_name=product_name,
            description=(
                f"Total allocated quantity ({total_allocated}) exceeds ordered quantity "
                f"({item.quantity_ordered}) by {excess} units"
            ),
            affected_locations=affected,
            resolution_options=[
                ResolutionOption(
                    action="Reduce allocations proportionally",
                    description="Reduce all allocations by the same percentage to fit within ordered quantity",
                    impact=80,
                    complexity=Complexity.LOW,
                ),
                ResolutionOption(
                    action="Remove newest allocations",
                    description="Remove the most recently created allocations until within limits",
                    impact=70,
                    complexity=Complexity.MEDIUM,
                ),
            ],
        )]

    def _duplicate_location_conflicts(
        self,
        item: POItemRecord,
        allocations: List[AllocationRecord],
        product_name: str,
        location_names: Dict[str, str]
    ) -> List[AllocationConflict]:
        live = [a for a in allocations if a.status != AllocationStatus.CANCELLED]
        conflicts = []

        for location_id, rows in group_by_location(live).items():
            if len(rows) < 2:
                continue

            name = location_names.get(location_id, UNKNOWN_LOCATION)
            combined = sum(a.quantity_allocated for a in rows)

            conflicts.append(AllocationConflict(
                type=ConflictType.DUPLICATE_LOCATION,
                severity=ConflictSeverity.MEDIUM,
                po_item_id=item.id,
                product_name=product_name,
                description=f"{len(rows)} allocations of {product_name} target {name}",
                affected_locations=[
                    AffectedLocation(
                        location_id=location_id,
                        location_name=name,
                        issue="Duplicate allocation to the same location",
                        current_quantity=a.quantity_allocated,
                        recommended_quantity=combined if index == 0 else 0,
                    )
                    for index, a in enumerate(rows)
                ],
                resolution_options=[ResolutionOption(
                    action="Merge allocations",
                    description="Combine the allocations into a single allocation for the location",
                    impact=50,
                    complexity=Complexity.LOW,
                )],
            ))

        return conflicts

    def _invalid_quantity_conflicts(
        self,
        item: POItemRecord,
        allocations: List[AllocationRecord],
        product_name: str,
        location_names: Dict[str, str]
    ) -> List[AllocationConflict]:
        return [
            AllocationConflict(
                type=ConflictType.INVALID_QUANTITY,
                severity=ConflictSeverity.HIGH,
                po_item_id=item.id,
                product_name=product_name,
                description=f"Allocation {a.id} has non-positive quantity {a.quantity_allocated}",
                affected_locations=[AffectedLocation(
                    location_id=a.target_location_id,
                    location_name=location_names.get(a.target_location_id, UNKNOWN_LOCATION),
                    issue="Non-positive allocated quantity",
                    current_quantity=a.quantity_allocated,
                    recommended_quantity=0,
                )],
                resolution_options=[
                    ResolutionOption(
                        action="Correct quantity",
                        description="Set a positive quantity for the allocation",
                        impact=60,
                        complexity=Complexity.LOW,
                    ),
                    ResolutionOption(
                        action="Cancel allocation",
                        description="Cancel the allocation and release its quantity",
                        impact=40,
                        complexity=Complexity.LOW,
                    ),
                ],
            )
            for a in allocations
            if a.quantity_allocated <= 0
        ]

    def _orphaned_location_conflicts(
        self,
        item: POItemRecord,
        allocations: List[AllocationRecord],
        product_name: str,
        location_names: Dict[str, str]
    ) -> List[AllocationConflict]:
        return [
            AllocationConflict(
                type=ConflictType.ORPHANED_LOCATION,
                severity=ConflictSeverity.CRITICAL,
                po_item_id=item.id,
                product_name=product_name,
                description=(
                    f"Allocation {a.id} targets location {a.target_location_id}, "
                    "which does not exist for this tenant"
                ),
                affected_locations=[AffectedLocation(
                    location_id=a.target_location_id,
                    location_name=UNKNOWN_LOCATION,
                    issue="Location not found",
                    current_quantity=a.quantity_allocated,
                    recommended_quantity=0,
                )],
                resolution_options=[
                    ResolutionOption(
                        action="Reassign location",
                        description="Move the allocation to an existing location",
                        impact=90,
                        complexity=Complexity.MEDIUM,
                    ),
                    ResolutionOption(
                        action="Cancel allocation",
                        description="Cancel the allocation and return its quantity to unallocated",
                        impact=70,
                        complexity=Complexity.LOW,
                    ),
                ],
            )
            for a in allocations
            if a.target_location_id not in location_names
        ]


# Singleton instance
_allocation_optimizer_service: Optional[AllocationOptimizerService] = None


def get_allocation_optimizer_service() -> AllocationOptimizerService:
    """Get or create AllocationOptimizerService instance."""
    global _allocation_optimizer_service
    if _allocation_optimizer_service is None:
        _allocation_optimizer_service = AllocationOptimizerService()
    return _allocation_optimizer_service
