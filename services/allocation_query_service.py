"""
Allocation query service.

Named, tenant-scoped reads over purchase orders, PO items, products,
locations and allocations. Every method takes tenant_id as a required
argument; po_items has no tenant column, so items are always resolved
through an order that belongs to the tenant.

Joins are done in Python after `in_` lookups, and aggregates are plain
functions over the returned records. Storage errors are logged by
DatabaseSession and propagate unchanged.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

import structlog
from supabase import Client

from config import get_supabase_client, DatabaseSession
from exceptions import (
    MissingIdentifierError,
    PurchaseOrderNotFoundError,
    POItemNotFoundError,
    LocationNotFoundError,
)
from models.allocation import (
    AllocationRecord,
    AllocationStatus,
    LocationRecord,
    POItemRecord,
    PurchaseOrderRecord,
)

logger = structlog.get_logger(__name__)


def require_identifier(value: Optional[str], field: str) -> str:
    """
    Reject empty identifiers before any query runs.

    Raises:
        MissingIdentifierError: If value is None, empty or whitespace
    """
    if value is None or not str(value).strip():
        raise MissingIdentifierError(field)
    return value


class AllocationQueryService:
    """Tenant-scoped read access to allocation data."""

    def __init__(self, client: Optional[Client] = None):
        self.db = client or get_supabase_client()

    # ===================
    # PURCHASE ORDERS
    # ===================

    def get_purchase_order(self, po_id: str, tenant_id: str) -> PurchaseOrderRecord:
        """
        Point lookup of a purchase order.

        Raises:
            PurchaseOrderNotFoundError: If the order is missing or belongs to another tenant
        """
        with DatabaseSession("get_purchase_order", client=self.db, po_id=po_id) as db:
            result = (
                db.table("purchase_orders")
                .select("*")
                .eq("id", po_id)
                .eq("tenant_id", tenant_id)
                .limit(1)
                .execute()
            )

        if not result.data:
            raise PurchaseOrderNotFoundError(po_id)

        return PurchaseOrderRecord(**result.data[0])

    def list_purchase_orders(
        self,
        tenant_id: str,
        po_id: Optional[str] = None
    ) -> List[PurchaseOrderRecord]:
        """All orders of the tenant, or just one when po_id is given."""
        with DatabaseSession("list_purchase_orders", client=self.db, po_id=po_id) as db:
            query = db.table("purchase_orders").select("*").eq("tenant_id", tenant_id)
            if po_id:
                query = query.eq("id", po_id)
            result = query.order("id").execute()

        return [PurchaseOrderRecord(**row) for row in result.data]

    def count_purchase_orders(self, tenant_id: str) -> int:
        """Number of orders owned by the tenant."""
        with DatabaseSession("count_purchase_orders", client=self.db) as db:
            result = (
                db.table("purchase_orders")
                .select("id", count="exact")
                .eq("tenant_id", tenant_id)
                .execute()
            )

        return result.count or 0

    # ===================
    # PO ITEMS
    # ===================

    def get_po_item(self, po_item_id: str, tenant_id: str) -> POItemRecord:
        """
        Point lookup of a PO item, checked against the tenant of its order.

        Raises:
            POItemNotFoundError: If the item is missing or its order belongs to another tenant
        """
        with DatabaseSession("get_po_item", client=self.db, po_item_id=po_item_id) as db:
            result = (
                db.table("po_items")
                .select("*")
                .eq("id", po_item_id)
                .limit(1)
                .execute()
            )

        if not result.data:
            raise POItemNotFoundError(po_item_id)

        item = POItemRecord(**result.data[0])

        with DatabaseSession("get_po_item_owner", client=self.db, po_id=item.po_id) as db:
            owner = (
                db.table("purchase_orders")
                .select("id")
                .eq("id", item.po_id)
                .eq("tenant_id", tenant_id)
                .limit(1)
                .execute()
            )

        if not owner.data:
            logger.warning(
                "po_item_tenant_mismatch",
                po_item_id=po_item_id,
                tenant_id=tenant_id
            )
            raise POItemNotFoundError(po_item_id)

        return item

    def list_po_items(self, po_id: str, tenant_id: str) -> List[POItemRecord]:
        """
        Items of one order of the tenant.

        Raises:
            PurchaseOrderNotFoundError: If the order is not the tenant's
        """
        self.get_purchase_order(po_id, tenant_id)

        with DatabaseSession("list_po_items", client=self.db, po_id=po_id) as db:
            result = (
                db.table("po_items")
                .select("*")
                .eq("po_id", po_id)
                .execute()
            )

        return [POItemRecord(**row) for row in result.data]

    def list_tenant_po_items(
        self,
        tenant_id: str,
        po_id: Optional[str] = None
    ) -> List[POItemRecord]:
        """Items across all of the tenant's orders (or one order)."""
        orders = self.list_purchase_orders(tenant_id, po_id=po_id)
        order_ids = [order.id for order in orders]

        if not order_ids:
            return []

        with DatabaseSession("list_tenant_po_items", client=self.db) as db:
            result = (
                db.table("po_items")
                .select("*")
                .in_("po_id", order_ids)
                .execute()
            )

        return [POItemRecord(**row) for row in result.data]

    # ===================
    # PRODUCTS
    # ===================

    def get_product_names(
        self,
        tenant_id: str,
        product_ids: Iterable[str]
    ) -> Dict[str, str]:
        """Map product id -> name for the tenant's products among product_ids."""
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        with DatabaseSession("get_product_names", client=self.db) as db:
            result = (
                db.table("products")
                .select("id, name")
                .eq("tenant_id", tenant_id)
                .in_("id", ids)
                .execute()
            )

        return {row["id"]: row["name"] for row in result.data}

    # ===================
    # LOCATIONS
    # ===================

    def get_location(self, location_id: str, tenant_id: str) -> LocationRecord:
        """
        Point lookup of a location.

        Raises:
            LocationNotFoundError: If the location is missing or belongs to another tenant
        """
        with DatabaseSession("get_location", client=self.db, location_id=location_id) as db:
            result = (
                db.table("locations")
                .select("*")
                .eq("id", location_id)
                .eq("tenant_id", tenant_id)
                .limit(1)
                .execute()
            )

        if not result.data:
            raise LocationNotFoundError(location_id)

        return LocationRecord(**result.data[0])

    def list_locations(
        self,
        tenant_id: str,
        location_ids: Optional[Iterable[str]] = None,
        active_only: bool = False
    ) -> List[LocationRecord]:
        """Locations of the tenant, optionally restricted to ids and/or active ones."""
        ids = None if location_ids is None else sorted(set(location_ids))
        if ids is not None and not ids:
            return []

        with DatabaseSession("list_locations", client=self.db) as db:
            query = db.table("locations").select("*").eq("tenant_id", tenant_id)
            if ids is not None:
                query = query.in_("id", ids)
            if active_only:
                query = query.eq("active", True)
            result = query.order("name").execute()

        return [LocationRecord(**row) for row in result.data]

    # ===================
    # ALLOCATIONS
    # ===================

    def list_allocations_for_items(
        self,
        po_item_ids: Iterable[str],
        tenant_id: str,
        status: Optional[AllocationStatus] = None
    ) -> List[AllocationRecord]:
        """Allocations of the given PO items, scoped to the tenant."""
        ids = sorted(set(po_item_ids))
        if not ids:
            return []

        with DatabaseSession("list_allocations_for_items", client=self.db, items=len(ids)) as db:
            query = (
                db.table("allocations")
                .select("*")
                .eq("tenant_id", tenant_id)
                .in_("po_item_id", ids)
            )
            if status:
                query = query.eq("status", status.value)
            result = query.execute()

        return [AllocationRecord(**row) for row in result.data]

    def list_allocations(
        self,
        tenant_id: str,
        location_ids: Optional[Iterable[str]] = None,
        status: Optional[AllocationStatus] = None
    ) -> List[AllocationRecord]:
        """All allocations of the tenant, optionally filtered by target location and status."""
        ids = None if location_ids is None else sorted(set(location_ids))
        if ids is not None and not ids:
            return []

        with DatabaseSession("list_allocations", client=self.db) as db:
            query = db.table("allocations").select("*").eq("tenant_id", tenant_id)
            if ids is not None:
                query = query.in_("target_location_id", ids)
            if status:
                query = query.eq("status", status.value)
            result = query.execute()

        return [AllocationRecord(**row) for row in result.data]

    def count_distinct_orders_for_location(self, location_id: str, tenant_id: str) -> int:
        """Distinct purchase orders with at least one allocation to the location."""
        allocations = self.list_allocations(tenant_id, location_ids=[location_id])
        item_ids = {a.po_item_id for a in allocations}

        if not item_ids:
            return 0

        with DatabaseSession("count_distinct_orders_for_location", client=self.db) as db:
            result = (
                db.table("po_items")
                .select("id, po_id")
                .in_("id", sorted(item_ids))
                .execute()
            )

        return len({row["po_id"] for row in result.data})


# ===================
# AGGREGATES
# ===================

def sum_allocated_by_item(allocations: Iterable[AllocationRecord]) -> Dict[str, int]:
    """Σ quantity_allocated grouped by PO item. Items without rows are absent."""
    totals: Dict[str, int] = defaultdict(int)
    for allocation in allocations:
        totals[allocation.po_item_id] += allocation.quantity_allocated
    return dict(totals)


def distinct_locations(allocations: Iterable[AllocationRecord]) -> Set[str]:
    """Target locations referenced by the allocations."""
    return {allocation.target_location_id for allocation in allocations}


def group_by_location(
    allocations: Iterable[AllocationRecord]
) -> Dict[str, List[AllocationRecord]]:
    """Allocations grouped by target location, insertion order preserved."""
    groups: Dict[str, List[AllocationRecord]] = defaultdict(list)
    for allocation in allocations:
        groups[allocation.target_location_id].append(allocation)
    return dict(groups)


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """numerator / denominator × scale, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator * scale
