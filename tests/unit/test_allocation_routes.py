"""
API tests for the allocation routers.

Run: pytest tests/unit/test_allocation_routes.py -v
"""

import pytest
from unittest.mock import patch

from tests.conftest import FailingSupabaseClient
from tests.factories import (
    AllocationFactory,
    LocationFactory,
    build_order,
    load_tables,
)


TENANT_HEADERS = {"X-Tenant-ID": "tenant-1"}


@pytest.fixture
def order_dataset(mock_supabase):
    """po-1 with item-1: 100 ordered, 30 + 40 allocated and received."""
    load_tables(mock_supabase, **build_order(items=[("item-1", "prod-1", "Tomatoes", 100)]))
    mock_supabase.set_table_data("locations", [
        LocationFactory.create(id="loc-1", name="Downtown"),
        LocationFactory.create(id="loc-2", name="Uptown"),
    ])
    mock_supabase.set_table_data("allocations", [
        AllocationFactory.create(po_item_id="item-1", target_location_id="loc-1", quantity_allocated=30, quantity_received=30),
        AllocationFactory.create(po_item_id="item-1", target_location_id="loc-2", quantity_allocated=40, quantity_received=40),
    ])
    return mock_supabase


class TestAllocationUtilitiesRoutes:
    """Tests for /api/allocation-utilities"""

    def test_po_item_summary(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get(
            "/api/allocation-utilities/po-items/item-1/summary",
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total_allocated"] == 70
        assert body["unallocated_quantity"] == 30
        assert len(body["location_distribution"]) == 2

    def test_purchase_order_totals(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get(
            "/api/allocation-utilities/purchase-orders/po-1/totals",
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["allocation_efficiency"] == pytest.approx(70.0)

    def test_unallocated_and_recommendations(self, test_client_with_mock_db, order_dataset):
        unallocated = test_client_with_mock_db.get(
            "/api/allocation-utilities/purchase-orders/po-1/unallocated",
            headers=TENANT_HEADERS,
        )
        recommendations = test_client_with_mock_db.get(
            "/api/allocation-utilities/purchase-orders/po-1/recommendations",
            headers=TENANT_HEADERS,
        )

        assert unallocated.status_code == 200
        assert unallocated.json()[0]["unallocated_quantity"] == 30
        assert recommendations.status_code == 200
        assert {r["type"] for r in recommendations.json()} == {
            "EFFICIENCY_GAIN", "BALANCE_IMPROVEMENT"
        }

    def test_balance_and_location_efficiency(self, test_client_with_mock_db, order_dataset):
        balance = test_client_with_mock_db.get(
            "/api/allocation-utilities/po-items/item-1/balance",
            headers=TENANT_HEADERS,
        )
        efficiency = test_client_with_mock_db.get(
            "/api/allocation-utilities/locations/loc-1/efficiency",
            headers=TENANT_HEADERS,
        )

        assert balance.status_code == 200
        assert balance.json()["is_balanced"] is True
        assert efficiency.status_code == 200
        assert efficiency.json()["utilization_rate"] is None

    def test_missing_tenant_header_is_validation_error(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get(
            "/api/allocation-utilities/purchase-orders/po-1/totals"
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "TENANT_ID_REQUIRED"
        assert order_dataset.queried_tables == []

    def test_unknown_order_is_not_found(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get(
            "/api/allocation-utilities/purchase-orders/po-404/totals",
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PURCHASE_ORDER_NOT_FOUND"

    def test_other_tenant_location_is_not_found(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get(
            "/api/allocation-utilities/locations/loc-1/efficiency",
            headers={"X-Tenant-ID": "tenant-2"},
        )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Location not found"

    def test_storage_error_is_internal_error(self, reset_service_singletons):
        from fastapi.testclient import TestClient
        from main import app

        failing = FailingSupabaseClient(ConnectionError("connection reset"))
        with patch("services.allocation_query_service.get_supabase_client", return_value=failing):
            client = TestClient(app)
            response = client.get(
                "/api/allocation-utilities/purchase-orders/po-1/totals",
                headers=TENANT_HEADERS,
            )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"


class TestAllocationOptimizerRoutes:
    """Tests for /api/allocation-optimizer"""

    def test_smart_suggestions_default_strategy(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.post(
            "/api/allocation-optimizer/smart-suggestions",
            json={"po_id": "po-1"},
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        suggestions = response.json()
        assert len(suggestions) == 1
        assert suggestions[0]["unallocated_quantity"] == 30

    def test_smart_suggestions_rejects_empty_po_id(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.post(
            "/api/allocation-optimizer/smart-suggestions",
            json={"po_id": ""},
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 422

    def test_conflicts_and_rebalancing(self, test_client_with_mock_db, order_dataset):
        conflicts = test_client_with_mock_db.get(
            "/api/allocation-optimizer/conflicts",
            params={"po_id": "po-1"},
            headers=TENANT_HEADERS,
        )
        rebalancing = test_client_with_mock_db.get(
            "/api/allocation-optimizer/rebalancing-opportunities",
            headers=TENANT_HEADERS,
        )

        assert conflicts.status_code == 200
        assert conflicts.json() == []
        assert rebalancing.status_code == 200
        assert isinstance(rebalancing.json(), list)

    def test_demand_patterns_accepts_comma_separated_ids(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get(
            "/api/allocation-optimizer/demand-patterns",
            params={"location_ids": "loc-1, loc-2", "product_ids": "prod-1"},
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        assert sorted(p["location_id"] for p in response.json()) == ["loc-1", "loc-2"]

    def test_validate_feasibility_reports_issues(self, test_client_with_mock_db, order_dataset):
        payload = {
            "suggestions": [{
                "po_item_id": "item-1",
                "product_name": "Tomatoes",
                "total_quantity": 100,
                "current_allocations": [{
                    "location_id": "loc-1",
                    "location_name": "Downtown",
                    "current_quantity": 60,
                    "suggested_quantity": 60,
                    "reason": "Existing allocation",
                }],
                "unallocated_quantity": 40,
                "suggested_allocations": [{
                    "location_id": "loc-2",
                    "location_name": "Uptown",
                    "suggested_quantity": 50,
                    "confidence": 50,
                }],
            }]
        }

        response = test_client_with_mock_db.post(
            "/api/allocation-optimizer/validate-feasibility",
            json=payload,
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["feasible"] is False
        assert "suggested 110 but only 100 available" in body["issues"][0]

    def test_optimize_distribution(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.post(
            "/api/allocation-optimizer/optimize-distribution",
            json={"po_id": "po-1", "strategy": {"name": "Balanced Optimization"}},
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["summary"]["total_items_optimized"] == 1


class TestAppRoutes:
    """Tests for the application-level endpoints."""

    def test_health_reports_database(self, test_client_with_mock_db, order_dataset):
        response = test_client_with_mock_db.get("/health")

        assert response.status_code == 200
        assert response.json()["database"]["status"] == "healthy"
        assert response.json()["database"]["locations_count"] == 2

    def test_root_lists_endpoints(self, test_client_with_mock_db):
        response = test_client_with_mock_db.get("/")

        assert response.status_code == 200
        assert "allocation_optimizer" in response.json()["endpoints"]
