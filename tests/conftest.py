"""
Shared test fixtures.

The Supabase mock applies eq/neq/in_/order/limit/single filters to the
rows configured per table, so services can be tested against small
in-memory datasets.
"""

import os
import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

# Settings are loaded at import time and require Supabase credentials
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import pytest
from unittest.mock import patch
from typing import Generator


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: int = None):
        self.data = data if data is not None else []
        self.count = count


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable, filtering methods."""

    def __init__(self, data: list = None, count_requested: bool = False):
        self._data = list(data or [])
        self._count_requested = count_requested
        self._is_single = False
        self._limit = None

    def select(self, *args, **kwargs):
        if kwargs.get("count"):
            self._count_requested = True
        return self

    def eq(self, column, value):
        self._data = [row for row in self._data if row.get(column) == value]
        return self

    def neq(self, column, value):
        self._data = [row for row in self._data if row.get(column) != value]
        return self

    def in_(self, column, values):
        allowed = set(values)
        self._data = [row for row in self._data if row.get(column) in allowed]
        return self

    def single(self):
        self._is_single = True
        return self

    def order(self, column, desc: bool = False, **kwargs):
        present = [row for row in self._data if row.get(column) is not None]
        missing = [row for row in self._data if row.get(column) is None]
        present.sort(key=lambda row: row[column], reverse=desc)
        self._data = present + missing
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self) -> MockSupabaseResponse:
        rows = self._data if self._limit is None else self._data[:self._limit]
        count = len(self._data) if self._count_requested else None

        if self._is_single:
            return MockSupabaseResponse(data=rows[0] if rows else None, count=count)

        return MockSupabaseResponse(data=[dict(row) for row in rows], count=count)


class MockSupabaseTable:
    """Mock Supabase table backed by a list of rows."""

    def __init__(self, data: list = None):
        self._data = data or []

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._data).select(*args, **kwargs)


class MockSupabaseClient:
    """Mock Supabase client that records which tables were queried."""

    def __init__(self):
        self._tables = {}
        self.queried_tables = []

    def set_table_data(self, table_name: str, data: list):
        """Configure rows for a table."""
        self._tables[table_name] = list(data)

    def table(self, name: str) -> MockSupabaseTable:
        self.queried_tables.append(name)
        return MockSupabaseTable(self._tables.get(name, []))


class FailingSupabaseClient:
    """Client whose every query raises, for storage error propagation tests."""

    def __init__(self, error: Exception):
        self.error = error

    def table(self, name: str):
        raise self.error


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("locations", [
                LocationFactory.create(tenant_id="tenant-1")
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Any service constructed inside the test gets the mock from
    get_supabase_client().
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.allocation_query_service.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase


@pytest.fixture
def reset_service_singletons():
    """Drop cached service instances so they pick up the patched client."""
    import services.allocation_utilities_service as utilities_module
    import services.allocation_optimizer_service as optimizer_module

    utilities_module._allocation_utilities_service = None
    optimizer_module._allocation_optimizer_service = None
    yield
    utilities_module._allocation_utilities_service = None
    optimizer_module._allocation_optimizer_service = None


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db, reset_service_singletons):
    """
    Create FastAPI test client with mocked database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            mock_supabase.set_table_data("purchase_orders", [...])
            response = test_client_with_mock_db.get(
                "/api/allocation-utilities/purchase-orders/po-1/totals",
                headers={"X-Tenant-ID": "tenant-1"},
            )
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)
