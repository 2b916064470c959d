"""
Database connection management.

Provides the Supabase client singleton and a logging context manager
for read operations. Query failures are logged and re-raised untouched.
"""

from supabase import create_client, Client
from functools import lru_cache
from typing import Optional
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)


class DatabaseConnectionError(Exception):
    """Failed to connect to database."""
    pass


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created.
    Call get_supabase_client.cache_clear() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        DatabaseConnectionError: If the client cannot be created
    """
    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        client = create_client(
            settings.supabase_url,
            settings.supabase_key
        )

        logger.info(
            "supabase_connected",
            status="success"
        )

        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise DatabaseConnectionError(f"Failed to connect to Supabase: {e}") from e


class DatabaseSession:
    """
    Context manager for database operations with logging.

    Never suppresses exceptions: storage errors reach the caller as raised
    by the client.

    Usage:
        with DatabaseSession("get_po_item", client=self.db) as db:
            result = db.table("po_items").select("*").eq("id", item_id).execute()
    """

    def __init__(self, operation_name: str, client: Optional[Client] = None, **context):
        self.operation_name = operation_name
        self.client = client
        self.context = context

    def __enter__(self) -> Client:
        logger.debug(
            "db_operation_start",
            operation=self.operation_name,
            **self.context
        )
        if self.client is None:
            self.client = get_supabase_client()
        return self.client

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "db_operation_failed",
                operation=self.operation_name,
                error=str(exc_val),
                error_type=exc_type.__name__,
                **self.context
            )
        else:
            logger.debug(
                "db_operation_complete",
                operation=self.operation_name
            )
        return False  # Don't suppress exceptions


# ===================
# HELPER FUNCTIONS
# ===================

def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    try:
        client = get_supabase_client()

        locations = client.table("locations").select("id", count="exact").execute()
        allocations = client.table("allocations").select("id", count="exact").execute()

        return {
            "status": "healthy",
            "locations_count": locations.count,
            "allocations_count": allocations.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
