"""
app/services package marker.
"""

from app.services.ingestion_service import (
    TabularStore,
    get_dashboard_store,
    get_investigation_store,
)
from app.services.query_dispatcher import QueryDispatcher, QueryResult

__all__ = [
    "QueryDispatcher",
    "QueryResult",
    "TabularStore",
    "get_dashboard_store",
    "get_investigation_store",
]
