"""
Health check routes for the gateway
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from gateway.services.table_store import TableStore
from gateway.utils.dependencies import table_store_dependency

router = APIRouter()


@router.get("/health")
async def health_check(store: TableStore = Depends(table_store_dependency)):
    """Health check endpoint for Kubernetes probes"""
    tables = store.current
    return {
        "service": "unified-gateway",
        "status": "healthy" if store.last_error is None else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
        "tables": tables.summary(),
        "last_reload_error": store.last_error,
    }
