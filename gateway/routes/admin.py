"""
Admin API Routes
Inspect and reload the gateway's route and mock tables
"""

import os
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from gateway.config import settings
from gateway.models.gateway_config import InvalidConfigurationError, ReloadRequest
from gateway.services.route_table import join_url
from gateway.services.table_store import GatewayTables, TableStore
from gateway.utils.dependencies import require_admin, table_store_dependency

router = APIRouter(dependencies=[Depends(require_admin)])
logger = structlog.get_logger(__name__)


def _rejected(error: InvalidConfigurationError, store: TableStore) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": error.message,
            "errors": error.errors,
            "active_version": store.current.version,
        },
    )


def _loaded(tables: GatewayTables) -> Dict[str, Any]:
    return {"success": True, **tables.summary()}


def _same_file(path: str, other: Optional[str]) -> bool:
    return other is not None and os.path.realpath(path) == os.path.realpath(other)


@router.get("/tables")
async def get_tables(store: TableStore = Depends(table_store_dependency)):
    """
    Describe the active tables

    Lists routes and mocks in declaration order along with the table version.
    """
    data = store.current.describe()
    data["config_path"] = store.config_path
    data["last_reload_error"] = store.last_error
    return data


@router.put("/tables")
async def replace_tables(
    config: Dict[str, Any] = Body(...),
    store: TableStore = Depends(table_store_dependency),
):
    """
    Replace the tables with the given configuration

    The load is all-or-nothing: on any validation error the active tables stay in place.
    """
    try:
        logger.info("Table replacement requested via admin API", routes=len(config.get("routes") or []))
        tables = await store.load_mapping(config, source="api")
    except InvalidConfigurationError as e:
        return _rejected(e, store)
    return _loaded(tables)


@router.post("/reload")
async def reload_tables(
    reload_request: Optional[ReloadRequest] = None,
    store: TableStore = Depends(table_store_dependency),
):
    """
    Reload the tables from a configuration file

    Uses the file from the request body, or the last loaded file when omitted.
    Switching to a different file is only allowed when an admin token is
    configured, since the admin API otherwise answers anyone.
    """
    path = reload_request.path if reload_request else None
    if path and not settings.admin_token and not _same_file(path, store.config_path):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Reloading from another file requires GATEWAY_ADMIN_TOKEN to be set",
        )
    logger.info("Reload requested via admin API", path=path or store.config_path)
    try:
        tables = await store.load_file(path)
    except InvalidConfigurationError as e:
        return _rejected(e, store)
    return _loaded(tables)


@router.get("/resolve")
async def resolve_path(
    path: str = Query(..., description="Request path to resolve"),
    method: str = Query("GET", description="Request method"),
    store: TableStore = Depends(table_store_dependency),
):
    """
    Explain how a request would be handled, without dispatching it

    The path is taken as it would appear on the wire; percent-escapes are
    forwarded as given.
    """
    if not path.startswith("/"):
        raise HTTPException(status_code=422, detail="Path must start with '/'")

    tables = store.current
    result: Dict[str, Any] = {"path": path, "method": method.upper(), "version": tables.version}

    found = tables.mocks.find(method, path)
    if found is not None:
        entry, captures = found
        result.update(kind="mock", mock=entry.to_dict(), captures=captures)
        return result

    match = tables.routes.match(path)
    if match is not None:
        result.update(kind="route", route=match.route.to_dict(), target_url=match.target_url())
        return result

    if tables.default_backend:
        result.update(kind="default", target_url=join_url(tables.default_backend, path))
        return result

    result["kind"] = "none"
    return result
