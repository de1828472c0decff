"""
FastAPI Dependencies
Table store, dispatcher and admin authentication dependencies
"""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from gateway.config import settings
from gateway.services.dispatcher import ProxyDispatcher, get_dispatcher
from gateway.services.table_store import TableStore, get_table_store

ADMIN_TOKEN_HEADER = "X-Gateway-Admin-Token"


def table_store_dependency() -> TableStore:
    """Active table store"""
    return get_table_store()


def dispatcher_dependency() -> ProxyDispatcher:
    """Shared proxy dispatcher"""
    return get_dispatcher()


async def require_admin(
    x_gateway_admin_token: Optional[str] = Header(None, alias=ADMIN_TOKEN_HEADER)
) -> None:
    """
    Guard admin endpoints when an admin token is configured

    Raises:
        HTTPException: If the token is missing or wrong
    """
    expected = settings.admin_token
    if not expected:
        return
    if not x_gateway_admin_token or not secrets.compare_digest(x_gateway_admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
        )
