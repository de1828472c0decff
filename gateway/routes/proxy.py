"""
Proxy Routes
Catch-all route handing every non-admin request to the dispatcher
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.routing import Route

from gateway.config import settings
from gateway.services.dispatcher import ProxyDispatcher
from gateway.utils.dependencies import dispatcher_dependency

PROXY_PATH = "/{full_path:path}"


def _is_admin_path(path: str) -> bool:
    prefix = settings.admin_prefix
    return path == prefix or path.startswith(prefix + "/")


class ProxyEndpoint:
    """
    ASGI endpoint for the catch-all route

    FastAPI routes only answer a fixed list of methods. Registered as a plain
    Starlette route, this endpoint receives every method, including extension
    methods such as PROPFIND or TRACE.
    """

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive)
        if _is_admin_path(request.url.path):
            # Unknown admin paths and methods are never proxied
            response = JSONResponse(status_code=404, content={"detail": "Not Found"})
            await response(scope, receive, send)
            return
        # Honour app.dependency_overrides like a FastAPI route would
        provider = request.app.dependency_overrides.get(dispatcher_dependency, dispatcher_dependency)
        dispatcher: ProxyDispatcher = provider()
        response = await dispatcher.dispatch(request)
        await response(scope, receive, send)


route = Route(PROXY_PATH, ProxyEndpoint(), include_in_schema=False)
