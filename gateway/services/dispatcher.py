"""
Proxy Dispatcher
Serves mocks first, then forwards to the longest matching route
"""

import time
from typing import List, Optional, Tuple

import httpx
import structlog
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from gateway.config import settings
from gateway.services.mock_responder import MockRenderError
from gateway.services.route_table import join_url
from gateway.services.table_store import TableStore, get_table_store

logger = structlog.get_logger(__name__)

# RFC 9110 section 7.6.1
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Never copied from the client; httpx sets them for the backend request
REQUEST_ONLY_HEADERS = frozenset({"host", "content-length"})


class BackendUnreachableError(Exception):
    """The backend refused the connection or did not answer in time"""

    def __init__(self, message: str, status_code: int, backend: str):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.backend = backend


def _connection_tokens(raw_headers: List[Tuple[bytes, bytes]]) -> set:
    tokens = set()
    for key, value in raw_headers:
        if key.lower() == b"connection":
            tokens.update(t.strip().lower() for t in value.split(b",") if t.strip())
    return tokens


def filter_request_headers(raw_headers: List[Tuple[bytes, bytes]]) -> List[Tuple[bytes, bytes]]:
    """Drop host, content-length and hop-by-hop headers, keeping repeats and order"""
    named = _connection_tokens(raw_headers)
    return [
        (key, value) for key, value in raw_headers
        if key.lower().decode("latin-1") not in HOP_BY_HOP_HEADERS | REQUEST_ONLY_HEADERS
        and key.lower() not in named
    ]


def filter_response_headers(raw_headers: List[Tuple[bytes, bytes]]) -> List[Tuple[bytes, bytes]]:
    """Drop hop-by-hop headers from a backend response"""
    named = _connection_tokens(raw_headers)
    return [
        (key, value) for key, value in raw_headers
        if key.lower().decode("latin-1") not in HOP_BY_HOP_HEADERS
        and key.lower() not in named
    ]


def _forwarded_headers(request: Request) -> List[Tuple[bytes, bytes]]:
    client_ip = request.client.host if request.client else "unknown"
    existing = request.headers.get("x-forwarded-for")
    forwarded_for = f"{existing}, {client_ip}" if existing else client_ip
    headers = [(b"x-forwarded-for", forwarded_for.encode("latin-1"))]
    if "x-forwarded-host" not in request.headers and "host" in request.headers:
        headers.append((b"x-forwarded-host", request.headers["host"].encode("latin-1")))
    if "x-forwarded-proto" not in request.headers:
        headers.append((b"x-forwarded-proto", request.url.scheme.encode("latin-1")))
    return headers


def raw_request_path(request: Request) -> str:
    """The request path as the client sent it, percent-escapes intact"""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


async def _relay(upstream: httpx.Response):
    # Raw bytes keep the backend's content-encoding and content-length valid
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        logger.warning("Backend stream interrupted", url=str(upstream.request.url), error=repr(e))
        raise
    finally:
        await upstream.aclose()


def create_backend_client(
    timeout: float = None,
    connect_timeout: float = None,
    max_connections: int = None,
    max_keepalive_connections: int = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared client for backend calls; redirects are relayed, never followed"""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout or settings.backend_timeout,
            connect=connect_timeout or settings.backend_connect_timeout,
        ),
        limits=httpx.Limits(
            max_connections=max_connections or settings.max_connections,
            max_keepalive_connections=max_keepalive_connections or settings.max_keepalive_connections,
        ),
        follow_redirects=False,
        transport=transport,
    )


class ProxyDispatcher:
    """Resolves each request against a table snapshot and answers it"""

    def __init__(
        self,
        store: TableStore,
        client: httpx.AsyncClient,
        add_forwarded_headers: bool = True,
    ):
        self.store = store
        self.client = client
        self.add_forwarded_headers = add_forwarded_headers

    async def dispatch(self, request: Request) -> Response:
        tables = self.store.current
        method = request.method
        path = request.url.path

        try:
            mock = tables.mocks.resolve(method, path)
        except MockRenderError as e:
            logger.error("Mock render failed", method=method, path=path, error=str(e))
            return JSONResponse(status_code=500, content={"detail": "Mock response could not be rendered"})

        if mock.matched:
            logger.debug(
                "Mock served",
                method=method,
                path=path,
                mock=mock.entry.label,
                status_code=mock.status_code,
            )
            return Response(
                content=mock.body,
                status_code=mock.status_code,
                headers=mock.headers,
                media_type=mock.content_type,
            )

        # Routes see the undecoded path so %2F and %3F reach the backend unchanged
        raw_path = raw_request_path(request)
        query = request.url.query
        match = tables.routes.match(raw_path)
        if match is not None:
            url = match.target_url(query)
            backend = match.route.name or match.route.prefix
        elif tables.default_backend:
            url = join_url(tables.default_backend, raw_path, query)
            backend = "default"
        else:
            logger.debug("No route matched", method=method, path=path)
            return JSONResponse(status_code=404, content={"detail": f"No route for {path}"})

        try:
            return await self.forward(request, url, backend)
        except BackendUnreachableError as e:
            return JSONResponse(
                status_code=e.status_code,
                content={"detail": e.message, "backend": e.backend},
            )

    async def forward(self, request: Request, url: str, backend: str) -> Response:
        """
        Forward request to url and stream the backend response back

        Raises:
            BackendUnreachableError: connection failed (502) or timed out (504)
        """
        headers = filter_request_headers(request.headers.raw)
        if self.add_forwarded_headers:
            headers = [h for h in headers if h[0].lower() != b"x-forwarded-for"]
            headers.extend(_forwarded_headers(request))

        body = await request.body()
        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=headers,
            content=body,
        )

        started = time.perf_counter()
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            logger.warning(
                "Backend timed out",
                method=request.method,
                url=url,
                backend=backend,
                error=repr(e),
            )
            raise BackendUnreachableError(f"Backend '{backend}' timed out", 504, backend) from e
        except httpx.TransportError as e:
            logger.error(
                "Backend unreachable",
                method=request.method,
                url=url,
                backend=backend,
                error=repr(e),
            )
            raise BackendUnreachableError(f"Backend '{backend}' is unreachable", 502, backend) from e

        logger.debug(
            "Request forwarded",
            method=request.method,
            path=request.url.path,
            url=url,
            backend=backend,
            status_code=upstream.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )

        response = StreamingResponse(
            _relay(upstream),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = filter_response_headers(upstream.headers.raw)
        return response


_dispatcher: Optional[ProxyDispatcher] = None


def get_dispatcher() -> ProxyDispatcher:
    """Get the process-wide dispatcher, creating its backend client on first use"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ProxyDispatcher(
            get_table_store(),
            create_backend_client(),
            add_forwarded_headers=settings.add_forwarded_headers,
        )
    return _dispatcher


async def close_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.client.aclose()
        _dispatcher = None
