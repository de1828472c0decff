"""
Unified Gateway - Main Application
Capability-routing reverse proxy with a mockable endpoint registry
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gateway.config import settings
from gateway.routes import admin, health, proxy
from gateway.services.dispatcher import close_dispatcher, get_dispatcher
from gateway.services.reload import ConfigWatcher, install_sighup_handler, remove_sighup_handler
from gateway.services.table_store import TableStore, set_table_store
from gateway.utils.logger import setup_logging

setup_logging(
    log_level=settings.log_level,
    log_format=settings.log_format,
    config_path=settings.logging_config_path,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events"""
    logger.info("Starting Unified Gateway", admin_prefix=settings.admin_prefix)

    # An unreadable or invalid config file at startup aborts the process
    if settings.config_path:
        store = set_table_store(TableStore.from_file(settings.config_path))
        logger.info("Initial tables loaded", **store.current.summary())
    else:
        store = set_table_store(TableStore())
        logger.warning("No GATEWAY_CONFIG_PATH set, starting with empty tables")

    get_dispatcher()

    sighup_installed = False
    if settings.reload_on_sighup and settings.config_path:
        sighup_installed = install_sighup_handler(store)

    watcher = None
    if settings.config_watch_interval > 0 and settings.config_path:
        watcher = ConfigWatcher(store, settings.config_watch_interval)
        watcher.start()

    yield

    if watcher is not None:
        await watcher.stop()
    if sighup_installed:
        remove_sighup_handler()
    await close_dispatcher()
    logger.info("Unified Gateway shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Routes requests by path prefix to backend services, serving configured mocks first",
    version="1.0.0",
    debug=settings.debug,
    docs_url=f"{settings.admin_prefix}/docs",
    redoc_url=None,
    openapi_url=f"{settings.admin_prefix}/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its outcome"""
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        client_ip=request.client.host if request.client else "unknown",
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        method=request.method,
        url=str(request.url),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred",
        },
    )


# Admin routes are registered first so they win over the catch-all proxy
app.include_router(health.router, prefix=settings.admin_prefix, tags=["Health"])
app.include_router(admin.router, prefix=settings.admin_prefix, tags=["Admin"])
app.router.routes.append(proxy.route)


def run():
    """Console entry point"""
    import uvicorn

    uvicorn.run(
        "gateway.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
