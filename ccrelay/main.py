"""Main application entry point"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ccrelay import __version__
from ccrelay.api.router import api_router, metrics_router
from ccrelay.core.config import load_config
from ccrelay.core.error_types import (
    ERROR_TYPE_API,
    ERROR_TYPE_INTERNAL,
    ERROR_TYPE_INVALID_REQUEST,
    ERROR_TYPE_NOT_FOUND,
)
from ccrelay.core.exceptions import ProxyError, UpstreamError, build_error_envelope
from ccrelay.core.logging import setup_logging, get_logger
from ccrelay.core.metrics import APP_INFO, UPSTREAM_ERRORS, error_type_label
from ccrelay.core.middleware import RequestMiddleware
from ccrelay.models.config import AppConfig

logger = get_logger()


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """Render any ProxyError as an error envelope"""
    if isinstance(exc, UpstreamError):
        UPSTREAM_ERRORS.labels(
            error_type=error_type_label(exc.error_type),
            status_code=exc.status_code,
        ).inc()
    logger.warning(
        f"{request.method} {request.url.path} failed: "
        f"{exc.status_code} {exc.error_type}: {exc.message}"
    )
    return JSONResponse(content=exc.to_envelope(), status_code=exc.status_code)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (unknown path, wrong method) as error envelopes"""
    if exc.status_code == 404:
        error_type, message = ERROR_TYPE_NOT_FOUND, "Not found"
    elif exc.status_code == 405:
        error_type = ERROR_TYPE_INVALID_REQUEST
        message = f"Method {request.method} not allowed for {request.url.path}"
    else:
        error_type, message = ERROR_TYPE_API, str(exc.detail)

    return JSONResponse(
        content=build_error_envelope(message, error_type),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render anything not handled elsewhere as an internal_error envelope"""
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        content=build_error_envelope("Internal server error", ERROR_TYPE_INTERNAL),
        status_code=500,
    )


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure FastAPI application"""
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize logging and report the effective configuration"""
        setup_logging(log_level=config.effective_log_level, log_file=config.log_file)

        APP_INFO.info({
            'version': __version__,
            'title': 'ccrelay'
        })

        logger.info(f"Starting ccrelay {__version__}")
        logger.info(f"Default upstream: {config.default_base_url}")
        logger.info(f"Require explicit base URL: {config.require_explicit_base_url}")
        logger.info(f"CORS: {'Enabled' if config.cors_enabled else 'Disabled'}")
        if config.enable_metrics:
            logger.info("Metrics endpoint: /metrics")
        yield

    # Only the relay route is served; interactive docs stay off
    app = FastAPI(
        title="ccrelay",
        description="Messages API relay with per-request upstream credentials",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config

    app.add_middleware(RequestMiddleware, cors_enabled=config.cors_enabled)

    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router)
    if config.enable_metrics:
        app.include_router(metrics_router)

    return app
