"""Ollama metrics proxy FastAPI application.

This is the main application module that:
- Builds the FastAPI application around injected metrics and upstream client
- Registers the exception handler and route handlers
- Manages application lifespan (shutdown closes the upstream client)
- Provides the command-line entry point
"""
import logging
import sys
import traceback
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ollama_proxy_metrics import __version__
from ollama_proxy_metrics.app.dependencies import AppState
from ollama_proxy_metrics.app.schemas import ErrorDetail, ErrorResponse
from ollama_proxy_metrics.app.services import ModelLabelHook, ProxyService
from ollama_proxy_metrics.config.loader import load_config
from ollama_proxy_metrics.config.schema import ProxyConfig
from ollama_proxy_metrics.core.errors import ConfigValidationError, ErrorCode
from ollama_proxy_metrics.core.http_client import UpstreamForwarder
from ollama_proxy_metrics.core.logging import configure_logging
from ollama_proxy_metrics.metrics.prometheus import ProxyMetrics

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager: closes the upstream client on shutdown."""
    state: AppState = app.state.proxy
    logger.info(f"Starting Ollama proxy on {state.config.listen}, upstream {state.config.upstream}")

    yield

    logger.info("Shutting down Ollama proxy...")
    await state.forwarder.close()


def create_app(
    config: Optional[ProxyConfig] = None,
    metrics: Optional[ProxyMetrics] = None,
    forwarder: Optional[UpstreamForwarder] = None,
    model_label: Optional[ModelLabelHook] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Resolved configuration (defaults when omitted)
        metrics: Metric series; bound to the default Prometheus registry when omitted
        forwarder: Upstream client; built from ``config.upstream`` when omitted
        model_label: Optional model label hook, see ``ProxyService``

    Returns:
        Configured FastAPI application instance.
    """
    config = config or ProxyConfig()
    metrics = metrics or ProxyMetrics()
    forwarder = forwarder or UpstreamForwarder(config.upstream)

    app = FastAPI(
        title="Ollama metrics proxy",
        version=__version__,
        description=(
            "Transparent reverse proxy for the Ollama API that exports "
            "request, latency, byte and token metrics to Prometheus."
        ),
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.proxy = AppState(
        config=config,
        metrics=metrics,
        forwarder=forwarder,
        service=ProxyService(forwarder, metrics, model_label=model_label),
    )

    # Register exception handlers
    _register_exception_handlers(app)

    # Register routes
    _register_routes(app)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        error_details = traceback.format_exc()
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {str(exc)}\n{error_details}",
        )
        body = ErrorResponse(
            error=ErrorDetail(
                type="internal_error",
                code=ErrorCode.INTERNAL_ERROR.value,
                message=f"Internal server error: {str(exc)}",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                source="proxy",
            )
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(),
        )


def _register_routes(app: FastAPI) -> None:
    """Register all route handlers."""
    from ollama_proxy_metrics.app.routes import health, proxy

    app.include_router(proxy.router)
    # Last: its index route catches every unmatched path
    app.include_router(health.router)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point.

    Returns a non-zero exit code on invalid configuration; a listener that
    cannot bind makes uvicorn exit non-zero itself.
    """
    try:
        config = load_config(argv)
    except ConfigValidationError as e:
        configure_logging()
        logger.critical(f"Configuration validation failed: {e}")
        return 2

    configure_logging(config.log_level)
    host, port = config.bind

    app = create_app(config)
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
