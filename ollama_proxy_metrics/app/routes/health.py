"""Informational and monitoring endpoints.

This module provides:
- GET /metrics - Prometheus metrics
- ANY other path - Static description of the proxy

The index route matches every path, so this router is included last.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ollama_proxy_metrics.app.dependencies import AppState, get_app_state

router = APIRouter(tags=["Health"])

INDEX_TEXT = (
    "Ollama metrics proxy\n\n"
    "Use /api/* for Ollama endpoints and /metrics for Prometheus metrics.\n"
)


@router.get("/metrics")
async def metrics(state: AppState = Depends(get_app_state)) -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=state.metrics.render(), media_type=CONTENT_TYPE_LATEST)


# A response instance is itself an ASGI app, so the route accepts every method
router.add_route("/{path:path}", PlainTextResponse(INDEX_TEXT), include_in_schema=False)
