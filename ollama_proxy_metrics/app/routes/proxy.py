"""Proxy endpoint for the Ollama API.

This module provides:
- ANY /api/{path} - Forwarded verbatim to <upstream>/api/{path}
"""
from fastapi import APIRouter, Request
from starlette.types import Receive, Scope, Send

from ollama_proxy_metrics.app.dependencies import get_app_state

router = APIRouter(tags=["Proxy"])


class ProxyEndpoint:
    """Forward the request upstream and relay the response.

    An ASGI endpoint rather than a path operation: Starlette routes to it
    for every HTTP method, including ones no method list names.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive, send)
        response = await get_app_state(request).service.handle(request)
        await response(scope, receive, send)


router.add_route("/api/{path:path}", ProxyEndpoint(), include_in_schema=False)
