"""Upstream HTTP client that replays inbound requests against Ollama."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import httpx

from ollama_proxy_metrics.core.errors import ErrorCode, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = b"application/json"

# Framing headers owned by the HTTP client for the outbound connection.
_TRANSPORT_HEADERS = {b"host", b"content-length", b"transfer-encoding"}

RawHeaders = List[Tuple[bytes, bytes]]


@dataclass(frozen=True)
class RequestContext:
    """Immutable snapshot of one inbound request."""

    method: str
    endpoint: str
    query: bytes
    headers: RawHeaders
    body: bytes
    started_at: float


class UpstreamForwarder:
    """Forwards requests to the upstream base URL.

    No timeout is applied: streamed generations can run for as long as the
    model keeps producing tokens. Callers cancel the open call instead.
    """

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Upstream base URL, e.g. http://127.0.0.1:11434
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        self.base_url = httpx.URL(base_url)

        # Pooled client; per-request headers are sent exactly as received,
        # so requests are built directly rather than through client defaults.
        self.client = httpx.AsyncClient(
            timeout=None,
            transport=transport,
            limits=httpx.Limits(max_connections=None, max_keepalive_connections=20),
        )

    def build_url(self, endpoint: str, query: bytes = b"") -> httpx.URL:
        """Join the base URL with the inbound path, keeping the raw query."""
        path = self.base_url.path.rstrip("/") + endpoint
        return self.base_url.copy_with(path=path, query=query or None)

    def build_headers(self, headers: RawHeaders) -> RawHeaders:
        """Copy inbound headers, defaulting Content-Type to JSON."""
        result = [
            (name, value) for name, value in headers
            if name.lower() not in _TRANSPORT_HEADERS
        ]
        if not any(name.lower() == b"content-type" for name, _ in result):
            result.append((b"content-type", DEFAULT_CONTENT_TYPE))
        return result

    async def open(self, ctx: RequestContext) -> httpx.Response:
        """
        Send the request upstream and return once response headers arrive.

        The body is left unread; the caller owns the returned response and
        must close it.

        Raises:
            UpstreamError: On connection or transport failure
        """
        request = httpx.Request(
            method=ctx.method,
            url=self.build_url(ctx.endpoint, ctx.query),
            headers=self.build_headers(ctx.headers),
            content=ctx.body,
        )
        try:
            return await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"upstream request failed: {type(e).__name__}: {e}",
                code=ErrorCode.NETWORK_ERROR,
                cause=e,
            ) from e

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
