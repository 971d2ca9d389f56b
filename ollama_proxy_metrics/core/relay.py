"""Response relay: copy an upstream response back to the client.

Two implementations share the ``Relay`` contract:

- ``BufferedRelay`` reads the whole upstream body first so token usage can be
  extracted, then writes it in one piece.
- ``StreamingRelay`` passes chunks through as they arrive and only counts
  them.

Both raise ``RelayInterrupted`` when the upstream body breaks off.

``ProxiedResponse`` is the ASGI response that drives a relay. It sends status
and headers as soon as the upstream answers, runs the relay while watching for
a client disconnect, and always closes the upstream response.
"""
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

import anyio
import httpx
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from ollama_proxy_metrics.core.errors import RelayInterrupted
from ollama_proxy_metrics.core.payload import extract_token_counts
from ollama_proxy_metrics.metrics.prometheus import ProxyMetrics, RequestLabels

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_until_disconnect(
    receive: Receive, func: Callable[[], Awaitable[T]]
) -> Tuple[bool, Optional[T]]:
    """Run ``func`` until it finishes or the client disconnects.

    Returns:
        Tuple of (finished, result). ``finished`` is False when the client
        went away first, in which case ``func`` was cancelled.
    """
    finished = False
    result: Optional[T] = None
    error: Optional[Exception] = None

    async with anyio.create_task_group() as task_group:

        async def run() -> None:
            nonlocal finished, result, error
            try:
                result = await func()
                finished = True
            except Exception as e:
                error = e
            task_group.cancel_scope.cancel()

        async def watch() -> None:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    break
            task_group.cancel_scope.cancel()

        task_group.start_soon(run)
        task_group.start_soon(watch)

    if error is not None:
        raise error
    return finished, result


class Relay(ABC):
    """Copies an upstream body to the client and reports bytes written.

    ``bytes_written`` is kept current while the copy runs so a cancelled
    relay still knows how much reached the client.
    """

    def __init__(self, metrics: ProxyMetrics, labels: RequestLabels):
        self.metrics = metrics
        self.labels = labels
        self.bytes_written = 0
        self.interrupted = False

    @abstractmethod
    async def relay(self, upstream: httpx.Response, send: Send) -> int:
        """Copy the upstream body to ``send``; return bytes written."""

    async def _write(self, send: Send, chunk: bytes, more_body: bool) -> None:
        await send({"type": "http.response.body", "body": chunk, "more_body": more_body})
        self.bytes_written += len(chunk)


class BufferedRelay(Relay):
    """Read everything, record size and token usage, then write."""

    async def relay(self, upstream: httpx.Response, send: Send) -> int:
        try:
            body = b"".join([chunk async for chunk in upstream.aiter_raw()])
        except httpx.HTTPError as e:
            self.interrupted = True
            raise RelayInterrupted(
                f"failed to read upstream response body: {type(e).__name__}: {e}"
            ) from e

        self.metrics.record_response_bytes(self.labels, len(body))

        counts = extract_token_counts(body)
        if not counts.empty:
            self.metrics.record_tokens(
                self.labels,
                prompt_tokens=counts.prompt_tokens,
                completion_tokens=counts.completion_tokens,
            )

        await self._write(send, body, more_body=False)
        return self.bytes_written


class StreamingRelay(Relay):
    """Pass chunks through untouched; count bytes on the way."""

    async def relay(self, upstream: httpx.Response, send: Send) -> int:
        try:
            async for chunk in upstream.aiter_raw():
                if chunk:
                    await self._write(send, chunk, more_body=True)
        except httpx.HTTPError as e:
            self.interrupted = True
            raise RelayInterrupted(
                f"upstream stream broke off: {type(e).__name__}: {e}"
            ) from e
        finally:
            # Runs on cancellation too; the count covers what the client got
            self.metrics.record_response_bytes(self.labels, self.bytes_written)

        await send({"type": "http.response.body", "body": b"", "more_body": False})
        return self.bytes_written


class ProxiedResponse(Response):
    """ASGI response relaying an open upstream response.

    ``on_complete`` is called once with this response after the relay ends,
    whether it finished, failed mid-way or lost its client. Errors other than
    an interrupted upstream or a failed client write still propagate to the
    server, after the request has been completed.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        relay: Relay,
        on_complete: Callable[["ProxiedResponse"], None],
    ):
        self.upstream = upstream
        self.relay = relay
        self.on_complete = on_complete
        self.status_code = upstream.status_code
        self.background = None
        # Upstream headers go out as-is, duplicates included; ASGI wants lowercase names
        self.raw_headers = [(name.lower(), value) for name, value in upstream.headers.raw]
        self.finished = False
        self.error: Optional[BaseException] = None

    @property
    def bytes_written(self) -> int:
        return self.relay.bytes_written

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            })
            self.finished, _ = await run_until_disconnect(
                receive, lambda: self.relay.relay(self.upstream, send)
            )
            if not self.finished:
                logger.warning(
                    f"Client disconnected during relay after {self.bytes_written} bytes"
                )
        except RelayInterrupted as e:
            # No final body frame: the server aborts the connection instead
            self.error = e
            logger.warning(f"Relay interrupted after {self.bytes_written} bytes: {e}")
        except OSError as e:
            # Client write failed; status is already on the wire
            self.error = e
            logger.warning(f"Writing response to client failed: {type(e).__name__}: {e}")
        finally:
            with anyio.CancelScope(shield=True):
                await self.upstream.aclose()
            self.on_complete(self)
