"""Request orchestration for the proxy.

``ProxyService.handle`` walks one inbound request through its lifecycle:

    arrived -> body read -> intent extracted -> forwarding
        -> upstream error (502, counted)
        -> response received -> relaying (buffered | streaming) -> completed

Every request that gets past reading its body is counted exactly once in
``requests_total`` and ``request_duration_seconds``. A request whose body
cannot be read gets a 400 and no metrics at all, since it never acquired a
model or stream label. A client that leaves before the upstream answers
abandons the request; nothing is recorded for it either.
"""
import logging
import time
import uuid
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import Response
from starlette.requests import ClientDisconnect

from ollama_proxy_metrics.app.schemas import ErrorSource, error_response
from ollama_proxy_metrics.core.errors import ErrorCode, UpstreamError
from ollama_proxy_metrics.core.http_client import RequestContext, UpstreamForwarder
from ollama_proxy_metrics.core.logging import structured_logger
from ollama_proxy_metrics.core.payload import RequestIntent, sniff_intent
from ollama_proxy_metrics.core.relay import (
    BufferedRelay,
    ProxiedResponse,
    Relay,
    StreamingRelay,
    run_until_disconnect,
)
from ollama_proxy_metrics.metrics.prometheus import ProxyMetrics, RequestLabels

logger = logging.getLogger(__name__)

# Not sent anywhere: the client is gone. Used for the returned placeholder.
CLIENT_CLOSED_REQUEST = 499

ModelLabelHook = Callable[[str], str]


class ProxyService:
    """Forwards requests upstream and records their metrics."""

    def __init__(
        self,
        forwarder: UpstreamForwarder,
        metrics: ProxyMetrics,
        model_label: Optional[ModelLabelHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            forwarder: Upstream client
            metrics: Registry-bound series to record into
            model_label: Optional hook mapping client-supplied model names to
                label values (allow-list, normalization). Model names are used
                verbatim when unset, which leaves label cardinality up to clients.
            clock: Monotonic time source in seconds
        """
        self.forwarder = forwarder
        self.metrics = metrics
        self.model_label = model_label
        self.clock = clock

    def labels_for(self, ctx: RequestContext, intent: RequestIntent) -> RequestLabels:
        model = intent.model
        if self.model_label is not None:
            model = str(self.model_label(model))
        return RequestLabels(endpoint=ctx.endpoint, model=model, stream=intent.stream)

    @staticmethod
    def select_relay(intent: RequestIntent, metrics: ProxyMetrics, labels: RequestLabels) -> Relay:
        if intent.stream:
            return StreamingRelay(metrics, labels)
        return BufferedRelay(metrics, labels)

    async def handle(self, request: Request) -> Response:
        started_at = self.clock()
        request_id = f"req_{uuid.uuid4().hex[:16]}"

        try:
            body = await request.body()
        except ClientDisconnect:
            logger.warning(f"Failed to read request body for {request.method} {request.url.path}")
            return error_response(
                ErrorCode.BAD_REQUEST,
                "failed to read request body",
                status_code=400,
                error_type="client_error",
            )

        ctx = RequestContext(
            method=request.method,
            endpoint=request.scope["path"],
            query=request.scope.get("query_string", b""),
            headers=list(request.headers.raw),
            body=body,
            started_at=started_at,
        )
        intent = sniff_intent(body)
        labels = self.labels_for(ctx, intent)
        self.metrics.record_request_bytes(labels, len(body))

        try:
            received, upstream = await run_until_disconnect(
                request.receive, lambda: self.forwarder.open(ctx)
            )
        except UpstreamError as e:
            return self._upstream_failed(ctx, labels, request_id, e)

        if not received or upstream is None:
            logger.info(f"Client disconnected before upstream responded: {ctx.method} {ctx.endpoint}")
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        relay = self.select_relay(intent, self.metrics, labels)
        return ProxiedResponse(
            upstream,
            relay,
            on_complete=lambda response: self._completed(ctx, labels, request_id, response),
        )

    def _upstream_failed(
        self,
        ctx: RequestContext,
        labels: RequestLabels,
        request_id: str,
        error: UpstreamError,
    ) -> Response:
        status_code = 502
        duration_s = self.clock() - ctx.started_at
        logger.warning(f"upstream error: {error}")

        self.metrics.record_request(labels, status_code, duration_s)
        structured_logger.log_request(
            request_id=request_id,
            method=ctx.method,
            endpoint=ctx.endpoint,
            model=labels.model,
            stream=labels.stream,
            status=status_code,
            outcome="error",
            bytes_in=len(ctx.body),
            latency_ms=int(duration_s * 1000),
            error_code=error.code.value,
            level="WARNING",
        )
        return error_response(
            error.code,
            "upstream error",
            status_code=status_code,
            error_type="upstream_error",
            source=ErrorSource.UPSTREAM,
        )

    def _completed(
        self,
        ctx: RequestContext,
        labels: RequestLabels,
        request_id: str,
        response: ProxiedResponse,
    ) -> None:
        duration_s = self.clock() - ctx.started_at
        self.metrics.record_request(labels, response.status_code, duration_s)

        error_code = None
        if response.relay.interrupted:
            error_code = ErrorCode.UPSTREAM_STREAM_INTERRUPTED.value
        elif response.error is not None or not response.finished:
            error_code = ErrorCode.CLIENT_DISCONNECTED.value

        structured_logger.log_request(
            request_id=request_id,
            method=ctx.method,
            endpoint=ctx.endpoint,
            model=labels.model,
            stream=labels.stream,
            status=response.status_code,
            outcome="error" if error_code else "success",
            bytes_in=len(ctx.body),
            bytes_out=response.bytes_written,
            latency_ms=int(duration_s * 1000),
            error_code=error_code,
            level="WARNING" if error_code else "INFO",
        )
