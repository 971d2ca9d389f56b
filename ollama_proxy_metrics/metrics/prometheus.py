"""Prometheus metrics exported by the proxy."""
from typing import NamedTuple, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, generate_latest


class RequestLabels(NamedTuple):
    """Label tuple shared by every series recorded for one request."""

    endpoint: str
    model: str
    stream: bool

    @property
    def stream_label(self) -> str:
        return "true" if self.stream else "false"


class ProxyMetrics:
    """The six series the proxy records, bound to one registry.

    Every series is registered on construction so that a scrape returns the
    full set before the first request is served. Pass a fresh
    ``CollectorRegistry`` to get an isolated instance (tests do this).
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY

        # Unified request counter, one increment per finished request
        self.requests_total = Counter(
            "ollama_proxy_requests_total",
            "Total number of requests handled by the Ollama proxy",
            ["endpoint", "model", "status", "stream"],
            registry=self.registry,
        )

        # Arrival to full response completion, default client buckets
        self.request_duration_seconds = Histogram(
            "ollama_proxy_request_duration_seconds",
            "Duration of Ollama requests handled by the proxy",
            ["endpoint", "model", "stream"],
            registry=self.registry,
        )

        self.request_bytes_in_total = Counter(
            "ollama_proxy_request_bytes_in_total",
            "Total number of bytes received in request bodies",
            ["endpoint", "model", "stream"],
            registry=self.registry,
        )

        self.response_bytes_out_total = Counter(
            "ollama_proxy_response_bytes_out_total",
            "Total number of bytes sent in response bodies",
            ["endpoint", "model", "stream"],
            registry=self.registry,
        )

        # Token usage, only reported by upstream on non-streamed responses
        self.prompt_tokens_total = Counter(
            "ollama_proxy_prompt_tokens_total",
            "Total number of prompt tokens (from Ollama eval stats, stream=false only)",
            ["endpoint", "model"],
            registry=self.registry,
        )

        self.completion_tokens_total = Counter(
            "ollama_proxy_completion_tokens_total",
            "Total number of completion tokens (from Ollama eval stats, stream=false only)",
            ["endpoint", "model"],
            registry=self.registry,
        )

    def record_request_bytes(self, labels: RequestLabels, size: int) -> None:
        self.request_bytes_in_total.labels(
            endpoint=labels.endpoint, model=labels.model, stream=labels.stream_label
        ).inc(size)

    def record_response_bytes(self, labels: RequestLabels, size: int) -> None:
        self.response_bytes_out_total.labels(
            endpoint=labels.endpoint, model=labels.model, stream=labels.stream_label
        ).inc(size)

    def record_tokens(
        self,
        labels: RequestLabels,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
    ) -> None:
        """Add token usage; a missing count leaves its counter untouched."""
        if prompt_tokens is not None:
            self.prompt_tokens_total.labels(
                endpoint=labels.endpoint, model=labels.model
            ).inc(prompt_tokens)
        if completion_tokens is not None:
            self.completion_tokens_total.labels(
                endpoint=labels.endpoint, model=labels.model
            ).inc(completion_tokens)

    def record_request(self, labels: RequestLabels, status: int, duration_s: float) -> None:
        """Count a finished request and observe its duration."""
        self.requests_total.labels(
            endpoint=labels.endpoint,
            model=labels.model,
            status=str(status),
            stream=labels.stream_label,
        ).inc()
        self.request_duration_seconds.labels(
            endpoint=labels.endpoint, model=labels.model, stream=labels.stream_label
        ).observe(duration_s)

    def render(self) -> bytes:
        """Serialize the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
