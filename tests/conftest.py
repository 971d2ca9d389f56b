"""Pytest configuration and fixtures."""
from typing import AsyncIterator, Iterable, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from ollama_proxy_metrics.app.main import create_app
from ollama_proxy_metrics.config.schema import ProxyConfig
from ollama_proxy_metrics.core.http_client import UpstreamForwarder
from ollama_proxy_metrics.metrics.prometheus import ProxyMetrics

BASE_URL = "http://ollama.test:11434"


class ChunkStream(httpx.AsyncByteStream):
    """Upstream body delivered in fixed chunks, optionally failing at the end."""

    def __init__(self, chunks: Iterable[bytes], error: Optional[Exception] = None):
        self.chunks = list(chunks)
        self.error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def registry():
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return ProxyMetrics(registry)


@pytest.fixture
def read_metric(registry):
    """Read one sample value (None when the series was never touched)."""
    def _read(name, **labels):
        return registry.get_sample_value(name, labels)
    return _read


@pytest.fixture
def make_app(metrics):
    """Build an app whose upstream is served by ``handler``."""
    def _make(handler, model_label=None, base_url=BASE_URL):
        forwarder = UpstreamForwarder(base_url, transport=httpx.MockTransport(handler))
        return create_app(
            ProxyConfig(upstream=base_url),
            metrics=metrics,
            forwarder=forwarder,
            model_label=model_label,
        )
    return _make


@pytest.fixture
def make_client(make_app):
    def _make(handler, **kwargs):
        return TestClient(make_app(handler, **kwargs))
    return _make
