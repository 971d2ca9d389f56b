"""Shared application state and its FastAPI dependency."""
from dataclasses import dataclass

from fastapi import Request

from ollama_proxy_metrics.app.services import ProxyService
from ollama_proxy_metrics.config.schema import ProxyConfig
from ollama_proxy_metrics.core.http_client import UpstreamForwarder
from ollama_proxy_metrics.metrics.prometheus import ProxyMetrics


@dataclass
class AppState:
    """Application state container for all shared components.

    One instance per application, attached to ``app.state.proxy`` by
    ``create_app``. Tests build their own with an isolated registry and a
    mock upstream transport.
    """
    config: ProxyConfig
    metrics: ProxyMetrics
    forwarder: UpstreamForwarder
    service: ProxyService


def get_app_state(request: Request) -> AppState:
    """Get the application state of the app serving ``request``."""
    return request.app.state.proxy
