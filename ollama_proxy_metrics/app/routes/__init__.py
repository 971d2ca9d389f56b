"""Routes Package.

- health: index page and Prometheus metrics
- proxy: /api/* passthrough to the upstream Ollama
"""
from ollama_proxy_metrics.app.routes import health, proxy

__all__ = ["health", "proxy"]
