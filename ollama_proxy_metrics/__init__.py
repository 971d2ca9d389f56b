"""Ollama metrics proxy - transparent Ollama reverse proxy with Prometheus metrics."""

__version__ = "0.1.0"
