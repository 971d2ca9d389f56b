"""Core proxy primitives: payload sniffing, upstream forwarding, response relay."""

from ollama_proxy_metrics.core.http_client import RequestContext, UpstreamForwarder
from ollama_proxy_metrics.core.payload import RequestIntent, TokenCounts, extract_token_counts, sniff_intent
from ollama_proxy_metrics.core.relay import BufferedRelay, ProxiedResponse, Relay, StreamingRelay

__all__ = [
    "BufferedRelay",
    "ProxiedResponse",
    "Relay",
    "RequestContext",
    "RequestIntent",
    "StreamingRelay",
    "TokenCounts",
    "UpstreamForwarder",
    "extract_token_counts",
    "sniff_intent",
]
