"""Pydantic schema for proxy configuration validation."""
from typing import Tuple

import httpx
from pydantic import BaseModel, Field, field_validator

DEFAULT_LISTEN = ":8080"
DEFAULT_UPSTREAM = "http://127.0.0.1:11434"
DEFAULT_LOG_LEVEL = "INFO"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def parse_listen_address(listen: str) -> Tuple[str, int]:
    """Split a ``[host]:port`` listen address.

    An empty host binds every interface, so ``:8080`` becomes
    ``("0.0.0.0", 8080)``. IPv6 hosts use brackets: ``[::1]:8080``.
    """
    host, sep, port = listen.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {listen!r} must be in [host]:port form")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"invalid port in listen address {listen!r}") from None
    if not 0 < port_num < 65536:
        raise ValueError(f"port out of range in listen address {listen!r}")
    return host or "0.0.0.0", port_num


class ProxyConfig(BaseModel):
    """Root configuration model."""

    listen: str = Field(default=DEFAULT_LISTEN, description="Listen address for the proxy (e.g. :8080)")
    upstream: str = Field(default=DEFAULT_UPSTREAM, description="Ollama upstream base URL")
    log_level: str = Field(default=DEFAULT_LOG_LEVEL, description="Logging level name")

    @field_validator("listen")
    @classmethod
    def validate_listen(cls, v: str) -> str:
        parse_listen_address(v)
        return v

    @field_validator("upstream")
    @classmethod
    def validate_upstream(cls, v: str) -> str:
        """Require an absolute http(s) URL with a host."""
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid upstream URL {v!r}: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"invalid upstream URL {v!r}: expected http(s)://host[:port][/path]")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return level

    @property
    def bind(self) -> Tuple[str, int]:
        """(host, port) pair for the server."""
        return parse_listen_address(self.listen)
