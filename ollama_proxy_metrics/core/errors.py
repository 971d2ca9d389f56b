"""Error codes and exceptions for the Ollama metrics proxy."""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Normalized error codes.

    Used in proxy-generated error bodies and in request logs.
    """
    # Client side
    BAD_REQUEST = "BAD_REQUEST"
    CLIENT_DISCONNECTED = "CLIENT_DISCONNECTED"

    # Upstream side
    NETWORK_ERROR = "NETWORK_ERROR"  # Unreachable upstream / transport failure
    UPSTREAM_STREAM_INTERRUPTED = "UPSTREAM_STREAM_INTERRUPTED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ConfigValidationError(Exception):
    """Raised when startup configuration is invalid."""
    pass


class UpstreamError(Exception):
    """Raised when the upstream request cannot be completed.

    Wraps the underlying transport error so callers do not depend on httpx.
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.NETWORK_ERROR,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.cause = cause


class RelayInterrupted(Exception):
    """Raised when the upstream body breaks off after the status was sent.

    The client response is left incomplete rather than ended cleanly, so a
    declared ``Content-Length`` is never contradicted by a short final frame.
    """
    pass
