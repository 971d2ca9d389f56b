"""Response schemas for errors generated by the proxy itself.

Upstream responses are relayed byte-for-byte and never pass through these
models; they only shape the few replies the proxy synthesizes (400, 502).
"""
from enum import Enum
from typing import Literal, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ollama_proxy_metrics.core.errors import ErrorCode


class ErrorSource(str, Enum):
    """Error source types."""

    PROXY = "proxy"
    UPSTREAM = "upstream"


class ErrorDetail(BaseModel):
    """Error detail in response."""

    type: str = Field(..., description="Error type")
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    status_code: Optional[int] = Field(None, description="HTTP status code")
    source: Optional[str] = Field(
        None, description="Error source: 'proxy' or 'upstream'"
    )


class ErrorResponse(BaseModel):
    """Error response format."""

    success: Literal[False] = Field(False, description="Success flag")
    error: ErrorDetail = Field(..., description="Error details")


def error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    error_type: str,
    source: ErrorSource = ErrorSource.PROXY,
) -> JSONResponse:
    """Build a JSON error reply for a failure the proxy detected."""
    body = ErrorResponse(
        error=ErrorDetail(
            type=error_type,
            code=code.value,
            message=message,
            status_code=status_code,
            source=source.value,
        )
    )
    return JSONResponse(content=body.model_dump(), status_code=status_code)
