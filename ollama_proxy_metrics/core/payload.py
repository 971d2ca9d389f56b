"""Best-effort extraction of request intent and token usage from JSON bodies.

Bodies are opaque to the proxy. The helpers here only peek at a handful of
fields and fall back to defaults on anything unexpected: empty input, invalid
JSON, a non-object document, or a field of the wrong type. Each field is
judged on its own, so a bad ``stream`` value does not lose a good ``model``.
"""
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

DEFAULT_MODEL = "unknown"
DEFAULT_STREAM = True


class _LenientModel(BaseModel):
    """Optional-fields document where a field that fails validation becomes None."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid(cls, value: Any, handler: Any) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return None


class RequestPayload(_LenientModel):
    """The slice of an Ollama request the proxy cares about."""

    model: Optional[StrictStr] = None
    stream: Optional[StrictBool] = None


class ResponseUsage(_LenientModel):
    """Token stats Ollama includes in complete (stream=false) responses."""

    prompt_eval_count: Optional[StrictInt] = None
    eval_count: Optional[StrictInt] = None


@dataclass(frozen=True)
class RequestIntent:
    """Labels derived from a request body."""

    model: str = DEFAULT_MODEL
    stream: bool = DEFAULT_STREAM


@dataclass(frozen=True)
class TokenCounts:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    @property
    def empty(self) -> bool:
        return self.prompt_tokens is None and self.completion_tokens is None


def sniff_intent(body: bytes) -> RequestIntent:
    """Extract ``model`` and ``stream`` from a raw request body.

    Never raises. Missing or unusable fields take the defaults
    (``model="unknown"``, ``stream=True``).
    """
    try:
        payload = RequestPayload.model_validate_json(body)
    except ValueError:
        return RequestIntent()

    return RequestIntent(
        model=payload.model or DEFAULT_MODEL,
        stream=payload.stream if payload.stream is not None else DEFAULT_STREAM,
    )


def extract_token_counts(body: bytes) -> TokenCounts:
    """Extract prompt/completion token counts from a buffered response body.

    Negative values are discarded along with non-integers, since counters
    only move forward.
    """
    try:
        usage = ResponseUsage.model_validate_json(body)
    except ValueError:
        return TokenCounts()

    return TokenCounts(
        prompt_tokens=_non_negative(usage.prompt_eval_count),
        completion_tokens=_non_negative(usage.eval_count),
    )


def _non_negative(value: Optional[int]) -> Optional[int]:
    if value is None or value < 0:
        return None
    return value
