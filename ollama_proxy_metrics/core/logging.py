"""Structured logging for proxied requests."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOG_FORMAT = "%(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at startup."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


class StructuredLogger:
    """Structured JSON logger, one line per proxied request."""

    def __init__(self, name: str = "ollama_proxy_metrics.requests"):
        self.logger = logging.getLogger(name)

    def log_request(
        self,
        request_id: str,
        method: str,
        endpoint: str,
        model: str,
        stream: bool,
        status: Optional[int],
        outcome: str = "success",  # "success" or "error"
        bytes_in: int = 0,
        bytes_out: int = 0,
        latency_ms: int = 0,
        error_code: Optional[str] = None,
        level: str = "INFO",
    ):
        """Log a request summary as structured JSON.

        Args:
            request_id: Log correlation id (not sent on the wire)
            method: Inbound HTTP method
            endpoint: Inbound path, e.g. /api/generate
            model: Model label value
            stream: Relay mode used
            status: Status sent to the client, if any
            outcome: "success" or "error"
            bytes_in: Request body size
            bytes_out: Bytes relayed to the client
            latency_ms: Arrival to completion in milliseconds
            error_code: Error code if outcome is "error"
            level: Log level (INFO, WARNING, ERROR)
        """
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "request_id": request_id,
            "method": method,
            "endpoint": endpoint,
            "model": model,
            "stream": stream,
            "status": status,
            "outcome": outcome,
            "bytes_in": bytes_in,
            "bytes_out": bytes_out,
            "latency_ms": latency_ms,
        }

        if outcome == "error" and error_code:
            log_entry["error_code"] = error_code

        log_message = json.dumps(log_entry, ensure_ascii=False)

        if level == "ERROR":
            self.logger.error(log_message)
        elif level == "WARNING":
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)


# Global structured logger instance
structured_logger = StructuredLogger()
