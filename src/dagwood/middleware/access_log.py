"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

Request logging built on a bidirectional unit. The request phase stamps a
request id and a start time; the response phase runs just before the
response is emitted, so it can still add headers and it knows the final
status:

    ┌──────────────┐                                  ┌──────────────┐
    │ request leg  │  request.context["access"] = {   │ response leg │
    │              │      request_id, started }       │              │
    └──────┬───────┘                                  └──────▲───────┘
           │                                                 │
           ▼                                                 │
        ... rest of the chain ... handler calls response.end()

Output goes to the ``dagwood.access`` logger, as one Apache-style line or
one JSON object per request.

=============================================================================
"""

from dataclasses import dataclass
from typing import Any
import json
import logging
import time
import uuid

from ..http.request import HTTPRequest
from ..http.response import ServerResponse
from .base import Next
from .bidirectional import BidirectionalMiddleware


logger = logging.getLogger("dagwood.access")


@dataclass
class RequestLog:
    """One access log entry."""

    request_id: str
    method: str
    path: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "status_code": self.status_code,
            "content_length": self.content_length,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        """Apache combined-ish: ip - - [time] "GET /path" 200 12 0.31ms"""
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


def access_log(
    name: str = "access",
    log_format: str = "text",
    request_id_header: str = "X-Request-ID",
    timing_header: str = "X-Response-Time",
    log_level: int = logging.INFO,
) -> BidirectionalMiddleware:
    """
    Build an access-logging unit.

    Args:
        name: Unit name; also the ``request.context`` key used for state.
        log_format: "text" or "json".
        request_id_header: Header read from the request (to keep an upstream
                           id) and set on the response.
        timing_header: Response header carrying the duration in ms.
        log_level: Level for successful requests. Error statuses log at
                   WARNING or above.

    Raises:
        ValueError: On an unknown ``log_format``.
    """
    if log_format not in ("text", "json"):
        raise ValueError(f"log_format must be 'text' or 'json', got {log_format!r}")

    def on_request(request: HTTPRequest, response: ServerResponse, next: Next) -> Any:
        request.context[name] = {
            "request_id": request.get_header(request_id_header) or uuid.uuid4().hex[:8],
            "started": time.perf_counter(),
        }
        return next()

    def on_response(request: HTTPRequest, response: ServerResponse, next: Next) -> Any:
        entry = request.context[name]
        duration_ms = (time.perf_counter() - entry["started"]) * 1000

        response.set_header(request_id_header, entry["request_id"])
        response.set_header(timing_header, f"{duration_ms:.2f}ms")

        log_entry = RequestLog(
            request_id=entry["request_id"],
            method=request.method,
            path=request.path,
            client_ip=request.client_address[0],
            user_agent=request.user_agent or "-",
            status_code=int(response.status_code),
            content_length=response.content_length,
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        level = log_level
        if log_entry.status_code >= 400:
            level = max(log_level, logging.WARNING)

        if log_format == "json":
            logger.log(level, json.dumps(log_entry.to_dict()))
        else:
            logger.log(level, log_entry.to_text())

        return next()

    return BidirectionalMiddleware(name, on_request, on_response)
