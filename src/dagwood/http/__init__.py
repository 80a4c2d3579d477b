"""
HTTP protocol pieces used by the host Application and server:
request parsing, the shared response object, and status codes.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import ServerResponse, UnitState, EmitInterceptor, format_http_date
from .status_codes import HTTPStatus, reason_phrase

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "ServerResponse",
    "UnitState",
    "EmitInterceptor",
    "format_http_date",
    "HTTPStatus",
    "reason_phrase",
]
