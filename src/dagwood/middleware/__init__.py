"""
=============================================================================
MIDDLEWARE
=============================================================================

Layers for an Application chain. Each layer is ``(request, response, next)``.

BidirectionalMiddleware / middleware():
    A unit with a request handler and an optional response handler. The
    response handlers of chained units run in reverse registration order,
    right before the response is emitted.

access_log():
    Access logging built on a bidirectional unit.

=============================================================================
"""

from .base import Next, Handler, RequestHandler, ResponseHandler, pass_through
from .bidirectional import BidirectionalMiddleware, middleware
from .access_log import access_log, RequestLog

__all__ = [
    "Next",
    "Handler",
    "RequestHandler",
    "ResponseHandler",
    "pass_through",
    "BidirectionalMiddleware",
    "middleware",
    "access_log",
    "RequestLog",
]
