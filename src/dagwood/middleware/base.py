"""
=============================================================================
MIDDLEWARE SIGNATURES
=============================================================================

Every layer in an Application chain is a plain callable:

    def layer(request, response, next):
        ...            # inspect the request, set headers, ...
        next()         # continue the chain (or respond and don't)

``next()`` continues; ``next(err)`` hands an error to the application's
final handler, skipping the remaining layers. A layer that never calls
``next`` and never ends the response leaves the request hanging.

=============================================================================
"""

from typing import Any, Callable, Optional

from ..http.request import HTTPRequest
from ..http.response import ServerResponse


# Continuation handed to each layer. Accepts an optional error.
Next = Callable[..., Any]

# (request, response, next) -> anything
Handler = Callable[[HTTPRequest, ServerResponse, Next], Any]

RequestHandler = Handler
ResponseHandler = Handler


def pass_through(request: HTTPRequest, response: ServerResponse, next: Next) -> Any:
    """Request handler that continues the chain immediately."""
    return next()


def resolve_request_handler(handler: Optional[RequestHandler]) -> RequestHandler:
    """
    Pick the request handler a middleware unit will run.

    None resolves to ``pass_through``; anything else is used as given.
    """
    if handler is None:
        return pass_through
    return handler


def handler_name(handler: Callable) -> str:
    """Name used when logging a layer."""
    return getattr(handler, "name", None) or getattr(handler, "__name__", type(handler).__name__)
