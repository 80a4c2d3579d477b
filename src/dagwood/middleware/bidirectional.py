"""
=============================================================================
BIDIRECTIONAL MIDDLEWARE
=============================================================================

A middleware unit with one handler for the way in and one for the way out.

Connect-style chains only run forward: each layer sees the request, calls
``next()``, and is never told when the response leaves. A bidirectional
unit adds the missing half by intercepting the response's emit operation
(``response.end``) and running its response handler first:

    app.use(middleware("a", a_setup, a_teardown))
    app.use(middleware("b", b_setup, b_teardown))
    app.get("/", lambda req, res, next: res.end("Hello World!"))

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         EXECUTION ORDER                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   a_setup ──► b_setup ──► handler calls res.end("Hello World!")    │
    │                                       │                              │
    │                                       ▼                              │
    │                   b_teardown ──► a_teardown ──► emitted             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Request handlers run in registration order, response handlers in reverse:
last in, first out.

=============================================================================
HOW THE INTERCEPTION WORKS
=============================================================================

When a unit with a response handler processes a request, it registers an
emit interceptor on the response (once per response, keyed by the unit's
integer handle). Units register in chain order, and the response runs its
interceptors newest first, so the last unit to register is the first to
see the emit.

Each interceptor:

    1. looks up its state record on the response
    2. if its response handler already ran, forwards the emit untouched
    3. otherwise marks the handler as run and calls
           response_handler(request, response, continuation)
       where continuation() forwards the emit to the next-outer stage

A response handler that never calls its continuation stops the unwind and
nothing is sent. There is no timeout here.

=============================================================================
"""

from typing import Any, Optional
import itertools
import logging

from ..http.request import HTTPRequest
from ..http.response import ServerResponse, Continuation
from .base import Next, RequestHandler, ResponseHandler, resolve_request_handler


logger = logging.getLogger(__name__)

NAMESPACE_PREFIX = "_dagwood-"

# Process-wide source of unit handles. Handles key the per-response state.
_handles = itertools.count(1)


class BidirectionalMiddleware:
    """
    A middleware unit with request and response phases.

    Build one per concern at application setup and register it like any
    other layer; the same instance serves every request.

    Args:
        name: Non-empty name for this unit. Only used for the namespace and
              for logging; keep names unique within a chain.
        request_handler: ``(request, response, next)`` run on the way in.
                         None continues the chain immediately.
        response_handler: ``(request, response, next)`` run before the
                          response is emitted. None disables interception.

    Raises:
        ValueError: If ``name`` is empty or not a string.
    """

    __slots__ = ("_name", "_namespace", "_handle", "_on_request", "_on_response")

    def __init__(
        self,
        name: str,
        request_handler: Optional[RequestHandler] = None,
        response_handler: Optional[ResponseHandler] = None,
    ):
        if not isinstance(name, str) or not name:
            raise ValueError(f"middleware name must be a non-empty string, got {name!r}")

        self._name = name
        self._namespace = NAMESPACE_PREFIX + name
        self._handle = next(_handles)
        self._on_request = resolve_request_handler(request_handler)
        self._on_response = response_handler if callable(response_handler) else None

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        """Prefixed name, e.g. "_dagwood-auth"."""
        return self._namespace

    @property
    def handle(self) -> int:
        """Integer identity under which per-response state is kept."""
        return self._handle

    @property
    def has_response_handler(self) -> bool:
        return self._on_response is not None

    def __call__(self, request: HTTPRequest, response: ServerResponse, next: Next) -> Any:
        """
        Process a request.

        Installs the emit interceptor (if this unit has a response handler
        and has not installed one on this response yet), then runs the
        request handler with the chain's ``next`` unchanged.

        Returns:
            Whatever the request handler returns.
        """
        if self._on_response is not None:
            self._wrap(request, response)

        return self._on_request(request, response, next)

    def _wrap(self, request: HTTPRequest, response: ServerResponse) -> None:
        state = response.unit_state(self._handle)
        if state.is_wrapped:
            return

        handle = self._handle
        namespace = self._namespace
        on_response = self._on_response

        def intercept(res: ServerResponse, forward: Continuation) -> Any:
            unit_state = res.unit_state(handle)

            if unit_state.response_handler_invoked:
                return forward()

            unit_state.response_handler_invoked = True
            logger.debug(f"{namespace}: running response handler")
            return on_response(request, res, forward)

        response.add_emit_interceptor(handle, intercept)
        state.is_wrapped = True
        logger.debug(f"{namespace}: emit interceptor installed")

    def __repr__(self) -> str:
        return (
            f"BidirectionalMiddleware(name={self._name!r}, handle={self._handle}, "
            f"response_handler={self.has_response_handler})"
        )


def middleware(
    name: str,
    request_handler: Optional[RequestHandler] = None,
    response_handler: Optional[ResponseHandler] = None,
) -> BidirectionalMiddleware:
    """
    Create a bidirectional middleware unit.

    Example:
        def open_session(request, response, next):
            request.context["session"] = sessions.load(request)
            next()

        def save_session(request, response, next):
            sessions.save(request.context["session"])
            next()

        app.use(middleware("session", open_session, save_session))
    """
    return BidirectionalMiddleware(name, request_handler, response_handler)
