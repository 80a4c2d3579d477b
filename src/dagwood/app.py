"""
=============================================================================
APPLICATION
=============================================================================

A Connect-style middleware chain. Layers are plain callables with the
signature ``(request, response, next)`` and run in the order they were
registered:

    app = Application()
    app.use(middleware("a", a_setup, a_teardown))      # every path
    app.use("/api", api_auth)                          # mounted on /api
    app.get("/", lambda req, res, next: res.end("Hello World!"))

=============================================================================
DISPATCH
=============================================================================

    handle(request, response)
        │
        └──► next()
               │
               ├── find the next layer that matches the request
               ├── call layer(request, response, next)
               │       └── the layer calls next() to continue ...
               │
               └── no layers left ──► final handler
                                         ├── err     ──► 500
                                         └── no err  ──► 404 "Cannot GET /x"

``next(err)`` skips every remaining layer and goes straight to the final
handler. An exception raised by a layer is caught and treated the same way.
The chain itself never times out; a layer that neither responds nor calls
``next`` leaves the request pending.

=============================================================================
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union
import logging

from .http.request import HTTPRequest
from .http.response import ServerResponse
from .http.status_codes import HTTPStatus
from .middleware.base import Handler, handler_name


logger = logging.getLogger(__name__)

# (request, response, err) -> None
FinalHandler = Callable[[HTTPRequest, ServerResponse, Optional[BaseException]], Any]


@dataclass
class Layer:
    """
    One entry of the chain.

    A layer registered with ``use()`` matches any method on its path prefix;
    a route registered with ``route()``/``get()``/... matches one method on
    one exact path.
    """

    handler: Handler
    path: str = "/"
    method: Optional[str] = None
    exact: bool = False

    @property
    def name(self) -> str:
        return handler_name(self.handler)

    def matches(self, request: HTTPRequest) -> bool:
        if self.method is not None:
            allowed = {self.method, "HEAD"} if self.method == "GET" else {self.method}
            if request.method not in allowed:
                return False

        path = request.path
        if self.exact:
            return _strip_slash(path) == _strip_slash(self.path)

        if self.path == "/":
            return True
        prefix = _strip_slash(self.path)
        return path == prefix or path.startswith(prefix + "/")


def _strip_slash(path: str) -> str:
    return path.rstrip("/") or "/"


class Application:
    """
    Ordered chain of ``(request, response, next)`` layers.

    Usage:
        app = Application()
        app.use(access_log())

        @app.get("/")
        def index(request, response, next):
            response.end("Hello World!")

        server = HTTPServer(app)
        server.run()
    """

    def __init__(self):
        self._stack: List[Layer] = []

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, path_or_handler: Union[str, Handler], handler: Optional[Handler] = None) -> "Application":
        """
        Register a layer, optionally mounted on a path prefix.

            app.use(layer)
            app.use("/admin", layer)

        Returns:
            Self for method chaining.
        """
        if isinstance(path_or_handler, str):
            if handler is None:
                raise TypeError("use(path, handler) requires a handler")
            path = path_or_handler
        else:
            path, handler = "/", path_or_handler

        if not callable(handler):
            raise TypeError(f"middleware must be callable, got {type(handler).__name__}")

        self._stack.append(Layer(handler=handler, path=path))
        logger.debug(f"use {path} -> {handler_name(handler)}")
        return self

    def route(self, path: str, handler: Optional[Handler] = None, method: str = "GET"):
        """
        Register a terminal handler for one method on one path.

        Works directly or as a decorator:

            app.route("/", index, method="GET")

            @app.route("/items", method="POST")
            def create(request, response, next): ...
        """
        method = method.upper()

        def register(func: Handler) -> Handler:
            self._stack.append(Layer(handler=func, path=path, method=method, exact=True))
            logger.debug(f"route {method} {path} -> {handler_name(func)}")
            return func

        if handler is not None:
            register(handler)
            return self
        return register

    def get(self, path: str, handler: Optional[Handler] = None):
        return self.route(path, handler, method="GET")

    def post(self, path: str, handler: Optional[Handler] = None):
        return self.route(path, handler, method="POST")

    def put(self, path: str, handler: Optional[Handler] = None):
        return self.route(path, handler, method="PUT")

    def delete(self, path: str, handler: Optional[Handler] = None):
        return self.route(path, handler, method="DELETE")

    def __len__(self) -> int:
        return len(self._stack)

    def __iter__(self):
        return iter(self._stack)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle(
        self,
        request: HTTPRequest,
        response: ServerResponse,
        out: Optional[FinalHandler] = None,
    ) -> Any:
        """
        Run the chain for one request.

        Args:
            request: The parsed request.
            response: A fresh response for this request.
            out: Final handler to use instead of the default 404/500 one.

        Returns:
            Whatever the first layer returns.
        """
        done = out or self._final_handler
        index = 0

        def next(err: Optional[BaseException] = None) -> Any:
            nonlocal index

            while index < len(self._stack):
                layer = self._stack[index]
                index += 1

                if err is not None or not layer.matches(request):
                    continue
                return self._call(layer, request, response, next)

            return done(request, response, err)

        return next()

    __call__ = handle

    def _call(self, layer: Layer, request: HTTPRequest, response: ServerResponse, next) -> Any:
        try:
            return layer.handler(request, response, next)
        except Exception as e:
            logger.debug(f"{layer.name} raised {type(e).__name__}: {e}")
            return next(e)

    def _final_handler(
        self,
        request: HTTPRequest,
        response: ServerResponse,
        err: Optional[BaseException] = None,
    ) -> None:
        if err is not None:
            logger.error(
                f"Unhandled error for {request.method} {request.path}: "
                f"{type(err).__name__}: {err}",
                exc_info=(type(err), err, err.__traceback__),
            )
            if response.finished:
                return
            response.status_code = HTTPStatus.INTERNAL_SERVER_ERROR
            response.set_header("Content-Type", "text/plain; charset=utf-8")
            response.end(HTTPStatus.INTERNAL_SERVER_ERROR.phrase)
            return

        if response.finished:
            return
        logger.debug(f"No layer answered {request.method} {request.path}")
        response.status_code = HTTPStatus.NOT_FOUND
        response.set_header("Content-Type", "text/plain; charset=utf-8")
        response.end(f"Cannot {request.method} {request.path}")
