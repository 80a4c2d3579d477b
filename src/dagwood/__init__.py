"""
=============================================================================
DAGWOOD - Bidirectional middleware for Connect-style chains
=============================================================================

A middleware unit with a handler for the request on the way in and a
handler for the response on the way out. Response handlers run in reverse
registration order, right before the response is emitted:

    from dagwood import middleware
    from dagwood.app import Application

    app = Application()
    app.use(middleware("a", a_setup, a_teardown))
    app.use(middleware("b", b_setup, b_teardown))
    app.get("/", lambda req, res, next: res.end("Hello World!"))

    # a_setup, b_setup, b_teardown, a_teardown, then "Hello World!" is sent

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    dagwood/
    ├── __init__.py          # This file - package exports
    ├── middleware/
    │   ├── base.py          # Handler signatures, pass-through default
    │   ├── bidirectional.py # The bidirectional unit
    │   └── access_log.py    # Access logging built on it
    ├── http/
    │   ├── request.py       # HTTPRequest + parser
    │   ├── response.py      # ServerResponse with emit interceptors
    │   └── status_codes.py  # HTTPStatus
    ├── app.py               # Application: (req, res, next) chain
    ├── server.py            # HTTPServer: sockets + worker threads
    ├── config.py            # ServerConfig
    ├── core/connection.py   # Client connection framing
    └── testing.py           # In-process TestClient

=============================================================================
"""

__version__ = "1.0.0"

from .middleware.bidirectional import BidirectionalMiddleware, middleware

__all__ = ["middleware", "BidirectionalMiddleware", "__version__"]
