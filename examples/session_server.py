"""
=============================================================================
EXAMPLE: BIDIRECTIONAL MIDDLEWARE
=============================================================================

Two units wrap a Hello World handler. Each has a request leg ("setup") and
a response leg ("teardown"); the response legs run in reverse order just
before the response goes out:

    request ──► a.setup ──► b.setup ──► handler ── response.end()
                                                        │
    response ◄── a.teardown ◄── b.teardown ◄────────────┘

Run it:
    python examples/session_server.py
    curl -i http://localhost:8080/

The server log shows:
    a.setup
    b.setup
    b.teardown
    a.teardown

=============================================================================
"""

import logging
import sys
from pathlib import Path

# Import dagwood from the source tree without installing it
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dagwood import middleware
from dagwood.app import Application
from dagwood.config import ServerConfig
from dagwood.middleware import access_log
from dagwood.server import HTTPServer


logger = logging.getLogger("session_server")


def traced(name: str):
    def setup(request, response, next):
        logger.info(f"{name}.setup")
        next()

    def teardown(request, response, next):
        logger.info(f"{name}.teardown")
        next()

    return middleware(name, setup, teardown)


def open_session(request, response, next):
    request.context["session"] = {"visits": int(request.get_header("x-visits", "0")) + 1}
    next()


def save_session(request, response, next):
    # Still before emission, so the header goes out with the response
    response.set_header("X-Visits", str(request.context["session"]["visits"]))
    next()


def create_app() -> Application:
    app = Application()
    app.use(access_log())
    app.use(traced("a"))
    app.use(traced("b"))
    app.use(middleware("session", open_session, save_session))

    @app.get("/")
    def index(request, response, next):
        response.end("Hello World!")

    return app


def main():
    config = ServerConfig.from_env()
    HTTPServer(create_app(), config).run()


if __name__ == "__main__":
    main()
