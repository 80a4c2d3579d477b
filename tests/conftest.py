"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Callable, Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dagwood import middleware, BidirectionalMiddleware
from dagwood.app import Application
from dagwood.config import ServerConfig
from dagwood.server import HTTPServer


@pytest.fixture
def trace() -> List[str]:
    """Execution trace shared by the handlers of one test."""
    return []


@pytest.fixture
def traced_unit(trace: List[str]) -> Callable[[str], BidirectionalMiddleware]:
    """
    Factory for units whose request leg records "<name>.setup" and whose
    response leg records "<name>.teardown", both continuing immediately.
    """
    def make(name: str) -> BidirectionalMiddleware:
        def setup(request, response, next):
            trace.append(f"{name}.setup")
            next()

        def teardown(request, response, next):
            trace.append(f"{name}.teardown")
            next()

        return middleware(name, setup, teardown)

    return make


@pytest.fixture
def hello_app(traced_unit) -> Application:
    """Units a and b in front of a handler that ends with "Hello World!"."""
    app = Application()
    app.use(traced_unit("a"))
    app.use(traced_unit("b"))
    app.use("/", lambda request, response, next: response.end("Hello World!"))
    return app


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
        + body
    )


class LiveServer:
    """Runs an HTTPServer in a background thread on a free port."""

    def __init__(self, app: Application, **config):
        self.server = HTTPServer(app, ServerConfig(
            host="127.0.0.1",
            port=0,
            max_workers=4,
            log_level="WARNING",
            **config,
        ))
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.port

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def request(self, raw: bytes, timeout: float = 5.0) -> bytes:
        """Send raw request bytes and read until the server closes."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=timeout) as sock:
            sock.sendall(raw)
            chunks = []
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)


@pytest.fixture
def live_server() -> Generator[Callable[..., LiveServer], None, None]:
    """Start LiveServers on demand; all are stopped at teardown."""
    started: List[LiveServer] = []

    def start(app: Application, **config) -> LiveServer:
        live = LiveServer(app, **config)
        live.start()
        started.append(live)
        return live

    yield start

    for live in started:
        live.stop()
