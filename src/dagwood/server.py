"""
=============================================================================
HTTP SERVER
=============================================================================

Serves an Application over raw TCP sockets.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         REQUEST FLOW                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   accept() ──► Connection ──► worker thread                         │
    │                                   │                                  │
    │                                   ├── read_request()                 │
    │                                   ├── RequestParser.parse()          │
    │                                   ├── app.handle(request, response)  │
    │                                   ├── response.wait()  ◄── blocks    │
    │                                   │       until the chain emits      │
    │                                   └── sendall(response.to_bytes())   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The chain is callback driven: a layer may finish the response later, from
another thread. The worker therefore waits on the response rather than on
the return value of app.handle(). By default it waits forever; set
ServerConfig.response_timeout to bound it.

Each connection gets a daemon worker thread; at most max_workers run at
once and further connections are answered with 503.

=============================================================================
"""

from typing import Optional
import logging
import signal
import socket
import threading

from .app import Application
from .config import ServerConfig
from .core.connection import Connection
from .http.request import HTTPParseError, RequestParser
from .http.response import ServerResponse
from .http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    Socket server hosting an Application.

    Usage:
        app = Application()
        app.use(middleware("a", a_setup, a_teardown))
        app.get("/", lambda req, res, next: res.end("Hello World!"))

        HTTPServer(app, ServerConfig(port=3000)).run()   # blocks
    """

    def __init__(self, app: Application, config: Optional[ServerConfig] = None):
        self.app = app
        self.config = config or ServerConfig()
        self.config.validate()

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._workers = threading.BoundedSemaphore(self.config.max_workers)

        self._socket: Optional[socket.socket] = None
        self._port: Optional[int] = None
        self._running = False
        self._ready = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """The bound port (differs from config.port when that is 0)."""
        return self._port if self._port is not None else self.config.port

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening."""
        return self._ready.wait(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Bind, listen and serve until shutdown() (or SIGINT/SIGTERM).

        Args:
            host: Override config host.
            port: Override config port.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._setup_logging()
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            raise

        self._socket.listen(self.config.backlog)
        self._port = self._socket.getsockname()[1]
        self._running = True
        self._setup_signals()
        self._ready.set()

        logger.info(
            f"Serving {len(self.app)} layer(s) on http://{self.config.host}:{self.port}"
        )

        try:
            self._accept_loop()
        finally:
            self._cleanup()

    def shutdown(self):
        """Stop accepting connections. run() returns within a second."""
        if self._running:
            logger.info("Shutting down server...")
        self._running = False

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # accept() wakes up every second to check the running flag
        sock.settimeout(1.0)
        return sock

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("dagwood").setLevel(level)

    def _setup_signals(self):
        # signal.signal() only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _cleanup(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

        if self._socket is not None:
            self._socket.close()
            self._socket = None

        self._running = False
        self._ready.clear()
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _accept_loop(self):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self._running:
                    break
                raise

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                max_request_size=self.config.max_request_size,
            )
            logger.debug(f"[{conn.id}] Accepted {client_address[0]}:{client_address[1]}")
            self._handle_connection(conn)

    def _handle_connection(self, conn: Connection):
        if not self._workers.acquire(blocking=False):
            logger.warning(f"[{conn.id}] All workers busy, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()
            return

        worker = threading.Thread(
            target=self._serve,
            args=(conn,),
            name=f"dagwood-{conn.id}",
            daemon=True,
        )
        worker.start()

    def _serve(self, conn: Connection):
        try:
            self._process_connection(conn)
        finally:
            self._workers.release()

    def _process_connection(self, conn: Connection):
        """
        Keep-alive loop for one connection: read, dispatch, wait, send.
        """
        with conn:
            while self._running:
                try:
                    raw_request = conn.read_request()
                    if raw_request is None:
                        break

                    request = self._parser.parse(raw_request, conn.address)
                    response = ServerResponse(version=request.version)

                    try:
                        self.app.handle(request, response)
                    except Exception as e:
                        logger.exception(f"[{conn.id}] Application error: {e}")
                        if not response.finished:
                            self._send_error(conn, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")
                        break

                    if not response.wait(self.config.response_timeout):
                        logger.warning(
                            f"[{conn.id}] No response for {request.method} {request.path} "
                            f"after {self.config.response_timeout}s, closing connection"
                        )
                        break

                    keep_alive = (
                        request.is_keep_alive
                        and (response.get_header("Connection") or "").lower() != "close"
                    )
                    response.set_header("Connection", "keep-alive" if keep_alive else "close")

                    payload = response.to_bytes(
                        self.config.server_name,
                        include_body=request.method != "HEAD",
                    )
                    if not conn.send_response(payload) or not keep_alive:
                        break

                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    break

                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break

                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    break

    def _send_error(self, conn: Connection, status: int, message: str):
        """Answer directly, outside the middleware chain."""
        response = ServerResponse().status(status)
        response.set_header("Connection", "close")
        response.json({"error": message})
        conn.send_response(response.to_bytes(self.config.server_name))
