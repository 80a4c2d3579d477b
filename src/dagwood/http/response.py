"""
=============================================================================
SERVER RESPONSE
=============================================================================

A mutable response object shared by every layer of an Application chain,
in the style of Connect/Express: handlers set a status and headers, then
call ``end()`` (or ``send()``) to emit it.

=============================================================================
EMIT INTERCEPTORS
=============================================================================

``end()`` is the terminal emit operation. Before the response is actually
finished, ``end()`` dispatches through an ordered chain of pre-emit
interceptors. The most recently registered interceptor runs first, and
each one receives a continuation that advances to the next-older one:

    add_emit_interceptor(1, a)      # registered first  -> outermost
    add_emit_interceptor(2, b)      # registered second -> innermost

    response.end("Hello")
        │
        ├──► b(response, proceed_b)
        │        └── proceed_b() ──► a(response, proceed_a)
        │                                 └── proceed_a() ──► _finish("Hello")
        ▼
    finished

An interceptor that never calls its continuation suspends the response
forever. Nothing here imposes a timeout; ``wait(timeout)`` lets the caller
decide how long to block.

=============================================================================
UNIT STATE ARENA
=============================================================================

Middleware that intercepts emission needs a little per-request state. The
response owns it: ``unit_state(handle)`` returns the record for an integer
handle, creating it on first use. Records die with the response.

=============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import json
import logging
import threading

from .status_codes import HTTPStatus, reason_phrase


logger = logging.getLogger(__name__)


# An interceptor receives the response and a continuation. Calling the
# continuation forwards the pending emit to the next-older interceptor
# (or to the real emission once none are left).
Continuation = Callable[..., Any]
EmitInterceptor = Callable[["ServerResponse", Continuation], Any]


@dataclass
class UnitState:
    """Per-request record kept for one middleware unit."""

    is_wrapped: bool = False
    response_handler_invoked: bool = False


class ServerResponse:
    """
    Response object passed through the middleware chain.

    Usage:
        def hello(request, response, next):
            response.status_code = 200
            response.set_header("Content-Type", "text/plain")
            response.end("Hello World!")
    """

    def __init__(self, version: str = "HTTP/1.1"):
        self.version = version
        self.status_code: int = HTTPStatus.OK

        # lowercase name -> (original name, value)
        self._headers: Dict[str, Tuple[str, str]] = {}
        self._chunks: List[bytes] = []
        self._pending: Optional[bytes] = None

        self._interceptors: List[Tuple[int, EmitInterceptor]] = []
        self._unit_states: Dict[int, UnitState] = {}

        self._finished = threading.Event()

    # =========================================================================
    # STATUS & HEADERS
    # =========================================================================

    def status(self, status_code: int) -> "ServerResponse":
        """Set the status code. Returns self for chaining."""
        self.status_code = status_code
        return self

    @property
    def status_line(self) -> str:
        """e.g. "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status_code)} {reason_phrase(self.status_code)}"

    @property
    def headers(self) -> Dict[str, str]:
        """A copy of the headers with their original casing."""
        return {name: value for name, value in self._headers.values()}

    def set_header(self, name: str, value: Any) -> "ServerResponse":
        self._headers[name.lower()] = (name, str(value))
        return self

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else default

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    # =========================================================================
    # BODY
    # =========================================================================

    def write(self, chunk: Union[str, bytes], encoding: str = "utf-8") -> bool:
        """
        Buffer a body chunk.

        Raises:
            RuntimeError: If the response has already been emitted.
        """
        if self.finished:
            raise RuntimeError("write after end")
        self._chunks.append(_to_bytes(chunk, encoding))
        return True

    @property
    def body(self) -> bytes:
        """Body buffered so far (the complete body once finished)."""
        return b"".join(self._chunks)

    @property
    def pending_chunk(self) -> Optional[bytes]:
        """
        Chunk handed to the in-flight ``end()`` call, if emission is
        currently held up by an interceptor.
        """
        return self._pending

    @property
    def content_length(self) -> int:
        """Size of the body as it will be emitted, pending chunk included."""
        return len(self.body) + len(self._pending or b"")

    # =========================================================================
    # EMISSION
    # =========================================================================

    def add_emit_interceptor(self, handle: int, interceptor: EmitInterceptor) -> bool:
        """
        Register an interceptor under ``handle``.

        Returns:
            True if it was added, False if ``handle`` already had one.
        """
        if self.has_emit_interceptor(handle):
            return False
        self._interceptors.append((handle, interceptor))
        return True

    def has_emit_interceptor(self, handle: int) -> bool:
        return any(registered == handle for registered, _ in self._interceptors)

    @property
    def emit_interceptors(self) -> Tuple[EmitInterceptor, ...]:
        """Registered interceptors, oldest first."""
        return tuple(interceptor for _, interceptor in self._interceptors)

    def unit_state(self, handle: int) -> UnitState:
        """The state record for ``handle``, created on first access."""
        state = self._unit_states.get(handle)
        if state is None:
            state = self._unit_states[handle] = UnitState()
        return state

    def end(self, chunk: Union[str, bytes, None] = None, encoding: str = "utf-8") -> Any:
        """
        Emit the response.

        Dispatches through the emit interceptors, newest first. The
        response is finished only when the last continuation runs; until
        then ``finished`` stays False.

        Returns:
            Whatever the first interceptor returns, or self when there are
            no interceptors.
        """
        if chunk is not None and not self.finished:
            self._pending = _to_bytes(chunk, encoding)
        return self._dispatch(len(self._interceptors) - 1, chunk, encoding)

    def _dispatch(self, index: int, chunk, encoding: str) -> Any:
        if index < 0:
            return self._finish(chunk, encoding)

        _, interceptor = self._interceptors[index]

        def proceed(*_ignored):
            # Arguments are ignored; the emit arguments captured above are used.
            return self._dispatch(index - 1, chunk, encoding)

        return interceptor(self, proceed)

    def _finish(self, chunk, encoding: str) -> "ServerResponse":
        """The real emission. Calls after the first one are ignored."""
        if self.finished:
            logger.debug("end() called on a finished response; ignoring")
            return self

        if chunk is not None:
            self._chunks.append(_to_bytes(chunk, encoding))
        self._pending = None
        self._finished.set()
        return self

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the response is finished.

        Args:
            timeout: Seconds to wait; None waits forever.

        Returns:
            True if finished, False on timeout.
        """
        return self._finished.wait(timeout)

    # =========================================================================
    # EXPRESS-STYLE HELPERS
    # =========================================================================

    def send(self, body: Union[str, bytes, dict, list, None] = None) -> Any:
        """
        Send a body, filling in Content-Type when missing.

            str         -> text/html; charset=utf-8
            bytes       -> application/octet-stream
            dict/list   -> application/json; charset=utf-8

        Raises:
            TypeError: For any other body type.
        """
        if isinstance(body, (dict, list)):
            return self.json(body)

        if isinstance(body, str):
            content_type = "text/html; charset=utf-8"
        elif body is None or isinstance(body, (bytes, bytearray)):
            content_type = "application/octet-stream"
        else:
            raise TypeError(f"cannot send a {type(body).__name__} body")

        if body is not None and not self.has_header("Content-Type"):
            self.set_header("Content-Type", content_type)
        return self.end(body)

    def json(self, data: Any) -> Any:
        if not self.has_header("Content-Type"):
            self.set_header("Content-Type", "application/json; charset=utf-8")
        return self.end(json.dumps(data))

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_bytes(self, server_name: str = "dagwood/1.0", include_body: bool = True) -> bytes:
        """
        Serialize the response for ``socket.sendall()``.

        Content-Length, Date and Server are added when missing.
        """
        body = self.body
        headers = self.headers

        if not self.has_header("Content-Length"):
            headers["Content-Length"] = str(len(body))
        if not self.has_header("Date"):
            headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if not self.has_header("Server"):
            headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        head = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return head + body if include_body else head

    def __repr__(self) -> str:
        return (
            f"ServerResponse(status_code={int(self.status_code)}, "
            f"finished={self.finished}, interceptors={len(self._interceptors)})"
        )


def _to_bytes(chunk: Union[str, bytes], encoding: str) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode(encoding)
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"body chunk must be str or bytes, got {type(chunk).__name__}")


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Thu, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
