"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps an accepted client socket with request framing and response writes.

Reading one request:

    1. recv() into a buffer until the headers end (\r\n\r\n)
    2. take Content-Length from the raw headers
    3. recv() until the body is complete
    4. hand back exactly one request; keep any surplus bytes for the next
       request on the same keep-alive connection

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional
import logging
import socket
import uuid

from ..http.request import HTTPParseError


logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """
    A client connection.

    Usage:
        with Connection(socket=client_socket, address=addr) as conn:
            raw = conn.read_request()
            if raw is not None:
                conn.send_response(response_bytes)
    """

    socket: socket.socket
    address: tuple[str, int]
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    requests_handled: int = 0

    _buffer: bytes = field(default=b"", repr=False)
    _closed: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request.

        Returns:
            The request bytes, or None if the client closed the connection
            (or went idle between keep-alive requests).

        Raises:
            TimeoutError: If the first request does not arrive in time.
            HTTPParseError: If the request exceeds max_request_size (413).
        """
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                self._check_size()

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break  # closed mid-body; the parser reports it
                self._buffer += chunk
                self._check_size()

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]
            self.requests_handled += 1
            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if not self._closed:
                self.socket.settimeout(self.timeout)

    def _check_size(self):
        if len(self._buffer) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(self._buffer)} bytes",
                status_code=413,
            )

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""

    def _parse_content_length(self, headers: bytes) -> int:
        # Scanned before full parsing; the parser validates it properly.
        header_str = headers.decode("utf-8", errors="replace").lower()
        for line in header_str.split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return int(line.split(":", 1)[1].strip())
                except ValueError:
                    return 0
        return 0

    def send_response(self, data: bytes) -> bool:
        """
        Write response bytes with sendall().

        Returns:
            True on success, False if the client went away.
        """
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def close(self):
        """Half-close, then release the socket. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # already disconnected
        self.socket.close()
        logger.debug(f"[{self.id}] Closed after {self.requests_handled} request(s)")

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
