"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Settings for the HTTPServer that hosts an Application.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION SOURCES                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Code              ServerConfig(port=3000)                       │
    │   2. Environment       DAGWOOD_PORT=3000  ->  ServerConfig.from_env()│
    │   3. Defaults          the field values below                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

validate() runs when the server is constructed, so bad values fail at
startup rather than on the first request.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP server.

    Development:
        ServerConfig(host="127.0.0.1", port=8080, log_level="DEBUG")

    Production:
        ServerConfig(host="0.0.0.0", port=80, max_workers=32)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────
    host: str = "127.0.0.1"
    port: int = 8080
    """0 lets the OS pick a free port (see HTTPServer.port after startup)."""

    backlog: int = 128
    buffer_size: int = 8192

    timeout: Optional[float] = 30.0
    """Socket read timeout in seconds. None blocks forever."""

    max_request_size: int = 10 * 1024 * 1024

    # ─────────────────────────────────────────────────────────────────────
    # CONCURRENCY
    # ─────────────────────────────────────────────────────────────────────
    max_workers: int = 16
    """Connections served at once; extra connections get a 503."""

    response_timeout: Optional[float] = None
    """
    How long a worker waits for the chain to emit a response.

    None (the default) waits forever: a response handler that never calls
    its continuation keeps the request open. When set, the worker gives up
    after this many seconds, logs a warning and closes the connection
    without sending anything.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING & IDENTITY
    # ─────────────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    server_name: str = "dagwood/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

            DAGWOOD_HOST              (default: 127.0.0.1)
            DAGWOOD_PORT              (default: 8080)
            DAGWOOD_WORKERS           (default: 16)
            DAGWOOD_TIMEOUT           (default: 30)
            DAGWOOD_RESPONSE_TIMEOUT  (default: unset, wait forever)
            DAGWOOD_LOG_LEVEL         (default: INFO)
        """
        response_timeout = os.getenv("DAGWOOD_RESPONSE_TIMEOUT")
        return cls(
            host=os.getenv("DAGWOOD_HOST", "127.0.0.1"),
            port=int(os.getenv("DAGWOOD_PORT", "8080")),
            max_workers=int(os.getenv("DAGWOOD_WORKERS", "16")),
            timeout=float(os.getenv("DAGWOOD_TIMEOUT", "30")),
            response_timeout=float(response_timeout) if response_timeout else None,
            log_level=os.getenv("DAGWOOD_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid setting.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.response_timeout is not None and self.response_timeout <= 0:
            raise ValueError("response_timeout must be > 0")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log_level: {self.log_level}")
