"""
=============================================================================
RELAY CONFIGURATION
=============================================================================

Centralized configuration for the relay server and client.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m tcprelay serve --port 3000                      │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── RELAY_PORT=3000 python -m tcprelay serve                  │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import os
import logging
from dataclasses import dataclass


DEFAULT_PORT = 51717

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class RelayConfig:
    """
    Configuration for the relay.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size

    EVENT LOOP
    - wait_timeout, max_events

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to (server) or connect to (client).
    "0.0.0.0" binds all interfaces; the client maps it to loopback.
    """

    port: int = DEFAULT_PORT
    """
    The TCP port. 0 asks the OS for an ephemeral port (server only).
    """

    backlog: int = 32
    """
    Maximum number of pending connections queued by the kernel.
    """

    buffer_size: int = 1024
    """
    Size of the reusable receive buffer in bytes.
    Payloads longer than this are split across several log entries.
    """

    # ─────────────────────────────────────────────────────────────────────
    # EVENT LOOP
    # ─────────────────────────────────────────────────────────────────────

    wait_timeout: float = 60.0
    """
    Upper bound in seconds for a single multiplexer wait.
    The shutdown flag is re-checked at least this often.
    """

    max_events: int = 10
    """
    Maximum readiness events returned by one wait.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    @property
    def connect_host(self) -> str:
        """Address a client should dial; the wildcard bind address means loopback."""
        if self.host in ("", "0.0.0.0"):
            return "127.0.0.1"
        return self.host

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        RELAY_HOST          Bind/connect host (default: 0.0.0.0)
        RELAY_PORT          TCP port (default: 51717)
        RELAY_BACKLOG       Listen backlog (default: 32)
        RELAY_BUFFER_SIZE   Receive buffer in bytes (default: 1024)
        RELAY_WAIT_TIMEOUT  Multiplexer wait timeout in seconds (default: 60)
        RELAY_MAX_EVENTS    Events per wait (default: 10)
        RELAY_LOG_LEVEL     Logging level (default: INFO)

        =====================================================================
        """
        return cls(
            host=os.getenv("RELAY_HOST", "0.0.0.0"),
            port=int(os.getenv("RELAY_PORT", str(DEFAULT_PORT))),
            backlog=int(os.getenv("RELAY_BACKLOG", "32")),
            buffer_size=int(os.getenv("RELAY_BUFFER_SIZE", "1024")),
            wait_timeout=float(os.getenv("RELAY_WAIT_TIMEOUT", "60")),
            max_events=int(os.getenv("RELAY_MAX_EVENTS", "10")),
            log_level=os.getenv("RELAY_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called at startup so a bad value fails before any socket is opened.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.wait_timeout <= 0:
            raise ValueError("wait_timeout must be > 0")

        if self.max_events < 1:
            raise ValueError("max_events must be >= 1")

        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log_level: {self.log_level}")


def setup_logging(log_level: str = "INFO") -> None:
    """Configure the root logger and the tcprelay logger level."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )

    logging.getLogger("tcprelay").setLevel(level)


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Type-safe configuration with dataclass
# 2. Environment variable support (RELAY_*)
# 3. Validation at startup (fail-fast)
# 4. Defaults match the wire contract: port 51717, backlog 32
# =============================================================================
