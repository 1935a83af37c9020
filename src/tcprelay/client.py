"""
=============================================================================
RELAY CLIENT
=============================================================================

A blocking, interactive client: one line from stdin per iteration, one
write per line.

    ┌─────────────────────────────────────────────────────────────────┐
    │                        Client loop                               │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   connect() ──► print "Client address: ip:port"                  │
    │       │                                                          │
    │       ▼                                                          │
    │   "input : " ──► readline() ──► strip "\n" ──► + b"\0" ──► send  │
    │       ▲                                                  │       │
    │       └──────────────────────────────────────────────────┘       │
    │                                                                  │
    │   Ctrl+C / EOF ──► print "Connection ended" ──► close, exit 0    │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

A failed write is reported and the loop continues; the user may simply type
another line. The connection is not closed on a write error.

=============================================================================
"""

import sys
import socket
import logging
from typing import Optional, TextIO

from .config import RelayConfig
from .errors import ConnectError


logger = logging.getLogger(__name__)

PROMPT = "input : "
TERMINATOR = b"\0"


def encode_line(line: str) -> bytes:
    """Strip the trailing newline and append the terminator byte."""
    if line.endswith("\n"):
        line = line[:-1]
    return line.encode("utf-8") + TERMINATOR


class RelayClient:
    """
    Interactive relay client.

    Args:
        config: Host/port to connect to.
        stdin: Where lines are read from (default sys.stdin).
        stdout: Where prompts and diagnostics go (default sys.stdout).
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.config = config or RelayConfig()
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self._socket: Optional[socket.socket] = None

    def connect(self) -> socket.socket:
        """
        Connect to the server and print the local address.

        Raises:
            ConnectError: The server could not be reached.
        """
        host, port = self.config.connect_host, self.config.port
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.connect((host, port))
        except OSError as e:
            sock.close()
            raise ConnectError(f"Error connecting to server {host}:{port}: {e}", host, port) from e

        self._socket = sock
        try:
            local_ip, local_port = sock.getsockname()[:2]
        except OSError as e:
            logger.warning(f"Cannot get socket name: {e}")
        else:
            self._print(f"Client address: {local_ip}:{local_port}")
        return sock

    def send_line(self, line: str) -> bool:
        """
        Send one line.

        Returns:
            True if sent, False if the write failed (already logged).
        """
        try:
            self._socket.sendall(encode_line(line))
            return True
        except OSError as e:
            logger.error(f"Error sending message: {e}")
            return False

    def run(self) -> int:
        """
        Connect, then forward lines until Ctrl+C or end of input.

        Returns:
            Process exit code (0 on a clean end).

        Raises:
            ConnectError: The server could not be reached.
        """
        self.connect()
        at_prompt = False
        try:
            while True:
                self.stdout.write(PROMPT)
                self.stdout.flush()
                at_prompt = True
                line = self.stdin.readline()
                if not line:
                    break  # End of input
                at_prompt = False
                self.send_line(line)
        except KeyboardInterrupt:
            pass
        finally:
            if at_prompt:
                self._print("")
            self._print("Connection ended")
            self.close()
        return 0

    def close(self):
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

    def _print(self, message: str):
        print(message, file=self.stdout, flush=True)
