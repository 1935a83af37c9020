"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tcprelay import RelayServer, RelayConfig


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def config(free_port: int) -> RelayConfig:
    """Test configuration: loopback, short waits so shutdown is quick."""
    return RelayConfig(
        host="127.0.0.1",
        port=free_port,
        wait_timeout=0.1,
        log_level="INFO",
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until true or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def pump(server: RelayServer, until: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Drive a started server's loop from the test thread until a condition holds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        server.poll_once(0.05)
        if until():
            return True
    return until()


class RunningServer:
    """Relay server running in a background thread."""

    def __init__(self, server: RelayServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Start server in background thread and wait until it is listening."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not wait_for(lambda: self.server.is_running):
            raise RuntimeError("Server failed to start")

    def connect(self) -> socket.socket:
        return socket.create_connection(("127.0.0.1", self.port), timeout=5.0)

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop the server. Returns True if the loop thread exited."""
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        return not (self._thread and self._thread.is_alive())


@pytest.fixture
def running_server(config: RelayConfig, caplog) -> Generator[RunningServer, None, None]:
    """A relay server running on a background thread."""
    caplog.set_level("DEBUG", logger="tcprelay")
    srv = RunningServer(RelayServer(config))
    srv.start()

    yield srv

    srv.stop()


@pytest.fixture
def relay_server(config: RelayConfig, caplog) -> Generator[RelayServer, None, None]:
    """A started relay server whose loop the test drives with pump()."""
    caplog.set_level("DEBUG", logger="tcprelay")
    with RelayServer(config) as server:
        yield server
