"""
Integration tests for RelayServer over loopback TCP.
"""

import io
import random
import re
import socket
import time

import pytest

from tcprelay import RelayClient, RelayConfig, RelayServer
from tcprelay.errors import BindError

from conftest import RunningServer, pump, wait_for


def invariant_holds(server: RelayServer) -> bool:
    subscribed = server.multiplexer.subscribed_handles() - {server.listener.handle}
    return subscribed == server.registry.handles()


class TestScenario:

    def test_ping_is_logged_with_client_address(self, running_server, caplog):
        with running_server.connect() as client:
            ip, port = client.getsockname()[:2]
            client.sendall(b"ping\0")

            expected = f"Client {ip}:{port} : ping"
            assert wait_for(lambda: expected in caplog.messages)

        pattern = re.compile(r"^Client 127\.0\.0\.1:\d+ : ping$")
        assert any(pattern.match(m) for m in caplog.messages)

    def test_hello_without_terminator_is_logged_verbatim(self, running_server, caplog):
        with running_server.connect() as client:
            ip, port = client.getsockname()[:2]
            client.sendall(b"hello")

            assert wait_for(lambda: f"Client {ip}:{port} : hello" in caplog.messages)

    def test_relay_client_end_to_end(self, running_server, caplog):
        stdin = io.StringIO("ping\n")
        stdout = io.StringIO()
        client = RelayClient(
            RelayConfig(host="127.0.0.1", port=running_server.port),
            stdin=stdin,
            stdout=stdout,
        )

        assert client.run() == 0

        output = stdout.getvalue()
        match = re.search(r"Client address: 127\.0\.0\.1:(\d+)", output)
        assert match
        assert "input : " in output
        assert output.rstrip().endswith("Connection ended")

        port = match.group(1)
        assert wait_for(lambda: f"Client 127.0.0.1:{port} : ping" in caplog.messages)
        assert wait_for(
            lambda: f"Connection closed from client 127.0.0.1:{port}" in caplog.messages
        )

    def test_startup_address_is_logged(self, running_server, caplog):
        # Logged while the fixture was starting the server
        startup = [r.getMessage() for r in caplog.get_records("setup")]
        assert f"Server address: 127.0.0.1:{running_server.port}" in startup


class TestConnections:

    def test_disconnect_logged_once(self, running_server, caplog):
        client = running_server.connect()
        ip, port = client.getsockname()[:2]
        assert wait_for(lambda: len(running_server.server.registry) == 1)

        client.close()

        message = f"Connection closed from client {ip}:{port}"
        assert wait_for(lambda: message in caplog.messages)
        assert wait_for(lambda: len(running_server.server.registry) == 0)
        time.sleep(0.2)
        assert caplog.messages.count(message) == 1

    def test_idle_connection_is_not_dropped(self, running_server, caplog):
        """No idle timeout: several wait periods pass without traffic."""
        with running_server.connect() as client:
            assert wait_for(lambda: len(running_server.server.registry) == 1)

            time.sleep(running_server.server.config.wait_timeout * 5)

            assert len(running_server.server.registry) == 1
            ip, port = client.getsockname()[:2]
            assert not any(m.startswith("Connection closed") for m in caplog.messages)

            client.sendall(b"still alive")
            assert wait_for(lambda: f"Client {ip}:{port} : still alive" in caplog.messages)

    def test_many_clients(self, running_server, caplog):
        clients = [running_server.connect() for _ in range(20)]
        try:
            assert wait_for(lambda: len(running_server.server.registry) == 20)
            for i, client in enumerate(clients):
                client.sendall(f"msg-{i}".encode())

            for i, client in enumerate(clients):
                ip, port = client.getsockname()[:2]
                assert wait_for(lambda: f"Client {ip}:{port} : msg-{i}" in caplog.messages)
        finally:
            for client in clients:
                client.close()

        assert wait_for(lambda: len(running_server.server.registry) == 0)


class TestRegistryInvariant:
    """Drive the loop batch by batch and check the invariant after each one."""

    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_invariant_holds_after_every_batch(self, relay_server, seed):
        rng = random.Random(seed)
        host, port = relay_server.address
        open_clients = []

        for _ in range(60):
            action = rng.choice(["connect", "send", "close"])
            if action == "connect" or not open_clients:
                open_clients.append(socket.create_connection((host, port), timeout=5.0))
            elif action == "send":
                rng.choice(open_clients).sendall(b"x" * rng.randint(1, 3000))
            else:
                victim = open_clients.pop(rng.randrange(len(open_clients)))
                victim.close()

            relay_server.poll_once(0.01)
            assert invariant_holds(relay_server)

        assert pump(relay_server, lambda: len(relay_server.registry) == len(open_clients))
        assert invariant_holds(relay_server)

        for client in open_clients:
            client.close()
        assert pump(relay_server, lambda: len(relay_server.registry) == 0)
        assert invariant_holds(relay_server)


class TestShutdown:

    def test_shutdown_exits_within_one_wait_period(self, config, caplog):
        server = RelayServer(config)
        srv = RunningServer(server)
        srv.start()

        clients = [srv.connect() for _ in range(3)]
        try:
            assert wait_for(lambda: len(server.registry) == 3)

            started = time.monotonic()
            assert srv.stop(timeout=5.0)
            assert time.monotonic() - started < config.wait_timeout + 1.0

            assert not server.is_running
            assert len(server.registry) == 0
            assert server.listener is None
            assert server.multiplexer is None

            # Every client connection was closed by the server
            for client in clients:
                assert client.recv(1) == b""
        finally:
            for client in clients:
                client.close()

        # The listener is gone too
        with pytest.raises(ConnectionRefusedError):
            socket.create_connection(("127.0.0.1", srv.port), timeout=1.0)

        assert any(m.startswith("Relay server stopped (3 connections closed)") for m in caplog.messages)

    def test_bind_failure_never_enters_loop(self, config):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", config.port))
            blocker.listen(1)

            server = RelayServer(config)
            with pytest.raises(BindError):
                server.start()

            assert not server.is_running
            assert server.multiplexer is None

    def test_server_can_restart_on_same_port(self, config):
        with RelayServer(config) as first:
            port = first.address[1]

        with RelayServer(config) as second:
            assert second.address[1] == port
