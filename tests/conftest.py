"""Shared pytest fixtures for tls-transport tests."""

import socket
import sys
import threading
import time
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from tls_transport.options import build_client_context  # noqa: E402
from tls_transport.tls import generate_pair  # noqa: E402

WAIT = 5.0


class Outcome:
    """Records ok/fail/ack callbacks and lets a test wait for the first one."""

    def __init__(self):
        self.calls = []
        self.event = threading.Event()

    def ok(self, *args):
        self.calls.append(("ok", args))
        self.event.set()

    def fail(self, error):
        self.calls.append(("fail", error))
        self.event.set()

    def ack(self):
        self.calls.append(("ack", ()))
        self.event.set()

    def wait(self, timeout: float = WAIT) -> bool:
        return self.event.wait(timeout)

    @property
    def names(self):
        return [name for name, _ in self.calls]

    @property
    def error(self):
        return next(value for name, value in self.calls if name == "fail")


class Recipient:
    """Records delivered messages."""

    def __init__(self):
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)

    def wait(self, count: int = 1, timeout: float = WAIT) -> bool:
        deadline = time.monotonic() + timeout
        while len(self.messages) < count and time.monotonic() < deadline:
            time.sleep(0.05)
        return len(self.messages) >= count


@pytest.fixture(scope="session")
def identities(tmp_path_factory):
    """Server and client self-signed identities for localhost."""
    server, client = generate_pair(cert_dir=tmp_path_factory.mktemp("certs"), hostname="localhost")
    return {"server": server, "client": client}


@pytest.fixture
def server_options(identities):
    """Listen options requiring a client certificate (mutual TLS)."""
    return {
        "cert": identities["server"].cert_path,
        "key": identities["server"].key_path,
        "ca": identities["client"].cert_path,
        "request_cert": True,
        "reject_unauthorized": True,
        "secure_protocol": "TLSv1_2_method",
    }


@pytest.fixture
def client_options(identities):
    """Send options presenting the client identity and trusting the server."""
    return {
        "cert": identities["client"].cert_path,
        "key": identities["client"].key_path,
        "ca": identities["server"].cert_path,
        "secure_protocol": "TLSv1_2_method",
    }


@pytest.fixture
def free_port():
    """A TCP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def outcome():
    return Outcome()


@pytest.fixture
def recipient():
    return Recipient()


@pytest.fixture
def raw_send(client_options):
    """Write arbitrary bytes over a client TLS connection.

    Returns once the server has closed its side, i.e. after the frame was
    fully handled.
    """
    def _send(port: int, data: bytes):
        context = build_client_context(client_options)
        with socket.create_connection(("127.0.0.1", port), timeout=WAIT) as raw:
            with context.wrap_socket(raw, server_hostname="localhost") as conn:
                conn.sendall(data)
                conn.shutdown(socket.SHUT_WR)
                while conn.recv(4096):
                    pass
    return _send
