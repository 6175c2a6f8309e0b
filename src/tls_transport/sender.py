"""Send capability.

One call opens one outbound TLS connection, writes one frame and closes.
Validation runs synchronously on the caller's thread; the connection runs
on a worker thread and reports back through the request's ok/fail
callables. Exactly one of them fires, at most once.
"""

import logging
import socket
import threading
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlsplit

from tls_transport.errors import (
    InvalidProtocolError,
    MissingAddressError,
    MissingHostError,
    MissingPortError,
    TransportConnectionError,
    TransportError,
)
from tls_transport.frame import Message, encode_frame
from tls_transport.options import SENDER_OPTION_KEYS, build_client_context, pick_options

logger = logging.getLogger(__name__)

ADDRESS_SCHEME = "tcp"
RECV_SIZE = 4096
# Upper bound on draining the peer after our side is closed
LINGER_TIMEOUT = 2.0


def notify(callback: Optional[Callable], *args) -> None:
    """Invoke an ok/fail/ack callable if one was supplied.

    Exceptions raised by the callable are logged, never propagated into the
    worker thread that delivered the result.
    """
    if not callable(callback):
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Callback %r raised", callback)


def parse_address(address: Optional[str]) -> tuple[str, int]:
    """Validate a tcp:// address and return (hostname, port).

    Raises:
        MissingAddressError: If address is missing or empty
        InvalidProtocolError: If address is not a tcp:// URI
        MissingHostError: If the URI has no hostname
        MissingPortError: If the URI has no valid port
    """
    if not address:
        raise MissingAddressError()

    try:
        parsed = urlsplit(address)
    except ValueError as e:
        raise InvalidProtocolError(None) from e
    if parsed.scheme != ADDRESS_SCHEME:
        raise InvalidProtocolError(parsed.scheme)

    if not parsed.hostname:
        raise MissingHostError()

    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is None:
        raise MissingPortError()

    return parsed.hostname, port


def _open(host: str, port: int, options: dict) -> socket.socket:
    """Connect and complete the TLS handshake."""
    context = build_client_context(options)
    logger.debug("Connecting to %s:%d", host, port)
    raw = socket.create_connection((host, port))
    try:
        return context.wrap_socket(raw, server_hostname=options.get("servername", host))
    except BaseException:
        raw.close()
        raise


def _deliver(frame: bytes, host: str, port: int, options: dict, ok, fail) -> None:
    """Worker: connect, write the frame, close the write side, then report."""
    conn = None
    try:
        conn = _open(host, port, options)
        conn.sendall(frame)
        # The peer reads end-of-input from here
        conn.shutdown(socket.SHUT_WR)
    except (OSError, ValueError, TypeError) as e:
        logger.debug("Send to %s:%d failed: %s", host, port, e)
        if conn is not None:
            conn.close()
        notify(fail, TransportConnectionError(e))
        return

    notify(ok)
    try:
        _linger(conn)
    except OSError as e:
        logger.debug("Linger on %s:%d ended: %s", host, port, e)
    finally:
        conn.close()


def _linger(conn: socket.socket) -> None:
    """Drain the peer until it closes so unread bytes don't reset the connection."""
    conn.settimeout(LINGER_TIMEOUT)
    while conn.recv(RECV_SIZE):
        pass


def send(message: Mapping[str, Any]) -> Optional[threading.Thread]:
    """Send one message to the listener at message["address"].

    Args:
        message: Mapping with address, content, optional sender connection
            options, and optional ok() / fail(error) callables

    Returns:
        The worker thread delivering the frame, or None when validation
        failed (fail has then already been called)
    """
    ok = message.get("ok")
    fail = message.get("fail")
    address = message.get("address")

    try:
        host, port = parse_address(address)
        frame = encode_frame(Message(address=address, content=message.get("content") or ""))
    except TransportError as e:
        logger.debug("Rejected send to %r: %s", address, e)
        notify(fail, e)
        return None

    options = pick_options(message, SENDER_OPTION_KEYS)
    worker = threading.Thread(
        target=_deliver,
        args=(frame, host, port, options, ok, fail),
        name=f"send-{host}:{port}",
        daemon=True,
    )
    worker.start()
    return worker
