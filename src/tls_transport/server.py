"""Listen capability.

A ServerController owns at most one listening TLS socket and forwards every
well-formed inbound frame to its recipient. It moves between two states:

    IDLE --listen (bound)--> LISTENING --close--> IDLE

listen while LISTENING and close while IDLE are silent no-ops. A failed
listen leaves the controller IDLE and ready to retry.
"""

import enum
import logging
import socketserver
import ssl
import threading
from typing import Any, Callable, Mapping, Optional

from tls_transport.errors import MalformedFrameError, TransportConnectionError
from tls_transport.frame import Message, decode_frame
from tls_transport.options import (
    SERVER_OPTION_KEYS,
    build_server_context,
    handshake_timeout,
    pick_options,
)
from tls_transport.sender import notify

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BIND = "0.0.0.0"
DEFAULT_PORT = 0  # OS-assigned
RECV_SIZE = 4096


class ServerState(enum.Enum):
    """Lifecycle state of a ServerController."""

    IDLE = "idle"
    LISTENING = "listening"


class FrameHandler(socketserver.BaseRequestHandler):
    """Handles one accepted connection: handshake, read to end, decode."""

    server: "FrameServer"

    def handle(self):
        conn: ssl.SSLSocket = self.request
        peer = self.client_address

        try:
            conn.settimeout(self.server.handshake_timeout)
            conn.do_handshake()
            conn.settimeout(None)
        except OSError as e:
            logger.debug("Handshake with %s failed: %s", peer, e)
            return

        chunks = []
        try:
            while chunk := conn.recv(RECV_SIZE):
                chunks.append(chunk)
        except OSError as e:
            logger.debug("Connection from %s failed mid-frame: %s", peer, e)
            return

        try:
            message = decode_frame(b"".join(chunks))
        except MalformedFrameError as e:
            logger.debug("Dropping frame from %s: %s", peer, e.message)
            return

        self.server.deliver(message)


class FrameServer(socketserver.ThreadingTCPServer):
    """TLS listener; one daemon thread per accepted connection."""

    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        address: tuple[str, int],
        context: ssl.SSLContext,
        recipient: Callable[[Message], Any],
        handshake_timeout: Optional[float] = None,
    ):
        self.recipient = recipient
        self.handshake_timeout = handshake_timeout
        super().__init__(address, FrameHandler)

        # Handshakes run on the connection thread, not in accept()
        self.socket = context.wrap_socket(
            self.socket,
            server_side=True,
            do_handshake_on_connect=False,
        )

    def deliver(self, message: Message):
        """Forward a decoded message to the recipient."""
        try:
            self.recipient(message)
        except Exception:
            logger.exception("Recipient raised for message to %s", message.address)

    def handle_error(self, request, client_address):
        """Override to use Python logging."""
        logger.exception("Error handling connection from %s", client_address)


class ServerController:
    """Owns one listening socket bound to one recipient.

    State transitions are serialized by a lock. Callbacks always run after
    the lock is released, so an ok/ack may call listen or close again.
    """

    def __init__(self, recipient: Callable[[Message], Any]):
        """Initialize controller.

        Args:
            recipient: Called once with each decoded inbound Message
        """
        self.recipient = recipient
        self._lock = threading.Lock()
        self._server: Optional[FrameServer] = None
        self._closing = False

    @property
    def state(self) -> ServerState:
        with self._lock:
            return ServerState.LISTENING if self._server is not None else ServerState.IDLE

    @property
    def server_address(self) -> Optional[tuple]:
        """Bound (host, port) while listening."""
        with self._lock:
            return self._server.server_address if self._server is not None else None

    def listen(self, message: Mapping[str, Any]) -> None:
        """Start accepting connections.

        Args:
            message: Mapping with host, port, server connection options, and
                optional ok({"host", "port"}) / fail(error) callables
        """
        host = message.get("host") or DEFAULT_BIND
        port = message.get("port") or DEFAULT_PORT

        with self._lock:
            if self._server is not None:
                logger.debug("Already listening on %s:%s; ignoring listen", *self._server.server_address[:2])
                return

            options = pick_options(message, SERVER_OPTION_KEYS)
            try:
                context = build_server_context(options)
                listener = FrameServer(
                    (host, port),
                    context,
                    self.recipient,
                    handshake_timeout=handshake_timeout(options),
                )
            except (OSError, ValueError, TypeError) as e:
                logger.error("Failed to listen on %s:%s: %s", host, port, e)
                error = TransportConnectionError(e)
            else:
                error = None
                self._server = listener
                bound_port = listener.server_address[1]
                threading.Thread(
                    target=listener.serve_forever,
                    name=f"listen-{host}:{bound_port}",
                    daemon=True,
                ).start()
                logger.info("Listening on %s:%d", host, bound_port)

        if error is not None:
            notify(message.get("fail"), error)
        else:
            notify(message.get("ok"), {"host": host, "port": bound_port})

    def close(self, ack: Optional[Callable[[], Any]] = None) -> Optional[threading.Thread]:
        """Stop accepting connections and release the socket.

        Args:
            ack: Called with no arguments once the socket is closed; never
                called when there was nothing to close

        Returns:
            The shutdown thread, or None for a no-op
        """
        with self._lock:
            if self._server is None or self._closing:
                logger.debug("Not listening; ignoring close")
                return None
            self._closing = True
            server = self._server

        worker = threading.Thread(
            target=self._shutdown,
            args=(server, ack),
            name="close-listener",
            daemon=True,
        )
        worker.start()
        return worker

    def _shutdown(self, server: FrameServer, ack):
        host, port = server.server_address[:2]
        server.shutdown()
        server.server_close()

        with self._lock:
            self._server = None
            self._closing = False
        logger.info("Closed listener on %s:%d", host, port)

        notify(ack)


def server(recipient: Callable[[Message], Any]) -> ServerController:
    """Create a controller bound to recipient (initially IDLE)."""
    return ServerController(recipient)
