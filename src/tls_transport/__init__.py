"""TLS message transport.

One message per connection: a send capability delivers an address line and
a content line over TLS, and a listen capability accepts such connections
and forwards each decoded message to a recipient.
"""

from tls_transport.errors import (
    TransportError,
    MissingAddressError,
    InvalidProtocolError,
    MissingHostError,
    MissingPortError,
    MalformedFrameError,
    TransportConnectionError,
)
from tls_transport.frame import (
    Message,
    encode_frame,
    decode_frame,
)
from tls_transport.options import (
    SENDER_OPTION_KEYS,
    SERVER_OPTION_KEYS,
)
from tls_transport.sender import send
from tls_transport.server import (
    ServerController,
    ServerState,
    server,
)

__all__ = [
    # Errors
    "TransportError",
    "MissingAddressError",
    "InvalidProtocolError",
    "MissingHostError",
    "MissingPortError",
    "MalformedFrameError",
    "TransportConnectionError",
    # Framing
    "Message",
    "encode_frame",
    "decode_frame",
    # Options
    "SENDER_OPTION_KEYS",
    "SERVER_OPTION_KEYS",
    # Capabilities
    "send",
    "server",
    "ServerController",
    "ServerState",
]
