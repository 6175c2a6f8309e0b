"""Error taxonomy for the transport.

Validation errors are raised before any network action and carry the
offending input. Connection errors wrap the underlying ssl/socket exception.
"""

from typing import Optional


class TransportError(Exception):
    """Base exception for transport errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class MissingAddressError(TransportError):
    """Message has no address."""

    def __init__(self):
        super().__init__("E101", "Missing address")


class InvalidProtocolError(TransportError):
    """Address scheme is not tcp."""

    def __init__(self, protocol: Optional[str]):
        self.protocol = protocol
        super().__init__("E102", f"Invalid protocol {protocol or '(none)'}")


class MissingHostError(TransportError):
    """Address has no hostname."""

    def __init__(self):
        super().__init__("E103", "Missing host")


class MissingPortError(TransportError):
    """Address has no usable port."""

    def __init__(self):
        super().__init__("E104", "Missing port")


class MalformedFrameError(TransportError):
    """Bytes do not form exactly one address line and one content line."""

    def __init__(self, reason: str):
        super().__init__("E110", f"Malformed frame: {reason}")


class TransportConnectionError(TransportError):
    """Connect, handshake or bind failure."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__("E200", str(cause) or type(cause).__name__)
        self.__cause__ = cause
