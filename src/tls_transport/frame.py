"""Wire framing for a single message per connection.

A frame is exactly two CR-LF terminated UTF-8 lines with nothing after the
second terminator:

    <address>\\r\\n<content>\\r\\n

End-of-input on the connection marks the end of the frame. There is no
length prefix, so neither line may itself contain CR-LF.
"""

from dataclasses import dataclass

from tls_transport.errors import MalformedFrameError

ENDLINE = "\r\n"
ENCODING = "utf-8"


@dataclass(frozen=True)
class Message:
    """Unit exchanged end-to-end."""

    address: str
    content: str


def encode_frame(message: Message) -> bytes:
    """Encode a message into its wire frame.

    Raises:
        MalformedFrameError: If address or content contains CR-LF
    """
    for name in ("address", "content"):
        if ENDLINE in getattr(message, name):
            raise MalformedFrameError(f"{name} contains line separator")
    return (message.address + ENDLINE + message.content + ENDLINE).encode(ENCODING)


def decode_frame(data: bytes) -> Message:
    """Decode accumulated connection bytes into a message.

    Args:
        data: Every byte received before end-of-input

    Returns:
        Message built from the two lines

    Raises:
        MalformedFrameError: If the bytes are not valid UTF-8 or do not split
            into exactly two terminated lines
    """
    try:
        text = data.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"not {ENCODING}: {e.reason}") from e

    parts = text.split(ENDLINE)
    if len(parts) != 3:
        raise MalformedFrameError(f"expected 2 lines, got {len(parts) - 1}")
    if parts[2] != "":
        raise MalformedFrameError("trailing bytes after last line")

    return Message(address=parts[0], content=parts[1])
