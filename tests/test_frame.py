"""Tests for tls_transport/frame.py - wire framing."""

import pytest

from tls_transport.errors import MalformedFrameError
from tls_transport.frame import ENDLINE, Message, decode_frame, encode_frame


class TestEncodeFrame:
    """Tests for encode_frame."""

    def test_two_crlf_terminated_lines(self):
        """Frame is address CRLF content CRLF with nothing after."""
        frame = encode_frame(Message("tcp://localhost:8888/#tok", '{"k":"v"}'))
        assert frame == b'tcp://localhost:8888/#tok\r\n{"k":"v"}\r\n'

    def test_utf8_encoding(self):
        """Non-ASCII content is encoded as UTF-8."""
        frame = encode_frame(Message("tcp://h:1/", "café"))
        assert frame.endswith("café\r\n".encode("utf-8"))

    def test_rejects_separator_in_content(self):
        """Content containing CRLF cannot be framed."""
        with pytest.raises(MalformedFrameError) as exc_info:
            encode_frame(Message("tcp://h:1/", "one\r\ntwo"))
        assert "content" in str(exc_info.value)
        assert exc_info.value.code == "E110"

    def test_rejects_separator_in_address(self):
        """Address containing CRLF cannot be framed."""
        with pytest.raises(MalformedFrameError):
            encode_frame(Message("tcp://h:1/\r\n", "x"))

    def test_bare_newline_is_allowed(self):
        """Only the CRLF pair is reserved."""
        frame = encode_frame(Message("tcp://h:1/", "a\nb"))
        assert decode_frame(frame) == Message("tcp://h:1/", "a\nb")


class TestDecodeFrame:
    """Tests for decode_frame."""

    def test_well_formed(self):
        """Two terminated lines decode to a message."""
        message = decode_frame(b"tcp://localhost:8888/#tok\r\nhello\r\n")
        assert message.address == "tcp://localhost:8888/#tok"
        assert message.content == "hello"

    def test_empty_content(self):
        """An empty content line is still a valid frame."""
        assert decode_frame(b"tcp://h:1/\r\n\r\n") == Message("tcp://h:1/", "")

    def test_three_lines_rejected(self):
        """An extra terminated line makes the frame malformed."""
        with pytest.raises(MalformedFrameError):
            decode_frame(b"a\r\nb\r\nc\r\n")

    def test_single_unterminated_line_rejected(self):
        """A line without terminator is malformed."""
        with pytest.raises(MalformedFrameError):
            decode_frame(b"just one line")

    def test_missing_final_terminator_rejected(self):
        """Bytes after the second line's terminator are required to be absent."""
        with pytest.raises(MalformedFrameError) as exc_info:
            decode_frame(b"a\r\nb\r\ntrailing")
        assert "trailing" in exc_info.value.message

    def test_second_line_unterminated_rejected(self):
        """Both lines must be terminated."""
        with pytest.raises(MalformedFrameError):
            decode_frame(b"a\r\nb")

    def test_empty_input_rejected(self):
        """A connection that sends nothing carries no message."""
        with pytest.raises(MalformedFrameError):
            decode_frame(b"")

    def test_invalid_utf8_rejected(self):
        """Bytes that are not UTF-8 are malformed."""
        with pytest.raises(MalformedFrameError):
            decode_frame(b"\xff\xfe\r\n\xff\r\n")

    def test_endline_constant(self):
        """Separator is CR LF."""
        assert ENDLINE == "\r\n"
