import io

import pytest

from folio.errors import ProtocolError
from folio.livereload import (
    LiveReloadConnection,
    accept_key,
    decode_frame,
    encode_frame,
    read_frame,
)

MASK = bytes([0x37, 0xFA, 0x21, 0x3D])


def client_frame(payload: bytes, opcode: int = 0x1, fin: bool = True, masked: bool = True) -> bytes:
    first = (0x80 if fin else 0) | opcode
    if not masked:
        return bytes([first, len(payload)]) + payload
    body = bytes(b ^ MASK[i % 4] for i, b in enumerate(payload))
    return bytes([first, 0x80 | len(payload)]) + MASK + body


def test_accept_key_rfc_sample():
    assert accept_key("dGhlIHNhbXBsZSBub25jZQ==") == "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def test_decode_masked_text_frame():
    assert decode_frame(client_frame(b"connected")) == "connected"


def test_decode_rfc_masked_hello():
    # Example from RFC 6455 section 5.7.
    frame = bytes([0x81, 0x85, 0x37, 0xFA, 0x21, 0x3D, 0x7F, 0x9F, 0x4D, 0x51, 0x58])
    assert decode_frame(frame) == "Hello"


def test_fragmented_frame_is_rejected():
    with pytest.raises(ProtocolError):
        decode_frame(client_frame(b"conn", fin=False))


def test_continuation_frame_is_rejected():
    with pytest.raises(ProtocolError):
        decode_frame(client_frame(b"ected", opcode=0x0))


def test_unmasked_frame_is_rejected():
    with pytest.raises(ProtocolError, match="masked"):
        decode_frame(client_frame(b"connected", masked=False))


def test_long_text_frame_is_rejected():
    frame = bytes([0x81, 0x80 | 126, 0x00, 0x80]) + MASK + bytes(128)
    with pytest.raises(ProtocolError):
        decode_frame(frame)


def test_other_opcodes_are_ignored():
    assert decode_frame(client_frame(b"", opcode=0x9)) is None
    assert decode_frame(client_frame(b"\x03\xe8", opcode=0x8)) is None


def test_read_frame_sequence_skips_ignored_frames():
    stream = io.BytesIO(client_frame(b"ping", opcode=0x9) + client_frame(b"page:/index.html"))
    assert not read_frame(stream).is_text
    assert read_frame(stream).text() == "page:/index.html"
    assert read_frame(stream) is None


def test_truncated_frame():
    with pytest.raises(ProtocolError):
        decode_frame(client_frame(b"connected")[:6])


def test_encode_frame():
    assert encode_frame("ready") == b"\x81\x05ready"
    with pytest.raises(ProtocolError):
        encode_frame("x" * 200)


def test_session_protocol():
    out = io.BytesIO()
    session = LiveReloadConnection(out)
    stream = io.BytesIO(client_frame(b"connected") + client_frame(b"page:/blog/") + client_frame(b"hello"))
    session.serve(stream)
    assert out.getvalue() == encode_frame("ready") + encode_frame("ok")
    assert session.page == "/blog/"


def test_session_stops_on_protocol_error():
    session = LiveReloadConnection(io.BytesIO())
    stream = io.BytesIO(client_frame(b"connected", masked=False))
    with pytest.raises(ProtocolError):
        session.serve(stream)


def test_send_refresh():
    out = io.BytesIO()
    LiveReloadConnection(out).send("refresh")
    assert out.getvalue() == b"\x81\x07refresh"


def test_oversized_ignored_frame_is_rejected():
    # A ping claiming an 8-byte length far beyond anything a browser sends.
    frame = bytes([0x89, 0x80 | 127]) + (2**62).to_bytes(8, "big") + MASK
    with pytest.raises(ProtocolError, match="too long"):
        decode_frame(frame)


def test_ignored_frame_with_extended_length_is_skipped():
    payload = bytes(300)
    body = bytes(b ^ MASK[i % 4] for i, b in enumerate(payload))
    frame = bytes([0x82, 0x80 | 126]) + len(payload).to_bytes(2, "big") + MASK + body
    stream = io.BytesIO(frame + client_frame(b"connected"))
    assert not read_frame(stream).is_text
    assert read_frame(stream).text() == "connected"
