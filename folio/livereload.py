"""Live reload protocol for the dev server.

The browser helper talks to the dev server over a deliberately small subset
of RFC 6455: single-frame, masked, text messages shorter than 126 bytes from
the client, and short unmasked text frames back from the server.

Session vocabulary (plain text)::

    client: connected      server: ready
    client: page:<path>    server: ok
                           server: refresh   (after a rebuild)

Key classes:
- Frame: One decoded client frame.
- LiveReloadConnection: Server side of one browser session.

Key functions:
- accept_key: Compute the Sec-WebSocket-Accept header value.
- read_frame: Read and validate one client frame from a stream.
- decode_frame: Decode a complete client frame held in memory.
- encode_frame: Encode a server text frame.
"""

from __future__ import annotations

import base64
import hashlib
import io
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO

from .errors import ProtocolError

MAGIC_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

OPCODE_CONTINUATION = 0x0
OPCODE_TEXT = 0x1

MAX_PAYLOAD = 125
# Ignored frames (pings, binary) are drained, but only up to this size.
MAX_IGNORED_PAYLOAD = 64 * 1024

CONNECTED = "connected"
READY = "ready"
PAGE_PREFIX = "page:"
OK = "ok"
REFRESH = "refresh"


def accept_key(key: str) -> str:
    """Compute the handshake answer for a Sec-WebSocket-Key.

    Examples:
        >>> accept_key("dGhlIHNhbXBsZSBub25jZQ==")
        's3pPLMBiTxaQ9kYGzzhZRbK+xOo='
    """
    digest = hashlib.sha1((key.strip() + MAGIC_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class Frame:
    opcode: int
    payload: bytes

    @property
    def is_text(self) -> bool:
        return self.opcode == OPCODE_TEXT

    def text(self) -> str:
        return self.payload.decode("utf-8")


def _read_exact(stream: BinaryIO, size: int) -> bytes | None:
    data = stream.read(size)
    if not data:
        return None
    if len(data) < size:
        raise ProtocolError("connection closed mid-frame")
    return data


def unmask(payload: bytes, mask: bytes) -> bytes:
    return bytes(b ^ mask[i % 4] for i, b in enumerate(payload))


def read_frame(stream: BinaryIO) -> Frame | None:
    """Read one client frame.

    Args:
        stream: Binary stream positioned at the start of a frame.

    Returns:
        The frame, or None when the stream ended before a new frame.

    Raises:
        ProtocolError: For fragmented or unmasked frames, and for text
            frames too long for the supported subset. Frames of other
            opcodes over MAX_IGNORED_PAYLOAD bytes are rejected too.
    """
    header = _read_exact(stream, 2)
    if header is None:
        return None
    first, second = header
    fin = bool(first & 0x80)
    opcode = first & 0x0F
    if not fin or opcode == OPCODE_CONTINUATION:
        raise ProtocolError("fragmented frames are not supported")
    if not second & 0x80:
        raise ProtocolError("client frames must be masked")
    length = second & 0x7F
    if opcode == OPCODE_TEXT and length > MAX_PAYLOAD:
        raise ProtocolError(f"text frames must be shorter than {MAX_PAYLOAD + 1} bytes")
    # Other opcodes are skipped, so their extended lengths still have to be read.
    if length == 126:
        length = int.from_bytes(_read_exact(stream, 2) or b"", "big")
    elif length == 127:
        length = int.from_bytes(_read_exact(stream, 8) or b"", "big")
    if length > MAX_IGNORED_PAYLOAD:
        raise ProtocolError(f"frame too long: {length} bytes")
    mask = _read_exact(stream, 4)
    if mask is None:
        raise ProtocolError("connection closed mid-frame")
    payload = _read_exact(stream, length) if length else b""
    if payload is None:
        raise ProtocolError("connection closed mid-frame")
    return Frame(opcode, unmask(payload, mask))


def decode_frame(data: bytes) -> str | None:
    """Decode a single client frame.

    Returns:
        The text of a text frame, or None for frames of other opcodes.

    Raises:
        ProtocolError: If the frame is outside the supported subset.
    """
    frame = read_frame(io.BytesIO(data))
    if frame is None:
        raise ProtocolError("empty frame")
    return frame.text() if frame.is_text else None


def encode_frame(message: str) -> bytes:
    """Encode a server-to-client text frame (unmasked, single frame)."""
    payload = message.encode("utf-8")
    if len(payload) > MAX_PAYLOAD:
        raise ProtocolError(f"message too long: {len(payload)} bytes")
    return bytes([0x80 | OPCODE_TEXT, len(payload)]) + payload


class LiveReloadConnection:
    """Server side of one browser session.

    Attributes:
        page: Last page the client reported.
        last_contact: Monotonic time of the last message from the client.
    """

    def __init__(self, wfile: BinaryIO):
        self.wfile = wfile
        self.page: str | None = None
        self.last_contact = time.monotonic()
        self._send_lock = threading.Lock()

    def handle_message(self, message: str) -> str | None:
        """Return the reply to a client message, if it needs one."""
        self.last_contact = time.monotonic()
        if message == CONNECTED:
            return READY
        if message.startswith(PAGE_PREFIX):
            self.page = message[len(PAGE_PREFIX):]
            return OK
        return None

    def send(self, message: str) -> None:
        with self._send_lock:
            self.wfile.write(encode_frame(message))
            self.wfile.flush()

    def serve(self, stream: BinaryIO) -> None:
        """Answer client frames until the stream ends.

        Raises:
            ProtocolError: If the client sends an unsupported frame.
        """
        while True:
            frame = read_frame(stream)
            if frame is None:
                return
            if not frame.is_text:
                continue
            reply = self.handle_message(frame.text())
            if reply is not None:
                self.send(reply)
