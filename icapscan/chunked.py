"""Chunked transfer encoding as used inside ICAP message bodies."""

import logging
import socket
from typing import BinaryIO, Optional

from ._protocol import IcapProtocol
from .exception import IcapConnectionError, IcapProtocolError
from .wire import WireReader, send_data, trace_logger

logger = logging.getLogger(__name__)

TERMINATOR = b"0\r\n\r\n"
IEOF_TERMINATOR = b"0; ieof\r\n\r\n"


class ChunkedBodyWriter:
    """Transmits a byte source as a sequence of chunk frames.

    A writer belongs to a single scan. Each :meth:`send` call emits one
    sequence ending in exactly one terminal frame. When a capped send stops
    because the cap was reached, the writer reads one byte ahead from the source
    to learn whether anything remains; that byte is held back and sent
    first by the next :meth:`send`.

    An uncapped send that exhausts the source ends with ``0; ieof`` when it
    follows a preview (the remainder after ``100 Continue``), and with a plain
    terminal frame when no preview was sent or the body was already complete.
    """

    def __init__(
        self,
        sock: socket.socket,
        trace: bool = False,
        chunk_size: int = IcapProtocol.CHUNK_SIZE,
    ) -> None:
        self._socket = sock
        self._trace = trace
        self._chunk_size = chunk_size
        self._pending = b""
        self.completed = False
        self.previewed = False
        self.total_sent = 0

    def _read(self, source: BinaryIO, size: int) -> bytes:
        data, self._pending = self._pending[:size], self._pending[size:]
        if len(data) < size:
            try:
                data += source.read(size - len(data)) or b""
            except OSError as e:
                raise IcapProtocolError(f"Failed to read from stream: {e}") from e
        return data

    def _send_frame(self, data: bytes) -> None:
        header = f"{len(data):x}\r\n".encode()
        if self._trace:
            trace_logger.debug(f">> {len(data):x}")
            trace_logger.debug(">> ...DATA...")
        send_data(self._socket, header + data + b"\r\n")

    def _finish(self, terminator: bytes) -> None:
        send_data(self._socket, terminator, trace=self._trace)

    def send(self, source: BinaryIO, cap: Optional[int] = None) -> int:
        """Send up to ``cap`` bytes from ``source`` as chunk frames.

        Args:
            source: Readable binary stream, read forward only
            cap: Maximum number of bytes to send (preview size), or None to
                send until the source is exhausted

        Returns:
            Number of payload bytes sent by this call
        """
        if cap is not None and cap < 0:
            raise ValueError("cap must be a non-negative integer")

        remainder = self.previewed and not self.completed
        if cap is not None:
            self.previewed = True

        bytes_sent = 0
        while True:
            if cap is None:
                fetch = self._chunk_size
            else:
                fetch = min(cap - bytes_sent, self._chunk_size)

            if fetch == 0:
                # Cap reached; look one byte ahead to tell the server whether
                # this preview is the whole body.
                lookahead = self._read(source, 1)
                if lookahead:
                    self._pending = lookahead + self._pending
                    self._finish(TERMINATOR)
                else:
                    self.completed = True
                    self._finish(IEOF_TERMINATOR)
                break

            data = self._read(source, fetch)
            if not data:
                self.completed = True
                self._finish(IEOF_TERMINATOR if cap is not None or remainder else TERMINATOR)
                break

            self._send_frame(data)
            bytes_sent += len(data)

        self.total_sent += bytes_sent
        logger.debug(
            f"Sent {bytes_sent} bytes in chunks (cap: {cap}, complete: {self.completed})"
        )
        return bytes_sent


def read_chunked_body(reader: WireReader) -> bytes:
    """Read one chunk-encoded body from the wire and return the decoded bytes.

    Chunk extensions (``; ieof``) are ignored and trailer lines after the
    terminal chunk are consumed up to the closing blank line.

    Raises:
        IcapProtocolError: If a chunk size line is not hexadecimal or a chunk
            is not followed by CRLF.
        IcapConnectionError: If the connection closes before the terminal chunk.
    """
    body = b""
    while True:
        size_line = reader.read_line()
        if not size_line:
            raise IcapConnectionError("Connection closed before chunked body complete")
        try:
            size = int(size_line.split(b";")[0].strip(), 16)
        except ValueError:
            raise IcapProtocolError(f"Invalid chunk size: {size_line!r}") from None
        if size < 0:
            raise IcapProtocolError(f"Invalid chunk size: {size_line!r}")

        if size == 0:
            # Optional trailer headers, then the empty line.
            for _ in reader.read_header_lines():
                pass
            return body

        body += reader.read_exact(size)
        if reader.read_exact(2) != b"\r\n":
            raise IcapProtocolError("Chunk data not followed by CRLF")
