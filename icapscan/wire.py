"""Buffered, line-oriented access to an ICAP connection.

All components that touch the socket share a single :class:`WireReader`, so
bytes buffered while looking for a line terminator are never lost when the
caller switches to binary reads.
"""

import logging
import socket
from typing import Iterator

from ._protocol import IcapProtocol
from .exception import IcapConnectionError, IcapProtocolError, IcapTimeoutError

logger = logging.getLogger(__name__)

# Wire traces are emitted here at DEBUG; ">> " marks sent lines, "<< " received.
trace_logger = logging.getLogger("icapscan.trace")

MAX_LINE_LENGTH = 65536


def trace_sent(data: bytes) -> None:
    """Echo an outgoing block to the trace logger, one record per line."""
    for line in data.decode("latin-1").splitlines():
        trace_logger.debug(f">> {line}")


def send_data(sock: socket.socket, data: bytes, trace: bool = False) -> None:
    """Send a block of protocol bytes, translating socket failures."""
    if trace:
        trace_sent(data)
    try:
        sock.sendall(data)
    except socket.timeout as e:
        raise IcapTimeoutError(f"Timed out sending {len(data)} bytes") from e
    except OSError as e:
        raise IcapConnectionError(f"Connection error while sending: {e}") from e


class WireReader:
    """Reads lines and raw byte runs from a connected socket."""

    def __init__(
        self,
        sock: socket.socket,
        trace: bool = False,
        buffer_size: int = IcapProtocol.BUFFER_SIZE,
    ) -> None:
        self._socket = sock
        self._trace = trace
        self._buffer_size = buffer_size
        self._buffer = b""
        self._eof = False

    @property
    def buffered(self) -> int:
        """Number of bytes received but not yet consumed."""
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        """True once the peer has closed and the buffer is drained."""
        return self._eof and not self._buffer

    def _fill(self) -> bool:
        """Receive more bytes into the buffer. Returns False at end of stream."""
        if self._eof:
            return False
        try:
            chunk = self._socket.recv(self._buffer_size)
        except socket.timeout as e:
            raise IcapTimeoutError("Timed out waiting for data from ICAP server") from e
        except OSError as e:
            raise IcapConnectionError(f"Connection error while receiving: {e}") from e
        if not chunk:
            self._eof = True
            return False
        self._buffer += chunk
        return True

    def read_line(self) -> bytes:
        """Read one line including its terminator.

        Returns:
            The line as bytes, or ``b""`` if the peer closed the connection
            with nothing left in the buffer.

        Raises:
            IcapConnectionError: If the peer closes in the middle of a line.
            IcapProtocolError: If no terminator is seen within MAX_LINE_LENGTH bytes.
        """
        while True:
            index = self._buffer.find(b"\n")
            if index >= 0:
                line, self._buffer = self._buffer[: index + 1], self._buffer[index + 1 :]
                break
            if len(self._buffer) > MAX_LINE_LENGTH:
                raise IcapProtocolError(f"Line exceeds {MAX_LINE_LENGTH} bytes")
            if not self._fill():
                if self._buffer:
                    raise IcapConnectionError(
                        "Connection closed before end of line: "
                        f"{self._buffer[:80].decode('latin-1')!r}"
                    )
                return b""
        if self._trace:
            trace_logger.debug(f"<< {line.decode('latin-1').rstrip()}")
        return line

    def read_exact(self, size: int) -> bytes:
        """Read exactly ``size`` bytes.

        Raises:
            IcapConnectionError: If the peer closes before ``size`` bytes arrive.
        """
        while len(self._buffer) < size:
            if not self._fill():
                raise IcapConnectionError(
                    f"Connection closed after {len(self._buffer)} of {size} bytes"
                )
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def read_to_close(self) -> bytes:
        """Read everything until the peer closes the connection."""
        while self._fill():
            pass
        data, self._buffer = self._buffer, b""
        logger.debug(f"Drained {len(data)} bytes until connection close")
        return data

    def skip_blank_lines(self) -> bytes:
        """Return the first line that is not blank (or ``b""`` at end of stream)."""
        line = self.read_line()
        while line in (b"\r\n", b"\n"):
            line = self.read_line()
        return line

    def read_header_lines(self) -> Iterator[str]:
        """Yield decoded header lines until the blank line closing the block.

        Raises:
            IcapConnectionError: If the stream ends inside the block.
        """
        while True:
            line = self.read_line()
            if not line:
                raise IcapConnectionError("Connection closed inside a header block")
            if line in (b"\r\n", b"\n"):
                return
            yield line.decode("latin-1")
