"""
Scripted socket stand-in for exercising the ICAP protocol engine.

``FakeIcapSocket`` replays a list of response segments. A segment is only
released once the client has sent something since the previous segment was
released, so a client that tries to read a response before finishing its
request fails loudly instead of hanging.

Example:
    >>> from pytest_icapscan import FakeIcapSocket, IcapResponseBuilder
    >>> sock = FakeIcapSocket(IcapResponseBuilder().clean().build())
    >>> sock.sendall(b"RESPMOD ...")
    >>> sock.recv(8192)
    b'ICAP/1.0 204 No Content\\r\\n\\r\\n'
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field


class OutOfOrderReadError(AssertionError):
    """Raised when the client reads a response before sending its request."""


@dataclass
class WireEvent:
    """One recorded socket operation, in call order."""

    direction: str
    data: bytes = field(repr=False)

    def __repr__(self) -> str:
        return f"WireEvent({self.direction}, {len(self.data)} bytes)"


class FakeIcapSocket:
    """
    Minimal socket replacement for ICAP client tests.

    Args:
        *segments: Response bytes the "server" sends, one segment per round
            trip (e.g. an OPTIONS response, then a 100 Continue, then the
            final response).
        max_recv: Cap on bytes returned per ``recv`` call, to simulate
            responses arriving in fragments.
    """

    def __init__(self, *segments: bytes, max_recv: int | None = None) -> None:
        self._segments: deque[bytes] = deque(segments)
        self._current = b""
        self._max_recv = max_recv
        self._sent_since_release = False
        self.events: list[WireEvent] = []
        self.closed = False
        self.timeout: float | None = None

    @property
    def sent(self) -> bytes:
        """Everything the client has sent, concatenated."""
        return b"".join(e.data for e in self.events if e.direction == "send")

    @property
    def pending_segments(self) -> int:
        """Number of scripted segments not yet released to the client."""
        return len(self._segments)

    def sent_segments(self) -> list[bytes]:
        """Client bytes grouped by the response segment that followed them."""
        groups: list[bytes] = []
        current = b""
        for event in self.events:
            if event.direction == "send":
                current += event.data
            elif current:
                groups.append(current)
                current = b""
        if current:
            groups.append(current)
        return groups

    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise OSError("Socket is closed")
        self.events.append(WireEvent("send", bytes(data)))
        self._sent_since_release = True

    def recv(self, size: int) -> bytes:
        if self.closed:
            raise OSError("Socket is closed")
        if not self._current and self._segments:
            if not self._sent_since_release:
                raise OutOfOrderReadError("Client read a response without sending a request")
            self._current = self._segments.popleft()
            self._sent_since_release = False

        limit = size if self._max_recv is None else min(size, self._max_recv)
        data, self._current = self._current[:limit], self._current[limit:]
        if data:
            self.events.append(WireEvent("recv", data))
        return data

    def settimeout(self, timeout: float | None) -> None:
        self.timeout = timeout

    def close(self) -> None:
        self.closed = True
