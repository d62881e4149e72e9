"""Pytest configuration for icapscan tests."""

import io
import socketserver
import threading
from unittest.mock import MagicMock

import pytest

from pytest_icapscan import IcapResponseBuilder

EICAR_TEST_STRING = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


def pytest_collection_modifyitems(items: list) -> None:
    """Bound loopback tests so a protocol deadlock fails instead of hanging."""
    for item in items:
        if "loopback" in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


@pytest.fixture
def mock_socket():
    """
    Factory for a MagicMock socket whose recv() replays ``data``.

    ``max_recv`` caps how many bytes each recv() call returns.
    """

    def factory(data: bytes = b"", max_recv=None):
        stream = io.BytesIO(data)
        sock = MagicMock()
        sock.recv.side_effect = lambda size: stream.read(min(size, max_recv or size))
        return sock

    return factory


def sent_bytes(sock: MagicMock) -> bytes:
    """Concatenate everything passed to sock.sendall()."""
    return b"".join(call.args[0] for call in sock.sendall.call_args_list)


def _read_chunks(rfile):
    """Read one chunked body; returns (body, ieof)."""
    body = b""
    while True:
        size_line = rfile.readline()
        size = int(size_line.split(b";")[0].strip(), 16)
        if size == 0:
            rfile.readline()
            return body, b"ieof" in size_line
        body += rfile.read(size)
        rfile.read(2)


class _IcapHandler(socketserver.StreamRequestHandler):
    """A tiny ICAP server: answers OPTIONS and RESPMOD, flags EICAR content."""

    def handle(self):
        server = self.server
        while True:
            request_line = self.rfile.readline()
            if not request_line:
                return
            if request_line in (b"\r\n", b"\n"):
                continue
            method = request_line.split(b" ", 1)[0]
            headers = {}
            while True:
                line = self.rfile.readline()
                if line in (b"\r\n", b"\n", b""):
                    break
                key, _, value = line.decode().partition(":")
                headers[key.strip().lower()] = value.strip()

            if method == b"OPTIONS":
                self.wfile.write(server.options_response)
                continue

            offset = int(headers["encapsulated"].rsplit("res-body=", 1)[1])
            server.header_blocks.append(self.rfile.read(offset))
            body, ieof = _read_chunks(self.rfile)
            if "preview" in headers and not ieof:
                server.continues += 1
                self.wfile.write(IcapResponseBuilder().continue_response().build())
                remainder, _ = _read_chunks(self.rfile)
                body += remainder
            server.received.append(body)

            if EICAR_TEST_STRING in body:
                self.wfile.write(IcapResponseBuilder().virus("Eicar-Test-Signature").build())
            else:
                self.wfile.write(IcapResponseBuilder().clean().build())


class LoopbackIcapServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, preview=None):
        super().__init__(("127.0.0.1", 0), _IcapHandler)
        self.options_response = IcapResponseBuilder().options(preview=preview).build()
        self.received = []
        self.header_blocks = []
        self.continues = 0

    @property
    def url(self) -> str:
        host, port = self.server_address
        return f"icap://{host}:{port}/avscan"


@pytest.fixture
def loopback_icap_server():
    """Factory starting a LoopbackIcapServer on 127.0.0.1 in a background thread."""
    servers = []

    def factory(preview=None):
        server = LoopbackIcapServer(preview=preview)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def closed_port() -> int:
    """A local port with no listener."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
