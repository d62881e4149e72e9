"""
Pytest plugin for testing code that speaks ICAP through icapscan.

This plugin provides fixtures and builders for exercising the ICAP protocol
engine without a live server: responses are scripted byte-for-byte and every
byte the client sends is recorded for assertions.

Fixture Categories:
    **Scripted connection fixtures** (no server required):
        - `fake_icap_socket` - Factory creating a FakeIcapSocket from response segments
        - `scripted_icap_client` - Factory creating an IcapClient wired to a FakeIcapSocket

    **Response fixtures** (raw wire bytes):
        - `icap_response_builder` - Factory for building custom responses
        - `icap_response_clean` - 204 No Content
        - `icap_response_virus` - 200 OK wrapping an HTTP 403 with X-Infection-Found
        - `icap_response_options` - OPTIONS response advertising Preview: 1024
        - `icap_response_continue` - 100 Continue

    **Helper Fixtures**:
        - `sample_clean_content` - Sample bytes for testing
        - `sample_file` - Temporary file Path for testing

Markers:
    @pytest.mark.icap(url)
        Override the service URL used by `scripted_icap_client`.

Example - Scripting a preview exchange:
    >>> def test_preview(scripted_icap_client, icap_response_builder):
    ...     client, sock = scripted_icap_client(
    ...         icap_response_builder().options(preview=4).build(),
    ...         icap_response_builder().continue_response().build(),
    ...         icap_response_builder().clean().build(),
    ...     )
    ...     verdict = client.scan_bytes(b"0123456789", preview=True)
    ...     assert not verdict.infected
    ...     assert b"Preview: 4" in sock.sent

See Also:
    - IcapResponseBuilder: Fluent builder for wire-format responses
    - FakeIcapSocket: Scripted socket with send/receive recording
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from icapscan import IcapClient

from .builder import IcapResponseBuilder, encode_chunked
from .mock import FakeIcapSocket, OutOfOrderReadError, WireEvent

__all__ = [
    # Plugin hooks
    "pytest_configure",
    # Connection fixtures
    "fake_icap_socket",
    "scripted_icap_client",
    # Response fixtures
    "icap_response_builder",
    "icap_response_clean",
    "icap_response_virus",
    "icap_response_options",
    "icap_response_continue",
    # Helper fixtures
    "sample_clean_content",
    "sample_file",
    # Builders and fakes
    "IcapResponseBuilder",
    "encode_chunked",
    "FakeIcapSocket",
    "OutOfOrderReadError",
    "WireEvent",
]

DEFAULT_SERVICE_URL = "icap://icap.test/avscan"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "icap(url): service URL used by the scripted_icap_client fixture",
    )


@pytest.fixture
def icap_response_builder() -> Callable[[], IcapResponseBuilder]:
    """
    Factory fixture returning fresh IcapResponseBuilder instances.

    Example:
        >>> def test_custom(icap_response_builder):
        ...     data = icap_response_builder().virus("Trojan.Test").build()
        ...     assert data.startswith(b"ICAP/1.0 200")
    """
    return IcapResponseBuilder


@pytest.fixture
def icap_response_clean() -> bytes:
    """204 No Content response."""
    return IcapResponseBuilder().clean().build()


@pytest.fixture
def icap_response_virus() -> bytes:
    """Infection response: ICAP 200 wrapping an HTTP 403."""
    return IcapResponseBuilder().virus().build()


@pytest.fixture
def icap_response_options() -> bytes:
    """OPTIONS response advertising a 1024 byte preview."""
    return IcapResponseBuilder().options().build()


@pytest.fixture
def icap_response_continue() -> bytes:
    """100 Continue interim response."""
    return IcapResponseBuilder().continue_response().build()


@pytest.fixture
def fake_icap_socket() -> Callable[..., FakeIcapSocket]:
    """Factory fixture: ``fake_icap_socket(*segments, max_recv=None)``."""
    return FakeIcapSocket


@pytest.fixture
def scripted_icap_client(request, monkeypatch):
    """
    Factory fixture creating an IcapClient whose connection is a FakeIcapSocket.

    Call it with the response segments the server should send; it returns
    ``(client, sock)``. Extra keyword arguments go to IcapClient. The client
    is disconnected at teardown.
    """
    marker = request.node.get_closest_marker("icap")
    url = marker.args[0] if marker and marker.args else DEFAULT_SERVICE_URL
    clients = []

    def factory(*segments: bytes, max_recv: int | None = None, **kwargs):
        sock = FakeIcapSocket(*segments, max_recv=max_recv)
        monkeypatch.setattr(
            "icapscan.icap.socket.create_connection", lambda *args, **kw: sock
        )
        client = IcapClient.from_url(url, **kwargs)
        client.connect()
        clients.append(client)
        return client, sock

    yield factory

    for client in clients:
        client.disconnect()


@pytest.fixture
def sample_clean_content() -> bytes:
    """Sample clean content for testing."""
    return b"This is clean test content for ICAP scanning."


@pytest.fixture
def sample_file(tmp_path: Path, sample_clean_content: bytes) -> Path:
    """Temporary file with clean content."""
    path = tmp_path / "sample.txt"
    path.write_bytes(sample_clean_content)
    return path
