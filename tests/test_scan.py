"""
Scan orchestration tests: full request/response exchanges over a scripted socket.
"""

import io
import logging
from unittest.mock import MagicMock

import pytest

from icapscan import ScanTarget
from icapscan.exception import IcapProtocolError
from pytest_icapscan import OutOfOrderReadError

RESPMOD_HEADERS = (
    b"RESPMOD icap://icap.test/avscan ICAP/1.0\r\n"
    b"Host: icap.test\r\n"
    b"Allow: 204\r\n"
    b"Encapsulated: res-hdr=0, res-body=19\r\n"
    b"\r\n"
    b"HTTP/1.1 200 OK\r\n"
    b"\r\n"
)


def test_small_file_without_preview_is_clean(scripted_icap_client, icap_response_clean):
    """10-byte file, no preview: one chunk and a plain terminator; 204 is clean."""
    client, sock = scripted_icap_client(icap_response_clean)

    verdict = client.scan_bytes(b"0123456789")

    assert verdict.infected is False
    assert verdict.icap_status == 204
    assert sock.sent == RESPMOD_HEADERS + b"a\r\n0123456789\r\n0\r\n\r\n"


def test_preview_with_continue_sends_remainder(scripted_icap_client, icap_response_builder):
    """10-byte file, preview=4: the server asks for the rest and reports an infection."""
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=4).build(),
        icap_response_builder().continue_response().build(),
        icap_response_builder().virus("Eicar-Test-Signature").build(),
    )

    verdict = client.scan_bytes(b"0123456789", preview=True)

    options_request, preview_request, remainder = sock.sent_segments()
    assert options_request.startswith(b"OPTIONS icap://icap.test/avscan ICAP/1.0\r\n")
    assert b"Preview: 4\r\n" in preview_request
    assert preview_request.endswith(b"\r\n\r\n4\r\n0123\r\n0\r\n\r\n")
    assert remainder == b"6\r\n456789\r\n0; ieof\r\n\r\n"
    assert verdict.infected is True
    assert verdict.http_status == 403
    assert verdict.threat_info[0].startswith("X-Infection-Found: ")


def test_preview_covering_whole_body_sends_ieof(scripted_icap_client, icap_response_builder):
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=1024).build(),
        icap_response_builder().clean().build(),
    )

    verdict = client.scan_bytes(b"tiny file", filename="tiny.txt", preview=True)

    _, preview_request = sock.sent_segments()
    assert preview_request.endswith(b"9\r\ntiny file\r\n0; ieof\r\n\r\n")
    assert b'filename="tiny.txt"' in preview_request
    assert verdict.infected is False
    assert sock.pending_segments == 0


def test_preview_requested_but_not_offered(scripted_icap_client, icap_response_builder):
    """Without a Preview header in OPTIONS the body goes out whole and unannounced."""
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=None).build(),
        icap_response_builder().clean().build(),
    )

    verdict = client.scan_bytes(b"0123456789", preview=True)

    _, respmod = sock.sent_segments()
    assert b"Preview" not in respmod
    assert respmod.endswith(b"a\r\n0123456789\r\n0\r\n\r\n")
    assert verdict.infected is False


def test_preview_not_requested_ignores_server_preview(scripted_icap_client, icap_response_builder):
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=4).build(),
        icap_response_builder().clean().build(),
    )
    client.options()

    client.scan_bytes(b"0123456789")

    _, respmod = sock.sent_segments()
    assert b"Preview" not in respmod
    assert respmod.endswith(b"a\r\n0123456789\r\n0\r\n\r\n")


def test_preview_response_without_continue(scripted_icap_client, icap_response_builder):
    """The server may decide from the preview alone."""
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=4).build(),
        icap_response_builder().virus().build(),
    )

    verdict = client.scan_bytes(b"0123456789", preview=True)

    assert verdict.infected is True
    assert len(sock.sent_segments()) == 2


def test_continue_after_complete_body_sends_empty_sequence(
    scripted_icap_client, icap_response_continue, icap_response_clean, caplog
):
    """A stray 100 with nothing left to send is answered with a bare terminator."""
    client, sock = scripted_icap_client(icap_response_continue, icap_response_clean)

    with caplog.at_level(logging.WARNING, logger="icapscan.scan"):
        verdict = client.scan_bytes(b"abc")

    assert sock.sent_segments()[-1] == b"0\r\n\r\n"
    assert verdict.infected is False
    assert "after the whole body" in caplog.text


def test_sequential_scans_share_one_connection(scripted_icap_client, icap_response_builder):
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=2).build(),
        icap_response_builder().clean().build(),
        icap_response_builder().continue_response().build(),
        icap_response_builder().virus().build(),
        icap_response_builder().clean().build(),
    )

    first = client.scan_bytes(b"a", preview=True)
    second = client.scan_bytes(b"bcdef", preview=True)
    third = client.scan_bytes(b"clean")

    assert [first.infected, second.infected, third.infected] == [False, True, False]
    assert sock.sent.count(b"OPTIONS ") == 1
    assert sock.pending_segments == 0


def test_fragmented_responses(scripted_icap_client, icap_response_builder):
    client, _ = scripted_icap_client(
        icap_response_builder().options(preview=4).build(),
        icap_response_builder().continue_response().build(),
        icap_response_builder().virus().build(),
        max_recv=3,
    )

    assert client.scan_bytes(b"0123456789", preview=True).infected is True


def test_large_body_preview_then_remainder(scripted_icap_client, icap_response_builder):
    data = bytes(i % 256 for i in range(10000))
    client, sock = scripted_icap_client(
        icap_response_builder().options(preview=5000).build(),
        icap_response_builder().continue_response().build(),
        icap_response_builder().clean().build(),
    )

    client.scan_bytes(data, preview=True)

    _, preview_request, remainder = sock.sent_segments()
    assert preview_request.endswith(data[4096:5000] + b"\r\n0\r\n\r\n")
    assert remainder.startswith(b"1000\r\n" + data[5000:9096] + b"\r\n")
    assert remainder.endswith(b"388\r\n" + data[9096:] + b"\r\n0; ieof\r\n\r\n")


def test_scan_target_source_read_forward_only(scripted_icap_client, icap_response_clean):
    client, _ = scripted_icap_client(icap_response_clean)
    source = MagicMock()
    source.read.side_effect = [b"data", b""]

    client.scan(ScanTarget(client.service_url, source, "stream.bin"))

    source.seek.assert_not_called()
    source.tell.assert_not_called()


def test_verdict_carries_display_name(scripted_icap_client, icap_response_clean):
    client, _ = scripted_icap_client(icap_response_clean)

    verdict = client.scan_stream(io.BytesIO(b"data"), filename="report.pdf")

    assert verdict.display_name == "report.pdf"
    assert verdict.is_clean


def test_scan_file_announces_path(scripted_icap_client, icap_response_clean, sample_file):
    client, sock = scripted_icap_client(icap_response_clean)

    client.scan_file(sample_file)

    assert f'filename="{sample_file}"'.encode() in sock.sent
    assert sock.sent.endswith(b"\r\n0\r\n\r\n")


def test_protocol_error_produces_no_verdict(scripted_icap_client):
    client, _ = scripted_icap_client(b"GARBAGE\r\n")

    with pytest.raises(IcapProtocolError):
        client.scan_bytes(b"content")

    assert not client.is_connected


def test_scripted_socket_detects_read_before_send(fake_icap_socket, icap_response_clean):
    sock = fake_icap_socket(icap_response_clean)

    with pytest.raises(OutOfOrderReadError):
        sock.recv(10)
