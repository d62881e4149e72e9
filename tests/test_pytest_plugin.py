"""Tests for the pytest_icapscan plugin using pytester."""

pytest_plugins = ["pytester"]


def test_icap_marker_registered(pytester):
    """Verify the icap marker is properly registered."""
    pytester.makepyfile(
        """
        import pytest

        @pytest.mark.icap("icap://example.test/avscan")
        def test_with_marker():
            pass
        """
    )
    result = pytester.runpytest("--strict-markers")
    result.assert_outcomes(passed=1)


def test_sample_clean_content_fixture(pytester):
    """Verify sample_clean_content fixture provides bytes."""
    pytester.makepyfile(
        """
        def test_content(sample_clean_content):
            assert isinstance(sample_clean_content, bytes)
            assert b"clean" in sample_clean_content.lower()
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)


def test_sample_file_fixture(pytester):
    """Verify sample_file fixture creates a temporary file."""
    pytester.makepyfile(
        """
        from pathlib import Path

        def test_file(sample_file, sample_clean_content):
            assert isinstance(sample_file, Path)
            assert sample_file.read_bytes() == sample_clean_content
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)


def test_response_fixtures(pytester):
    """Verify the canned response fixtures produce wire bytes."""
    pytester.makepyfile(
        """
        def test_responses(
            icap_response_clean,
            icap_response_virus,
            icap_response_options,
            icap_response_continue,
        ):
            assert icap_response_clean == b"ICAP/1.0 204 No Content\\r\\n\\r\\n"
            assert icap_response_virus.startswith(b"ICAP/1.0 200 OK\\r\\n")
            assert b"X-Infection-Found:" in icap_response_virus
            assert b"Preview: 1024\\r\\n" in icap_response_options
            assert icap_response_continue == b"ICAP/1.0 100 Continue\\r\\n\\r\\n"
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)


def test_icap_response_builder_fixture(pytester):
    """Verify icap_response_builder returns a fresh builder per call."""
    pytester.makepyfile(
        """
        def test_builder(icap_response_builder):
            first = icap_response_builder().with_header("X-One", "1")
            second = icap_response_builder()
            assert b"X-One" in first.build()
            assert b"X-One" not in second.build()
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)


def test_scripted_icap_client_fixture(pytester):
    """Verify scripted_icap_client runs a full scan against scripted responses."""
    pytester.makepyfile(
        """
        def test_scan(scripted_icap_client, icap_response_virus):
            client, sock = scripted_icap_client(icap_response_virus)
            verdict = client.scan_bytes(b"payload", filename="payload.bin")
            assert verdict.infected
            assert sock.sent.startswith(b"RESPMOD icap://icap.test/avscan ICAP/1.0\\r\\n")
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)


def test_scripted_icap_client_uses_marker_url(pytester):
    """Verify the icap marker overrides the scripted client's service URL."""
    pytester.makepyfile(
        """
        import pytest

        @pytest.mark.icap("icap://scanner.internal:11344/virus_scan")
        def test_scan(scripted_icap_client, icap_response_clean):
            client, sock = scripted_icap_client(icap_response_clean)
            client.scan_bytes(b"payload")
            assert client.port == 11344
            assert sock.sent.startswith(
                b"RESPMOD icap://scanner.internal:11344/virus_scan ICAP/1.0\\r\\n"
                b"Host: scanner.internal\\r\\n"
            )
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)


def test_scripted_icap_client_disconnects_at_teardown(pytester):
    """Verify clients created by the factory are closed after the test."""
    pytester.makepyfile(
        """
        import pytest

        sockets = []

        def test_scan(scripted_icap_client):
            _, sock = scripted_icap_client()
            sockets.append(sock)

        def test_closed():
            assert sockets[0].closed
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=2)


def test_plugin_exports(pytester):
    """Verify the plugin module exposes its public names."""
    pytester.makepyfile(
        """
        import pytest_icapscan

        def test_exports():
            for name in (
                "IcapResponseBuilder",
                "FakeIcapSocket",
                "OutOfOrderReadError",
                "WireEvent",
                "encode_chunked",
                "scripted_icap_client",
            ):
                assert name in pytest_icapscan.__all__
                assert hasattr(pytest_icapscan, name)
        """
    )
    result = pytester.runpytest()
    result.assert_outcomes(passed=1)
