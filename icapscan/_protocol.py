"""Shared ICAP protocol constants and request building.

This module builds the request header blocks sent by the client and parses
the few structured header values the response reader depends on.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .exception import IcapConnectionError, IcapProtocolError

_ENCAPSULATED_ENTRY = re.compile(r"^(req-hdr|res-hdr|req-body|res-body|opt-body|null-body)=(\d+)$")
_STATUS_LINE = re.compile(r"^ICAP/1\.0 (\d+)(?: (.*))?$")
_HTTP_STATUS_LINE = re.compile(r"^HTTP/1\.[01] (\d+)(?: (.*))?$")


def _quote(value: str) -> str:
    """Render ``value`` as the body of an HTTP quoted-string on one line."""
    value = value.replace("\\", "\\\\").replace('"', '\\"')
    return value.replace("\r", " ").replace("\n", " ")


@dataclass(frozen=True)
class ServerEndpoint:
    """Host and port of an ICAP server."""

    host: str
    port: int = 1344

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class IcapProtocol:
    """Base class with shared ICAP protocol constants and request builders."""

    DEFAULT_PORT: int = 1344
    CRLF: str = "\r\n"
    ICAP_VERSION: str = "ICAP/1.0"
    BUFFER_SIZE: int = 8192
    CHUNK_SIZE: int = 4096

    def _build_request(self, request_line: str, headers: Dict[str, str]) -> bytes:
        """Build an ICAP request header block from a request line and headers.

        Args:
            request_line: The ICAP request line including its CRLF
            headers: Ordered mapping of ICAP headers

        Returns:
            Encoded request bytes, terminated by an empty line
        """
        request = request_line
        for key, value in headers.items():
            request += f"{key}: {value}{self.CRLF}"
        request += self.CRLF
        return request.encode("utf-8")

    def build_options(self, endpoint: ServerEndpoint, url: str) -> bytes:
        """Build an OPTIONS request for the given service URL."""
        request_line = f"OPTIONS {url} {self.ICAP_VERSION}{self.CRLF}"
        return self._build_request(request_line, {"Host": endpoint.host})

    def build_response_header_block(self, filename: Optional[str] = None) -> bytes:
        """Build the synthetic HTTP response header that wraps a scanned file.

        Args:
            filename: Optional name announced in a content-disposition header.
                Backslashes and quotes are escaped; CR and LF become spaces.

        Returns:
            HTTP response header bytes, terminated by an empty line
        """
        block = f"HTTP/1.1 200 OK{self.CRLF}"
        if filename:
            block += (
                f'content-disposition: attachment; filename="{_quote(filename)}"{self.CRLF}'
            )
        block += self.CRLF
        return block.encode("utf-8")

    def build_respmod(
        self,
        url: str,
        endpoint: ServerEndpoint,
        preview_size: Optional[int],
        response_header_block: bytes,
    ) -> bytes:
        """Build a RESPMOD request header block.

        Args:
            url: ICAP service URL used as the request target
            endpoint: Server the request is addressed to
            preview_size: Preview byte count, or None to send without preview
            response_header_block: The encapsulated HTTP response header that
                follows the ICAP headers on the wire

        Returns:
            ICAP header bytes. The caller sends ``response_header_block`` and
            then the chunked body immediately after.
        """
        request_line = f"RESPMOD {url} {self.ICAP_VERSION}{self.CRLF}"
        headers = {
            "Host": endpoint.host,
            "Allow": "204",
        }
        if preview_size is not None:
            headers["Preview"] = str(preview_size)
        headers["Encapsulated"] = self._calculate_respmod_encapsulated(response_header_block)
        return self._build_request(request_line, headers)

    def _calculate_respmod_encapsulated(self, http_response_headers: bytes) -> str:
        """Calculate the Encapsulated header value for RESPMOD without a request header."""
        return f"res-hdr=0, res-body={len(http_response_headers)}"

    @staticmethod
    def parse_encapsulated(value: str) -> List[Tuple[str, int]]:
        """Parse an Encapsulated header value into ordered (section, offset) pairs.

        Raises:
            IcapProtocolError: If an entry is not ``<section>=<offset>``.
        """
        sections = []
        for entry in value.split(","):
            match = _ENCAPSULATED_ENTRY.match(entry.strip())
            if not match:
                raise IcapProtocolError(f"Invalid Encapsulated header: {value!r}")
            sections.append((match.group(1), int(match.group(2))))
        return sections


def _parse_line(pattern: "re.Pattern[str]", line: bytes, kind: str) -> Tuple[int, str]:
    if not line:
        raise IcapConnectionError(f"Connection closed while waiting for {kind} status line")
    text = line.decode("latin-1").rstrip("\r\n")
    match = pattern.match(text)
    if not match:
        raise IcapProtocolError(f"Invalid {kind} response: {text!r}")
    return int(match.group(1)), match.group(2) or ""


def parse_status_line(line: bytes) -> Tuple[int, str]:
    """Parse ``ICAP/1.0 <code> <reason>`` into (code, reason).

    Raises:
        IcapConnectionError: If ``line`` is empty (the peer closed the connection).
        IcapProtocolError: If the line does not match the ICAP status grammar.
    """
    return _parse_line(_STATUS_LINE, line, "ICAP")


def parse_http_status_line(line: bytes) -> Tuple[int, str]:
    """Parse an embedded ``HTTP/1.x <code> <reason>`` status line."""
    return _parse_line(_HTTP_STATUS_LINE, line, "HTTP")
