"""ICAP response parsing.

:class:`ResponseReader` walks one RESPMOD response off the wire as an
explicit state machine::

    AWAIT_ICAP_STATUS -> ICAP_HEADERS -> DONE                        (204)
                                      -> CONTINUE -> AWAIT_ICAP_STATUS (100)
                                      -> AWAIT_HTTP_STATUS -> HTTP_HEADERS
                                         -> HTTP_BODY -> DONE
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ._protocol import IcapProtocol, parse_http_status_line, parse_status_line
from .chunked import read_chunked_body
from .exception import IcapProtocolError, IcapServerError
from .headers import HeaderDict
from .wire import WireReader

logger = logging.getLogger(__name__)


@dataclass
class IcapResponseHeader:
    """Status line and header block of an ICAP response."""

    status_code: int
    status_message: str = ""
    headers: HeaderDict = field(default_factory=HeaderDict)
    threat_headers: List[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        """Check if response indicates success."""
        return 200 <= self.status_code < 300

    @property
    def is_no_modification(self) -> bool:
        """Check if server returned 204 (no modification needed)."""
        return self.status_code == 204

    @property
    def is_continue(self) -> bool:
        return self.status_code == 100


@dataclass
class EmbeddedHttpMessage:
    """The HTTP response an ICAP server returns in place of the scanned one."""

    status_code: int
    status_message: str = ""
    headers: HeaderDict = field(default_factory=HeaderDict)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class Verdict:
    """Outcome of scanning one target."""

    infected: bool
    threat_info: List[str] = field(default_factory=list)
    icap_status: Optional[int] = None
    http_status: Optional[int] = None
    display_name: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        return not self.infected


@dataclass
class ScanResult:
    """Everything the response reader collected for one scan."""

    icap: IcapResponseHeader
    http: Optional[EmbeddedHttpMessage] = None
    continues: int = 0

    @property
    def verdict(self) -> Verdict:
        infected = self.http is not None and not self.http.is_success
        return Verdict(
            infected=infected,
            threat_info=list(self.icap.threat_headers),
            icap_status=self.icap.status_code,
            http_status=self.http.status_code if self.http is not None else None,
        )


class ReaderState(enum.Enum):
    AWAIT_ICAP_STATUS = "await-icap-status"
    ICAP_HEADERS = "icap-headers"
    CONTINUE = "continue"
    AWAIT_HTTP_STATUS = "await-http-status"
    HTTP_HEADERS = "http-headers"
    HTTP_BODY = "http-body"
    DONE = "done"


class ResponseReader(IcapProtocol):
    """Reads one ICAP response, including any 100 Continue rounds.

    Args:
        reader: The connection's shared WireReader
        on_continue: Called on each ``100 Continue``; must transmit the next
            body segment before returning. Without it a 100 is a protocol error.
    """

    def __init__(
        self,
        reader: WireReader,
        on_continue: Optional[Callable[[], None]] = None,
    ) -> None:
        self._reader = reader
        self._on_continue = on_continue
        self.state = ReaderState.AWAIT_ICAP_STATUS

    def read(self) -> ScanResult:
        """Run the state machine to completion.

        Raises:
            IcapProtocolError: If a status line, header or body is malformed.
            IcapServerError: If the ICAP status is not 1xx or 2xx.
            IcapConnectionError: If the connection closes mid-response.
        """
        threat_headers: List[str] = []
        icap: Optional[IcapResponseHeader] = None
        http: Optional[EmbeddedHttpMessage] = None
        sections: List[str] = []
        continues = 0

        self.state = ReaderState.AWAIT_ICAP_STATUS
        while self.state is not ReaderState.DONE:
            if self.state is ReaderState.AWAIT_ICAP_STATUS:
                status_code, status_message = parse_status_line(self._reader.skip_blank_lines())
                logger.debug(f"ICAP status: {status_code} {status_message}")
                if not 100 <= status_code < 300:
                    raise IcapServerError(
                        f"ICAP server returned error {status_code} {status_message}".rstrip(),
                        status_code,
                    )
                icap = IcapResponseHeader(
                    status_code, status_message, threat_headers=threat_headers
                )
                self.state = ReaderState.ICAP_HEADERS

            elif self.state is ReaderState.ICAP_HEADERS:
                for line in self._reader.read_header_lines():
                    name = icap.headers.add_line(line)
                    if line.startswith("X-"):
                        threat_headers.append(line.rstrip("\r\n"))
                    elif name is None:
                        logger.debug(f"Ignoring malformed ICAP header line: {line!r}")

                if icap.is_continue:
                    self.state = ReaderState.CONTINUE
                elif icap.is_no_modification:
                    self.state = ReaderState.DONE
                else:
                    sections = self._embedded_sections(icap.headers)
                    if sections[0] == "req-hdr":
                        # RESPMOD responses may echo the request header first.
                        for _ in self._reader.read_header_lines():
                            pass
                    self.state = (
                        ReaderState.AWAIT_HTTP_STATUS
                        if "res-hdr" in sections
                        else ReaderState.HTTP_BODY
                    )

            elif self.state is ReaderState.CONTINUE:
                if self._on_continue is None:
                    raise IcapProtocolError("Unexpected 100 Continue: no body remains to send")
                continues += 1
                logger.debug("Received 100 Continue, sending next body segment")
                self._on_continue()
                self.state = ReaderState.AWAIT_ICAP_STATUS

            elif self.state is ReaderState.AWAIT_HTTP_STATUS:
                http_code, http_message = parse_http_status_line(self._reader.read_line())
                http = EmbeddedHttpMessage(http_code, http_message)
                logger.debug(f"Embedded HTTP status: {http_code} {http_message}")
                self.state = ReaderState.HTTP_HEADERS

            elif self.state is ReaderState.HTTP_HEADERS:
                for line in self._reader.read_header_lines():
                    http.headers.add_line(line)
                self.state = ReaderState.HTTP_BODY

            elif self.state is ReaderState.HTTP_BODY:
                body = self._read_http_body(sections, icap, http)
                if http is not None:
                    http.body = body
                self.state = ReaderState.DONE

        return ScanResult(icap=icap, http=http, continues=continues)

    def _embedded_sections(self, headers: HeaderDict) -> List[str]:
        """Section names from the Encapsulated header, or a bare res-hdr if absent."""
        if "Encapsulated" not in headers:
            return ["res-hdr"]
        return [name for name, _ in self.parse_encapsulated(headers["Encapsulated"])]

    def _read_http_body(
        self,
        sections: List[str],
        icap: IcapResponseHeader,
        http: Optional[EmbeddedHttpMessage],
    ) -> bytes:
        if "res-body" in sections or "req-body" in sections:
            return read_chunked_body(self._reader)
        if "null-body" in sections or "opt-body" in sections:
            return b""

        # Unframed by ICAP: use the embedded Content-Length, then the end of
        # the connection if the server will close it, then a blank line.
        if http is not None and "Content-Length" in http.headers:
            value = http.headers["Content-Length"]
            if not value.isdigit():
                raise IcapProtocolError(f"Invalid Content-Length: {value!r}")
            return self._reader.read_exact(int(value))

        if icap.headers.get("Connection", "").lower() == "close":
            return self._reader.read_to_close()

        body = b""
        while True:
            line = self._reader.read_line()
            if not line or line in (b"\r\n", b"\n"):
                return body
            body += line
