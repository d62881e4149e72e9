"""OPTIONS negotiation: discover what the ICAP server supports."""

import logging
import socket
from dataclasses import dataclass, field
from typing import List, Optional

from ._protocol import IcapProtocol, ServerEndpoint, parse_status_line
from .chunked import read_chunked_body
from .exception import IcapProtocolError, IcapServerError
from .headers import HeaderDict
from .wire import WireReader, send_data

logger = logging.getLogger(__name__)


@dataclass
class ServerCapabilities:
    """Capabilities advertised in an OPTIONS response.

    ``preview_size`` is None when the server did not send a Preview header,
    in which case preview mode is unavailable.
    """

    preview_size: Optional[int] = None
    methods: List[str] = field(default_factory=list)
    istag: Optional[str] = None
    headers: HeaderDict = field(default_factory=HeaderDict)

    @property
    def supports_preview(self) -> bool:
        return self.preview_size is not None


class OptionsNegotiator(IcapProtocol):
    """Sends OPTIONS and records the server's preview size."""

    def __init__(self, sock: socket.socket, reader: WireReader, trace: bool = False) -> None:
        self._socket = sock
        self._reader = reader
        self._trace = trace

    def negotiate(self, endpoint: ServerEndpoint, url: str) -> ServerCapabilities:
        """Send an OPTIONS request and parse the server's capabilities.

        The header block (and an ``opt-body`` if one is declared) is fully
        drained so the connection is positioned for the next request.

        Raises:
            IcapProtocolError: If the status line or a header value is malformed.
            IcapServerError: If the status is not 2xx.
        """
        logger.debug(f"Sending OPTIONS request for {url}")
        send_data(self._socket, self.build_options(endpoint, url), trace=self._trace)

        status_code, status_message = parse_status_line(self._reader.skip_blank_lines())
        if not 200 <= status_code < 300:
            raise IcapServerError(
                f"ICAP server returned error {status_code} {status_message}".rstrip(),
                status_code,
            )

        capabilities = ServerCapabilities()
        for line in self._reader.read_header_lines():
            capabilities.headers.add_line(line)

        headers = capabilities.headers
        if "Preview" in headers:
            value = headers["Preview"]
            if not value.isdigit():
                raise IcapProtocolError(f"Invalid Preview header: {value!r}")
            capabilities.preview_size = int(value)
            logger.debug(f"Set preview size to {capabilities.preview_size}")
        if "Methods" in headers:
            capabilities.methods = [m.strip() for m in headers["Methods"].split(",") if m.strip()]
        if "ISTag" in headers:
            capabilities.istag = headers["ISTag"].strip('"')

        if "Encapsulated" in headers:
            sections = dict(self.parse_encapsulated(headers["Encapsulated"]))
            if "opt-body" in sections:
                body = read_chunked_body(self._reader)
                logger.debug(f"Discarded {len(body)} byte OPTIONS body")

        logger.info(
            f"OPTIONS {status_code}: preview={capabilities.preview_size}, "
            f"methods={capabilities.methods}"
        )
        return capabilities
