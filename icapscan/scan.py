"""Drives a single RESPMOD scan over an established connection."""

import logging
import socket
from dataclasses import dataclass
from typing import BinaryIO, Optional

from ._protocol import IcapProtocol, ServerEndpoint
from .chunked import ChunkedBodyWriter
from .options import ServerCapabilities
from .response import ResponseReader, Verdict
from .wire import WireReader, send_data

logger = logging.getLogger(__name__)


@dataclass
class ScanTarget:
    """One item to scan.

    Attributes:
        resource_url: ICAP URL used as the RESPMOD request target
        source: Readable binary stream; consumed once, forward only
        display_name: Name announced to the server and used in reports
    """

    resource_url: str
    source: BinaryIO
    display_name: Optional[str] = None


class ScanOrchestrator(IcapProtocol):
    """Composes request building, chunked transmission and response reading."""

    def __init__(
        self,
        sock: socket.socket,
        reader: WireReader,
        endpoint: ServerEndpoint,
        capabilities: Optional[ServerCapabilities] = None,
        trace: bool = False,
    ) -> None:
        self._socket = sock
        self._reader = reader
        self._endpoint = endpoint
        self._capabilities = capabilities or ServerCapabilities()
        self._trace = trace

    def scan(self, target: ScanTarget, preview: bool = False) -> Verdict:
        """Submit ``target`` with RESPMOD and interpret the server's verdict.

        Args:
            target: The item to scan
            preview: Use preview mode if the server advertised a preview size

        Returns:
            Verdict for the target
        """
        preview_size = self._capabilities.preview_size if preview else None
        if preview and preview_size is None:
            logger.debug("Preview requested but not offered by server; sending full body")

        header_block = self.build_response_header_block(target.display_name)
        request = self.build_respmod(
            target.resource_url, self._endpoint, preview_size, header_block
        )
        send_data(self._socket, request + header_block, trace=self._trace)

        writer = ChunkedBodyWriter(self._socket, trace=self._trace, chunk_size=self.CHUNK_SIZE)
        writer.send(target.source, cap=preview_size)

        def send_remainder() -> None:
            if writer.completed:
                logger.warning(
                    f"Server sent 100 Continue for {target.display_name} after the whole body"
                )
            writer.send(target.source)

        result = ResponseReader(self._reader, on_continue=send_remainder).read()
        verdict = result.verdict
        verdict.display_name = target.display_name
        logger.info(
            f"Scanned {target.display_name or target.resource_url}: ICAP {verdict.icap_status}, "
            f"{'infected' if verdict.infected else 'clean'} ({writer.total_sent} bytes)"
        )
        return verdict
