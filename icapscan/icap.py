"""Synchronous ICAP client session."""

import io
import logging
import re
import socket
from pathlib import Path
from typing import Any, BinaryIO, Optional, Tuple, Union

from ._protocol import IcapProtocol, ServerEndpoint
from .exception import IcapConnectionError, IcapException, IcapTimeoutError
from .options import OptionsNegotiator, ServerCapabilities
from .response import Verdict
from .scan import ScanOrchestrator, ScanTarget
from .wire import WireReader

logger = logging.getLogger(__name__)

_ICAP_URL = re.compile(r"^icap://([^/:]+)(?::(\d+))?(/.*)?$")


def parse_icap_url(url: str) -> Tuple[ServerEndpoint, str]:
    """Split ``icap://host[:port][/service]`` into an endpoint and the URL.

    Raises:
        ValueError: If ``url`` is not an icap:// URL.
    """
    match = _ICAP_URL.match(url or "")
    if not match:
        raise ValueError(f"Invalid URL: {url!r}")
    port = int(match.group(2)) if match.group(2) else IcapProtocol.DEFAULT_PORT
    return ServerEndpoint(match.group(1), port), url


class IcapClient(IcapProtocol):
    """
    ICAP (Internet Content Adaptation Protocol) client session. Based on RFC 3507.

    Holds the connection, the shared wire reader and the capabilities learned
    from OPTIONS. One scan is in flight at a time; scans over the same
    session run strictly one after another.

    Example:
        >>> from icapscan import IcapClient
        >>>
        >>> with IcapClient.from_url("icap://localhost/avscan") as client:
        ...     client.options()
        ...     verdict = client.scan_file("/path/to/file.pdf", preview=True)
        ...     print("infected" if verdict.infected else "clean")
    """

    def __init__(
        self,
        address: str,
        port: int = IcapProtocol.DEFAULT_PORT,
        service_url: Optional[str] = None,
        timeout: Optional[float] = None,
        trace: bool = False,
    ) -> None:
        """
        Initialize ICAP client.

        Args:
            address: ICAP server hostname or IP address
            port: ICAP server port (default: 1344)
            service_url: ICAP URL used as the request target (default:
                ``icap://<address>:<port>/``)
            timeout: Optional socket timeout in seconds. None blocks indefinitely.
            trace: Echo wire traffic to the ``icapscan.trace`` logger
        """
        self._address = address
        self._port = port
        self._service_url = service_url
        self._timeout = timeout
        self._trace = trace
        self._socket: Optional[socket.socket] = None
        self._reader: Optional[WireReader] = None
        self._capabilities: Optional[ServerCapabilities] = None
        logger.debug(f"Initialized IcapClient for {address}:{port}")

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "IcapClient":
        """Create a client from an ``icap://host[:port]/service`` URL."""
        endpoint, service_url = parse_icap_url(url)
        return cls(endpoint.host, endpoint.port, service_url=service_url, **kwargs)

    @property
    def host(self) -> str:
        return self._address

    @property
    def port(self) -> int:
        return self._port

    @port.setter
    def port(self, p: int) -> None:
        if not isinstance(p, int):
            raise TypeError("Port is not valid type. Please enter an int value.")
        if self.is_connected:
            raise IcapConnectionError("Cannot change port while connected")
        self._port = p

    @property
    def endpoint(self) -> ServerEndpoint:
        return ServerEndpoint(self._address, self._port)

    @property
    def service_url(self) -> str:
        return self._service_url or f"icap://{self.host}:{self.port}/"

    @property
    def capabilities(self) -> Optional[ServerCapabilities]:
        """Capabilities from the last OPTIONS exchange, or None before it."""
        return self._capabilities

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def connect(self) -> None:
        """Connect to the ICAP server.

        Raises:
            IcapConnectionError: If the TCP connection cannot be established.
            IcapTimeoutError: If connecting exceeds the configured timeout.
        """
        if self._socket is not None:
            logger.debug("Already connected")
            return

        logger.info(f"Connecting to {self.host}:{self.port}")
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self._timeout)
        except socket.timeout as e:
            raise IcapTimeoutError(f"Connection to {self.host}:{self.port} timed out") from e
        except OSError as e:
            raise IcapConnectionError(
                f"Can't connect to ICAP server {self.host}:{self.port}: {e}"
            ) from e
        sock.settimeout(self._timeout)
        self._socket = sock
        self._reader = WireReader(sock, trace=self._trace, buffer_size=self.BUFFER_SIZE)
        logger.info(f"Connected to {self.host}:{self.port}")

    def disconnect(self) -> None:
        """Close the connection. Capabilities are forgotten with it."""
        if self._socket is not None:
            try:
                self._socket.close()
                logger.info(f"Disconnected from {self.host}:{self.port}")
            except OSError as e:
                logger.warning(f"Error while disconnecting: {e}")
        self._socket = None
        self._reader = None
        self._capabilities = None

    def __enter__(self) -> "IcapClient":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.disconnect()
        return False

    def options(self) -> ServerCapabilities:
        """Send OPTIONS and remember the advertised preview size.

        The preview size is fixed once learned; later calls return the
        capabilities from the first exchange on this connection.
        """
        if self._capabilities is not None:
            return self._capabilities
        if self._socket is None:
            self.connect()

        negotiator = OptionsNegotiator(self._socket, self._reader, trace=self._trace)
        self._capabilities = self._guarded(
            negotiator.negotiate, self.endpoint, self.service_url
        )
        return self._capabilities

    def scan(self, target: ScanTarget, preview: bool = False) -> Verdict:
        """Scan one target over this connection.

        If ``preview`` is requested and OPTIONS has not run yet, it runs
        first so the preview size is known.
        """
        if self._socket is None:
            self.connect()
        if preview and self._capabilities is None:
            self.options()

        orchestrator = ScanOrchestrator(
            self._socket,
            self._reader,
            self.endpoint,
            capabilities=self._capabilities,
            trace=self._trace,
        )
        verdict = self._guarded(orchestrator.scan, target, preview=preview)
        if self._reader.closed:
            logger.debug("Server closed the connection after the response")
            self.disconnect()
        return verdict

    def scan_stream(
        self,
        stream: BinaryIO,
        filename: Optional[str] = None,
        preview: bool = False,
    ) -> Verdict:
        """Scan a file-like object. The stream is read once, in 4 KiB units."""
        return self.scan(ScanTarget(self.service_url, stream, filename), preview=preview)

    def scan_bytes(
        self,
        data: bytes,
        filename: Optional[str] = None,
        preview: bool = False,
    ) -> Verdict:
        """Scan in-memory content."""
        return self.scan_stream(io.BytesIO(data), filename=filename, preview=preview)

    def scan_file(self, filepath: Union[str, Path], preview: bool = False) -> Verdict:
        """Scan a file on disk, announcing its path as the filename.

        Raises:
            FileNotFoundError: If ``filepath`` does not exist.
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")
        logger.info(f"Scanning file: {filepath}")
        with open(filepath, "rb") as f:
            return self.scan_stream(f, filename=str(filepath), preview=preview)

    def _guarded(self, func, *args: Any, **kwargs: Any) -> Any:
        """Run a request, dropping the connection if it is left unusable."""
        try:
            return func(*args, **kwargs)
        except IcapException:
            logger.debug("Discarding connection after fatal error")
            self.disconnect()
            raise
