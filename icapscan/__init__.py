import logging

from ._protocol import ServerEndpoint
from .chunked import ChunkedBodyWriter
from .exception import (
    IcapConnectionError,
    IcapException,
    IcapProtocolError,
    IcapServerError,
    IcapTimeoutError,
)
from .icap import IcapClient, parse_icap_url
from .options import OptionsNegotiator, ServerCapabilities
from .response import EmbeddedHttpMessage, IcapResponseHeader, ResponseReader, Verdict
from .scan import ScanOrchestrator, ScanTarget
from .wire import WireReader

# Set up logging with NullHandler to avoid "No handler found" warnings
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "ChunkedBodyWriter",
    "EmbeddedHttpMessage",
    "IcapClient",
    "IcapResponseHeader",
    "OptionsNegotiator",
    "ResponseReader",
    "ScanOrchestrator",
    "ScanTarget",
    "ServerCapabilities",
    "ServerEndpoint",
    "Verdict",
    "WireReader",
    "parse_icap_url",
    "IcapException",
    "IcapConnectionError",
    "IcapProtocolError",
    "IcapServerError",
    "IcapTimeoutError",
]
