from typing import Optional


class IcapException(Exception):
    """Base exception for ICAP errors."""

    pass


class IcapConnectionError(IcapException):
    """Raised when the connection to the ICAP server fails or closes unexpectedly."""

    pass


class IcapProtocolError(IcapException):
    """Raised when a line received from the server does not match the ICAP/HTTP grammar."""

    pass


class IcapTimeoutError(IcapException):
    """Raised when an optional socket timeout elapses."""

    pass


class IcapServerError(IcapException):
    """Raised when the ICAP server returns a status outside the accepted set."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
