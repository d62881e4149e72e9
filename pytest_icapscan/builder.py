"""Fluent builder for raw ICAP responses as they appear on the wire."""

from __future__ import annotations


class IcapResponseBuilder:
    """
    Fluent builder for wire-format ICAP responses.

    Provides a convenient API for scripting what a fake ICAP server sends
    without hand-writing CRLFs and Encapsulated offsets.

    Example:
        # Clean response (204 No Content)
        data = IcapResponseBuilder().clean().build()

        # Virus detected: 200 OK wrapping an HTTP 403
        data = IcapResponseBuilder().virus("Trojan.Generic").build()

        # Custom response
        data = (
            IcapResponseBuilder()
            .with_status(200, "OK")
            .with_header("X-Custom", "value")
            .with_http_response(200, "OK", body=b"modified content")
            .build()
        )
    """

    def __init__(self) -> None:
        self._status_code: int = 204
        self._status_message: str = "No Content"
        self._headers: list[tuple[str, str]] = []
        self._http: tuple[int, str, list[tuple[str, str]], bytes | None] | None = None
        self._encapsulated: bool = True

    def clean(self) -> IcapResponseBuilder:
        """Configure as 204 No Content (content is safe)."""
        self._status_code = 204
        self._status_message = "No Content"
        self._http = None
        return self

    def virus(self, name: str = "EICAR-Test-Signature") -> IcapResponseBuilder:
        """Configure as virus detected: X-Infection-Found plus an embedded HTTP 403."""
        self._status_code = 200
        self._status_message = "OK"
        self._headers.append(("X-Infection-Found", f"Type=0; Resolution=2; Threat={name};"))
        self._headers.append(("X-Virus-ID", name))
        return self.with_http_response(
            403,
            "Forbidden",
            headers={"Content-Type": "text/plain"},
            body=f"Virus {name} found\r\n".encode(),
        )

    def options(
        self,
        methods: list[str] | None = None,
        preview: int | None = 1024,
    ) -> IcapResponseBuilder:
        """Configure as OPTIONS response with server capabilities."""
        self._status_code = 200
        self._status_message = "OK"
        self._headers.append(("Methods", ", ".join(methods or ["RESPMOD"])))
        self._headers.append(("ISTag", '"icapscan-test-1"'))
        if preview is not None:
            self._headers.append(("Preview", str(preview)))
            self._headers.append(("Transfer-Preview", "*"))
        self._headers.append(("Encapsulated", "null-body=0"))
        self._encapsulated = False
        return self

    def error(
        self,
        code: int = 500,
        message: str = "Internal Server Error",
    ) -> IcapResponseBuilder:
        """Configure as server error."""
        self._status_code = code
        self._status_message = message
        self._http = None
        return self

    def continue_response(self) -> IcapResponseBuilder:
        """Configure as 100 Continue (for preview mode)."""
        self._status_code = 100
        self._status_message = "Continue"
        self._http = None
        return self

    def with_status(self, code: int, message: str) -> IcapResponseBuilder:
        """Set custom status code and message."""
        self._status_code = code
        self._status_message = message
        return self

    def with_header(self, key: str, value: str) -> IcapResponseBuilder:
        """Add a custom ICAP header."""
        self._headers.append((key, value))
        return self

    def with_headers(self, headers: dict[str, str]) -> IcapResponseBuilder:
        """Add multiple ICAP headers."""
        self._headers.extend(headers.items())
        return self

    def with_http_response(
        self,
        code: int,
        message: str,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> IcapResponseBuilder:
        """Embed an HTTP response; ``body=None`` declares a null-body."""
        self._http = (code, message, list((headers or {}).items()), body)
        return self

    def without_encapsulated(self) -> IcapResponseBuilder:
        """Omit the Encapsulated header and send the embedded body unchunked."""
        self._encapsulated = False
        return self

    def build(self) -> bytes:
        """Build the response bytes."""
        lines = [f"ICAP/1.0 {self._status_code} {self._status_message}"]
        lines.extend(f"{key}: {value}" for key, value in self._headers)

        payload = b""
        if self._http is not None:
            code, message, headers, body = self._http
            block = f"HTTP/1.1 {code} {message}\r\n"
            block += "".join(f"{key}: {value}\r\n" for key, value in headers)
            block += "\r\n"
            http_header = block.encode()

            if self._encapsulated:
                if body is None:
                    lines.append(f"Encapsulated: res-hdr=0, null-body={len(http_header)}")
                    payload = http_header
                else:
                    lines.append(f"Encapsulated: res-hdr=0, res-body={len(http_header)}")
                    payload = http_header + encode_chunked(body)
            else:
                payload = http_header + (body or b"")

        return ("\r\n".join(lines) + "\r\n\r\n").encode() + payload


def encode_chunked(data: bytes, chunk_size: int = 4096) -> bytes:
    """Chunk-encode ``data`` the way an ICAP server frames an embedded body."""
    encoded = b""
    for start in range(0, len(data), chunk_size):
        piece = data[start : start + chunk_size]
        encoded += f"{len(piece):x}\r\n".encode() + piece + b"\r\n"
    return encoded + b"0\r\n\r\n"
