"""HTTP response model and head serializer."""

from __future__ import annotations

from dataclasses import dataclass, field
from email.utils import formatdate
from typing import BinaryIO

from config import SERVER_NAME

REASON_PHRASES: dict[int, str] = {
    200: "OK",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    408: "Request Timeout",
    413: "Payload Too Large",
    414: "URI Too Long",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    503: "Service Unavailable",
    505: "HTTP Version Not Supported",
}


@dataclass(slots=True)
class HTTPResponse:
    """A response with either an in-memory body or an open file to stream."""

    status_code: int
    reason_phrase: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str = b""
    body_file: BinaryIO | None = None
    body_file_size: int = 0
    outcome: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if self.body_file is not None and self.body:
            raise ValueError("Response cannot set both body and body_file")

    @property
    def content_length(self) -> int:
        if self.body_file is not None:
            return self.body_file_size
        return len(self.body)

    def close(self) -> None:
        """Release the streamed file handle, if any. Safe to call repeatedly."""
        if self.body_file is not None:
            self.body_file.close()
            self.body_file = None

    def head_bytes(self) -> bytes:
        """Serialize the status line and headers into HTTP/1.1 wire format."""
        reason = self.reason_phrase or REASON_PHRASES.get(self.status_code, "Unknown")
        headers = dict(self.headers)
        headers.setdefault("Date", formatdate(timeval=None, localtime=False, usegmt=True))
        headers.setdefault("Server", SERVER_NAME)
        headers.setdefault("Content-Type", "text/plain; charset=utf-8")
        headers["Content-Length"] = str(self.content_length)

        header_lines = [f"HTTP/1.1 {self.status_code} {reason}"]
        header_lines.extend(f"{key}: {value}" for key, value in headers.items())
        return "\r\n".join(header_lines).encode("iso-8859-1") + b"\r\n\r\n"

    def to_bytes(self) -> bytes:
        """Serialize an in-memory response. Streamed responses are written by socket_handler."""
        if self.body_file is not None:
            raise ValueError("Streamed responses cannot be serialized in one piece")
        return self.head_bytes() + self.body


def text_response(status_code: int, outcome: str | None = None) -> HTTPResponse:
    """Plain-text response whose body is the status reason phrase."""
    return HTTPResponse(
        status_code=status_code,
        headers={"Content-Type": "text/plain; charset=utf-8"},
        body=REASON_PHRASES.get(status_code, "Unknown"),
        outcome=outcome,
    )
