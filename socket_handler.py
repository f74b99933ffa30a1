"""Low-level socket read/write utilities."""

from __future__ import annotations

import socket
from dataclasses import dataclass

from config import MAX_BODY_BYTES, MAX_HEADER_BYTES, READ_CHUNK_SIZE, WRITE_CHUNK_SIZE
from response import HTTPResponse


class HTTPReadError(Exception):
    """Raised when a client request cannot be safely read from the socket."""


class MalformedRequestError(HTTPReadError):
    """Raised when socket bytes do not form a complete HTTP request."""


class HeaderTooLargeError(HTTPReadError):
    """Raised when HTTP headers exceed configured maximum size."""


class PayloadTooLargeError(HTTPReadError):
    """Raised when request body exceeds configured maximum size."""


class SocketTimeoutError(HTTPReadError):
    """Raised when a client times out while sending request bytes."""


class StreamInterruptedError(Exception):
    """Raised when the file body fails after the response head was sent."""

    def __init__(self, message: str, *, bytes_sent: int) -> None:
        super().__init__(message)
        self.bytes_sent = bytes_sent


@dataclass(slots=True)
class RequestHead:
    header_end_index: int
    content_length: int
    chunked: bool


def _header_lines(header_bytes: bytes) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for line in header_bytes.decode("iso-8859-1").split("\r\n")[1:]:
        if not line:
            continue
        if ":" not in line:
            raise MalformedRequestError("Malformed header while reading request")
        name, value = line.split(":", 1)
        pairs.append((name.strip().lower(), value.strip()))
    return pairs


def inspect_request_head(buffer: bytes) -> RequestHead | None:
    """Return body framing for a buffered request, or None until headers are complete."""
    header_end_index = buffer.find(b"\r\n\r\n")
    if header_end_index == -1:
        if len(buffer) > MAX_HEADER_BYTES:
            raise HeaderTooLargeError("Headers exceeded MAX_HEADER_BYTES")
        return None
    if header_end_index + 4 > MAX_HEADER_BYTES:
        raise HeaderTooLargeError("Headers exceeded MAX_HEADER_BYTES")

    headers = dict(_header_lines(buffer[:header_end_index]))
    chunked = "chunked" in headers.get("transfer-encoding", "").lower()
    if chunked and "content-length" in headers:
        raise MalformedRequestError("Content-Length cannot be combined with chunked transfer")

    content_length = 0
    if not chunked and "content-length" in headers:
        try:
            content_length = int(headers["content-length"])
        except ValueError as exc:
            raise MalformedRequestError("Invalid Content-Length header") from exc
        if content_length < 0:
            raise MalformedRequestError("Negative Content-Length header")
        if content_length > MAX_BODY_BYTES:
            raise PayloadTooLargeError("Body exceeded MAX_BODY_BYTES")

    return RequestHead(
        header_end_index=header_end_index,
        content_length=content_length,
        chunked=chunked,
    )


def chunked_body_length(encoded_body: bytes) -> int | None:
    """Length of a complete chunked body including trailers, or None if incomplete."""
    position = 0
    decoded_size = 0
    while True:
        line_end = encoded_body.find(b"\r\n", position)
        if line_end == -1:
            return None
        size_token = encoded_body[position:line_end].split(b";", 1)[0].strip()
        try:
            chunk_size = int(size_token, 16)
        except ValueError as exc:
            raise MalformedRequestError("Malformed chunk size") from exc
        position = line_end + 2

        if chunk_size == 0:
            while True:
                trailer_end = encoded_body.find(b"\r\n", position)
                if trailer_end == -1:
                    return None
                if trailer_end == position:
                    return trailer_end + 2
                position = trailer_end + 2

        decoded_size += chunk_size
        if decoded_size > MAX_BODY_BYTES:
            raise PayloadTooLargeError("Decoded chunked body exceeded MAX_BODY_BYTES")
        if len(encoded_body) < position + chunk_size + 2:
            return None
        if encoded_body[position + chunk_size : position + chunk_size + 2] != b"\r\n":
            raise MalformedRequestError("Chunk missing CRLF terminator")
        position += chunk_size + 2


def extract_http_request_message(buffer: bytes) -> tuple[bytes, bytes] | None:
    """Split one complete request off the front of ``buffer``.

    Returns ``(request_bytes, leftover)`` or None when more bytes are needed.
    """
    head = inspect_request_head(buffer)
    if head is None:
        return None

    body_start = head.header_end_index + 4
    if head.chunked:
        body_length = chunked_body_length(buffer[body_start:])
        if body_length is None:
            return None
    else:
        body_length = head.content_length
        if len(buffer) < body_start + body_length:
            return None

    request_length = body_start + body_length
    return buffer[:request_length], buffer[request_length:]


def read_http_request_message(
    client_socket: socket.socket,
    initial_buffer: bytes = b"",
) -> tuple[bytes, bytes]:
    """Read one HTTP/1.x request and return (request_bytes, leftover_bytes).

    Returns ``(b"", b"")`` when the peer closes the connection or stays
    silent between requests.
    """
    buffer = bytearray(initial_buffer)

    while True:
        extracted = extract_http_request_message(bytes(buffer))
        if extracted is not None:
            return extracted

        try:
            chunk = client_socket.recv(READ_CHUNK_SIZE)
        except socket.timeout as exc:
            # An idle keep-alive connection just closes.
            if not buffer:
                return b"", b""
            raise SocketTimeoutError("Timed out waiting for request bytes") from exc

        if not chunk:
            if not buffer:
                return b"", b""
            raise MalformedRequestError("Connection closed before request completed")

        buffer.extend(chunk)


def write_http_response_message(
    client_socket: socket.socket,
    response: HTTPResponse,
    *,
    write_chunk_size: int = WRITE_CHUNK_SIZE,
    send_body: bool = True,
) -> int:
    """Write a response, streaming any file body, and release it on every path.

    With ``send_body=False`` (HEAD requests) only the head is written, still
    advertising the full ``Content-Length``.

    Socket errors (for example a client that went away) propagate as
    ``OSError``. A file read error after the head was written raises
    ``StreamInterruptedError``; the caller must drop the connection.
    """
    try:
        head = response.head_bytes()
        client_socket.sendall(head)
        bytes_sent = len(head)
        if not send_body:
            return bytes_sent

        if response.body_file is None:
            if response.body:
                client_socket.sendall(response.body)
                bytes_sent += len(response.body)
            return bytes_sent

        remaining = response.body_file_size
        while remaining > 0:
            try:
                chunk = response.body_file.read(min(write_chunk_size, remaining))
            except OSError as exc:
                raise StreamInterruptedError(
                    f"File read failed mid-stream: {exc}",
                    bytes_sent=bytes_sent,
                ) from exc
            if not chunk:
                raise StreamInterruptedError(
                    "File ended before Content-Length was reached",
                    bytes_sent=bytes_sent,
                )
            client_socket.sendall(chunk)
            bytes_sent += len(chunk)
            remaining -= len(chunk)
        return bytes_sent
    finally:
        response.close()
