"""Unit tests for request framing and streamed response writes."""

from __future__ import annotations

import io
import socket

import pytest

from config import MAX_BODY_BYTES, MAX_HEADER_BYTES
from response import HTTPResponse
from socket_handler import (
    HeaderTooLargeError,
    MalformedRequestError,
    PayloadTooLargeError,
    SocketTimeoutError,
    StreamInterruptedError,
    extract_http_request_message,
    read_http_request_message,
    write_http_response_message,
)


class FakeSocket:
    def __init__(self, incoming: list[bytes | Exception] | None = None, fail_after: int | None = None) -> None:
        self._incoming = list(incoming or [])
        self._fail_after = fail_after
        self.sent = bytearray()
        self.send_calls = 0

    def recv(self, _size: int) -> bytes:
        if not self._incoming:
            return b""
        item = self._incoming.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def sendall(self, data: bytes) -> None:
        if self._fail_after is not None and self.send_calls >= self._fail_after:
            raise BrokenPipeError("client went away")
        self.send_calls += 1
        self.sent.extend(data)


class FailingReader(io.BytesIO):
    def __init__(self, data: bytes, fail_after: int) -> None:
        super().__init__(data)
        self._reads = 0
        self._fail_after = fail_after

    def read(self, size: int | None = -1) -> bytes:
        if self._reads >= self._fail_after:
            raise OSError("disk read failed")
        self._reads += 1
        return super().read(size)


def test_extract_waits_for_complete_head() -> None:
    assert extract_http_request_message(b"GET / HTTP/1.1\r\nHost: x\r\n") is None


def test_extract_splits_pipelined_requests() -> None:
    first = b"GET /a HTTP/1.1\r\nHost: x\r\n\r\n"
    second = b"GET /b HTTP/1.1\r\nHost: x\r\n\r\n"

    assert extract_http_request_message(first + second) == (first, second)


def test_extract_consumes_content_length_body() -> None:
    message = b"POST / HTTP/1.1\r\nHost: x\r\nContent-Length: 4\r\n\r\nabcd"

    assert extract_http_request_message(message[:-1]) is None
    assert extract_http_request_message(message + b"rest") == (message, b"rest")


def test_extract_consumes_chunked_body() -> None:
    message = (
        b"POST / HTTP/1.1\r\nHost: x\r\nTransfer-Encoding: chunked\r\n\r\n"
        b"4\r\nWiki\r\n0\r\n\r\n"
    )

    assert extract_http_request_message(message) == (message, b"")


def test_extract_rejects_invalid_content_length() -> None:
    with pytest.raises(MalformedRequestError):
        extract_http_request_message(b"POST / HTTP/1.1\r\nContent-Length: abc\r\n\r\n")


def test_extract_rejects_oversized_head() -> None:
    with pytest.raises(HeaderTooLargeError):
        extract_http_request_message(b"GET / HTTP/1.1\r\nX: " + b"a" * MAX_HEADER_BYTES)


def test_extract_rejects_oversized_body() -> None:
    head = f"POST / HTTP/1.1\r\nContent-Length: {MAX_BODY_BYTES + 1}\r\n\r\n".encode()

    with pytest.raises(PayloadTooLargeError):
        extract_http_request_message(head)


def test_read_assembles_request_across_recv_calls() -> None:
    sock = FakeSocket([b"GET / HTTP/1.1\r\n", b"Host: x\r\n\r\nGET"])

    request_bytes, leftover = read_http_request_message(sock)  # type: ignore[arg-type]

    assert request_bytes == b"GET / HTTP/1.1\r\nHost: x\r\n\r\n"
    assert leftover == b"GET"


def test_read_returns_empty_on_clean_close_or_idle_timeout() -> None:
    assert read_http_request_message(FakeSocket([])) == (b"", b"")  # type: ignore[arg-type]
    idle = FakeSocket([socket.timeout()])
    assert read_http_request_message(idle) == (b"", b"")  # type: ignore[arg-type]


def test_read_timeout_mid_request_raises() -> None:
    sock = FakeSocket([b"GET / HTTP/1.1\r\n", socket.timeout()])

    with pytest.raises(SocketTimeoutError):
        read_http_request_message(sock)  # type: ignore[arg-type]


def test_read_close_mid_request_is_malformed() -> None:
    sock = FakeSocket([b"GET / HTTP/1.1\r\n"])

    with pytest.raises(MalformedRequestError):
        read_http_request_message(sock)  # type: ignore[arg-type]


def test_write_streams_file_in_chunks_and_closes_it() -> None:
    payload = bytes(range(256)) * 10
    file_obj = io.BytesIO(payload)
    response = HTTPResponse(status_code=200, body_file=file_obj, body_file_size=len(payload))
    sock = FakeSocket()

    bytes_sent = write_http_response_message(sock, response, write_chunk_size=100)  # type: ignore[arg-type]

    head, body = bytes(sock.sent).split(b"\r\n\r\n", 1)
    assert head.startswith(b"HTTP/1.1 200 OK")
    assert body == payload
    assert bytes_sent == len(sock.sent)
    assert sock.send_calls == 1 + 26
    assert file_obj.closed


def test_write_read_failure_after_head_raises_stream_interrupted() -> None:
    file_obj = FailingReader(b"x" * 300, fail_after=1)
    response = HTTPResponse(status_code=200, body_file=file_obj, body_file_size=300)
    sock = FakeSocket()

    with pytest.raises(StreamInterruptedError) as exc_info:
        write_http_response_message(sock, response, write_chunk_size=100)  # type: ignore[arg-type]

    assert bytes(sock.sent).startswith(b"HTTP/1.1 200 OK")
    assert exc_info.value.bytes_sent == len(sock.sent)
    assert file_obj.closed


def test_write_truncated_file_raises_stream_interrupted() -> None:
    file_obj = io.BytesIO(b"short")
    response = HTTPResponse(status_code=200, body_file=file_obj, body_file_size=50)

    with pytest.raises(StreamInterruptedError):
        write_http_response_message(FakeSocket(), response)  # type: ignore[arg-type]

    assert file_obj.closed


def test_write_client_disconnect_releases_file() -> None:
    file_obj = io.BytesIO(b"y" * 500)
    response = HTTPResponse(status_code=200, body_file=file_obj, body_file_size=500)
    sock = FakeSocket(fail_after=2)

    with pytest.raises(OSError):
        write_http_response_message(sock, response, write_chunk_size=100)  # type: ignore[arg-type]

    assert file_obj.closed


def test_write_without_body_sends_head_only_and_closes_file() -> None:
    file_obj = io.BytesIO(b"z" * 40)
    response = HTTPResponse(status_code=200, body_file=file_obj, body_file_size=40)
    sock = FakeSocket()

    bytes_sent = write_http_response_message(sock, response, send_body=False)  # type: ignore[arg-type]

    assert bytes(sock.sent).endswith(b"\r\n\r\n")
    assert b"Content-Length: 40\r\n" in sock.sent
    assert bytes_sent == len(sock.sent)
    assert file_obj.closed
