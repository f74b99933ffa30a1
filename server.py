"""Development site server entry point and connection lifecycle."""

from __future__ import annotations

import argparse
import json
import logging
import socket
import time
from collections.abc import Sequence

from config import (
    LOG_FORMATS,
    MAX_KEEPALIVE_REQUESTS,
    SOCKET_TIMEOUT_SECS,
    ServerConfig,
    load_config,
)
from handlers.static_handler import Outcome, serve_file
from request import HTTPRequest, HTTPRequestParseError
from response import HTTPResponse, text_response
from socket_handler import (
    HeaderTooLargeError,
    HTTPReadError,
    MalformedRequestError,
    PayloadTooLargeError,
    SocketTimeoutError,
    StreamInterruptedError,
    read_http_request_message,
    write_http_response_message,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

READ_ERROR_STATUS: dict[type[HTTPReadError], int] = {
    PayloadTooLargeError: 413,
    HeaderTooLargeError: 431,
    SocketTimeoutError: 408,
    MalformedRequestError: 400,
}


class HTTPServer:
    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config = config or load_config()
        self.host = self.config.host
        self.port = self.config.port

        self._server_socket: socket.socket | None = None
        self._pool: ThreadPool | None = None
        self._running = False

    def start(self) -> None:
        """Listen and hand each accepted connection to the worker pool."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_socket:
            self._server_socket = server_socket
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
            server_socket.listen(128)
            server_socket.settimeout(0.2)
            self.port = server_socket.getsockname()[1]
            self._pool = ThreadPool(
                worker_count=self.config.worker_count,
                queue_size=self.config.request_queue_size,
                handler=self._handle_client,
            )
            self._pool.start()
            logger.info(
                "Serving %s at http://%s:%s",
                self.config.root,
                self.host,
                self.port,
            )

            self._running = True
            try:
                while self._running:
                    try:
                        client_socket, address = server_socket.accept()
                    except socket.timeout:
                        continue
                    except OSError:
                        break

                    if self._pool is None or not self._pool.submit(client_socket, address):
                        self._send_queue_full_response(client_socket, address)
            finally:
                if self._pool is not None:
                    self._pool.shutdown()
                    self._pool = None

    def stop(self) -> None:
        self._running = False
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None
        if self._pool is not None:
            self._pool.shutdown()
            self._pool = None

    def _send_queue_full_response(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
    ) -> None:
        with client_socket:
            self._send_error_response(
                client_socket,
                address,
                status_code=503,
                started_at=time.perf_counter(),
                bytes_in=0,
            )

    def _send_error_response(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        *,
        status_code: int,
        started_at: float,
        bytes_in: int,
    ) -> None:
        response = text_response(status_code)
        response.headers["Connection"] = "close"
        try:
            bytes_sent = write_http_response_message(client_socket, response)
        except OSError:
            return
        self._record_and_log(
            address=address,
            method="-",
            path="-",
            response=response,
            payload_size=bytes_sent,
            bytes_in=bytes_in,
            started_at=started_at,
        )

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            client_socket.settimeout(min(SOCKET_TIMEOUT_SECS, self.config.keepalive_timeout_secs))
            request_count = 0
            carry = b""
            while request_count < MAX_KEEPALIVE_REQUESTS:
                started_at = time.perf_counter()
                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except HTTPReadError as exc:
                    self._send_error_response(
                        client_socket,
                        address,
                        status_code=READ_ERROR_STATUS.get(type(exc), 400),
                        started_at=started_at,
                        bytes_in=0,
                    )
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    self._send_error_response(
                        client_socket,
                        address,
                        status_code=exc.status_code,
                        started_at=started_at,
                        bytes_in=len(raw_request),
                    )
                    return
                except ValueError:
                    self._send_error_response(
                        client_socket,
                        address,
                        status_code=400,
                        started_at=started_at,
                        bytes_in=len(raw_request),
                    )
                    return

                request_count += 1
                response = self._dispatch(request)
                should_close = (not request.keep_alive) or request_count >= MAX_KEEPALIVE_REQUESTS
                if should_close:
                    response.headers.setdefault("Connection", "close")
                else:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        (
                            f"timeout={self.config.keepalive_timeout_secs}, "
                            f"max={MAX_KEEPALIVE_REQUESTS - request_count}"
                        ),
                    )

                try:
                    bytes_sent = write_http_response_message(
                        client_socket,
                        response,
                        send_body=request.method != "HEAD",
                    )
                except StreamInterruptedError as exc:
                    logger.warning("Error reading file for %s: %s", request.path, exc)
                    response.outcome = Outcome.STREAM_INTERRUPTED
                    self._record_and_log(
                        address=address,
                        method=request.method,
                        path=request.path,
                        response=response,
                        payload_size=exc.bytes_sent,
                        bytes_in=len(raw_request),
                        started_at=started_at,
                    )
                    return
                except OSError as exc:
                    logger.debug("Client %s went away during response: %s", address[0], exc)
                    return

                self._record_and_log(
                    address=address,
                    method=request.method,
                    path=request.path,
                    response=response,
                    payload_size=bytes_sent,
                    bytes_in=len(raw_request),
                    started_at=started_at,
                )
                if should_close:
                    return

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        try:
            return serve_file(request, self.config)
        except Exception:
            logger.exception("Unhandled error while serving %s", request.path)
            return text_response(500, outcome=Outcome.SERVER_ERROR)

    def _record_and_log(
        self,
        *,
        address: tuple[str, int],
        method: str,
        path: str,
        response: HTTPResponse,
        payload_size: int,
        bytes_in: int,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "path": path,
            "status": response.status_code,
            "outcome": response.outcome or "-",
            "bytes_in": bytes_in,
            "bytes_out": payload_size,
            "latency_ms": round(duration_ms, 3),
        }
        if self.config.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s path=%s status=%s outcome=%s bytes_in=%s bytes_out=%s duration_ms=%.2f",
            event["client"],
            event["method"],
            event["path"],
            event["status"],
            event["outcome"],
            event["bytes_in"],
            event["bytes_out"],
            duration_ms,
        )


def _parse_args(argv: Sequence[str] | None = None) -> tuple[argparse.ArgumentParser, argparse.Namespace]:
    parser = argparse.ArgumentParser(description="Serve a static site directory for local development")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None, help="overrides the PORT environment variable")
    parser.add_argument("--root", default=None, help="directory to serve (default: current directory)")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--log-format", choices=LOG_FORMATS, default=None)
    return parser, parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    parser, args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    try:
        config = load_config(
            host=args.host,
            port=args.port,
            root=args.root,
            worker_count=args.workers,
            log_format=args.log_format,
        )
    except ValueError as exc:
        parser.error(str(exc))

    server = HTTPServer(config)
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()


if __name__ == "__main__":
    main()
