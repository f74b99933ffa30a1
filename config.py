"""Configuration constants and startup settings for the dev site server."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

HOST: str = "127.0.0.1"
PORT: int = 3000
PORT_ENV_VAR: str = "PORT"
INDEX_FILENAME: str = "index.html"
SERVER_NAME: str = "site-dev-server/1.0"
READ_CHUNK_SIZE: int = 8192
WRITE_CHUNK_SIZE: int = 65_536
SOCKET_TIMEOUT_SECS: int = 5
KEEPALIVE_TIMEOUT_SECS: int = 5
MAX_KEEPALIVE_REQUESTS: int = 100
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 524_288
MAX_TARGET_LENGTH: int = 8192
WORKER_COUNT: int = 8
REQUEST_QUEUE_SIZE: int = 64
LOG_FORMAT: str = "plain"
LOG_FORMATS: tuple[str, ...] = ("plain", "json")


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Settings fixed for the lifetime of one server process."""

    root: Path = field(default_factory=Path.cwd)
    host: str = HOST
    port: int = PORT
    index_filename: str = INDEX_FILENAME
    worker_count: int = WORKER_COUNT
    request_queue_size: int = REQUEST_QUEUE_SIZE
    keepalive_timeout_secs: int = KEEPALIVE_TIMEOUT_SECS
    log_format: str = LOG_FORMAT

    def __post_init__(self) -> None:
        root = Path(self.root).absolute()
        if not root.is_dir():
            raise ValueError(f"root is not a directory: {root}")
        object.__setattr__(self, "root", root)

        if not 0 <= self.port <= 65_535:
            raise ValueError("port must be between 0 and 65535")
        if not self.index_filename or "/" in self.index_filename:
            raise ValueError("index_filename must be a bare file name")
        if self.worker_count <= 0 or self.request_queue_size <= 0:
            raise ValueError("worker_count and request_queue_size must be positive")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"Unsupported log format: {self.log_format}")


def _port_from_env(environ: Mapping[str, str]) -> int | None:
    raw_port = environ.get(PORT_ENV_VAR, "").strip()
    if not raw_port:
        return None
    try:
        return int(raw_port)
    except ValueError as exc:
        raise ValueError(f"{PORT_ENV_VAR} must be an integer, got {raw_port!r}") from exc


def load_config(environ: Mapping[str, str] | None = None, **overrides: object) -> ServerConfig:
    """Build the process config, reading the port from the environment once.

    Explicit ``overrides`` (typically from the command line) win over the
    environment, which wins over the defaults. Overrides set to ``None`` are
    ignored.
    """
    if environ is None:
        environ = os.environ

    settings: dict[str, object] = {}
    env_port = _port_from_env(environ)
    if env_port is not None:
        settings["port"] = env_port

    settings.update({key: value for key, value in overrides.items() if value is not None})
    return ServerConfig(**settings)  # type: ignore[arg-type]
