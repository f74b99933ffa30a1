"""File-serving request handler for the project root."""

from __future__ import annotations

import logging
import os
import stat

from config import ServerConfig
from path_resolver import resolve_request_path
from request import HTTPRequest
from response import HTTPResponse, text_response
from utils import get_content_type

logger = logging.getLogger(__name__)


class Outcome:
    OK = "ok"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    STREAM_INTERRUPTED = "stream_interrupted"


def serve_file(request: HTTPRequest, config: ServerConfig) -> HTTPResponse:
    """Drive one request to a terminal outcome.

    The request method is not inspected. A 200 response owns an open file
    handle; whoever writes it must call ``response.close()``.
    """
    file_path = resolve_request_path(request.raw_target, config.root, config.index_filename)
    if file_path is None:
        return text_response(403, outcome=Outcome.FORBIDDEN)

    try:
        file_stat = file_path.stat()
    except OSError:
        return text_response(404, outcome=Outcome.NOT_FOUND)
    if not stat.S_ISREG(file_stat.st_mode):
        return text_response(404, outcome=Outcome.NOT_FOUND)

    content_type = get_content_type(file_path)

    try:
        file_obj = file_path.open("rb")
    except OSError as exc:
        logger.error("Error opening %s: %s", file_path, exc)
        return text_response(500, outcome=Outcome.SERVER_ERROR)

    try:
        file_size = os.fstat(file_obj.fileno()).st_size
    except OSError as exc:
        file_obj.close()
        logger.error("Error reading %s: %s", file_path, exc)
        return text_response(500, outcome=Outcome.SERVER_ERROR)

    return HTTPResponse(
        status_code=200,
        headers={
            "Content-Type": content_type,
            "Cache-Control": "no-cache",
        },
        body_file=file_obj,
        body_file_size=file_size,
        outcome=Outcome.OK,
    )
