"""Read-only file serving for GET and HEAD requests."""

import logging
import mimetypes
import stat
from datetime import timezone
from email.utils import formatdate, parsedate_to_datetime
from http import HTTPStatus
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Protocol

from blobstore.domain.correlation_id import CorrelationLoggerAdapter
from blobstore.domain.http_types import (
    HttpRequest,
    HttpResponse,
    should_close,
    status_line,
)
from blobstore.domain.response_builders import status_response

STATIC_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("blobstore.handlers.static"), {}
)

CHUNK_SIZE = 65536


class FileServing(Protocol):  # pylint: disable=too-few-public-methods
    """Serve a readable file rooted at a directory for a cleaned URL path."""

    def serve(self, request: HttpRequest, root: str, url_path: str) -> HttpResponse:
        """Return the response for a GET or HEAD of ``url_path`` under ``root``."""


def stream_file(
    file_handle: BinaryIO, length: int, chunk_size: int = CHUNK_SIZE
) -> Iterator[bytes]:
    """Yield exactly ``length`` bytes in chunks, closing the handle when done.

    Bytes appended after the length was taken are not sent. A file that shrank
    raises ``OSError`` so the connection is dropped rather than left short.
    """
    remaining = length
    with file_handle:
        while remaining > 0:
            chunk = file_handle.read(min(chunk_size, remaining))
            if not chunk:
                raise OSError(f"file truncated with {remaining} bytes unsent")
            remaining -= len(chunk)
            yield chunk


def _content_type_for_path(filepath: Path) -> str:
    mime_type, _ = mimetypes.guess_type(filepath.name)
    return mime_type or "application/octet-stream"


def _not_modified(headers: dict[str, str], mtime: int) -> bool:
    """True when If-Modified-Since is at or after the file's modification second."""
    if "if-none-match" in headers:
        return False
    value = headers.get("if-modified-since")
    if not value or mtime <= 0:
        return False
    try:
        since = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return False
    if since.tzinfo is None:
        # "-0000" dates parse without a zone; HTTP dates are always UTC.
        since = since.replace(tzinfo=timezone.utc)
    return mtime <= int(since.timestamp())


def _error_for_oserror(request: HttpRequest, error: OSError) -> HttpResponse:
    if isinstance(error, (FileNotFoundError, NotADirectoryError)):
        return status_response(HTTPStatus.NOT_FOUND, request)
    if isinstance(error, PermissionError):
        return status_response(HTTPStatus.FORBIDDEN, request)
    STATIC_LOGGER.error(
        "File read failed",
        extra={"event": "file_read_failed", "error_type": type(error).__name__},
    )
    return status_response(HTTPStatus.INTERNAL_SERVER_ERROR, request)


class StaticFileServer:  # pylint: disable=too-few-public-methods
    """Serves regular files with Last-Modified and conditional GET support.

    Directories are reported as missing; there are no listings.
    """

    def serve(self, request: HttpRequest, root: str, url_path: str) -> HttpResponse:
        """Serve ``url_path`` from ``root``."""
        filepath = Path(root).joinpath(url_path.lstrip("/"))
        try:
            file_stat = filepath.stat()
            if stat.S_ISDIR(file_stat.st_mode):
                return status_response(HTTPStatus.NOT_FOUND, request)
            file_handle = open(filepath, "rb")  # pylint: disable=consider-using-with
        except OSError as error:
            return _error_for_oserror(request, error)

        mtime = int(file_stat.st_mtime)
        last_modified = formatdate(mtime, usegmt=True)
        if _not_modified(request.headers, mtime):
            file_handle.close()
            return status_response(
                HTTPStatus.NOT_MODIFIED, request, {"Last-Modified": last_modified}
            )

        headers = {
            "Content-Type": _content_type_for_path(filepath),
            "Content-Length": str(file_stat.st_size),
            "Last-Modified": last_modified,
        }
        body_iter: Optional[Iterator[bytes]] = None
        if request.method == "HEAD":
            file_handle.close()
        else:
            body_iter = stream_file(file_handle, file_stat.st_size)

        if STATIC_LOGGER.logger.isEnabledFor(logging.DEBUG):
            STATIC_LOGGER.debug(
                "File served",
                extra={
                    "event": "file_served",
                    "path": url_path,
                    "bytes_out": file_stat.st_size,
                },
            )
        return HttpResponse(
            status_line(HTTPStatus.OK),
            headers,
            b"",
            should_close(request.headers),
            body_iter=body_iter,
        )
