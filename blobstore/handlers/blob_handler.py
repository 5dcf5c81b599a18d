"""Blob handler mapping HTTP verbs onto filesystem operations under a root."""

import errno
import logging
import os
import shutil
from http import HTTPStatus
from pathlib import Path
from typing import Optional

from blobstore.domain.correlation_id import CorrelationLoggerAdapter
from blobstore.domain.http_types import HttpRequest, HttpResponse
from blobstore.domain.response_builders import (
    bad_request_response,
    created_response,
    no_content_response,
    redirect_response,
    status_response,
)
from blobstore.domain.sandbox import ResolvedLocation, UnsafePath, resolve_request_path
from blobstore.handlers.static_files import FileServing, StaticFileServer

BLOB_LOGGER = CorrelationLoggerAdapter(logging.getLogger("blobstore.handlers.blob"), {})

REDIRECT_SUFFIX = ".redirect"
DIRECTORY_MODE = 0o755
COPY_CHUNK_SIZE = 65536

ERROR_STATUSES: tuple[tuple[type[OSError], HTTPStatus], ...] = (
    (FileExistsError, HTTPStatus.CONFLICT),
    (FileNotFoundError, HTTPStatus.NOT_FOUND),
    (PermissionError, HTTPStatus.FORBIDDEN),
)


def status_for_error(method: str, error: OSError) -> HTTPStatus:
    """Translate a filesystem error raised while handling ``method``."""
    if method == "DELETE" and isinstance(error, FileExistsError):
        # POSIX lets rmdir(2) report a non-empty directory as EEXIST instead of
        # ENOTEMPTY (AIX and Solaris do); it is the same failure.
        return HTTPStatus.BAD_REQUEST
    for error_type, status in ERROR_STATUSES:
        if isinstance(error, error_type):
            return status
    return HTTPStatus.BAD_REQUEST


def make_parents(directory: Path) -> None:
    """Create ``directory`` and any missing ancestors."""
    try:
        os.makedirs(directory, mode=DIRECTORY_MODE, exist_ok=True)
    except FileExistsError as error:
        raise NotADirectoryError(
            errno.ENOTDIR, "parent path is not a directory", str(directory)
        ) from error


def remove_path(location: Path) -> None:
    """Remove a file or an empty directory."""
    try:
        os.unlink(location)
    except OSError as unlink_error:
        try:
            os.rmdir(location)
        except NotADirectoryError:
            raise unlink_error from None


def _read_redirect(location: Path) -> Optional[str]:
    marker = Path(f"{location}{REDIRECT_SUFFIX}")
    try:
        target = marker.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    if not target.isprintable():
        # Line breaks or other controls would leak into the Location header.
        return None
    return target or None


class BlobHandler:
    """Serves, creates and deletes blobs stored beneath a root directory.

    Every request is mapped onto at most one filesystem side effect and
    answered with exactly one response. Filesystem errors are translated into
    status codes; nothing is retried.
    """

    def __init__(self, root: str, file_server: Optional[FileServing] = None) -> None:
        self._root = root
        self._file_server = file_server if file_server is not None else StaticFileServer()

    @property
    def root(self) -> str:
        """The directory every request is confined to."""
        return self._root

    def __call__(self, request: HttpRequest) -> HttpResponse:
        return self.handle(request)

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Resolve the request path and dispatch on the HTTP method."""
        try:
            resolved = resolve_request_path(self._root, request.path)
        except UnsafePath:
            BLOB_LOGGER.warning(
                "Unsafe path rejected",
                extra={
                    "event": "unsafe_path",
                    "method": request.method,
                    "route": request.path,
                },
            )
            return bad_request_response(request)

        BLOB_LOGGER.info(
            "Blob request",
            extra={
                "event": "blob_request",
                "method": request.method,
                "location": resolved.location.as_posix(),
            },
        )

        if request.method in ("GET", "HEAD"):
            return self._read(request, resolved)
        if request.method == "PUT":
            return self._put(request, resolved)
        if request.method == "DELETE":
            return self._delete(request, resolved)

        BLOB_LOGGER.warning(
            "Unsupported method",
            extra={"event": "unsupported_method", "method": request.method},
        )
        return bad_request_response(request)

    def _read(self, request: HttpRequest, resolved: ResolvedLocation) -> HttpResponse:
        if not resolved.is_root:
            target = _read_redirect(resolved.location)
            if target is not None:
                BLOB_LOGGER.info(
                    "Redirecting blob read",
                    extra={
                        "event": "blob_redirect",
                        "location": resolved.location.as_posix(),
                        "redirect": target,
                    },
                )
                return redirect_response(request, target)
        return self._file_server.serve(request, self._root, resolved.url_path)

    def _put(self, request: HttpRequest, resolved: ResolvedLocation) -> HttpResponse:
        if resolved.is_root:
            return bad_request_response(request)
        try:
            make_parents(resolved.location.parent)
            with open(resolved.location, "xb") as output:
                shutil.copyfileobj(request.body, output, COPY_CHUNK_SIZE)
                written = output.tell()
        except OSError as error:
            return self._error_response(request, resolved, error)

        BLOB_LOGGER.info(
            "Blob written",
            extra={
                "event": "blob_written",
                "location": resolved.location.as_posix(),
                "bytes_in": written,
            },
        )
        return created_response(request)

    def _delete(self, request: HttpRequest, resolved: ResolvedLocation) -> HttpResponse:
        if resolved.is_root:
            return bad_request_response(request)
        try:
            remove_path(resolved.location)
        except OSError as error:
            return self._error_response(request, resolved, error)

        BLOB_LOGGER.info(
            "Blob deleted",
            extra={"event": "blob_deleted", "location": resolved.location.as_posix()},
        )
        return no_content_response(request)

    def _error_response(
        self, request: HttpRequest, resolved: ResolvedLocation, error: OSError
    ) -> HttpResponse:
        status = status_for_error(request.method, error)
        BLOB_LOGGER.warning(
            "Filesystem operation failed",
            extra={
                "event": "filesystem_error",
                "method": request.method,
                "location": resolved.location.as_posix(),
                "error_type": type(error).__name__,
                "errno": error.errno,
                "status_code": status.value,
            },
        )
        return status_response(status, request)
