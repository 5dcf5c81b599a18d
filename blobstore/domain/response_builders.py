"""Pure HTTP response builders."""

from http import HTTPStatus
from typing import Optional

from blobstore.domain.http_types import (
    HttpRequest,
    HttpResponse,
    should_close,
    status_line,
)


def status_response(
    status: HTTPStatus,
    request: Optional[HttpRequest],
    headers: Optional[dict[str, str]] = None,
) -> HttpResponse:
    """Return an empty-bodied response honoring the caller's connection preference.

    Responses built without a request (framing errors) always close the connection.
    """
    return HttpResponse(
        status_line(status),
        dict(headers or {}),
        b"",
        should_close(request.headers) if request is not None else True,
    )


def created_response(request: HttpRequest) -> HttpResponse:
    """Return a 201 response for a freshly written blob."""
    return status_response(HTTPStatus.CREATED, request)


def no_content_response(request: HttpRequest) -> HttpResponse:
    """Return a 204 response for a completed deletion."""
    return status_response(HTTPStatus.NO_CONTENT, request)


def bad_request_response(request: Optional[HttpRequest] = None) -> HttpResponse:
    """Produce a 400 response."""
    return status_response(HTTPStatus.BAD_REQUEST, request)


def unauthorized_response(request: HttpRequest, realm: str) -> HttpResponse:
    """Produce a 401 response carrying a Basic authentication challenge."""
    return status_response(
        HTTPStatus.UNAUTHORIZED,
        request,
        {"WWW-Authenticate": f'Basic realm="{realm}"'},
    )


def forbidden_response(request: HttpRequest) -> HttpResponse:
    """Produce a 403 response."""
    return status_response(HTTPStatus.FORBIDDEN, request)


def redirect_response(request: HttpRequest, location: str) -> HttpResponse:
    """Produce a 307 response pointing the client at ``location``."""
    return status_response(
        HTTPStatus.TEMPORARY_REDIRECT, request, {"Location": location}
    )


def draining_response() -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    return HttpResponse(
        status_line(HTTPStatus.SERVICE_UNAVAILABLE),
        {"Connection": "close"},
        b"draining",
        True,
    )
