"""Shared HTTP type definitions to avoid circular imports."""

import io
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import BinaryIO, Callable, Iterable, Optional


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request.

    ``body`` is a readable binary stream positioned at the start of the request
    payload. Handlers that do not need the payload never read it.
    """

    method: str
    path: str
    headers: dict[str, str]
    body: BinaryIO = field(default_factory=io.BytesIO)


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    use_chunked: bool = False

    @property
    def status_code(self) -> int:
        """Numeric status parsed from the status line."""
        return int(self.status_line.split(" ", 2)[1])


Handler = Callable[[HttpRequest], HttpResponse]


def status_line(status: HTTPStatus) -> str:
    """Render the HTTP/1.1 status line for a status code."""
    return f"HTTP/1.1 {status.value} {status.phrase}"


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"


class BodyError(OSError):
    """Raised when a request body cannot be read to completion."""
