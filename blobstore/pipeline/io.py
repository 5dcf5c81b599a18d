"""HTTP Input/Output operations."""

import io
import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from blobstore.bootstrap.config import HEADER_DELIMITER, MAX_HEADER_BYTES
from blobstore.domain.correlation_id import (
    REQUEST_ID_HEADER,
    CorrelationLoggerAdapter,
    adopt_correlation_id,
    get_correlation_id,
)
from blobstore.domain.http_types import BodyError, HttpRequest, HttpResponse

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("blobstore.io"), {})

CRLF = b"\r\n"
RECV_SIZE = 4096
MAX_CHUNK_LINE_BYTES = 4096
CONTINUE_RESPONSE = b"HTTP/1.1 100 Continue\r\n\r\n"
BODYLESS_STATUSES = frozenset({204, 304})
HEADER_LINE_BREAKS = str.maketrans("\r\n", "  ")


class MalformedRequest(ValueError):
    """Raised when the request line or headers cannot be parsed."""


class RequestBody(io.RawIOBase):
    """Readable stream over a request payload still arriving on the socket.

    The payload is framed either by a declared length or by chunked transfer
    coding. Bytes received past the end of the payload are kept in
    ``leftover`` for the next request on the connection.
    """

    def __init__(
        self,
        client_socket: socket.socket,
        buffer: bytes,
        content_length: int = 0,
        chunked: bool = False,
        expect_continue: bool = False,
    ) -> None:
        super().__init__()
        self._socket = client_socket
        self._buffer = buffer
        self._chunked = chunked
        self._remaining = content_length
        self._need_crlf = False
        self._finished = not chunked and content_length == 0
        self._expect_continue = expect_continue and not self._finished
        self._continue_sent = False

    @property
    def finished(self) -> bool:
        """True once the whole payload has been consumed."""
        return self._finished

    @property
    def leftover(self) -> bytes:
        """Bytes received after the end of the payload."""
        return self._buffer

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._finished or len(buffer) == 0:
            return 0
        self._send_continue()
        if self._chunked:
            data = self._read_chunked(len(buffer))
        else:
            data = self._read_fixed(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def discard(self, limit: int) -> bool:
        """Skip the unread payload, returning False if the connection is unusable.

        A client still waiting for ``100 Continue`` never sent its payload, so
        there is nothing to skip and the connection cannot be reused.
        """
        if self._finished:
            return True
        if self._expect_continue and not self._continue_sent:
            return False
        skipped = 0
        try:
            while not self._finished and skipped <= limit:
                chunk = self.read(RECV_SIZE)
                skipped += len(chunk)
        except OSError:
            return False
        return self._finished

    def _send_continue(self) -> None:
        if self._expect_continue and not self._continue_sent:
            self._continue_sent = True
            self._socket.sendall(CONTINUE_RESPONSE)

    def _recv(self) -> bytes:
        chunk = self._socket.recv(RECV_SIZE)
        if not chunk:
            raise BodyError("connection closed before the request body was complete")
        return chunk

    def _fill(self, size: int) -> None:
        while len(self._buffer) < size:
            self._buffer += self._recv()

    def _take(self, size: int) -> bytes:
        if not self._buffer:
            self._buffer = self._recv()
        data = self._buffer[: min(size, self._remaining)]
        self._buffer = self._buffer[len(data) :]
        self._remaining -= len(data)
        return data

    def _read_fixed(self, size: int) -> bytes:
        data = self._take(size)
        if self._remaining == 0:
            self._finished = True
        return data

    def _read_line(self) -> bytes:
        while CRLF not in self._buffer:
            if len(self._buffer) > MAX_CHUNK_LINE_BYTES:
                raise BodyError("chunk header line too long")
            self._buffer += self._recv()
        line, self._buffer = self._buffer.split(CRLF, 1)
        return line

    def _read_chunked(self, size: int) -> bytes:
        if self._remaining == 0:
            if self._need_crlf:
                self._fill(len(CRLF))
                if not self._buffer.startswith(CRLF):
                    raise BodyError("chunk data not terminated by CRLF")
                self._buffer = self._buffer[len(CRLF) :]
                self._need_crlf = False
            size_text = self._read_line().split(b";", 1)[0].strip()
            try:
                self._remaining = int(size_text, 16)
            except ValueError as exc:
                raise BodyError("invalid chunk size") from exc
            if self._remaining < 0:
                raise BodyError("invalid chunk size")
            if self._remaining == 0:
                while self._read_line():
                    continue
                self._finished = True
                return b""
        data = self._take(size)
        if self._remaining == 0:
            self._need_crlf = True
        return data


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed: dict[str, str] = {}
    for line in lines:
        name, separator, value = line.partition(":")
        if not separator or not name or name != name.strip():
            raise MalformedRequest(f"Invalid header line: {line!r}")
        parsed[name.lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str]:
    """Parse the HTTP method and decoded path from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise MalformedRequest("Invalid request line") from exc
    if not method or not target or not version.startswith("HTTP/"):
        raise MalformedRequest("Invalid request line")

    if target.startswith("/"):
        # Origin form: a leading "//" is part of the path, not an authority.
        raw_path = target.split("?", 1)[0].split("#", 1)[0]
    else:
        raw_path = urllib.parse.urlsplit(target).path
    # Invalid UTF-8 escapes stay distinct; os calls turn them back into raw bytes.
    return method, urllib.parse.unquote(raw_path, errors="surrogateescape")


def determine_body_framing(headers: dict[str, str]) -> Tuple[int, bool]:
    """Return the declared Content-Length and whether the body is chunked."""
    transfer_encoding = headers.get("transfer-encoding")
    header_value = headers.get("content-length")
    if transfer_encoding is not None:
        codings = [coding.strip().lower() for coding in transfer_encoding.split(",")]
        if codings != ["chunked"] or header_value is not None:
            raise MalformedRequest("Unsupported Transfer-Encoding")
        return 0, True
    if header_value is None:
        return 0, False
    if not header_value.isdigit():
        raise MalformedRequest("Invalid Content-Length")
    return int(header_value), False


def receive_request(
    client_socket: socket.socket, buffer: bytes
) -> Optional[HttpRequest]:
    """Read from the socket until a request head is available.

    Returns None when the client closes the connection between requests. The
    payload is left on the socket behind the returned request's ``body``.
    """
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise MalformedRequest("Request head too large")
        chunk = client_socket.recv(RECV_SIZE)
        if not chunk:
            return None
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    try:
        header_lines = header_block.decode("utf-8").split("\r\n")
    except UnicodeDecodeError as exc:
        raise MalformedRequest("Request head is not valid UTF-8") from exc
    method, path = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    adopt_correlation_id(headers)

    content_length, chunked = determine_body_framing(headers)
    body = RequestBody(
        client_socket,
        remainder,
        content_length=content_length,
        chunked=chunked,
        expect_continue=headers.get("expect", "").lower() == "100-continue",
    )
    IO_LOGGER.debug("Parsed request", extra={"method": method, "path": path})
    return HttpRequest(method, path, headers, body)


def _header_line(name: str, value: str) -> str:
    # A value must never start a new header line.
    return f"{name}: {value}".translate(HEADER_LINE_BREAKS)


def send_response(client_socket: socket.socket, response: HttpResponse) -> None:
    """Serialize and send the HTTP response over the socket."""
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers[REQUEST_ID_HEADER] = correlation_id

    bodyless = response.status_code in BODYLESS_STATUSES
    if bodyless:
        headers.pop("Content-Length", None)
    elif response.use_chunked:
        headers["Transfer-Encoding"] = "chunked"
    else:
        headers.setdefault("Content-Length", str(len(response.body)))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(_header_line(name, value) for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode() + HEADER_DELIMITER

    if bodyless:
        client_socket.sendall(header_block)
    elif response.body_iter is not None:
        client_socket.sendall(header_block)
        for chunk in response.body_iter:
            if not chunk:
                continue
            if response.use_chunked:
                client_socket.sendall(f"{len(chunk):X}\r\n".encode())
                client_socket.sendall(chunk)
                client_socket.sendall(CRLF)
            else:
                client_socket.sendall(chunk)
        if response.use_chunked:
            client_socket.sendall(b"0\r\n\r\n")
    else:
        client_socket.sendall(header_block + response.body)
    IO_LOGGER.debug(
        "Sent response",
        extra={"status_code": response.status_code, "use_chunked": response.use_chunked},
    )
