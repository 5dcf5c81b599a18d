"""Worker thread logic for handling individual client connections."""

import logging
import socket
import threading
import time
from typing import Optional

from blobstore.bootstrap.config import MAX_DRAIN_BYTES
from blobstore.domain.correlation_id import CorrelationLoggerAdapter, correlation_scope
from blobstore.domain.http_types import HttpRequest, HttpResponse
from blobstore.domain.response_builders import bad_request_response, draining_response
from blobstore.lifecycle.state import ServerLifecycle
from blobstore.pipeline.io import MalformedRequest, receive_request, send_response
from blobstore.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("blobstore.transport.worker"), {}
)


def _read_request(
    client_socket: socket.socket, buffer: bytes, client_addr_str: str
) -> Optional[HttpRequest]:
    """Read the next request head, answering 400 when it cannot be parsed."""
    try:
        return receive_request(client_socket, buffer)
    except MalformedRequest as error:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={
                "event": "malformed_request",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
        send_response(client_socket, bad_request_response())
        return None


def _settle_body(request: HttpRequest, response: HttpResponse) -> None:
    """Skip whatever payload the handler left unread, or mark the connection done."""
    if response.close_connection:
        return
    if not request.body.discard(MAX_DRAIN_BYTES):
        response.close_connection = True


def _process_request(
    request: HttpRequest, context: WorkerContext, client_socket: socket.socket
) -> bool:
    """Run the handler chain and reply; return True when the connection must close."""
    started_ns = time.monotonic_ns()
    response = context.handler(request)
    _settle_body(request, response)
    send_response(client_socket, response)
    WORKER_LOGGER.info(
        "Request complete",
        extra={
            "event": "request_complete",
            "method": request.method,
            "route": request.path,
            "status_code": response.status_code,
            "duration_ms": (time.monotonic_ns() - started_ns) // 1_000_000,
        },
    )
    return response.close_connection


def _drain_if_requested(
    lifecycle: Optional[ServerLifecycle], client_socket: socket.socket
) -> bool:
    if lifecycle is None or not lifecycle.is_draining():
        return False
    send_response(client_socket, draining_response())
    return True


def _close_socket(client_socket: socket.socket, client_addr_str: str) -> None:
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        # Peer already gone.
        pass
    client_socket.close()
    WORKER_LOGGER.debug(
        "Socket closed",
        extra={"event": "socket_closed", "client": client_addr_str},
    )


def _serve_next(
    client_socket: socket.socket,
    buffer: bytes,
    client_addr_str: str,
    context: WorkerContext,
) -> Optional[bytes]:
    """Serve one request; return unread bytes, or None when the connection is done."""
    if _drain_if_requested(context.lifecycle, client_socket):
        return None

    request = _read_request(client_socket, buffer, client_addr_str)
    if request is None:
        return None

    if _process_request(request, context, client_socket):
        return None
    return request.body.leftover


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    buffer: Optional[bytes] = b""
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    if context.config is not None:
        client_socket.settimeout(context.config.socket_timeout)

    try:
        while buffer is not None:
            with correlation_scope():
                buffer = _serve_next(client_socket, buffer, client_addr_str, context)
    except (
        ConnectionError,
        TimeoutError,
        OSError,
    ) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        if context.lifecycle is not None:
            context.lifecycle.cleanup_worker(threading.current_thread())
        _close_socket(client_socket, client_addr_str)
