"""Main connection acceptance loop."""

import logging
import socket
import ssl
import threading
from typing import Optional

from blobstore.bootstrap.config import ServerConfig
from blobstore.bootstrap.socket_factory import create_server_socket
from blobstore.domain.correlation_id import CorrelationLoggerAdapter
from blobstore.domain.http_types import Handler
from blobstore.domain.response_builders import draining_response
from blobstore.lifecycle.state import ServerLifecycle
from blobstore.pipeline.io import send_response
from blobstore.transport.context import WorkerContext
from blobstore.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("blobstore.transport.accept"), {}
)


def _start_worker(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    handler_context: WorkerContext,
) -> None:
    """Hand a newly accepted connection to its own worker thread."""
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, handler_context),
        daemon=True,
    )
    if handler_context.lifecycle is not None:
        handler_context.lifecycle.register_worker(thread)
    thread.start()


def _refuse_while_draining(client_socket: socket.socket, timeout: float) -> None:
    client_socket.settimeout(timeout)
    try:
        send_response(client_socket, draining_response())
    except OSError:
        ACCEPT_LOGGER.debug("Draining response not delivered")
    finally:
        client_socket.close()


def run_server(
    host: str,
    port: int,
    handler: Handler,
    config: ServerConfig,
    lifecycle: ServerLifecycle,
    tls_context: Optional[ssl.SSLContext] = None,
) -> None:
    """Bind the listening socket and serve connections until draining begins.

    Raises ``OSError`` when the address cannot be bound.
    """
    server_socket = create_server_socket(host, port, tls_context)

    ACCEPT_LOGGER.info(
        "Server listening for connections",
        extra={
            "event": "server_listening",
            "host": host,
            "port": port,
            "tls": tls_context is not None,
        },
    )

    handler_context = WorkerContext(
        handler=handler,
        lifecycle=lifecycle,
        config=config,
    )

    try:
        while True:
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                if lifecycle.should_stop():
                    break
                continue
            except OSError as error:
                if lifecycle.should_stop():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                continue

            if lifecycle.is_draining():
                _refuse_while_draining(client_socket, config.socket_timeout)
                continue

            _start_worker(client_socket, client_address, handler_context)
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "shutdown_grace_seconds": config.shutdown_grace_seconds,
            },
        )
        lifecycle.wait_for_workers(config.shutdown_grace_seconds)
        ACCEPT_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})
