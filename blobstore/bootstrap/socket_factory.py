"""Socket creation and TLS configuration."""

import logging
import socket
import ssl
from typing import Optional

from blobstore.domain.correlation_id import CorrelationLoggerAdapter

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("blobstore.socket"), {})

ACCEPT_POLL_SECONDS = 0.5


def create_tls_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """Build a server-side TLS context from a certificate chain and key."""
    tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    tls_context.load_cert_chain(cert_file, key_file)
    return tls_context


def create_server_socket(
    host: str, port: int, tls_context: Optional[ssl.SSLContext] = None
) -> socket.socket:
    """Create the listening socket, wrapping it in TLS when a context is given."""
    server_socket = socket.create_server((host, port), reuse_port=True)
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    if tls_context is not None:
        # Handshakes happen on first read, inside the connection's worker.
        server_socket = tls_context.wrap_socket(
            server_socket, server_side=True, do_handshake_on_connect=False
        )
    SOCKET_LOGGER.debug(
        "Listening socket created",
        extra={"host": host, "port": port, "tls": tls_context is not None},
    )
    return server_socket
