"""Filesystem-backed HTTP blob store entry point."""

import logging
import signal
import ssl
import sys
from typing import NoReturn, Optional

from blobstore.bootstrap.config import (
    ConfigError,
    ServerConfig,
    load_config,
    parse_cli_args,
    parse_listen_address,
)
from blobstore.bootstrap.logging_setup import configure_logging
from blobstore.bootstrap.socket_factory import create_tls_context
from blobstore.domain.correlation_id import CorrelationLoggerAdapter
from blobstore.lifecycle.state import ServerLifecycle
from blobstore.pipeline.router import build_handler_chain
from blobstore.transport.accept_loop import run_server

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("blobstore.server"), {})


def _fail(message: str, error: Optional[Exception] = None) -> NoReturn:
    """Log a fatal startup problem and exit with status 1."""
    extra = {"event": "startup_failed"}
    if error is not None:
        extra["error_type"] = type(error).__name__
        message = f"{message}: {error}"
    SERVER_LOGGER.critical(message, extra=extra)
    sys.exit(1)


def main(argv: Optional[list[str]] = None) -> None:
    """Load configuration, then serve blobs until SIGTERM or SIGINT."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination, args.log_format)

    try:
        blobstore_config = load_config(args.config_file)
        host, port = parse_listen_address(args.listen_address)
    except ConfigError as error:
        _fail("failed to load config data", error)
    if not blobstore_config.blobs_path:
        _fail("blobs path is required")

    tls_context: Optional[ssl.SSLContext] = None
    if blobstore_config.tls_enabled:
        try:
            tls_context = create_tls_context(
                blobstore_config.cert_file, blobstore_config.key_file
            )
        except (ssl.SSLError, OSError) as error:
            _fail("failed to load TLS certificates", error)

    config = ServerConfig(
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )
    lifecycle = ServerLifecycle()

    def shutdown_handler(signum: int, _frame) -> None:
        SERVER_LOGGER.info(
            "Received shutdown signal", extra={"event": "signal", "signal": signum}
        )
        lifecycle.begin_draining()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    SERVER_LOGGER.info(
        "Starting blob store",
        extra={
            "event": "server_starting",
            "host": host,
            "port": port,
            "blobs_path": blobstore_config.blobs_path,
            "public_read": blobstore_config.public_read,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "tls": tls_context is not None,
            "socket_timeout": config.socket_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )
    try:
        run_server(
            host,
            port,
            build_handler_chain(blobstore_config),
            config,
            lifecycle,
            tls_context,
        )
    except OSError as error:
        _fail("listen and serve failed", error)


if __name__ == "__main__":
    main()
