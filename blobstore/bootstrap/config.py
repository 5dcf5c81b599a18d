"""Server configuration: CLI arguments and the JSON configuration file."""

import argparse
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


DEFAULT_CONFIG_FILE = "config.json"
DEFAULT_LISTEN_ADDRESS = "0.0.0.0:14000"
LOG_FORMATS = ("json", "text")
DEFAULT_SOCKET_TIMEOUT = _env_int("BLOBSTORE_SOCKET_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("BLOBSTORE_SHUTDOWN_GRACE_SECONDS", 30)

HEADER_DELIMITER = b"\r\n\r\n"
MAX_HEADER_BYTES = 64 * 1024
MAX_DRAIN_BYTES = 256 * 1024


class ConfigError(Exception):
    """Raised when the server configuration cannot be loaded or is invalid."""


@dataclass(frozen=True)
class BlobstoreConfig:
    """Immutable settings read from the configuration file."""

    blobs_path: str
    public_read: bool = False
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    users: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def tls_enabled(self) -> bool:
        """True when both halves of a certificate pair are configured."""
        return bool(self.cert_file and self.key_file)


@dataclass
class ServerConfig:
    """Server configuration including timeouts and shutdown settings."""

    socket_timeout: int
    shutdown_grace_seconds: int


def _optional_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _users(data: dict[str, Any]) -> Mapping[str, str]:
    users = data.get("users") or {}
    if not isinstance(users, dict) or not all(
        isinstance(name, str) and isinstance(secret, str)
        for name, secret in users.items()
    ):
        raise ConfigError("users must map user names to passwords")
    return MappingProxyType(dict(users))


def config_from_mapping(data: Any) -> BlobstoreConfig:
    """Validate decoded JSON and build the configuration object."""
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a JSON object")
    public_read = data.get("public_read", False)
    if not isinstance(public_read, bool):
        raise ConfigError("public_read must be a boolean")
    return BlobstoreConfig(
        blobs_path=_optional_str(data, "blobs_path") or "",
        public_read=public_read,
        cert_file=_optional_str(data, "cert_file"),
        key_file=_optional_str(data, "key_file"),
        users=_users(data),
    )


def load_config(config_file: str) -> BlobstoreConfig:
    """Read and validate the JSON configuration file."""
    try:
        with open(Path(config_file), encoding="utf-8") as reader:
            data = json.load(reader)
    except OSError as error:
        raise ConfigError(f"cannot read {config_file}: {error.strerror}") from error
    except ValueError as error:
        raise ConfigError(f"invalid JSON in {config_file}: {error}") from error
    return config_from_mapping(data)


def parse_listen_address(listen_address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address."""
    host, separator, port_text = listen_address.rpartition(":")
    if not separator or not port_text.isdigit():
        raise ConfigError(f"invalid listen address: {listen_address!r}")
    port = int(port_text)
    if port > 65535:
        raise ConfigError(f"invalid listen address: {listen_address!r}")
    return host.strip("[]") or "0.0.0.0", port


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(description="Filesystem-backed HTTP blob store")
    parser.add_argument(
        "--config-file",
        default=DEFAULT_CONFIG_FILE,
        help="The path to the configuration file",
    )
    parser.add_argument(
        "--listen-address",
        default=DEFAULT_LISTEN_ADDRESS,
        help="The host:port address to bind to",
    )
    default_log_level = os.getenv("BLOBSTORE_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("BLOBSTORE_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=os.getenv("BLOBSTORE_LOG_FORMAT", "json").lower(),
        choices=list(LOG_FORMATS),
        type=str.lower,
        help="json lines or plain text",
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Socket timeout in seconds for request processing",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=int,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for graceful shutdown",
    )
    return parser.parse_args(argv)
