"""Per-request correlation ids carried in a context variable."""

import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, MutableMapping, Optional

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128
ROOT_LOGGER_PREFIX = "blobstore."

_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    """Generate a new correlation ID using UUID4."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Retrieve the current correlation ID from context."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Store a correlation ID in the current context."""
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation ID from the current context."""
    _correlation_id_var.set(None)


def adopt_correlation_id(headers: Mapping[str, str]) -> Optional[str]:
    """Switch to the client's X-Request-ID when it is safe to echo back.

    Values that are too long or contain non-printable characters are ignored
    and the current id is kept.
    """
    incoming = headers.get(REQUEST_ID_HEADER.lower(), "")
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH and incoming.isprintable():
        set_correlation_id(incoming)
    return get_correlation_id()


@contextmanager
def correlation_scope() -> Iterator[str]:
    """Bind a fresh correlation id for the duration of one request."""
    correlation_id = generate_correlation_id()
    token = _correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id_var.reset(token)


def _component_for(logger_name: str) -> str:
    if logger_name.startswith(ROOT_LOGGER_PREFIX):
        return logger_name[len(ROOT_LOGGER_PREFIX) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with the request ID and component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Add correlation_id and component to a copy of the extra dict."""
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = get_correlation_id() or "-"
        extra["component"] = _component_for(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs
