"""HTTP Basic credential gate composed in front of the blob handler."""

import base64
import binascii
import hmac
import logging
from typing import Mapping, Optional

from blobstore.domain.correlation_id import CorrelationLoggerAdapter
from blobstore.domain.http_types import Handler, HttpRequest, HttpResponse
from blobstore.domain.response_builders import forbidden_response, unauthorized_response

AUTH_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("blobstore.security.authentication"), {}
)

READ_METHODS = frozenset({"GET", "HEAD"})
DEFAULT_REALM = "blobstore"


def parse_basic_auth(headers: dict[str, str]) -> Optional[tuple[str, str]]:
    """Return the (user, password) pair from a Basic Authorization header."""
    value = headers.get("authorization", "")
    scheme, _, encoded = value.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, separator, password = decoded.partition(":")
    if not separator:
        return None
    return user, password


class AuthenticationGate:
    """Lets a request through to ``delegate`` only when its credentials check out.

    Reads (GET/HEAD) bypass the check when ``public_read`` is set. Everything
    else needs a Basic credential: a missing one yields 401, a wrong one 403.
    """

    def __init__(
        self,
        delegate: Handler,
        authorized: Optional[Mapping[str, str]] = None,
        public_read: bool = False,
        realm: str = DEFAULT_REALM,
    ) -> None:
        self._delegate = delegate
        self._authorized: Mapping[str, str] = authorized or {}
        self._public_read = public_read
        self._realm = realm

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if self._public_read and request.method in READ_METHODS:
            return self._delegate(request)

        credentials = parse_basic_auth(request.headers)
        if credentials is None:
            AUTH_LOGGER.info(
                "Request without credentials rejected",
                extra={"event": "auth_missing", "method": request.method},
            )
            return unauthorized_response(request, self._realm)

        user, password = credentials
        if not self._is_authorized(user, password):
            AUTH_LOGGER.warning(
                "Request with invalid credentials rejected",
                extra={"event": "auth_denied", "method": request.method, "user": user},
            )
            return forbidden_response(request)

        return self._delegate(request)

    def _is_authorized(self, user: str, password: str) -> bool:
        expected = self._authorized.get(user)
        if expected is None:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), password.encode("utf-8"))
