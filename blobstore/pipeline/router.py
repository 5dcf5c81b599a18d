"""Assembly of the request handler chain."""

from typing import Optional

from blobstore.bootstrap.config import BlobstoreConfig
from blobstore.domain.http_types import Handler
from blobstore.handlers.blob_handler import BlobHandler
from blobstore.handlers.static_files import FileServing, StaticFileServer
from blobstore.security.authentication import AuthenticationGate


def build_handler_chain(
    config: BlobstoreConfig, file_server: Optional[FileServing] = None
) -> Handler:
    """Compose the credential gate in front of the blob handler."""
    blob_handler = BlobHandler(
        config.blobs_path,
        file_server if file_server is not None else StaticFileServer(),
    )
    return AuthenticationGate(
        blob_handler,
        authorized=config.users,
        public_read=config.public_read,
    )
