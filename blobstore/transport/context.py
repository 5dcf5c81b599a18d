"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from blobstore.bootstrap.config import ServerConfig
from blobstore.domain.http_types import Handler
from blobstore.lifecycle.state import ServerLifecycle


@dataclass(frozen=True)
class WorkerContext:
    """Dependencies shared across handler threads.

    ``handler`` is the full request chain, credential gate included.
    """

    handler: Handler
    lifecycle: Optional[ServerLifecycle] = None
    config: Optional[ServerConfig] = None
