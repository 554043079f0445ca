"""
Artifact Store - Backend Selection.

Selection happens once at startup: the object store is preferred
when enabled and reachable; any initialization failure is logged
and the filesystem backend is used instead.
"""

import logging
from typing import Any, Optional

from core.clock import ClockProtocol
from core.exceptions import StoreError
from artifact_store.base import ArtifactStore
from artifact_store.filesystem import FilesystemArtifactStore
from artifact_store.s3 import S3ArtifactStore, S3Config


logger = logging.getLogger(__name__)


def create_artifact_store(
    export_path: str,
    s3_config: Optional[S3Config] = None,
    s3_client: Optional[Any] = None,
    clock: Optional[ClockProtocol] = None,
) -> ArtifactStore:
    """
    Create the artifact backend for this process.

    Args:
        export_path: Filesystem backend root
        s3_config: Object store settings, None when disabled
        s3_client: Pre-built boto3 client (tests)
        clock: Clock shared with the engine

    Raises:
        StoreError: the filesystem fallback itself cannot be created
    """
    if s3_config is not None:
        try:
            return S3ArtifactStore(s3_config, client=s3_client, clock=clock)
        except StoreError as e:
            logger.error(
                f"S3 backend initialization failed, falling back to filesystem: {e}"
            )

    store = FilesystemArtifactStore(export_path, clock=clock)
    logger.info(f"Using filesystem artifact store at {store.root}")
    return store


__all__ = ["create_artifact_store"]
