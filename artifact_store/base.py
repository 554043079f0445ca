"""
Artifact Store - Backend Interface.

============================================================
PURPOSE
============================================================
Storage-backend-agnostic interface for exported artifacts.

Implementations:
- FilesystemArtifactStore: one file per artifact in a root dir
- S3ArtifactStore: one object per artifact under a dated prefix

Both produce identical ArtifactRecord.name semantics so project
id extraction does not depend on the backend.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import StoreError
from artifact_store.models import (
    ARTIFACT_EXTENSION,
    ArtifactRecord,
    parse_artifact_name,
)


logger = logging.getLogger(__name__)


class ArtifactStore(ABC):
    """
    Abstract artifact backend.

    Subclasses implement save/list/get/delete; age-based pruning
    is shared and best-effort.
    """

    backend_name: str = "abstract"

    def __init__(self, clock: Optional[ClockProtocol] = None) -> None:
        self._clock = clock or SystemClock()

    @abstractmethod
    async def save(self, data: bytes, name: str) -> None:
        """Persist artifact bytes under the given name."""
        pass

    @abstractmethod
    async def list(self) -> List[ArtifactRecord]:
        """List artifacts, unordered."""
        pass

    @abstractmethod
    async def get(self, name: str) -> bytes:
        """Fetch artifact bytes. Raises ArtifactNotFoundError if absent."""
        pass

    @abstractmethod
    async def delete(self, name: str) -> None:
        """Delete an artifact. Raises ArtifactNotFoundError if absent."""
        pass

    async def prune_older_than(self, max_age: timedelta) -> int:
        """
        Delete every artifact last modified before now - max_age.

        A failed single deletion is logged and skipped.

        Returns:
            Number of artifacts deleted
        """
        cutoff = self._clock.now() - max_age
        deleted = 0

        for record in await self.list():
            if record.last_modified >= cutoff:
                continue
            try:
                await self.delete(record.name)
            except StoreError as e:
                logger.error(f"Failed to delete old artifact {record.name}: {e}")
                continue
            deleted += 1
            logger.info(f"Deleted old artifact: {record.name}")

        if deleted:
            logger.info(f"Retention sweep removed {deleted} artifacts from {self.backend_name}")
        return deleted

    @staticmethod
    def make_record(
        name: str,
        size_bytes: int,
        last_modified: datetime,
    ) -> Optional[ArtifactRecord]:
        """Build a record, or None when the name is not an artifact name."""
        if not name.endswith(ARTIFACT_EXTENSION):
            return None
        parsed = parse_artifact_name(name)
        if parsed is None:
            logger.debug(f"Skipping malformed artifact name: {name}")
            return None
        return ArtifactRecord(
            name=name,
            size_bytes=size_bytes,
            last_modified=last_modified,
            project_id=parsed.project_id,
        )


__all__ = ["ArtifactStore"]
