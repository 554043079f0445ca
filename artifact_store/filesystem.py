"""
Artifact Store - Filesystem Backend.

Each artifact name maps 1:1 to a file in a configured root
directory. The directory is created if missing.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from core.clock import ClockProtocol
from core.exceptions import ArtifactNotFoundError, StoreError
from artifact_store.base import ArtifactStore
from artifact_store.models import ArtifactRecord, is_safe_name


logger = logging.getLogger(__name__)


class FilesystemArtifactStore(ArtifactStore):
    """Local directory backend."""

    backend_name = "filesystem"

    def __init__(
        self,
        root: str,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__(clock=clock)
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(
                f"Cannot create export directory {self._root}: {e}",
                backend=self.backend_name,
                cause=e,
            )

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, name: str) -> Path:
        if not is_safe_name(name):
            raise StoreError(
                f"Invalid artifact name: {name!r}",
                backend=self.backend_name,
                name=name,
                recoverable=False,
            )
        return self._root / name

    # =========================================================
    # OPERATIONS
    # =========================================================

    async def save(self, data: bytes, name: str) -> None:
        path = self._path_for(name)
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Saved {len(data)} bytes to {path}")

    def _write(self, path: Path, data: bytes) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreError(
                f"Failed to write {path}: {e}",
                backend=self.backend_name,
                name=path.name,
                cause=e,
            )

    async def list(self) -> List[ArtifactRecord]:
        return await asyncio.to_thread(self._scan)

    def _scan(self) -> List[ArtifactRecord]:
        try:
            entries = list(os.scandir(self._root))
        except OSError as e:
            raise StoreError(
                f"Failed to read export directory {self._root}: {e}",
                backend=self.backend_name,
                cause=e,
            )

        records = []
        for entry in entries:
            try:
                if entry.is_dir():
                    continue
                stat = entry.stat()
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {entry.name}: {e}")
                continue

            record = self.make_record(
                name=entry.name,
                size_bytes=stat.st_size,
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )
            if record is not None:
                records.append(record)

        return records

    async def get(self, name: str) -> bytes:
        path = self._path_for(name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(
                f"Artifact not found: {name}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )
        except OSError as e:
            raise StoreError(
                f"Failed to read {path}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )

    async def delete(self, name: str) -> None:
        path = self._path_for(name)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(
                f"Artifact not found: {name}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )
        except OSError as e:
            raise StoreError(
                f"Failed to delete {path}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )


__all__ = ["FilesystemArtifactStore"]
