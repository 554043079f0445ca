"""
Artifact Store - Object Store (S3) Backend.

============================================================
PURPOSE
============================================================
Stores artifacts as objects in an S3-compatible bucket.

Key layout:
    exports/<YYYY-MM-DD>/<name>

The date folder comes from the timestamp embedded in the
artifact name, so get/delete on a later day address the key
that save wrote.

============================================================
DESIGN PRINCIPLES
============================================================
- Bucket access is verified at construction time
- boto3 is blocking: every call runs in a worker thread
- Listing paginates until no continuation token remains

============================================================
"""

import asyncio
import logging
import posixpath
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from core.clock import ClockProtocol
from core.exceptions import ArtifactNotFoundError, StoreError
from artifact_store.base import ArtifactStore
from artifact_store.models import (
    ARTIFACT_EXTENSION,
    ArtifactRecord,
    is_safe_name,
    parse_artifact_name,
)


logger = logging.getLogger(__name__)

KEY_PREFIX = "exports/"
CONTENT_TYPE = "text/csv"
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass(frozen=True)
class S3Config:
    """Object store connection settings."""
    bucket: str
    access_key: str
    secret_key: str
    region: str = "us-east-1"
    endpoint: str = ""


def create_s3_client(config: S3Config) -> Any:
    """Build a path-style S3 client with static credentials."""
    return boto3.client(
        "s3",
        endpoint_url=config.endpoint or None,
        region_name=config.region,
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        config=BotoConfig(s3={"addressing_style": "path"}),
    )


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ArtifactStore(ArtifactStore):
    """S3-compatible object store backend."""

    backend_name = "s3"

    def __init__(
        self,
        config: S3Config,
        client: Optional[Any] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        """
        Connect and verify bucket access.

        Raises:
            StoreError: client creation failed or the bucket is not accessible
        """
        super().__init__(clock=clock)
        self._bucket = config.bucket

        try:
            self._client = client or create_s3_client(config)
            self._client.head_bucket(Bucket=self._bucket)
        except (BotoCoreError, ClientError) as e:
            raise StoreError(
                f"Cannot access S3 bucket {self._bucket}: {e}",
                backend=self.backend_name,
                cause=e,
            )

        logger.info(f"S3 artifact store initialized: bucket {self._bucket}")

    def key_for(self, name: str) -> str:
        parsed = parse_artifact_name(name)
        if parsed is not None and parsed.created_at is not None:
            day = parsed.created_at.date()
        else:
            day = self._clock.now().date()
        return f"{KEY_PREFIX}{day.isoformat()}/{name}"

    def _checked_key(self, name: str) -> str:
        if not is_safe_name(name):
            raise StoreError(
                f"Invalid artifact name: {name!r}",
                backend=self.backend_name,
                name=name,
                recoverable=False,
            )
        return self.key_for(name)

    # =========================================================
    # OPERATIONS
    # =========================================================

    async def save(self, data: bytes, name: str) -> None:
        key = self._checked_key(name)
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=CONTENT_TYPE,
                Metadata={
                    "original-filename": name,
                    "upload-time": self._clock.now().isoformat(),
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(
                f"Failed to upload {key}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )
        logger.info(f"Saved artifact to S3: {key}")

    async def list(self) -> List[ArtifactRecord]:
        records: List[ArtifactRecord] = []
        continuation_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"Bucket": self._bucket, "Prefix": KEY_PREFIX}
            if continuation_token:
                params["ContinuationToken"] = continuation_token

            try:
                page = await asyncio.to_thread(self._client.list_objects_v2, **params)
            except (BotoCoreError, ClientError) as e:
                raise StoreError(
                    f"Failed to list bucket {self._bucket}: {e}",
                    backend=self.backend_name,
                    cause=e,
                )

            for obj in page.get("Contents", []):
                key = obj.get("Key", "")
                if key.endswith("/") or not key.endswith(ARTIFACT_EXTENSION):
                    continue
                record = self.make_record(
                    name=posixpath.basename(key),
                    size_bytes=int(obj.get("Size", 0)),
                    last_modified=obj["LastModified"],
                )
                if record is not None:
                    records.append(record)

            continuation_token = page.get("NextContinuationToken")
            if not page.get("IsTruncated") or not continuation_token:
                break

        return records

    async def get(self, name: str) -> bytes:
        key = self._checked_key(name)
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=key
            )
            body = response["Body"]
            try:
                return await asyncio.to_thread(body.read)
            finally:
                body.close()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ArtifactNotFoundError(
                    f"Artifact not found: {name}",
                    backend=self.backend_name,
                    name=name,
                    cause=e,
                )
            raise StoreError(
                f"Failed to download {key}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to download {key}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )

    async def delete(self, name: str) -> None:
        key = self._checked_key(name)
        try:
            # delete_object succeeds for absent keys, so check first
            await asyncio.to_thread(
                self._client.head_object, Bucket=self._bucket, Key=key
            )
            await asyncio.to_thread(
                self._client.delete_object, Bucket=self._bucket, Key=key
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ArtifactNotFoundError(
                    f"Artifact not found: {name}",
                    backend=self.backend_name,
                    name=name,
                    cause=e,
                )
            raise StoreError(
                f"Failed to delete {key}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to delete {key}: {e}",
                backend=self.backend_name,
                name=name,
                cause=e,
            )
        logger.info(f"Deleted artifact from S3: {key}")


__all__ = ["S3Config", "S3ArtifactStore", "create_s3_client", "KEY_PREFIX"]
