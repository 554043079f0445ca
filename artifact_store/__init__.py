"""
Artifact Store Package.

Backend-agnostic persistence for exported CSV artifacts.
"""

from artifact_store.base import ArtifactStore
from artifact_store.factory import create_artifact_store
from artifact_store.filesystem import FilesystemArtifactStore
from artifact_store.models import (
    ArtifactRecord,
    build_artifact_name,
    format_size,
    parse_artifact_name,
)
from artifact_store.s3 import S3ArtifactStore, S3Config

__all__ = [
    "ArtifactStore",
    "ArtifactRecord",
    "FilesystemArtifactStore",
    "S3ArtifactStore",
    "S3Config",
    "create_artifact_store",
    "build_artifact_name",
    "parse_artifact_name",
    "format_size",
]
