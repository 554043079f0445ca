"""
TestOps Client Package.

Remote export client for the TestOps bulk-export API.
"""

from testops_client.client import RemoteExportClient
from testops_client.credentials import CredentialCache
from testops_client.types import (
    ClientConfig,
    Credential,
    ExportJobHandle,
    ExportRequest,
    ExportUnit,
)

__all__ = [
    "RemoteExportClient",
    "CredentialCache",
    "ClientConfig",
    "Credential",
    "ExportJobHandle",
    "ExportRequest",
    "ExportUnit",
]
