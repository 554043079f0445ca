"""
TestOps Client - Remote Export Client.

============================================================
RESPONSIBILITY
============================================================
Issues "request export" and "download export" calls against the
TestOps bulk-export API.

- Builds the export definition for a unit
- Attaches the bearer credential
- Maps failures to TransportError / ApiError

============================================================
DESIGN PRINCIPLES
============================================================
- Every call is a single attempt
- Retry policy belongs to the orchestration engine
- Download uses a longer timeout than control calls

============================================================
"""

import logging
from typing import Optional

import httpx

from core.clock import ClockProtocol
from core.exceptions import ApiError, TransportError
from testops_client.credentials import CredentialCache
from testops_client.types import (
    ClientConfig,
    Credential,
    ExportJobHandle,
    ExportRequest,
    ExportUnit,
)


logger = logging.getLogger(__name__)

EXPORT_PATH = "/api/v2/test-case/bulk/export/csv"
DOWNLOAD_PATH = "/api/export/download/{export_id}"

DOWNLOAD_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/avif,image/webp,image/apng,*/*;q=0.8"
)


class RemoteExportClient:
    """
    Async client for the remote test-management export API.

    The underlying httpx.AsyncClient may be injected (tests pass
    one built on httpx.MockTransport); otherwise the client owns
    it and closes it in aclose().
    """

    def __init__(
        self,
        config: ClientConfig,
        http: Optional[httpx.AsyncClient] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._credentials = CredentialCache(config, self._http, clock=clock)

    @property
    def credentials(self) -> CredentialCache:
        return self._credentials

    async def __aenter__(self) -> "RemoteExportClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # =========================================================
    # CREDENTIAL
    # =========================================================

    async def acquire_credential(self) -> Credential:
        return await self._credentials.acquire()

    # =========================================================
    # EXPORT CALLS
    # =========================================================

    async def request_export(self, unit: ExportUnit) -> ExportJobHandle:
        """
        Ask the remote side to materialize an export for one unit.

        Raises:
            AuthError, TransportError, ApiError
        """
        credential = await self.acquire_credential()
        url = f"{self._config.base_url}{EXPORT_PATH}"
        payload = ExportRequest.for_unit(unit).to_payload()

        try:
            response = await self._http.post(
                url,
                json=payload,
                headers={"Authorization": credential.authorization_header},
                timeout=self._config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Export request failed: {e}",
                context={"url": url, "project_id": unit.project_id, "group_id": unit.group_id},
                cause=e,
            )

        if response.status_code == 401:
            self._credentials.invalidate()

        if response.status_code != 200:
            raise ApiError(
                f"Export request returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ApiError(
                f"Export response is not valid JSON: {e}",
                status_code=response.status_code,
                body=response.text,
            )

        export_id = body.get("id") if isinstance(body, dict) else None

        if not isinstance(export_id, int) or isinstance(export_id, bool):
            raise ApiError(
                "Export response has no integer id",
                status_code=response.status_code,
                body=response.text,
            )

        logger.debug(f"Export {export_id} requested for {unit.describe()}")
        return ExportJobHandle(export_id=export_id, unit=unit)

    async def download_export(self, handle: ExportJobHandle) -> bytes:
        """
        Fetch the artifact content for a previously issued handle.

        Raises:
            AuthError, TransportError, ApiError
        """
        credential = await self.acquire_credential()
        url = f"{self._config.base_url}{DOWNLOAD_PATH.format(export_id=handle.export_id)}"

        try:
            response = await self._http.get(
                url,
                headers={
                    "Accept": DOWNLOAD_ACCEPT,
                    "Authorization": credential.authorization_header,
                },
                timeout=self._config.download_timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Export download failed: {e}",
                context={"url": url, "export_id": handle.export_id},
                cause=e,
            )

        if response.status_code == 401:
            self._credentials.invalidate()

        if response.status_code != 200:
            raise ApiError(
                f"Export download returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )

        return response.content


__all__ = ["RemoteExportClient", "EXPORT_PATH", "DOWNLOAD_PATH"]
