"""
TestOps Client - Bearer Credential Cache.

============================================================
RESPONSIBILITY
============================================================
Exchanges the long-lived API token for a short-lived bearer
token and caches it for its TTL.

- Cached credential is returned while younger than the TTL
- Expired or missing credential triggers one token exchange
- Concurrent refreshes are tolerated: the exchange is
  idempotent, last write wins, no lock is held

============================================================
"""

import logging
from datetime import timedelta
from typing import Optional

import httpx

from core.clock import ClockProtocol, SystemClock
from core.exceptions import AuthError, TransportError
from testops_client.types import ClientConfig, Credential


logger = logging.getLogger(__name__)

TOKEN_PATH = "/api/uaa/oauth/token"


class CredentialCache:
    """Owned, injectable bearer-credential cache."""

    def __init__(
        self,
        config: ClientConfig,
        http: httpx.AsyncClient,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config
        self._http = http
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=config.credential_ttl_seconds)
        self._credential: Optional[Credential] = None
        self.exchange_count = 0

    @property
    def current(self) -> Optional[Credential]:
        return self._credential

    def invalidate(self) -> None:
        """Drop the cached credential so the next call re-exchanges."""
        self._credential = None

    async def acquire(self) -> Credential:
        """
        Return a valid bearer credential.

        Raises:
            AuthError: base URL or token unset, or the exchange was rejected
            TransportError: the token endpoint could not be reached
        """
        cached = self._credential
        if cached is not None and cached.is_valid(self._clock.now(), self._ttl):
            return cached

        if not self._config.base_url or not self._config.token:
            raise AuthError("TESTOPS_BASE_URL or TESTOPS_TOKEN is not configured")

        credential = await self._exchange()
        self._credential = credential
        return credential

    async def _exchange(self) -> Credential:
        url = f"{self._config.base_url}{TOKEN_PATH}"
        self.exchange_count += 1

        try:
            response = await self._http.post(
                url,
                data={
                    "grant_type": "apitoken",
                    "scope": "openid",
                    "token": self._config.token,
                },
                headers={"Accept": "application/json"},
                timeout=self._config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Token exchange failed: {e}",
                context={"url": url},
                cause=e,
            )

        if response.status_code != 200:
            raise AuthError(
                f"Token endpoint returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AuthError(
                f"Token endpoint returned invalid JSON: {e}",
                status_code=response.status_code,
                body=response.text,
            )

        access_token = body.get("access_token") if isinstance(body, dict) else None

        if not access_token:
            raise AuthError(
                "Token endpoint response has no access_token",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info("Acquired new bearer credential")
        return Credential(access_token=access_token, acquired_at=self._clock.now())


__all__ = ["CredentialCache", "TOKEN_PATH"]
