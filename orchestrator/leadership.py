"""
Orchestrator - Leadership Gate.

============================================================
RESPONSIBILITY
============================================================
Ensures only one replica runs scheduled exports.

Contract:
    await gate.run_while_leader(body, shutdown_event)

`body(stop_event)` is awaited only while this process holds
leadership. `stop_event` is set as soon as leadership is lost or
shutdown is requested; the body is expected to stop issuing new
attempts and return.

============================================================
IMPLEMENTATIONS
============================================================
- LocalLeadershipGate: single replica, always leader
- RedisLeadershipGate: lease key in Redis
    acquire  SET key identity NX PX lease
    renew    compare-and-extend script every renew interval
    release  compare-and-delete script on exit

============================================================
"""

import asyncio
import logging
import os
import socket
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from core.clock import ClockProtocol, SystemClock, wait_or_stop


logger = logging.getLogger(__name__)

LeaderBody = Callable[[asyncio.Event], Awaitable[Any]]

RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def default_identity() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class LeadershipGate(ABC):
    """Scoped execution window bounded by leadership."""

    @property
    @abstractmethod
    def is_leader(self) -> bool:
        pass

    @abstractmethod
    async def run_while_leader(
        self,
        body: LeaderBody,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        pass


# ============================================================
# LOCAL GATE
# ============================================================

class LocalLeadershipGate(LeadershipGate):
    """Always-leader gate for single-replica deployments."""

    def __init__(self) -> None:
        self._leader = False

    @property
    def is_leader(self) -> bool:
        return self._leader

    async def run_while_leader(
        self,
        body: LeaderBody,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        stop_event = shutdown_event or asyncio.Event()
        self._leader = True
        logger.info("Running as sole leader (leader election disabled)")
        try:
            await body(stop_event)
        finally:
            self._leader = False


# ============================================================
# REDIS GATE
# ============================================================

class RedisLeadershipGate(LeadershipGate):
    """Lease-based leader election on a shared Redis."""

    def __init__(
        self,
        client: Any,
        lease_name: str = "testops-export-leader",
        lease_seconds: float = 15,
        renew_seconds: float = 5,
        retry_seconds: float = 2,
        identity: Optional[str] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        if renew_seconds >= lease_seconds:
            raise ValueError("renew_seconds must be shorter than lease_seconds")
        self._redis = client
        self._key = lease_name
        self._lease_ms = int(lease_seconds * 1000)
        self._renew_seconds = renew_seconds
        self._retry_seconds = retry_seconds
        self._identity = identity or default_identity()
        self._clock = clock or SystemClock()
        self._leader = False
        self._last_seen_leader: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisLeadershipGate":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def is_leader(self) -> bool:
        return self._leader

    async def try_acquire(self) -> bool:
        """Attempt to take the lease once. Redis errors count as not acquired."""
        try:
            acquired = await self._redis.set(
                self._key, self._identity, nx=True, px=self._lease_ms
            )
        except RedisError as e:
            logger.warning(f"Leader lease acquire failed: {e}")
            return False

        if acquired:
            logger.info(f"Elected leader: {self._identity}")
            return True

        await self._note_current_leader()
        return False

    async def renew(self) -> bool:
        """Extend the lease if still owned. Returns False if ownership is gone."""
        try:
            result = await self._redis.eval(
                RENEW_SCRIPT, 1, self._key, self._identity, self._lease_ms
            )
        except RedisError as e:
            logger.error(f"Leader lease renewal failed: {e}")
            return False
        return bool(result)

    async def release(self) -> None:
        try:
            await self._redis.eval(RELEASE_SCRIPT, 1, self._key, self._identity)
        except RedisError as e:
            logger.warning(f"Leader lease release failed: {e}")

    async def run_while_leader(
        self,
        body: LeaderBody,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Campaign for the lease and run the body whenever it is held.

        Returns once shutdown is requested. After losing leadership
        the gate goes back to campaigning.
        """
        shutdown = shutdown_event or asyncio.Event()

        while not shutdown.is_set():
            if not await self.try_acquire():
                if not await wait_or_stop(self._clock, self._retry_seconds, shutdown):
                    break
                continue

            self._leader = True
            stop_event = asyncio.Event()
            keeper = asyncio.create_task(self._keep_lease(stop_event, shutdown))
            try:
                await body(stop_event)
            finally:
                stop_event.set()
                keeper.cancel()
                try:
                    await keeper
                except asyncio.CancelledError:
                    pass
                self._leader = False
                await self.release()
                logger.info(f"Leadership released by {self._identity}")

    async def _keep_lease(self, stop_event: asyncio.Event, shutdown: asyncio.Event) -> None:
        while not stop_event.is_set():
            if not await wait_or_stop(self._clock, self._renew_seconds, shutdown):
                logger.info("Shutdown requested, leaving leadership")
                stop_event.set()
                return
            if not await self.renew():
                logger.warning(f"{self._identity} is no longer leader, stopping exports")
                self._leader = False
                stop_event.set()
                return

    async def _note_current_leader(self) -> None:
        try:
            holder = await self._redis.get(self._key)
        except RedisError:
            return
        if holder and holder != self._last_seen_leader:
            logger.info(f"Current leader: {holder}")
            self._last_seen_leader = holder


__all__ = [
    "LeadershipGate",
    "LocalLeadershipGate",
    "RedisLeadershipGate",
    "default_identity",
]
