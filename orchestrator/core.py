"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Wires the export service together and controls its lifecycle.

- Builds client, artifact store, engine, scheduler and
  leadership gate from configuration
- Runs the JSON API and the leadership-gated scheduler
- Handles signals (SIGINT, SIGTERM) for graceful shutdown

============================================================
ARCHITECTURAL POSITION
============================================================
- No export logic lives here
- The engine owns retries, concurrency and retention
- This module ONLY coordinates startup, shutdown and wiring

============================================================
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

from aiohttp import web

from artifact_store.base import ArtifactStore
from artifact_store.factory import create_artifact_store
from core.clock import ClockProtocol, SystemClock
from dashboard.api import create_export_app
from orchestrator.config import ExportServiceConfig
from orchestrator.engine import ExportEngine
from orchestrator.leadership import (
    LeadershipGate,
    LocalLeadershipGate,
    RedisLeadershipGate,
)
from orchestrator.models import BatchResult
from orchestrator.scheduler import ExportScheduler
from testops_client.client import RemoteExportClient


class ExportService:
    """
    Export service runtime.

    Owns every long-lived component for one process.
    """

    def __init__(
        self,
        config: ExportServiceConfig,
        client: RemoteExportClient,
        store: ArtifactStore,
        gate: LeadershipGate,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config
        self._clock = clock or SystemClock()
        self._client = client
        self._store = store
        self._gate = gate
        self._engine = ExportEngine(
            units=config.export_units(),
            client=client,
            store=store,
            settings=config.engine_settings(),
            clock=self._clock,
        )
        self._scheduler = ExportScheduler(self._engine, config.cron_schedule, self._clock)
        self._engine.attach_schedule(self._scheduler)

        self._shutdown_event = asyncio.Event()
        self._runner: Optional[web.AppRunner] = None
        self._logger = logging.getLogger("orchestrator")

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def engine(self) -> ExportEngine:
        return self._engine

    @property
    def scheduler(self) -> ExportScheduler:
        return self._scheduler

    @property
    def gate(self) -> LeadershipGate:
        return self._gate

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------

    async def run_once(
        self,
        project_id: Optional[int] = None,
        sequential: bool = False,
    ) -> BatchResult:
        """Run one batch in the foreground."""
        try:
            if sequential:
                if project_id is None:
                    return await self._engine.run_all(self._shutdown_event)
                return await self._engine.run_for_project(project_id, self._shutdown_event)
            if project_id is None:
                return await self._engine.run_all_concurrent(self._shutdown_event)
            return await self._engine.run_for_project_concurrent(
                project_id, self._shutdown_event
            )
        finally:
            await self._client.aclose()

    async def serve(self) -> None:
        """
        Serve the JSON API and run the scheduler while leader.

        Returns after a shutdown signal once the scheduler body and
        any background runs have stopped.
        """
        self._logger.info("=== EXPORT SERVICE STARTUP ===")
        self._install_signal_handlers()

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.web_host, self._config.web_port)
        await site.start()
        self._logger.info(
            f"API listening on {self._config.web_host}:{self._config.web_port}"
        )
        self._logger.info(f"Schedule: {self._scheduler.next_run_info()}")

        try:
            await self._gate.run_while_leader(self._scheduler.run, self._shutdown_event)
            await self._engine.wait_background()
        finally:
            await self._runner.cleanup()
            await self._client.aclose()
            self._restore_signal_handlers()
            self._logger.info("=== EXPORT SERVICE SHUTDOWN COMPLETE ===")

    def create_app(self) -> web.Application:
        """JSON API bound to this service's leadership and shutdown."""
        return create_export_app(
            self._engine,
            is_leader=lambda: self._gate.is_leader,
            stop_event=self._shutdown_event,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def request_shutdown(self) -> None:
        if not self._shutdown_event.is_set():
            self._logger.info("Shutdown requested")
            self._shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        return {
            "leader": self._gate.is_leader,
            "shutdown_requested": self.shutdown_requested,
            "engine": self._engine.status(),
            "next_run": self._scheduler.next_run_info(),
        }

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        loop = asyncio.get_event_loop()
        loop.call_soon_threadsafe(self.request_shutdown)


# ============================================================
# SERVICE FACTORY
# ============================================================

def create_leadership_gate(
    config: ExportServiceConfig,
    clock: Optional[ClockProtocol] = None,
) -> LeadershipGate:
    if config.leader_election == "redis":
        return RedisLeadershipGate.from_url(
            config.redis_url,
            lease_name=config.leader_lease_name,
            lease_seconds=config.leader_lease_seconds,
            renew_seconds=config.leader_renew_seconds,
            clock=clock,
        )
    return LocalLeadershipGate()


def create_service(
    config: ExportServiceConfig,
    clock: Optional[ClockProtocol] = None,
) -> ExportService:
    """
    Factory function to create the export service.

    Raises:
        ConfigurationError: configuration is invalid
        StoreError: not even the filesystem backend can be created
    """
    config.ensure_valid()
    config.log_summary()
    clock = clock or SystemClock()

    client = RemoteExportClient(config.client_config(), clock=clock)
    store = create_artifact_store(
        config.export_path,
        s3_config=config.s3_config(),
        clock=clock,
    )
    gate = create_leadership_gate(config, clock)
    return ExportService(config, client, store, gate, clock)


__all__ = [
    "ExportService",
    "create_leadership_gate",
    "create_service",
]
