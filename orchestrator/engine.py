"""
Orchestrator - Export Engine.

============================================================
RESPONSIBILITY
============================================================
Drives export units through request -> wait -> download -> persist
with bounded retries, and offers the execution modes built on
that single per-unit driver.

- Sequential (all / by project)
- Bounded-concurrent (all / by project), blocking until settled
- Fire-and-forget start for external triggers
- Retention sweep after any batch with at least one success
- Artifact listing / fetch / delete pass-through

============================================================
FAILURE ISOLATION
============================================================
A unit's terminal failure is recorded in its UnitRunResult and
never raised to the caller. Siblings keep running.

============================================================
CANCELLATION
============================================================
The stop event is checked before every attempt and interrupts
the materialization and backoff waits. An in-flight HTTP call
or store write is allowed to finish.

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from core.clock import ClockProtocol, SystemClock, wait_or_stop
from core.exceptions import RemoteError, StoreError
from artifact_store.base import ArtifactStore
from artifact_store.models import ArtifactRecord, build_artifact_name
from orchestrator.models import (
    BatchResult,
    EngineSettings,
    UnitRunResult,
    UnitState,
)
from testops_client.client import RemoteExportClient
from testops_client.types import ExportUnit


logger = logging.getLogger(__name__)


# ============================================================
# ADMISSION GATE
# ============================================================

class AdmissionGate:
    """
    Counting admission gate for concurrent unit drivers.

    Wraps an asyncio.Semaphore and tracks how many holders are
    active and the highest number ever active at once.
    """

    def __init__(self, ceiling: int) -> None:
        if ceiling < 1:
            raise ValueError("Admission ceiling must be at least 1")
        self._ceiling = ceiling
        self._semaphore = asyncio.Semaphore(ceiling)
        self._active = 0
        self._peak = 0

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        return self._peak

    async def __aenter__(self) -> "AdmissionGate":
        await self._semaphore.acquire()
        self._active += 1
        self._peak = max(self._peak, self._active)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._active -= 1
        self._semaphore.release()


# ============================================================
# ENGINE
# ============================================================

class ExportEngine:
    """
    Export orchestration engine.

    Holds the closed catalogue of export units, the remote client
    and the active artifact backend. All public run methods return
    a BatchResult and never raise for unit failures.
    """

    def __init__(
        self,
        units: Sequence[ExportUnit],
        client: RemoteExportClient,
        store: ArtifactStore,
        settings: Optional[EngineSettings] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._units: List[ExportUnit] = list(units)
        self._client = client
        self._store = store
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()

        self._background: Set["asyncio.Task[BatchResult]"] = set()
        self._last_batch: Optional[BatchResult] = None
        self._last_gate: Optional[AdmissionGate] = None
        self._schedule: Optional[Any] = None

    def attach_schedule(self, schedule: Any) -> None:
        """Attach the object answering next_run_info() for liveness reporting."""
        self._schedule = schedule

    def next_scheduled_run_info(self) -> Dict[str, Any]:
        """Next scheduled run as a dict, or {"error": ...}. Never raises."""
        if self._schedule is None:
            return {"error": "no schedule configured"}
        try:
            return self._schedule.next_run_info()
        except Exception as e:
            logger.warning(f"Cannot compute next scheduled run: {e}")
            return {"error": str(e)}

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def units(self) -> List[ExportUnit]:
        return list(self._units)

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def last_batch(self) -> Optional[BatchResult]:
        return self._last_batch

    @property
    def last_gate(self) -> Optional[AdmissionGate]:
        """Admission gate used by the most recent concurrent batch."""
        return self._last_gate

    @property
    def project_ids(self) -> List[int]:
        """Distinct configured project ids in catalogue order."""
        seen: List[int] = []
        for unit in self._units:
            if unit.project_id not in seen:
                seen.append(unit.project_id)
        return seen

    def units_for(self, project_id: Optional[int] = None) -> List[ExportUnit]:
        if project_id is None:
            return list(self._units)
        return [u for u in self._units if u.project_id == project_id]

    # =========================================================
    # PER-UNIT DRIVER
    # =========================================================

    async def run_unit(
        self,
        unit: ExportUnit,
        stop_event: Optional[asyncio.Event] = None,
    ) -> UnitRunResult:
        """
        Drive one unit to DONE, FAILED or CANCELLED.

        Every failure (request, download or persist) consumes one
        attempt and restarts from REQUESTING with a fresh handle.
        """
        result = UnitRunResult(unit=unit, started_at=self._clock.now())
        max_attempts = self._settings.max_attempts
        attempt = 0

        logger.info(f"[START] {unit.describe()}")

        while True:
            if stop_event is not None and stop_event.is_set():
                result.transition(UnitState.CANCELLED)
                logger.warning(f"[CANCELLED] {unit.describe()} before attempt {attempt + 1}")
                break

            attempt += 1
            result.attempts = attempt
            result.transition(UnitState.REQUESTING)

            try:
                artifact_name = await self._attempt(unit, result, stop_event)
            except (RemoteError, StoreError) as e:
                result.last_error = str(e)
                if attempt >= max_attempts:
                    result.transition(UnitState.FAILED)
                    logger.error(
                        f"[FAIL] {unit.describe()} after {attempt} attempts: {e}"
                    )
                    break

                delay = self._settings.backoff_delay(attempt)
                result.transition(UnitState.BACKOFF)
                logger.warning(
                    f"[RETRY] {unit.describe()} attempt {attempt}/{max_attempts} "
                    f"failed: {e}. Waiting {delay:.0f}s"
                )
                if not await wait_or_stop(self._clock, delay, stop_event):
                    result.transition(UnitState.CANCELLED)
                    logger.warning(f"[CANCELLED] {unit.describe()} during backoff")
                    break
                result.backoff_delays.append(delay)
                continue

            if artifact_name is None:
                # stop event fired during the materialization wait
                logger.warning(f"[CANCELLED] {unit.describe()} while waiting for export")
                break

            result.artifact_name = artifact_name
            result.last_error = None
            result.transition(UnitState.DONE)
            logger.info(f"[OK] {unit.describe()} -> {artifact_name} (attempt {attempt})")
            break

        result.completed_at = self._clock.now()
        return result

    async def _attempt(
        self,
        unit: ExportUnit,
        result: UnitRunResult,
        stop_event: Optional[asyncio.Event],
    ) -> Optional[str]:
        """
        One request -> wait -> download -> persist pass.

        Returns the artifact name, or None if stopped while waiting
        (the result is then already CANCELLED).
        """
        handle = await self._client.request_export(unit)
        result.transition(UnitState.REQUESTED)
        logger.debug(f"Export {handle.export_id} requested for {unit.describe()}")

        result.transition(UnitState.WAITING)
        if not await wait_or_stop(
            self._clock, self._settings.materialization_delay_seconds, stop_event
        ):
            result.transition(UnitState.CANCELLED)
            return None

        result.transition(UnitState.DOWNLOADING)
        data = await self._client.download_export(handle)
        result.transition(UnitState.DOWNLOADED)

        result.transition(UnitState.PERSISTING)
        name = build_artifact_name(unit.project_id, unit.group_name, self._clock.now())
        await self._store.save(data, name)
        logger.debug(f"Persisted {len(data)} bytes as {name}")
        return name

    async def _guarded_run_unit(
        self,
        unit: ExportUnit,
        stop_event: Optional[asyncio.Event],
    ) -> UnitRunResult:
        """Run one unit, converting unexpected errors into a FAILED result."""
        try:
            return await self.run_unit(unit, stop_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[FAIL] {unit.describe()} crashed: {e}")
            result = UnitRunResult(unit=unit, state=UnitState.FAILED, last_error=str(e))
            result.history.append(UnitState.FAILED)
            result.completed_at = self._clock.now()
            return result

    # =========================================================
    # EXECUTION MODES
    # =========================================================

    async def run_all(self, stop_event: Optional[asyncio.Event] = None) -> BatchResult:
        """Run every unit in catalogue order, one at a time."""
        return await self._run_batch("all", self.units_for(None), False, stop_event)

    async def run_for_project(
        self,
        project_id: int,
        stop_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Run one project's units in catalogue order, one at a time."""
        return await self._run_batch(
            f"project {project_id}", self.units_for(project_id), False, stop_event
        )

    async def run_all_concurrent(
        self,
        stop_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Run every unit under the admission ceiling and wait for all."""
        return await self._run_batch("all", self.units_for(None), True, stop_event)

    async def run_for_project_concurrent(
        self,
        project_id: int,
        stop_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Run one project's units under the admission ceiling and wait for all."""
        return await self._run_batch(
            f"project {project_id}", self.units_for(project_id), True, stop_event
        )

    def start_run(
        self,
        project_id: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> "asyncio.Task[BatchResult]":
        """
        Launch a bounded-concurrent run in the background and return at once.

        Must be called from a running event loop. The engine keeps a
        reference to the task until it finishes.
        """
        if project_id is None:
            coro = self.run_all_concurrent(stop_event)
        else:
            coro = self.run_for_project_concurrent(project_id, stop_event)

        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info(
            f"Export started in background for "
            f"{'all projects' if project_id is None else f'project {project_id}'}"
        )
        return task

    @property
    def background_runs(self) -> int:
        return len(self._background)

    async def wait_background(self) -> None:
        """Wait for every background run started so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run_batch(
        self,
        label: str,
        units: List[ExportUnit],
        concurrent: bool,
        stop_event: Optional[asyncio.Event],
    ) -> BatchResult:
        batch = BatchResult(label=label, started_at=self._clock.now())
        mode = "concurrent" if concurrent else "sequential"
        logger.info(f"Export started ({mode}) for {label}: {len(units)} units")

        if concurrent:
            gate = AdmissionGate(self._settings.max_concurrent)
            self._last_gate = gate

            async def admitted(unit: ExportUnit) -> UnitRunResult:
                async with gate:
                    return await self._guarded_run_unit(unit, stop_event)

            batch.results = list(await asyncio.gather(*(admitted(u) for u in units)))
        else:
            for unit in units:
                batch.results.append(await self._guarded_run_unit(unit, stop_event))

        if batch.success_count > 0:
            batch.pruned_count = await self.prune()

        batch.completed_at = self._clock.now()
        self._last_batch = batch
        logger.info(
            f"Export finished for {label}: {batch.success_count}/{batch.total_count} succeeded"
        )
        return batch

    # =========================================================
    # ARTIFACTS
    # =========================================================

    async def list_artifacts(self, project_id: Optional[int] = None) -> List[ArtifactRecord]:
        """List artifacts newest first, optionally for one project."""
        records = await self._store.list()
        if project_id is not None:
            records = [r for r in records if r.project_id == project_id]
        return sorted(records, key=lambda r: r.last_modified, reverse=True)

    async def fetch_artifact(self, name: str) -> bytes:
        return await self._store.get(name)

    async def delete_artifact(self, name: str) -> None:
        await self._store.delete(name)
        logger.info(f"Artifact deleted: {name}")

    async def prune(self) -> int:
        """
        Run the retention sweep. Listing failures are logged, not raised.

        Returns:
            Number of artifacts deleted
        """
        try:
            return await self._store.prune_older_than(self._settings.retention)
        except StoreError as e:
            logger.error(f"Retention sweep failed: {e}")
            return 0

    def status(self) -> Dict[str, Any]:
        return {
            "units": len(self._units),
            "projects": self.project_ids,
            "backend": self._store.backend_name,
            "background_runs": self.background_runs,
            "last_batch": self._last_batch.to_dict() if self._last_batch else None,
        }


__all__ = ["AdmissionGate", "ExportEngine"]
