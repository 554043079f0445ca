"""
Tests for the Export Engine.

============================================================
PURPOSE
============================================================
Covers:
1. Per-unit retry state machine and linear backoff
2. Failure isolation across units
3. Bounded concurrency
4. Retention sweep after a batch
5. Listing, fetch and delete pass-through
6. Cancellation via the stop event

============================================================
"""

import asyncio
from datetime import timedelta

import pytest

from core.clock import MockClock
from core.exceptions import (
    ApiError,
    ArtifactNotFoundError,
    AuthError,
    TransportError,
)
from orchestrator.engine import AdmissionGate, ExportEngine
from orchestrator.models import EngineSettings, UnitState
from testops_client.types import ExportUnit
from tests.fakes import T0, MemoryArtifactStore, ScriptedExportClient


BASE_DELAY = 900.0


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return MockClock(T0)


@pytest.fixture
def settings():
    return EngineSettings(
        max_attempts=3,
        retry_delay_seconds=BASE_DELAY,
        materialization_delay_seconds=5.0,
        max_concurrent=5,
        retention=timedelta(days=30),
    )


@pytest.fixture
def api_unit():
    return ExportUnit(project_id=17, tree_id=1, group_id=26961091, group_name="API")


def make_engine(units, client, store, settings, clock):
    return ExportEngine(units, client, store, settings=settings, clock=clock)


# ============================================================
# PER-UNIT DRIVER
# ============================================================

class TestUnitDriver:
    """Tests for the per-unit state machine."""

    @pytest.mark.asyncio
    async def test_successful_export_persists_artifact(self, clock, settings, api_unit):
        client = ScriptedExportClient(export_id=501, content=b"c" * 120)
        store = MemoryArtifactStore(clock=clock)
        engine = make_engine([api_unit], client, store, settings, clock)

        batch = await engine.run_all()

        assert batch.success_count == 1
        assert batch.total_count == 1
        records = await store.list()
        assert len(records) == 1
        assert records[0].name == "export_17_API_2026-03-01_07-00-05.csv"
        assert records[0].size_bytes == 120
        assert records[0].project_id == 17
        assert client.download_calls[0].export_id == 501

    @pytest.mark.asyncio
    async def test_state_history_for_clean_run(self, clock, settings, api_unit):
        engine = make_engine(
            [api_unit], ScriptedExportClient(), MemoryArtifactStore(clock=clock), settings, clock
        )

        result = await engine.run_unit(api_unit)

        assert result.state == UnitState.DONE
        assert result.attempts == 1
        assert result.history == [
            UnitState.PENDING,
            UnitState.REQUESTING,
            UnitState.REQUESTED,
            UnitState.WAITING,
            UnitState.DOWNLOADING,
            UnitState.DOWNLOADED,
            UnitState.PERSISTING,
            UnitState.DONE,
        ]
        assert clock.sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_transport_errors_then_success_uses_linear_backoff(
        self, clock, settings, api_unit
    ):
        client = ScriptedExportClient(request_outcomes=[
            TransportError("connection refused"),
            TransportError("connection refused"),
        ])
        store = MemoryArtifactStore(clock=clock)
        engine = make_engine([api_unit], client, store, settings, clock)

        result = await engine.run_unit(api_unit)

        assert result.state == UnitState.DONE
        assert result.attempts == 3
        assert result.backoff_delays == [BASE_DELAY, 2 * BASE_DELAY]
        assert clock.sleeps == [BASE_DELAY, 2 * BASE_DELAY, 5.0]
        assert len(client.request_calls) == 3
        assert result.last_error is None

    @pytest.mark.asyncio
    async def test_exhausted_attempts_end_failed_without_artifact(
        self, clock, settings, api_unit
    ):
        client = ScriptedExportClient(request_outcomes=[
            ApiError("boom", status_code=500, body="oops") for _ in range(3)
        ])
        store = MemoryArtifactStore(clock=clock)
        engine = make_engine([api_unit], client, store, settings, clock)

        batch = await engine.run_all()

        result = batch.results[0]
        assert result.state == UnitState.FAILED
        assert result.attempts == 3
        assert "boom" in result.last_error
        # no sleep after the final attempt
        assert result.backoff_delays == [BASE_DELAY, 2 * BASE_DELAY]
        assert clock.sleeps == [BASE_DELAY, 2 * BASE_DELAY]
        assert batch.success_count == 0
        assert batch.failed_count == 1
        assert store.objects == {}

    @pytest.mark.asyncio
    async def test_download_failure_restarts_from_request(self, clock, settings, api_unit):
        client = ScriptedExportClient(
            download_outcomes=[ApiError("not ready", status_code=404)]
        )
        engine = make_engine(
            [api_unit], client, MemoryArtifactStore(clock=clock), settings, clock
        )

        result = await engine.run_unit(api_unit)

        assert result.state == UnitState.DONE
        assert result.attempts == 2
        assert len(client.request_calls) == 2
        assert len(client.download_calls) == 2
        assert result.backoff_delays == [BASE_DELAY]

    @pytest.mark.asyncio
    async def test_persist_failure_issues_new_request(self, clock, settings, api_unit):
        client = ScriptedExportClient()
        store = MemoryArtifactStore(clock=clock, save_failures=1)
        engine = make_engine([api_unit], client, store, settings, clock)

        result = await engine.run_unit(api_unit)

        assert result.state == UnitState.DONE
        assert result.attempts == 2
        assert len(client.request_calls) == result.attempts
        assert len(client.download_calls) == 2
        assert store.save_calls == 2
        assert len(store.objects) == 1

    @pytest.mark.asyncio
    async def test_auth_error_is_retried(self, clock, settings, api_unit):
        client = ScriptedExportClient(request_outcomes=[AuthError("rejected", status_code=401)])
        engine = make_engine(
            [api_unit], client, MemoryArtifactStore(clock=clock), settings, clock
        )

        result = await engine.run_unit(api_unit)

        assert result.state == UnitState.DONE
        assert result.attempts == 2


# ============================================================
# CANCELLATION
# ============================================================

class StoppingClock(MockClock):
    """Sets the stop event whenever a sleep of at least `threshold` starts."""

    def __init__(self, initial_time, stop_event, threshold):
        super().__init__(initial_time)
        self._stop_event = stop_event
        self._threshold = threshold

    async def sleep(self, seconds):
        if seconds >= self._threshold:
            self._stop_event.set()
        await super().sleep(seconds)


class TestCancellation:
    """Tests for stop-event handling."""

    @pytest.mark.asyncio
    async def test_stop_during_backoff_cancels_without_new_request(self, settings, api_unit):
        stop_event = asyncio.Event()
        clock = StoppingClock(T0, stop_event, threshold=BASE_DELAY)
        client = ScriptedExportClient(request_outcomes=[TransportError("down")] * 3)
        engine = make_engine(
            [api_unit], client, MemoryArtifactStore(clock=clock), settings, clock
        )

        result = await engine.run_unit(api_unit, stop_event)

        assert result.state == UnitState.CANCELLED
        assert len(client.request_calls) == 1
        assert result.backoff_delays == []

    @pytest.mark.asyncio
    async def test_stop_during_materialization_wait(self, settings, api_unit):
        stop_event = asyncio.Event()
        clock = StoppingClock(T0, stop_event, threshold=5.0)
        client = ScriptedExportClient()
        store = MemoryArtifactStore(clock=clock)
        engine = make_engine([api_unit], client, store, settings, clock)

        result = await engine.run_unit(api_unit, stop_event)

        assert result.state == UnitState.CANCELLED
        assert client.download_calls == []
        assert store.objects == {}

    @pytest.mark.asyncio
    async def test_stop_before_start_skips_every_unit(self, clock, settings, api_unit):
        stop_event = asyncio.Event()
        stop_event.set()
        client = ScriptedExportClient()
        engine = make_engine(
            [api_unit, api_unit], client, MemoryArtifactStore(clock=clock), settings, clock
        )

        batch = await engine.run_all(stop_event)

        assert [r.state for r in batch.results] == [UnitState.CANCELLED] * 2
        assert client.request_calls == []
        assert batch.success_count == 0


# ============================================================
# EXECUTION MODES
# ============================================================

class TestExecutionModes:
    """Tests for sequential and concurrent batches."""

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_siblings(self, clock, settings):
        units = [
            ExportUnit(17, 1, 1, "API"),
            ExportUnit(17, 1, 2, "UI"),
            ExportUnit(18, 2, 3, "Mobile"),
        ]
        client = ScriptedExportClient(request_outcomes=[
            None,
            TransportError("down"),
            TransportError("down"),
            TransportError("down"),
        ])
        engine = make_engine(units, client, MemoryArtifactStore(clock=clock), settings, clock)

        batch = await engine.run_all()

        assert [r.state for r in batch.results] == [
            UnitState.DONE,
            UnitState.FAILED,
            UnitState.DONE,
        ]
        assert batch.success_count + batch.failed_count == batch.total_count == 3

    @pytest.mark.asyncio
    async def test_run_for_project_filters_units(self, clock, settings):
        units = [
            ExportUnit(17, 1, 1, "API"),
            ExportUnit(18, 2, 2, "UI"),
            ExportUnit(17, 1, 3, "Mobile"),
        ]
        client = ScriptedExportClient()
        engine = make_engine(units, client, MemoryArtifactStore(clock=clock), settings, clock)

        batch = await engine.run_for_project(17)

        assert batch.total_count == 2
        assert [u.group_name for u in client.request_calls] == ["API", "Mobile"]

    @pytest.mark.asyncio
    async def test_concurrent_mode_respects_ceiling(self, clock):
        settings = EngineSettings(max_attempts=2, retry_delay_seconds=10, max_concurrent=2)
        units = [ExportUnit(17, 1, i, f"G{i}") for i in range(7)]
        client = ScriptedExportClient(request_outcomes=[TransportError("flaky")])
        store = MemoryArtifactStore(clock=clock)
        engine = make_engine(units, client, store, settings, clock)

        batch = await engine.run_all_concurrent()

        assert batch.success_count == 7
        assert engine.last_gate.peak == 2
        assert engine.last_gate.active == 0
        assert client.peak_in_flight <= 2
        assert len(store.objects) == 7

    @pytest.mark.asyncio
    async def test_concurrent_for_project(self, clock, settings):
        units = [ExportUnit(17, 1, 1, "API"), ExportUnit(18, 2, 2, "UI")]
        engine = make_engine(
            units, ScriptedExportClient(), MemoryArtifactStore(clock=clock), settings, clock
        )

        batch = await engine.run_for_project_concurrent(18)

        assert batch.total_count == 1
        assert batch.results[0].unit.group_name == "UI"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, clock, settings):
        units = [ExportUnit(17, 1, 1, "API"), ExportUnit(17, 1, 2, "UI")]
        client = ScriptedExportClient(request_outcomes=[RuntimeError("bug")])
        engine = make_engine(units, client, MemoryArtifactStore(clock=clock), settings, clock)

        batch = await engine.run_all_concurrent()

        states = sorted(r.state.value for r in batch.results)
        assert states == ["done", "failed"]

    @pytest.mark.asyncio
    async def test_start_run_returns_task(self, clock, settings, api_unit):
        engine = make_engine(
            [api_unit], ScriptedExportClient(), MemoryArtifactStore(clock=clock), settings, clock
        )

        task = engine.start_run()
        assert engine.background_runs == 1

        batch = await task
        await asyncio.sleep(0)

        assert batch.success_count == 1
        assert engine.background_runs == 0
        assert engine.last_batch is batch


# ============================================================
# RETENTION
# ============================================================

class TestRetentionAfterBatch:
    """Tests for the sweep that follows a batch."""

    @pytest.mark.asyncio
    async def test_prune_runs_when_any_unit_succeeds(self, clock, settings, api_unit):
        store = MemoryArtifactStore(clock=clock)
        store.put("export_17_API_2026-01-01_07-00-00.csv", b"old", T0 - timedelta(days=59))
        engine = make_engine([api_unit], ScriptedExportClient(), store, settings, clock)

        batch = await engine.run_all()

        assert batch.pruned_count == 1
        assert "export_17_API_2026-01-01_07-00-00.csv" not in store.objects

    @pytest.mark.asyncio
    async def test_prune_skipped_when_every_unit_fails(self, clock, settings, api_unit):
        store = MemoryArtifactStore(clock=clock)
        store.put("export_17_API_2026-01-01_07-00-00.csv", b"old", T0 - timedelta(days=59))
        client = ScriptedExportClient(request_outcomes=[TransportError("down")] * 3)
        engine = make_engine([api_unit], client, store, settings, clock)

        batch = await engine.run_all()

        assert batch.pruned_count == 0
        assert "export_17_API_2026-01-01_07-00-00.csv" in store.objects


# ============================================================
# ARTIFACTS
# ============================================================

class TestArtifactAccess:
    """Tests for listing, fetch and delete."""

    @pytest.fixture
    def populated_store(self, clock):
        store = MemoryArtifactStore(clock=clock)
        store.put("export_17_API_2026-02-01_07-00-00.csv", b"a", T0 - timedelta(days=28))
        store.put("export_18_UI_2026-02-20_07-00-00.csv", b"bb", T0 - timedelta(days=9))
        store.put("export_17_UI_2026-02-25_07-00-00.csv", b"ccc", T0 - timedelta(days=4))
        store.put("export_18_API_2026-02-10_07-00-00.csv", b"dddd", T0 - timedelta(days=19))
        store.put("broken.csv", b"x", T0)
        return store

    @pytest.mark.asyncio
    async def test_list_sorted_newest_first(self, clock, settings, populated_store):
        engine = make_engine([], ScriptedExportClient(), populated_store, settings, clock)

        records = await engine.list_artifacts()

        assert [r.name for r in records] == [
            "export_17_UI_2026-02-25_07-00-00.csv",
            "export_18_UI_2026-02-20_07-00-00.csv",
            "export_18_API_2026-02-10_07-00-00.csv",
            "export_17_API_2026-02-01_07-00-00.csv",
        ]

    @pytest.mark.asyncio
    async def test_list_filter_preserves_order(self, clock, settings, populated_store):
        engine = make_engine([], ScriptedExportClient(), populated_store, settings, clock)

        everything = await engine.list_artifacts()
        project = await engine.list_artifacts(17)

        assert [r.name for r in project] == [r.name for r in everything if r.project_id == 17]
        assert len(project) == 2

    @pytest.mark.asyncio
    async def test_fetch_and_delete(self, clock, settings, populated_store):
        engine = make_engine([], ScriptedExportClient(), populated_store, settings, clock)

        assert await engine.fetch_artifact("export_18_UI_2026-02-20_07-00-00.csv") == b"bb"

        await engine.delete_artifact("export_18_UI_2026-02-20_07-00-00.csv")

        with pytest.raises(ArtifactNotFoundError):
            await engine.fetch_artifact("export_18_UI_2026-02-20_07-00-00.csv")
        with pytest.raises(ArtifactNotFoundError):
            await engine.delete_artifact("export_18_UI_2026-02-20_07-00-00.csv")

    def test_project_ids_in_catalogue_order(self, clock, settings):
        units = [ExportUnit(18, 2, 1, "A"), ExportUnit(17, 1, 2, "B"), ExportUnit(18, 2, 3, "C")]
        engine = make_engine(units, ScriptedExportClient(), MemoryArtifactStore(), settings, clock)

        assert engine.project_ids == [18, 17]

    def test_next_run_info_without_schedule(self, clock, settings):
        engine = make_engine([], ScriptedExportClient(), MemoryArtifactStore(), settings, clock)

        assert "error" in engine.next_scheduled_run_info()


# ============================================================
# ADMISSION GATE
# ============================================================

class TestAdmissionGate:
    """Tests for the counting admission gate."""

    def test_rejects_zero_ceiling(self):
        with pytest.raises(ValueError):
            AdmissionGate(0)

    @pytest.mark.asyncio
    async def test_releases_on_error(self):
        gate = AdmissionGate(1)

        with pytest.raises(RuntimeError):
            async with gate:
                raise RuntimeError("unit crashed")

        assert gate.active == 0
        async with gate:
            assert gate.active == 1
        assert gate.peak == 1
