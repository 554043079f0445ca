"""
Orchestrator Package - Export Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Drives TestOps bulk exports for every configured (project,
group) unit and keeps exactly one replica exporting.

    +-----------------------------------------------------+
    |                    ExportService                    |
    |-----------------------------------------------------|
    |  ExportEngine    |  per-unit retry state machine    |
    |  AdmissionGate   |  bounded concurrency             |
    |  ExportScheduler |  cron trigger                    |
    |  LeadershipGate  |  single active instance          |
    |  CLI             |  serve / run-once / list         |
    +-----------------------------------------------------+

============================================================
QUICK START
============================================================
Programmatic usage::

    import asyncio
    from orchestrator import ExportServiceConfig, create_service

    async def main():
        config = ExportServiceConfig.from_env()
        service = create_service(config)
        batch = await service.run_once()
        print(batch.to_dict())

    asyncio.run(main())

============================================================
"""

from orchestrator.models import (
    UnitState,
    StateTransitionError,
    UnitRunResult,
    BatchResult,
    EngineSettings,
)
from orchestrator.config import (
    ExportGroupConfig,
    ProjectConfig,
    ExportServiceConfig,
    load_projects,
)
from orchestrator.engine import AdmissionGate, ExportEngine
from orchestrator.scheduler import ExportScheduler, format_countdown
from orchestrator.leadership import (
    LeadershipGate,
    LocalLeadershipGate,
    RedisLeadershipGate,
)
from orchestrator.core import ExportService, create_service

__version__ = "1.0.0"

__all__ = [
    "UnitState",
    "StateTransitionError",
    "UnitRunResult",
    "BatchResult",
    "EngineSettings",
    "ExportGroupConfig",
    "ProjectConfig",
    "ExportServiceConfig",
    "load_projects",
    "AdmissionGate",
    "ExportEngine",
    "ExportScheduler",
    "format_countdown",
    "LeadershipGate",
    "LocalLeadershipGate",
    "RedisLeadershipGate",
    "ExportService",
    "create_service",
]
