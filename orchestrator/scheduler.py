"""
Orchestrator - Scheduler.

Fires the bounded-concurrent all-projects run on a five-field
cron schedule evaluated in UTC, and answers "when is the next
run" for liveness reporting.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from croniter import croniter

from core.clock import ClockProtocol, SystemClock, wait_or_stop
from orchestrator.engine import ExportEngine
from orchestrator.models import BatchResult


logger = logging.getLogger(__name__)


def format_countdown(seconds: float) -> str:
    """Format a duration as 'Xh Ym Zs'."""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


class ExportScheduler:
    """Cron-driven trigger for the export engine."""

    def __init__(
        self,
        engine: ExportEngine,
        cron_expression: str,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._engine = engine
        self._expression = cron_expression
        self._clock = clock or SystemClock()
        self._runs = 0

    @property
    def expression(self) -> str:
        return self._expression

    @property
    def runs(self) -> int:
        return self._runs

    def is_valid(self) -> bool:
        return croniter.is_valid(self._expression)

    def next_run_at(self, after: Optional[datetime] = None) -> datetime:
        """
        Next fire time strictly after `after` (default: now).

        Raises:
            ValueError: the cron expression is invalid
        """
        base = after or self._clock.now()
        return croniter(self._expression, base).get_next(datetime)

    def next_run_info(self) -> Dict[str, Any]:
        """Next run details, or {"error": message} when it cannot be computed."""
        try:
            now = self._clock.now()
            next_run = self.next_run_at(now)
        except Exception as e:
            return {"error": f"cannot compute next run for '{self._expression}': {e}"}

        return {
            "next_run": next_run.isoformat(),
            "countdown": format_countdown((next_run - now).total_seconds()),
            "schedule": self._expression,
        }

    async def trigger_now(self, stop_event: Optional[asyncio.Event] = None) -> BatchResult:
        """Run every project now and block until the batch settles."""
        self._runs += 1
        logger.info(f"Scheduled export #{self._runs} starting")
        return await self._engine.run_all_concurrent(stop_event)

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Fire on schedule until the stop event is set.

        Raises:
            ValueError: the cron expression is invalid
        """
        if not self.is_valid():
            raise ValueError(f"Invalid cron expression: '{self._expression}'")

        logger.info(f"Scheduler started with schedule '{self._expression}'")

        while not stop_event.is_set():
            now = self._clock.now()
            next_run = self.next_run_at(now)
            delay = (next_run - now).total_seconds()
            logger.info(
                f"Next export at {next_run.isoformat()} (in {format_countdown(delay)})"
            )

            if not await wait_or_stop(self._clock, delay, stop_event):
                break

            await self.trigger_now(stop_event)

        logger.info("Scheduler stopped")


__all__ = ["ExportScheduler", "format_countdown"]
