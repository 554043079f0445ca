"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the export orchestration engine.

- Per-unit export states and the allowed transitions
- Per-unit run record
- Batch result aggregation
- Engine settings

============================================================
UNIT STATE MACHINE
============================================================
PENDING -> REQUESTING -> REQUESTED -> WAITING -> DOWNLOADING
        -> DOWNLOADED -> PERSISTING -> DONE

Any failure at REQUESTING / DOWNLOADING / PERSISTING moves to
BACKOFF (then back to REQUESTING) or, on the last attempt, to
FAILED. A stop signal during a wait ends the unit CANCELLED.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from testops_client.types import ExportUnit


# ============================================================
# UNIT STATES
# ============================================================

class UnitState(str, Enum):
    """States of one export unit's driver."""
    PENDING = "pending"
    REQUESTING = "requesting"
    REQUESTED = "requested"
    WAITING = "waiting"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    PERSISTING = "persisting"
    BACKOFF = "backoff"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES: Set[UnitState] = {
    UnitState.DONE,
    UnitState.FAILED,
    UnitState.CANCELLED,
}

_ALLOWED_TRANSITIONS: Dict[UnitState, Set[UnitState]] = {
    UnitState.PENDING: {UnitState.REQUESTING, UnitState.CANCELLED},
    UnitState.REQUESTING: {UnitState.REQUESTED, UnitState.BACKOFF, UnitState.FAILED},
    UnitState.REQUESTED: {UnitState.WAITING},
    UnitState.WAITING: {UnitState.DOWNLOADING, UnitState.CANCELLED},
    UnitState.DOWNLOADING: {UnitState.DOWNLOADED, UnitState.BACKOFF, UnitState.FAILED},
    UnitState.DOWNLOADED: {UnitState.PERSISTING},
    UnitState.PERSISTING: {UnitState.DONE, UnitState.BACKOFF, UnitState.FAILED},
    UnitState.BACKOFF: {UnitState.REQUESTING, UnitState.CANCELLED},
    UnitState.DONE: set(),
    UnitState.FAILED: set(),
    UnitState.CANCELLED: set(),
}


class StateTransitionError(RuntimeError):
    """Raised when the driver attempts an invalid transition."""
    pass


def allowed_next_states(state: UnitState) -> List[UnitState]:
    """Return deterministically ordered allowed successors for a state."""
    return sorted(_ALLOWED_TRANSITIONS.get(state, set()), key=lambda s: s.value)


def ensure_transition(old_state: UnitState, new_state: UnitState) -> None:
    """Validate a transition according to the unit lifecycle."""
    if new_state not in _ALLOWED_TRANSITIONS.get(old_state, set()):
        raise StateTransitionError(
            f"Invalid unit transition {old_state.value} -> {new_state.value} "
            f"(allowed: {[s.value for s in allowed_next_states(old_state)]})"
        )


# ============================================================
# UNIT RUN RECORD
# ============================================================

@dataclass
class UnitRunResult:
    """Outcome of driving one export unit to a terminal state."""
    unit: ExportUnit
    state: UnitState = UnitState.PENDING
    attempts: int = 0
    artifact_name: Optional[str] = None
    last_error: Optional[str] = None
    backoff_delays: List[float] = field(default_factory=list)
    history: List[UnitState] = field(default_factory=lambda: [UnitState.PENDING])
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def transition(self, new_state: UnitState) -> None:
        ensure_transition(self.state, new_state)
        self.state = new_state
        self.history.append(new_state)

    @property
    def succeeded(self) -> bool:
        return self.state == UnitState.DONE

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.unit.project_id,
            "group_id": self.unit.group_id,
            "group_name": self.unit.group_name,
            "state": self.state.value,
            "attempts": self.attempts,
            "artifact_name": self.artifact_name,
            "last_error": self.last_error,
            "backoff_delays": self.backoff_delays,
            "duration_seconds": self.duration_seconds,
        }


# ============================================================
# BATCH RESULT
# ============================================================

@dataclass
class BatchResult:
    """Aggregated result of one engine run."""
    label: str
    results: List[UnitRunResult] = field(default_factory=list)
    pruned_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed_count(self) -> int:
        return self.total_count - self.success_count

    @property
    def all_succeeded(self) -> bool:
        return self.success_count == self.total_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "total_count": self.total_count,
            "pruned_count": self.pruned_count,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "units": [r.to_dict() for r in self.results],
        }


# ============================================================
# ENGINE SETTINGS
# ============================================================

@dataclass(frozen=True)
class EngineSettings:
    """Retry, concurrency and retention policy for the engine."""
    max_attempts: int = 10
    retry_delay_seconds: float = 900.0
    materialization_delay_seconds: float = 5.0
    max_concurrent: int = 5
    retention: timedelta = timedelta(days=30)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before attempt + 1: linear in the failed attempt number."""
        return attempt * self.retry_delay_seconds


__all__ = [
    "UnitState",
    "StateTransitionError",
    "allowed_next_states",
    "ensure_transition",
    "UnitRunResult",
    "BatchResult",
    "EngineSettings",
]
