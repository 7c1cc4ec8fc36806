"""Data models for research run tracking."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Research run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunStage(str, Enum):
    """Pipeline stage a run is currently in."""

    PLANNING = "planning"
    SEARCHING = "searching"
    EXTRACTING = "extracting"
    BUILDING_EVIDENCE = "building_evidence"
    SYNTHESIZING = "synthesizing"


class RunRecord(BaseModel):
    """Record of a research run for observability."""

    run_id: str
    tool_name: str
    status: RunStatus = RunStatus.PENDING
    stage: RunStage | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    progress_current: int = 0
    progress_total: int = 0
    progress_message: str | None = None

    input_params: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate run duration in seconds."""
        if not self.started_at:
            return None
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    @property
    def progress_percent(self) -> float:
        """Calculate progress percentage."""
        if self.progress_total <= 0:
            return 0.0
        return min(100.0, (self.progress_current / self.progress_total) * 100)

    @property
    def is_terminal(self) -> bool:
        """Check if the run is in a terminal state."""
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)
