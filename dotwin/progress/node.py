from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_percent(value: float) -> int:
    """Clamp a percentage into [0, 100]; out-of-range values are not an error."""
    return int(max(0, min(100, round(value))))


@dataclass
class ProgressNode:
    """
    One trackable operation in the progress forest.

    Nodes are created and owned by a ProgressStack. Callers only hold the
    opaque `id` and go through the stack for every mutation.
    """

    id: str
    activity: str
    sequence: int
    status: str = ""
    percent_complete: int = 0
    parent_id: Optional[str] = None
    total_operations: Optional[int] = None
    completed_operations: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def elapsed_s(self) -> float:
        end = self.completed_at or utc_now()
        return (end - self.started_at).total_seconds()

    def merge_metrics(self, metrics: Optional[Dict[str, Any]]) -> None:
        if metrics:
            self.metrics.update(metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "activity": self.activity,
            "status": self.status,
            "percent_complete": self.percent_complete,
            "parent_id": self.parent_id,
            "total_operations": self.total_operations,
            "completed_operations": self.completed_operations,
            "metrics": dict(self.metrics),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class RenderLine:
    """A single row of the nested progress display, computed fresh on every render."""

    node_id: str
    depth: int
    activity: str
    status: str
    percent_complete: int
    completed: bool
    total_operations: Optional[int] = None
    completed_operations: int = 0
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def steps(self) -> str:
        if self.total_operations:
            return f"{self.completed_operations}/{self.total_operations}"
        return ""
