from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Problem:
    """Canonical record emitted by every problem source.

    Fields:
        id:         Stable problem identifier, used as the dedup key.
        status:     Remote status string (OPEN, CLOSED, RESOLVED, ...).
                    Compared as an opaque value.
        title:      Human-readable problem title.
        severity:   Remote severity level.
        display_id: Short id shown in the remote UI (e.g. "P-1234").
        payload:    The raw record, forwarded verbatim to connectors.
    """

    id: str
    status: str
    title: str = ""
    severity: str = ""
    display_id: str = ""
    payload: dict[str, Any] = field(default_factory=dict, compare=False)

    def summary(self) -> str:
        return f"[{self.display_id or self.id}] {self.title} - {self.status} ({self.severity})"


@dataclass
class TrackedProblem:
    """One row per problem id ever observed.

    ``status`` is the last status seen at classification time, not the last
    status a connector accepted.
    """

    problem_id: str
    status: str
    title: str
    severity: str | None
    first_seen_at: datetime
    last_forwarded_at: datetime
    last_status_change_at: datetime
    forward_count: int = 1
    id: int | None = None


class DeliveryOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DeliveryHistoryEntry:
    problem_id: str
    connector_name: str
    outcome: DeliveryOutcome
    attempted_at: datetime
    response_code: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class StoreStats:
    total: int
    open_count: int
    closed_count: int
    total_deliveries: int
    success_count: int
    failure_count: int
