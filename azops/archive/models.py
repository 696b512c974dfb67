"""
Outcome tracking for archive and restore runs.

Every source path (archive) or blob (restore) gets one PathOutcome. Steps
are recorded as they complete so a failed run shows exactly how far each
item got.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, TypeVar

from azops.util.redact import redact_sensitive

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class PathOutcome:
    source: str
    status: OutcomeStatus = OutcomeStatus.RUNNING
    completed_steps: list[str] = field(default_factory=list)
    current_step: str | None = None
    pending_step: str | None = None
    failed_step: str | None = None
    error: str | None = None
    blob_name: str | None = None
    local_path: str | None = None
    sha256: str | None = None
    size: int | None = None
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None

    def run_step(self, name: str, func: Callable[..., T], *args, **kwargs) -> T:
        """Run one step, recording it as completed when it returns."""
        self.current_step = name
        result = func(*args, **kwargs)
        self.completed_steps.append(name)
        self.current_step = None
        return result

    def start_step(self, name: str, func: Callable[..., T], *args, **kwargs) -> T:
        """Run the part of a step that starts it; the step stays open until finished."""
        self.current_step = name
        return func(*args, **kwargs)

    def fail(self, error: Exception) -> None:
        self.status = OutcomeStatus.FAILED
        self.failed_step = self.current_step
        self.error = redact_sensitive(str(error))
        self.finished_at = utc_now()

    def succeed(self) -> None:
        self.status = OutcomeStatus.SUCCEEDED
        self.finished_at = utc_now()

    def defer(self, reason: str) -> None:
        self.status = OutcomeStatus.PENDING
        self.pending_step = self.current_step
        self.current_step = None
        self.error = reason
        self.finished_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data.pop("current_step")
        return data


@dataclass
class WorkflowReport:
    operation: str
    started_at: str = field(default_factory=utc_now)
    outcomes: list[PathOutcome] = field(default_factory=list)

    def _with_status(self, status: OutcomeStatus) -> list[PathOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[PathOutcome]:
        return self._with_status(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> list[PathOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def pending(self) -> list[PathOutcome]:
        return self._with_status(OutcomeStatus.PENDING)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "started_at": self.started_at,
            "finished_at": utc_now(),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "pending": len(self.pending),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    def write_manifest(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), indent=2))
        return p
