"""Job durability models shared by the import and deletion engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class JobStatus(StrEnum):
    """Job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_JOB_STATUSES = frozenset(
    {
        JobStatus.COMPLETE,
        JobStatus.FAILED,
        JobStatus.STOPPED,
    }
)

STEP_ELIGIBLE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})


class ControlAction(StrEnum):
    """Operator commands accepted by the control surface."""

    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


class StepDisposition(StrEnum):
    """What one trigger firing did to a job."""

    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    LOCK_HELD = "lock_held"
    LOCK_LOST = "lock_lost"
    CONTINUING = "continuing"
    PAUSED = "paused"
    COMPLETE = "complete"
    FAILED = "failed"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class PayloadSource:
    """Handle to the full job input: a staged file or an inline item list."""

    file_path: str | None = None
    items: tuple[Any, ...] | None = None

    @classmethod
    def staged(cls, file_path: str) -> PayloadSource:
        return cls(file_path=file_path)

    @classmethod
    def inline(cls, items: list[Any] | tuple[Any, ...]) -> PayloadSource:
        return cls(items=tuple(items))

    def to_dict(self) -> dict[str, Any]:
        if self.items is not None:
            return {"items": list(self.items)}
        return {"filePath": self.file_path}

    @classmethod
    def from_dict(cls, value: dict[str, Any]) -> PayloadSource:
        items = value.get("items")
        if isinstance(items, list):
            return cls.inline(items)
        file_path = value.get("filePath")
        return cls(file_path=None if file_path is None else str(file_path))


@dataclass(slots=True)
class Job:
    """Mutable record of one resumable unit of bulk work."""

    job_id: str
    kind: str
    payload_source: PayloadSource
    owner: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    target_owner_id: str | None = None
    status: JobStatus = JobStatus.QUEUED
    processed: int = 0
    total: int | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    error: str = ""
    lock_token: float = 0.0
    done: bool = False
    batch_size: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_locked(self) -> bool:
        return self.lock_token != 0


@dataclass(slots=True)
class StepOutcome:
    """Counts and log lines produced by one batch."""

    succeeded: int = 0
    updated: int = 0
    skipped: int = 0
    processed: int = 0
    log_lines: list[str] = field(default_factory=list)
    fatal_error: str | None = None

    def record_success(self, line: str | None = None) -> None:
        self.succeeded += 1
        if line:
            self.log_lines.append(line)

    def record_skip(self, line: str) -> None:
        self.skipped += 1
        self.log_lines.append(line)

    def log(self, line: str) -> None:
        self.log_lines.append(line)


@dataclass(slots=True, frozen=True)
class JobRegistryEntry:
    """Denormalized projection of a job used for listing and GC."""

    job_id: str
    kind: str
    status: JobStatus
    owner: str | None
    created_at: datetime
    last_seen: datetime


@dataclass(slots=True, frozen=True)
class OwnerNotification:
    """Read-once message addressed to the owner of a job."""

    owner_id: str
    job_id: str
    message: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class PendingTrigger:
    """Claimed deferred trigger ready to be handled."""

    trigger_id: int
    topic: str
    job_id: str
    attempts: int


__all__ = [
    "ControlAction",
    "Job",
    "JobRegistryEntry",
    "JobStatus",
    "OwnerNotification",
    "PayloadSource",
    "PendingTrigger",
    "STEP_ELIGIBLE_STATUSES",
    "StepDisposition",
    "StepOutcome",
    "TERMINAL_JOB_STATUSES",
    "utcnow",
]
