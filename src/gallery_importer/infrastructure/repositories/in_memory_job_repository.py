"""In-memory job repository, registry, trigger queue and owner outbox."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from gallery_importer.domain.errors import JobNotFoundError
from gallery_importer.domain.job_transitions import (
    apply_control,
    begin_step,
    commit_step,
    is_step_eligible,
    lock_is_free,
)
from gallery_importer.domain.jobs import (
    TERMINAL_JOB_STATUSES,
    ControlAction,
    Job,
    JobRegistryEntry,
    JobStatus,
    OwnerNotification,
    PendingTrigger,
    utcnow,
)
from gallery_importer.domain.ports import (
    JobRegistry,
    JobRepository,
    OwnerOutbox,
    TriggerQueue,
)


@dataclass(slots=True)
class _InMemoryTrigger:
    trigger_id: int
    topic: str
    job_id: str
    due_at: datetime
    attempts: int


class InMemoryJobRepository(JobRepository, JobRegistry, TriggerQueue, OwnerOutbox):
    """Simple job store for local development and tests."""

    def __init__(
        self,
        *,
        max_registry_entries: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._jobs: dict[str, Job] = {}
        self._registry: dict[str, JobRegistryEntry] = {}
        self._max_registry_entries = max(max_registry_entries, 1)
        self._triggers: dict[int, _InMemoryTrigger] = {}
        self._next_trigger_id = 1
        self._notifications: dict[str, list[OwnerNotification]] = {}
        self._delivered: set[tuple[str, str]] = set()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get_job(self, job_id: str) -> Job | None:
        """Return a detached job snapshot."""

        async with self._lock:
            job = self._jobs.get(job_id)
            return None if job is None else copy.deepcopy(job)

    async def create_job(self, job: Job) -> None:
        """Persist a new job."""

        async with self._lock:
            self._jobs[job.job_id] = copy.deepcopy(job)

    async def try_lock(self, job_id: str, *, lock_token: float, ttl_seconds: float) -> Job | None:
        """Set the lock token when free or stale."""

        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not is_step_eligible(job):
                return None
            if not lock_is_free(job, now=lock_token, ttl_seconds=ttl_seconds):
                return None
            locked = begin_step(job, lock_token=lock_token)
            self._jobs[job_id] = locked
            return copy.deepcopy(locked)

    async def commit_step(self, job: Job, *, lock_token: float) -> Job | None:
        """Persist step results when the caller still owns the lock."""

        async with self._lock:
            stored = self._jobs.get(job.job_id)
            if stored is None or stored.lock_token != lock_token:
                return None
            committed = commit_step(stored, copy.deepcopy(job))
            self._jobs[job.job_id] = committed
            return copy.deepcopy(committed)

    async def apply_control(self, job_id: str, action: ControlAction) -> Job:
        """Apply a control command to the stored status."""

        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job '{job_id}' not found.")
            controlled = apply_control(job, action)
            self._jobs[job_id] = controlled
            return copy.deepcopy(controlled)

    async def delete_job(self, job_id: str) -> None:
        """Remove a job."""

        async with self._lock:
            self._jobs.pop(job_id, None)

    async def list_active_jobs(self) -> list[Job]:
        """Return jobs that are not done."""

        async with self._lock:
            return [copy.deepcopy(job) for job in self._jobs.values() if not job.done]

    async def register(self, job: Job) -> list[str]:
        """Upsert the registry projection and return evicted ids."""

        now = self._clock()
        async with self._lock:
            existing = self._registry.get(job.job_id)
            self._registry[job.job_id] = JobRegistryEntry(
                job_id=job.job_id,
                kind=job.kind,
                status=job.status,
                owner=job.owner,
                created_at=job.created_at if existing is None else existing.created_at,
                last_seen=now,
            )
            return self._evict_over_capacity_unlocked()

    async def update_status(self, job_id: str, status: JobStatus) -> None:
        """Refresh status and last-seen of a known entry."""

        now = self._clock()
        async with self._lock:
            entry = self._registry.get(job_id)
            if entry is None:
                return
            self._registry[job_id] = JobRegistryEntry(
                job_id=entry.job_id,
                kind=entry.kind,
                status=status,
                owner=entry.owner,
                created_at=entry.created_at,
                last_seen=now,
            )

    async def list_entries(self, kind: str | None = None) -> list[JobRegistryEntry]:
        """Return entries newest first."""

        async with self._lock:
            entries = [
                entry
                for entry in self._registry.values()
                if kind is None or entry.kind == kind
            ]
        return sorted(entries, key=lambda entry: entry.created_at, reverse=True)

    async def gc(self, retention_days: float) -> list[str]:
        """Remove entries last seen before the retention window."""

        cutoff = self._clock() - timedelta(days=max(retention_days, 0.0))
        async with self._lock:
            expired = [
                job_id for job_id, entry in self._registry.items() if entry.last_seen < cutoff
            ]
            for job_id in expired:
                del self._registry[job_id]
        return expired

    async def enqueue_trigger(self, *, topic: str, job_id: str, not_before: datetime) -> None:
        """Queue one trigger."""

        async with self._lock:
            trigger_id = self._next_trigger_id
            self._next_trigger_id += 1
            self._triggers[trigger_id] = _InMemoryTrigger(
                trigger_id=trigger_id,
                topic=topic,
                job_id=job_id,
                due_at=not_before,
                attempts=0,
            )

    async def claim_due_triggers(self, *, limit: int, lease_seconds: float) -> list[PendingTrigger]:
        """Claim due triggers and push their visibility past the lease."""

        if limit <= 0:
            return []

        now = self._clock()
        lease_until = now + timedelta(seconds=max(lease_seconds, 0.0))
        async with self._lock:
            due = sorted(
                (trigger for trigger in self._triggers.values() if trigger.due_at <= now),
                key=lambda trigger: (trigger.due_at, trigger.trigger_id),
            )[:limit]
            claimed: list[PendingTrigger] = []
            for trigger in due:
                trigger.due_at = lease_until
                trigger.attempts += 1
                claimed.append(
                    PendingTrigger(
                        trigger_id=trigger.trigger_id,
                        topic=trigger.topic,
                        job_id=trigger.job_id,
                        attempts=trigger.attempts,
                    )
                )
            return claimed

    async def acknowledge_trigger(self, trigger_id: int) -> None:
        """Drop a handled trigger."""

        async with self._lock:
            self._triggers.pop(trigger_id, None)

    async def pending_trigger_count(self) -> int:
        """Return the number of unacknowledged triggers."""

        async with self._lock:
            return len(self._triggers)

    async def deliver_once(self, owner_id: str, job_id: str, message: str) -> bool:
        """Store a notification unless the job already produced one."""

        async with self._lock:
            key = (owner_id, job_id)
            if key in self._delivered:
                return False
            self._delivered.add(key)
            self._notifications.setdefault(owner_id, []).append(
                OwnerNotification(
                    owner_id=owner_id,
                    job_id=job_id,
                    message=message,
                    created_at=self._clock(),
                )
            )
            return True

    async def consume(self, owner_id: str) -> list[OwnerNotification]:
        """Return and clear pending notifications."""

        async with self._lock:
            return self._notifications.pop(owner_id, [])

    async def forget_job(self, job_id: str) -> None:
        """Drop delivery markers and unread notifications of a job."""

        async with self._lock:
            self._delivered = {key for key in self._delivered if key[1] != job_id}
            for owner_id in list(self._notifications):
                remaining = [
                    notification
                    for notification in self._notifications[owner_id]
                    if notification.job_id != job_id
                ]
                if remaining:
                    self._notifications[owner_id] = remaining
                else:
                    del self._notifications[owner_id]

    def _evict_over_capacity_unlocked(self) -> list[str]:
        overflow = len(self._registry) - self._max_registry_entries
        if overflow <= 0:
            return []
        ordered = sorted(
            self._registry.values(),
            key=lambda entry: (entry.status not in TERMINAL_JOB_STATUSES, entry.last_seen),
        )
        evicted = [entry.job_id for entry in ordered[:overflow]]
        for job_id in evicted:
            del self._registry[job_id]
        return evicted


__all__ = ["InMemoryJobRepository"]
