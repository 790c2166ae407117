"""Resumable batch job engine shared by the import and deletion workloads."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Any
from uuid import uuid4

from gallery_importer.domain.errors import (
    JobForbiddenError,
    JobNotFoundError,
    JobPayloadError,
)
from gallery_importer.domain.job_transitions import (
    apply_step_outcome,
    fail,
    is_step_eligible,
)
from gallery_importer.domain.jobs import (
    ControlAction,
    Job,
    JobStatus,
    PayloadSource,
    StepDisposition,
    StepOutcome,
    utcnow,
)
from gallery_importer.domain.policies import StepPacingPolicy
from gallery_importer.domain.ports import (
    BatchStepStrategy,
    DeferredTaskTrigger,
    JobLog,
    JobRegistry,
    JobRepository,
    OwnerOutbox,
)
from gallery_importer.domain.status_models import (
    JobListItem,
    JobListResponse,
    JobStatusResponse,
)

_DEFAULT_LOCK_TTL_SECONDS = 45.0
_DEFAULT_ENQUEUE_DELAY_SECONDS = 1.0
_DEFAULT_LOCK_RETRY_DELAY_SECONDS = 10.0
_DEFAULT_RETENTION_DAYS = 7.0
_DEFAULT_CONTENTION_WARNING_THRESHOLD = 5

_CONTROL_LOG_LINES = {
    ControlAction.PAUSE: "Job paused by user.",
    ControlAction.RESUME: "Job resumed by user.",
    ControlAction.STOP: "Job stopped by user.",
}

_DISPOSITION_BY_STATUS = {
    JobStatus.RUNNING: StepDisposition.CONTINUING,
    JobStatus.QUEUED: StepDisposition.CONTINUING,
    JobStatus.PAUSED: StepDisposition.PAUSED,
    JobStatus.COMPLETE: StepDisposition.COMPLETE,
    JobStatus.FAILED: StepDisposition.FAILED,
    JobStatus.STOPPED: StepDisposition.STOPPED,
}

logger = logging.getLogger(__name__)


class BatchJobEngine:
    """Drives jobs of one kind through time-boxed, lock-guarded steps.

    Each trigger firing runs at most one batch. The engine never inspects the
    payload itself: loading, slicing semantics and per-element work belong to
    the strategy, while locking, counters, pacing and re-arming live here.
    """

    def __init__(
        self,
        *,
        kind: str,
        strategy: BatchStepStrategy,
        repository: JobRepository,
        registry: JobRegistry,
        trigger: DeferredTaskTrigger,
        outbox: OwnerOutbox,
        job_log: JobLog,
        pacing: StepPacingPolicy | None = None,
        lock_ttl_seconds: float = _DEFAULT_LOCK_TTL_SECONDS,
        enqueue_delay_seconds: float = _DEFAULT_ENQUEUE_DELAY_SECONDS,
        lock_retry_delay_seconds: float = _DEFAULT_LOCK_RETRY_DELAY_SECONDS,
        retention_days: float = _DEFAULT_RETENTION_DAYS,
        contention_warning_threshold: int = _DEFAULT_CONTENTION_WARNING_THRESHOLD,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._kind = kind
        self._strategy = strategy
        self._repository = repository
        self._registry = registry
        self._trigger = trigger
        self._outbox = outbox
        self._job_log = job_log
        self._pacing = pacing or StepPacingPolicy()
        self._lock_ttl_seconds = max(lock_ttl_seconds, 1.0)
        self._enqueue_delay_seconds = max(enqueue_delay_seconds, 0.0)
        self._lock_retry_delay_seconds = max(lock_retry_delay_seconds, 0.0)
        self._retention_days = max(retention_days, 0.0)
        self._contention_warning_threshold = max(contention_warning_threshold, 1)
        self._clock = clock
        self._monotonic = monotonic
        self._contention: dict[str, int] = {}

    @property
    def kind(self) -> str:
        return self._kind

    async def enqueue(
        self,
        payload_source: PayloadSource,
        *,
        owner: str | None = None,
        options: dict[str, Any] | None = None,
        target_owner_id: str | None = None,
    ) -> Job:
        """Create a queued job, register it and arm its first step."""

        job = Job(
            job_id=uuid4().hex,
            kind=self._kind,
            payload_source=payload_source,
            owner=owner,
            options=dict(options or {}),
            target_owner_id=target_owner_id,
            batch_size=self._strategy.default_batch_size,
        )
        await self._repository.create_job(job)
        await self._release_evicted(await self._registry.register(job))
        await self._job_log.append(job.job_id, [f"Job {job.job_id} queued."])
        await self._arm(job.job_id, self._enqueue_delay_seconds)
        logger.info("Enqueued %s job '%s'.", self._kind, job.job_id)
        return job

    async def run_step(self, job_id: str) -> StepDisposition:
        """Handle one trigger firing; never raises."""

        try:
            return await self._run_step(job_id)
        except Exception:
            logger.exception("Step of %s job '%s' failed unexpectedly.", self._kind, job_id)
            await self._arm_after_error(job_id)
            return StepDisposition.ERROR

    async def run_inline(
        self,
        payload_source: PayloadSource,
        *,
        options: dict[str, Any] | None = None,
        target_owner_id: str | None = None,
    ) -> tuple[Job, list[str]]:
        """Run every batch in-process without persisting a job record."""

        job = Job(
            job_id=f"inline-{uuid4().hex}",
            kind=self._kind,
            payload_source=payload_source,
            options=dict(options or {}),
            target_owner_id=target_owner_id,
            batch_size=self._strategy.default_batch_size,
        )
        messages: list[str] = []
        while is_step_eligible(job):
            job, lines = await self._execute_batch(job)
            messages.extend(lines)
        return job, messages

    async def pause(self, job_id: str, *, caller: str | None = None) -> Job:
        """Pause a queued or running job."""

        return await self.control(job_id, ControlAction.PAUSE, caller=caller)

    async def resume(self, job_id: str, *, caller: str | None = None) -> Job:
        """Resume a paused job."""

        return await self.control(job_id, ControlAction.RESUME, caller=caller)

    async def stop(self, job_id: str, *, caller: str | None = None) -> Job:
        """Stop a job for good."""

        return await self.control(job_id, ControlAction.STOP, caller=caller)

    async def control(
        self,
        job_id: str,
        action: ControlAction,
        *,
        caller: str | None = None,
    ) -> Job:
        """Apply a control command; raises JobConflictError when not allowed."""

        await self.get_job(job_id, caller=caller)
        job = await self._repository.apply_control(job_id, action)
        await self._touch_registry(job)
        await self._job_log.append(job_id, [_CONTROL_LOG_LINES[action]])
        if action is ControlAction.RESUME:
            await self._arm(job_id, self._enqueue_delay_seconds)
        logger.info("Applied %s to %s job '%s'.", action.value, self._kind, job_id)
        return job

    async def get_job(self, job_id: str, *, caller: str | None = None) -> Job:
        """Return a job the caller may inspect."""

        job = await self._repository.get_job(job_id)
        if job is None or job.kind != self._kind:
            raise JobNotFoundError(f"Job '{job_id}' not found.")
        if caller is not None and job.owner is not None and job.owner != caller:
            raise JobForbiddenError(f"Job '{job_id}' belongs to another owner.")
        return job

    def log_url(self, job_id: str) -> str:
        return self._job_log.log_url(job_id)

    async def get_status(self, job_id: str, *, caller: str | None = None) -> JobStatusResponse:
        """Return the status snapshot of a job."""

        job = await self.get_job(job_id, caller=caller)
        return JobStatusResponse.from_job(job, log_url=self._job_log.log_url(job_id))

    async def read_log(self, job_id: str, *, caller: str | None = None) -> str:
        """Return the log text of a job."""

        await self.get_job(job_id, caller=caller)
        return await self._job_log.read(job_id)

    async def list_jobs(self, *, caller: str | None = None) -> JobListResponse:
        """List registered jobs newest first after collecting expired ones."""

        await self.collect_garbage()
        entries = await self._registry.list_entries(self._kind)
        return JobListResponse(
            jobs=[
                JobListItem.from_entry(entry)
                for entry in entries
                if caller is None or entry.owner is None or entry.owner == caller
            ]
        )

    async def collect_garbage(self) -> list[str]:
        """Drop expired registry entries and the records of finished jobs among them.

        Jobs that are still live (paused ones included) are registered again so
        they stay listed and resumable.
        """

        expired = await self._registry.gc(self._retention_days)
        collected: list[str] = []
        for job_id in expired:
            job = await self._repository.get_job(job_id)
            if job is not None and not job.done:
                await self._release_evicted(await self._registry.register(job))
                continue
            await self._forget(job_id)
            collected.append(job_id)
        if collected:
            logger.info("Collected %d expired job(s).", len(collected))
        return collected

    async def recover_pending(self) -> int:
        """Re-arm every queued or running job of this kind."""

        jobs = await self._repository.list_active_jobs()
        recovered = 0
        for job in jobs:
            if job.kind != self._kind or not is_step_eligible(job):
                continue
            await self._arm(job.job_id, self._enqueue_delay_seconds)
            recovered += 1
        if recovered:
            logger.info("Re-armed %d pending %s job(s).", recovered, self._kind)
        return recovered

    async def _run_step(self, job_id: str) -> StepDisposition:
        job = await self._repository.get_job(job_id)
        if job is None:
            return StepDisposition.NOT_FOUND
        if not is_step_eligible(job):
            return StepDisposition.IGNORED

        lock_token = self._clock()
        locked = await self._repository.try_lock(
            job_id,
            lock_token=lock_token,
            ttl_seconds=self._lock_ttl_seconds,
        )
        if locked is None:
            return await self._handle_lock_denied(job_id)
        self._contention.pop(job_id, None)
        await self._registry.update_status(job_id, locked.status)

        started = self._monotonic()
        proposed, log_lines = await self._execute_batch(locked)
        elapsed = self._monotonic() - started
        if proposed.status is JobStatus.RUNNING:
            proposed.batch_size = self._pacing.next_batch_size(
                proposed.batch_size or self._strategy.default_batch_size,
                self._strategy.default_batch_size,
                elapsed,
            )

        committed = await self._repository.commit_step(proposed, lock_token=lock_token)
        if committed is None:
            logger.warning(
                "Lock of %s job '%s' expired during the step; discarding its results.",
                self._kind,
                job_id,
            )
            await self._job_log.append(
                job_id,
                [*log_lines, "Step results discarded after the lock expired."],
            )
            return StepDisposition.LOCK_LOST

        await self._job_log.append(job_id, log_lines)
        await self._touch_registry(committed)
        return await self._after_commit(committed, elapsed)

    async def _handle_lock_denied(self, job_id: str) -> StepDisposition:
        current = await self._repository.get_job(job_id)
        if current is None:
            return StepDisposition.NOT_FOUND
        if not is_step_eligible(current):
            return StepDisposition.IGNORED

        attempts = self._contention.get(job_id, 0) + 1
        self._contention[job_id] = attempts
        if attempts >= self._contention_warning_threshold:
            logger.warning(
                "%s job '%s' is still locked after %d attempts.",
                self._kind,
                job_id,
                attempts,
            )
        await self._arm(job_id, self._lock_retry_delay_seconds)
        return StepDisposition.LOCK_HELD

    async def _execute_batch(self, job: Job) -> tuple[Job, list[str]]:
        try:
            payload = await self._strategy.load_payload(job)
        except JobPayloadError as exc:
            failed = fail(job, str(exc))
            return failed, [f"Error: {failed.error}"]

        start = job.processed
        size = max(job.batch_size or self._strategy.default_batch_size, 1)
        batch = list(payload[start : start + size])
        total = job.total if job.total is not None else len(payload)

        if not batch and start < total:
            outcome = StepOutcome(fatal_error="Payload ended before all items were processed.")
        elif not batch:
            outcome = StepOutcome()
        else:
            try:
                outcome = await self._strategy.process_batch(job, batch)
            except Exception as exc:
                logger.exception("Batch of %s job '%s' raised.", self._kind, job.job_id)
                outcome = StepOutcome(fatal_error=f"Unexpected error: {exc}")
            if outcome.fatal_error is None and outcome.processed <= 0:
                outcome.fatal_error = "Step made no progress."

        advanced = apply_step_outcome(job, outcome, payload_length=len(payload))
        lines = list(outcome.log_lines)
        if advanced.status is JobStatus.FAILED:
            lines.append(f"Job failed: {advanced.error}")
        return advanced, lines

    async def _after_commit(self, job: Job, elapsed: float) -> StepDisposition:
        if job.status is JobStatus.RUNNING:
            await self._arm(job.job_id, self._pacing.next_delay(elapsed))
        elif job.status is JobStatus.COMPLETE:
            summary = self._strategy.summarize(job)
            await self._job_log.append(job.job_id, [summary])
            if job.owner:
                await self._outbox.deliver_once(job.owner, job.job_id, summary)
            logger.info("%s job '%s' complete.", self._kind, job.job_id)
        elif job.status is JobStatus.FAILED:
            logger.warning("%s job '%s' failed: %s", self._kind, job.job_id, job.error)
        return _DISPOSITION_BY_STATUS[job.status]

    async def _touch_registry(self, job: Job) -> None:
        if job.done:
            # restores an entry dropped by capacity eviction
            await self._release_evicted(await self._registry.register(job))
        else:
            await self._registry.update_status(job.job_id, job.status)

    async def _release_evicted(self, job_ids: list[str]) -> None:
        for job_id in job_ids:
            job = await self._repository.get_job(job_id)
            if job is None or job.done:
                await self._forget(job_id)

    async def _forget(self, job_id: str) -> None:
        await self._repository.delete_job(job_id)
        await self._outbox.forget_job(job_id)
        self._contention.pop(job_id, None)

    async def _arm(self, job_id: str, delay_seconds: float) -> None:
        await self._trigger.schedule(job_id, utcnow() + timedelta(seconds=delay_seconds))

    async def _arm_after_error(self, job_id: str) -> None:
        try:
            await self._arm(job_id, self._lock_retry_delay_seconds)
        except Exception:
            logger.exception("Could not re-arm %s job '%s'.", self._kind, job_id)


__all__ = ["BatchJobEngine"]
