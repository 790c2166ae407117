"""Pure job state machine transitions.

Every function takes a job snapshot and returns a new snapshot; nothing here
performs I/O. Repositories apply these under their own atomicity guarantees
and the engine composes them around strategy calls.
"""

from __future__ import annotations

from dataclasses import replace

from gallery_importer.domain.errors import JobConflictError
from gallery_importer.domain.jobs import (
    STEP_ELIGIBLE_STATUSES,
    TERMINAL_JOB_STATUSES,
    ControlAction,
    Job,
    JobStatus,
    StepOutcome,
    utcnow,
)

_PAUSABLE_STATUSES = frozenset({JobStatus.RUNNING, JobStatus.QUEUED})
_STOPPABLE_STATUSES = frozenset({JobStatus.RUNNING, JobStatus.QUEUED, JobStatus.PAUSED})


def is_step_eligible(job: Job) -> bool:
    """Return whether a trigger firing may run a step for this job."""

    return not job.done and job.status in STEP_ELIGIBLE_STATUSES


def lock_is_free(job: Job, *, now: float, ttl_seconds: float) -> bool:
    """Return whether the advisory lock is unset or abandoned."""

    if job.lock_token == 0:
        return True
    return now - job.lock_token >= ttl_seconds


def begin_step(job: Job, *, lock_token: float) -> Job:
    """Lock the job for one step and mark it running."""

    return replace(
        job,
        lock_token=lock_token,
        status=JobStatus.RUNNING,
        updated_at=utcnow(),
    )


def apply_step_outcome(job: Job, outcome: StepOutcome, *, payload_length: int) -> Job:
    """Fold one batch outcome into the job counters and status."""

    total = job.total if job.total is not None else payload_length
    processed = min(job.processed + max(outcome.processed, 0), total)
    advanced = replace(
        job,
        total=total,
        processed=processed,
        created=job.created + max(outcome.succeeded, 0),
        updated=job.updated + max(outcome.updated, 0),
        skipped=job.skipped + max(outcome.skipped, 0),
        updated_at=utcnow(),
    )
    if outcome.fatal_error:
        return fail(advanced, outcome.fatal_error)
    if processed >= total:
        advanced.status = JobStatus.COMPLETE
        advanced.done = True
        return advanced
    advanced.status = JobStatus.RUNNING
    return advanced


def fail(job: Job, error: str) -> Job:
    """Move a job to failed with a readable error message."""

    return replace(
        job,
        status=JobStatus.FAILED,
        done=True,
        error=error.strip() or "Job failed.",
        updated_at=utcnow(),
    )


def merge_committed_status(stored: JobStatus, proposed: JobStatus) -> JobStatus:
    """Resolve a step result against a status written concurrently by a control command."""

    if stored is JobStatus.STOPPED:
        return JobStatus.STOPPED
    if stored is JobStatus.PAUSED and proposed is JobStatus.RUNNING:
        return JobStatus.PAUSED
    return proposed


def commit_step(stored: Job, proposed: Job) -> Job:
    """Build the record persisted at the end of a step and release the lock."""

    status = merge_committed_status(stored.status, proposed.status)
    return replace(
        proposed,
        status=status,
        done=status in TERMINAL_JOB_STATUSES,
        lock_token=0.0,
        updated_at=utcnow(),
    )


def apply_control(job: Job, action: ControlAction) -> Job:
    """Apply pause, resume or stop, raising when the status does not allow it."""

    if action is ControlAction.PAUSE:
        if job.done or job.status not in _PAUSABLE_STATUSES:
            raise JobConflictError(
                f"Cannot pause job '{job.job_id}' in status '{job.status}'.",
                code="cannot_pause",
            )
        return replace(job, status=JobStatus.PAUSED, updated_at=utcnow())

    if action is ControlAction.RESUME:
        if job.done or job.status is not JobStatus.PAUSED:
            raise JobConflictError(
                f"Cannot resume job '{job.job_id}' in status '{job.status}'.",
                code="cannot_resume",
            )
        return replace(job, status=JobStatus.QUEUED, updated_at=utcnow())

    if job.done or job.status not in _STOPPABLE_STATUSES:
        raise JobConflictError(
            f"Cannot stop job '{job.job_id}' in status '{job.status}'.",
            code="cannot_stop",
        )
    return replace(job, status=JobStatus.STOPPED, done=True, updated_at=utcnow())


__all__ = [
    "apply_control",
    "apply_step_outcome",
    "begin_step",
    "commit_step",
    "fail",
    "is_step_eligible",
    "lock_is_free",
    "merge_committed_status",
]
