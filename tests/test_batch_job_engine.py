from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from gallery_importer.application.services import BatchJobEngine
from gallery_importer.domain.errors import (
    JobConflictError,
    JobForbiddenError,
    JobNotFoundError,
    JobPayloadError,
)
from gallery_importer.domain.jobs import (
    Job,
    JobStatus,
    PayloadSource,
    StepDisposition,
    StepOutcome,
    utcnow,
)
from gallery_importer.infrastructure.logs import FileJobLog
from gallery_importer.infrastructure.repositories import InMemoryJobRepository

BatchHook = Callable[[Job], Awaitable[None]]


class ListStrategy:
    """Strategy double succeeding on every inline item."""

    def __init__(self, batch_size: int = 5, on_batch: BatchHook | None = None) -> None:
        self.default_batch_size = batch_size
        self.batches: list[list[Any]] = []
        self.on_batch = on_batch

    async def load_payload(self, job: Job) -> Sequence[Any]:
        if job.payload_source.items is None:
            raise JobPayloadError("Source file missing")
        return job.payload_source.items

    async def process_batch(self, job: Job, batch: Sequence[Any]) -> StepOutcome:
        self.batches.append(list(batch))
        if self.on_batch is not None:
            await self.on_batch(job)
        outcome = StepOutcome(processed=len(batch))
        for item in batch:
            outcome.record_success(f"Item {item}: done")
        return outcome

    def summarize(self, job: Job) -> str:
        return f"Job {job.job_id} finished: {job.created} created."


class RecordingTrigger:
    """Deferred trigger double recording every re-arm."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[str, datetime]] = []

    async def schedule(self, job_id: str, not_before: datetime) -> None:
        self.scheduled.append((job_id, not_before))


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def build_engine(
    tmp_path: Path,
    strategy: ListStrategy,
    *,
    clock: Callable[[], float] | None = None,
    repository: InMemoryJobRepository | None = None,
) -> tuple[BatchJobEngine, InMemoryJobRepository, RecordingTrigger]:
    repository = repository or InMemoryJobRepository()
    trigger = RecordingTrigger()
    engine = BatchJobEngine(
        kind="gallery_import",
        strategy=strategy,
        repository=repository,
        registry=repository,
        trigger=trigger,
        outbox=repository,
        job_log=FileJobLog(tmp_path / "logs", url_template="/imports/jobs/{job_id}/log"),
        clock=clock or FakeClock(),
    )
    return engine, repository, trigger


def test_thirteen_items_complete_in_three_steps(tmp_path: Path) -> None:
    strategy = ListStrategy()
    engine, repository, trigger = build_engine(tmp_path, strategy)

    async def scenario() -> tuple[list[StepDisposition], list[int], Job]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))), owner="owner-1")
        dispositions: list[StepDisposition] = []
        progress: list[int] = []
        for _ in range(3):
            dispositions.append(await engine.run_step(job.job_id))
            stored = await engine.get_job(job.job_id)
            progress.append(stored.processed)
        return dispositions, progress, await engine.get_job(job.job_id)

    dispositions, progress, job = asyncio.run(scenario())

    assert dispositions == [
        StepDisposition.CONTINUING,
        StepDisposition.CONTINUING,
        StepDisposition.COMPLETE,
    ]
    assert progress == [5, 10, 13]
    assert [len(batch) for batch in strategy.batches] == [5, 5, 3]
    assert job.status is JobStatus.COMPLETE
    assert job.done
    assert job.total == 13
    assert job.created == 13
    assert job.lock_token == 0.0
    # enqueue plus one re-arm per continuing step
    assert len(trigger.scheduled) == 3

    notifications = asyncio.run(repository.consume("owner-1"))
    assert [notice.message for notice in notifications] == [
        f"Job {job.job_id} finished: 13 created."
    ]
    log_text = asyncio.run(engine.read_log(job.job_id))
    assert f"Job {job.job_id} queued." in log_text
    assert "Item 12: done" in log_text
    assert f"Job {job.job_id} finished: 13 created." in log_text


def test_paused_job_ignores_spurious_triggers_until_resumed(tmp_path: Path) -> None:
    strategy = ListStrategy()
    engine, _, trigger = build_engine(tmp_path, strategy)

    async def scenario() -> tuple[list[StepDisposition], Job, int]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        dispositions = [await engine.run_step(job.job_id)]
        await engine.pause(job.job_id)
        dispositions.append(await engine.run_step(job.job_id))
        dispositions.append(await engine.run_step(job.job_id))
        paused = await engine.get_job(job.job_id)
        armed_before_resume = len(trigger.scheduled)
        await engine.resume(job.job_id)
        armed_by_resume = len(trigger.scheduled) - armed_before_resume
        dispositions.append(await engine.run_step(job.job_id))
        dispositions.append(await engine.run_step(job.job_id))
        assert paused.status is JobStatus.PAUSED
        assert paused.processed == 5
        return dispositions, await engine.get_job(job.job_id), armed_by_resume

    dispositions, job, armed_by_resume = asyncio.run(scenario())

    assert dispositions == [
        StepDisposition.CONTINUING,
        StepDisposition.IGNORED,
        StepDisposition.IGNORED,
        StepDisposition.CONTINUING,
        StepDisposition.COMPLETE,
    ]
    assert armed_by_resume == 1
    assert job.processed == 13
    assert len(strategy.batches) == 3


def test_stopped_job_is_terminal(tmp_path: Path) -> None:
    strategy = ListStrategy()
    engine, _, _ = build_engine(tmp_path, strategy)

    async def scenario() -> tuple[StepDisposition, Job]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        await engine.run_step(job.job_id)
        await engine.stop(job.job_id)
        disposition = await engine.run_step(job.job_id)
        with pytest.raises(JobConflictError):
            await engine.resume(job.job_id)
        with pytest.raises(JobConflictError):
            await engine.pause(job.job_id)
        return disposition, await engine.get_job(job.job_id)

    disposition, job = asyncio.run(scenario())

    assert disposition is StepDisposition.IGNORED
    assert job.status is JobStatus.STOPPED
    assert job.done
    assert job.processed == 5
    assert len(strategy.batches) == 1


def test_redelivered_trigger_after_completion_changes_nothing(tmp_path: Path) -> None:
    strategy = ListStrategy()
    engine, repository, _ = build_engine(tmp_path, strategy)

    async def scenario() -> tuple[StepDisposition, Job]:
        job = await engine.enqueue(PayloadSource.inline([1, 2, 3]), owner="owner-1")
        await engine.run_step(job.job_id)
        disposition = await engine.run_step(job.job_id)
        return disposition, await engine.get_job(job.job_id)

    disposition, job = asyncio.run(scenario())

    assert disposition is StepDisposition.IGNORED
    assert job.created == 3
    assert len(strategy.batches) == 1
    assert len(asyncio.run(repository.consume("owner-1"))) == 1


def test_unknown_job_step_reports_not_found(tmp_path: Path) -> None:
    engine, _, _ = build_engine(tmp_path, ListStrategy())

    assert asyncio.run(engine.run_step("missing")) is StepDisposition.NOT_FOUND


def test_held_lock_defers_step_with_retry_delay(tmp_path: Path) -> None:
    clock = FakeClock(1_000.0)
    strategy = ListStrategy()
    engine, repository, trigger = build_engine(tmp_path, strategy, clock=clock)

    async def scenario() -> tuple[StepDisposition, StepDisposition, Job]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        other_worker = await repository.try_lock(job.job_id, lock_token=1_000.0, ttl_seconds=45)
        assert other_worker is not None

        clock.now = 1_010.0
        before = utcnow()
        denied = await engine.run_step(job.job_id)
        retry_delay = (trigger.scheduled[-1][1] - before).total_seconds()
        assert 9 <= retry_delay <= 11

        clock.now = 1_046.0
        stolen = await engine.run_step(job.job_id)
        return denied, stolen, await engine.get_job(job.job_id)

    denied, stolen, job = asyncio.run(scenario())

    assert denied is StepDisposition.LOCK_HELD
    assert stolen is StepDisposition.CONTINUING
    assert job.processed == 5
    assert len(strategy.batches) == 1


def test_commit_with_stale_token_is_rejected(tmp_path: Path) -> None:
    engine, repository, _ = build_engine(tmp_path, ListStrategy())

    async def scenario() -> tuple[Job | None, Job]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        first = await repository.try_lock(job.job_id, lock_token=1_000.0, ttl_seconds=45)
        assert first is not None
        second = await repository.try_lock(job.job_id, lock_token=1_050.0, ttl_seconds=45)
        assert second is not None

        first.processed = 5
        lost = await repository.commit_step(first, lock_token=1_000.0)
        return lost, await engine.get_job(job.job_id)

    lost, job = asyncio.run(scenario())

    assert lost is None
    assert job.processed == 0
    assert job.lock_token == 1_050.0


def test_lock_stolen_mid_step_discards_results(tmp_path: Path) -> None:
    clock = FakeClock(1_000.0)
    repository_holder: list[InMemoryJobRepository] = []

    async def steal(job: Job) -> None:
        await repository_holder[0].try_lock(job.job_id, lock_token=1_100.0, ttl_seconds=45)

    engine, repository, trigger = build_engine(
        tmp_path,
        ListStrategy(on_batch=steal),
        clock=clock,
    )
    repository_holder.append(repository)

    async def scenario() -> tuple[StepDisposition, Job, str]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        armed = len(trigger.scheduled)
        disposition = await engine.run_step(job.job_id)
        assert len(trigger.scheduled) == armed
        return disposition, await engine.get_job(job.job_id), await engine.read_log(job.job_id)

    disposition, job, log_text = asyncio.run(scenario())

    assert disposition is StepDisposition.LOCK_LOST
    assert job.processed == 0
    assert job.lock_token == 1_100.0
    assert "Step results discarded after the lock expired." in log_text


def test_pause_during_step_keeps_progress_without_rearming(tmp_path: Path) -> None:
    engine_holder: list[BatchJobEngine] = []

    async def pause(job: Job) -> None:
        await engine_holder[0].pause(job.job_id)

    engine, _, trigger = build_engine(tmp_path, ListStrategy(on_batch=pause))
    engine_holder.append(engine)

    async def scenario() -> tuple[StepDisposition, Job, int]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        armed = len(trigger.scheduled)
        disposition = await engine.run_step(job.job_id)
        return disposition, await engine.get_job(job.job_id), len(trigger.scheduled) - armed

    disposition, job, rearmed = asyncio.run(scenario())

    assert disposition is StepDisposition.PAUSED
    assert job.status is JobStatus.PAUSED
    assert job.processed == 5
    assert job.lock_token == 0.0
    assert rearmed == 0


def test_stop_during_final_step_wins_over_completion(tmp_path: Path) -> None:
    engine_holder: list[BatchJobEngine] = []

    async def stop(job: Job) -> None:
        await engine_holder[0].stop(job.job_id)

    engine, repository, _ = build_engine(tmp_path, ListStrategy(on_batch=stop))
    engine_holder.append(engine)

    async def scenario() -> tuple[StepDisposition, Job]:
        job = await engine.enqueue(PayloadSource.inline([1, 2]), owner="owner-1")
        disposition = await engine.run_step(job.job_id)
        return disposition, await engine.get_job(job.job_id)

    disposition, job = asyncio.run(scenario())

    assert disposition is StepDisposition.STOPPED
    assert job.status is JobStatus.STOPPED
    assert job.processed == 2
    assert asyncio.run(repository.consume("owner-1")) == []


def test_unreadable_payload_fails_job(tmp_path: Path) -> None:
    engine, _, _ = build_engine(tmp_path, ListStrategy())

    async def scenario() -> tuple[StepDisposition, Job, str]:
        job = await engine.enqueue(PayloadSource.staged(str(tmp_path / "gone.json")))
        disposition = await engine.run_step(job.job_id)
        return disposition, await engine.get_job(job.job_id), await engine.read_log(job.job_id)

    disposition, job, log_text = asyncio.run(scenario())

    assert disposition is StepDisposition.FAILED
    assert job.status is JobStatus.FAILED
    assert job.error == "Source file missing"
    assert "Error: Source file missing" in log_text


def test_strategy_exception_fails_job(tmp_path: Path) -> None:
    async def explode(_: Job) -> None:
        raise RuntimeError("boom")

    engine, _, _ = build_engine(tmp_path, ListStrategy(on_batch=explode))

    async def scenario() -> tuple[StepDisposition, Job]:
        job = await engine.enqueue(PayloadSource.inline([1, 2, 3]))
        disposition = await engine.run_step(job.job_id)
        return disposition, await engine.get_job(job.job_id)

    disposition, job = asyncio.run(scenario())

    assert disposition is StepDisposition.FAILED
    assert job.error == "Unexpected error: boom"


def test_run_inline_processes_every_batch_without_persisting(tmp_path: Path) -> None:
    strategy = ListStrategy()
    engine, repository, trigger = build_engine(tmp_path, strategy)

    job, messages = asyncio.run(engine.run_inline(PayloadSource.inline(list(range(7)))))

    assert job.status is JobStatus.COMPLETE
    assert job.created == 7
    assert len(messages) == 7
    assert trigger.scheduled == []
    assert asyncio.run(repository.list_entries()) == []


def test_owner_checks_and_kind_isolation(tmp_path: Path) -> None:
    engine, repository, trigger = build_engine(tmp_path, ListStrategy())
    other_kind = BatchJobEngine(
        kind="gallery_deletion",
        strategy=ListStrategy(),
        repository=repository,
        registry=repository,
        trigger=trigger,
        outbox=repository,
        job_log=FileJobLog(tmp_path / "other", url_template="/deletions/jobs/{job_id}/log"),
    )

    async def scenario() -> str:
        job = await engine.enqueue(PayloadSource.inline([1]), owner="owner-1")
        assert (await engine.get_job(job.job_id, caller="owner-1")).job_id == job.job_id
        assert (await engine.get_job(job.job_id)).job_id == job.job_id
        with pytest.raises(JobForbiddenError):
            await engine.get_job(job.job_id, caller="owner-2")
        with pytest.raises(JobNotFoundError):
            await other_kind.get_job(job.job_id)
        listed = await engine.list_jobs(caller="owner-2")
        assert listed.jobs == []
        return job.job_id

    job_id = asyncio.run(scenario())

    status = asyncio.run(engine.get_status(job_id, caller="owner-1"))
    assert status.log_url == f"/imports/jobs/{job_id}/log"
    assert status.status is JobStatus.QUEUED


def test_recover_pending_rearms_unfinished_jobs(tmp_path: Path) -> None:
    engine, _, trigger = build_engine(tmp_path, ListStrategy())

    async def scenario() -> int:
        running = await engine.enqueue(PayloadSource.inline(list(range(13))))
        await engine.run_step(running.job_id)
        paused = await engine.enqueue(PayloadSource.inline([1]))
        await engine.pause(paused.job_id)
        finished = await engine.enqueue(PayloadSource.inline([1]))
        await engine.run_step(finished.job_id)
        trigger.scheduled.clear()
        recovered = await engine.recover_pending()
        assert [job_id for job_id, _ in trigger.scheduled] == [running.job_id]
        return recovered

    assert asyncio.run(scenario()) == 1


def test_garbage_collection_removes_expired_jobs(tmp_path: Path) -> None:
    engine, repository, _ = build_engine(tmp_path, ListStrategy())

    async def scenario() -> tuple[list[str], Job | None]:
        job = await engine.enqueue(PayloadSource.inline([1]))
        await engine.run_step(job.job_id)
        repository._clock = lambda: utcnow() + timedelta(days=30)
        removed = await engine.collect_garbage()
        return removed, await repository.get_job(job.job_id)

    removed, job = asyncio.run(scenario())

    assert len(removed) == 1
    assert job is None


def test_garbage_collection_keeps_paused_jobs_resumable(tmp_path: Path) -> None:
    strategy = ListStrategy()
    engine, repository, _ = build_engine(tmp_path, strategy)

    async def scenario() -> tuple[list[str], list[str], Job]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        await engine.run_step(job.job_id)
        await engine.pause(job.job_id)
        repository._clock = lambda: utcnow() + timedelta(days=30)
        listed = await engine.list_jobs()
        removed = await engine.collect_garbage()
        resumed = await engine.resume(job.job_id)
        return [item.job_id for item in listed.jobs], removed, resumed

    listed, removed, resumed = asyncio.run(scenario())

    assert listed == [resumed.job_id]
    assert removed == []
    assert resumed.status is JobStatus.QUEUED
    assert resumed.processed == 5


def test_registry_eviction_releases_finished_job_records(tmp_path: Path) -> None:
    repository = InMemoryJobRepository(max_registry_entries=2)
    engine, _, _ = build_engine(tmp_path, ListStrategy(), repository=repository)

    async def scenario() -> tuple[list[str], list[str], list[str], list[str]]:
        job_ids: list[str] = []
        for item in range(5):
            job = await engine.enqueue(PayloadSource.inline([item]), owner="owner-1")
            await engine.run_step(job.job_id)
            job_ids.append(job.job_id)
        kept = [job_id for job_id in job_ids if await repository.get_job(job_id) is not None]
        repository._clock = lambda: utcnow() + timedelta(days=30)
        removed = await engine.collect_garbage()
        remaining = [
            job_id for job_id in job_ids if await repository.get_job(job_id) is not None
        ]
        return job_ids[-2:], kept, removed, remaining

    newest, kept, removed, remaining = asyncio.run(scenario())

    assert kept == newest
    assert sorted(removed) == sorted(newest)
    assert remaining == []
    assert asyncio.run(repository.consume("owner-1")) == []
    assert repository._delivered == set()


def test_simultaneous_firings_run_one_batch(tmp_path: Path) -> None:
    async def yield_to_other_firing(job: Job) -> None:
        await asyncio.sleep(0)

    strategy = ListStrategy(on_batch=yield_to_other_firing)
    engine, _, _ = build_engine(tmp_path, strategy)

    async def scenario() -> tuple[list[StepDisposition], Job]:
        job = await engine.enqueue(PayloadSource.inline(list(range(13))))
        dispositions = await asyncio.gather(
            engine.run_step(job.job_id),
            engine.run_step(job.job_id),
        )
        return list(dispositions), await engine.get_job(job.job_id)

    dispositions, job = asyncio.run(scenario())

    assert sorted(dispositions) == sorted(
        [StepDisposition.CONTINUING, StepDisposition.LOCK_HELD]
    )
    assert job.processed == 5
    assert len(strategy.batches) == 1
