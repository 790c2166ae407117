"""PostgreSQL job repository, registry, trigger queue and owner outbox."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-untyped]

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
    PayloadSource,
    PendingTrigger,
)
from gallery_importer.domain.ports import (
    JobRegistry,
    JobRepository,
    OwnerOutbox,
    TriggerQueue,
)

_JOB_COLUMNS = """
    job_id,
    kind,
    status,
    payload,
    owner,
    options,
    target_owner_id,
    processed,
    total,
    created,
    updated,
    skipped,
    error,
    lock_token,
    done,
    batch_size,
    created_at,
    updated_at
"""

_TERMINAL_STATUS_VALUES = sorted(status.value for status in TERMINAL_JOB_STATUSES)


class PostgresJobRepository(JobRepository, JobRegistry, TriggerQueue, OwnerOutbox):
    """Job durability backed by PostgreSQL."""

    def __init__(
        self,
        dsn: str,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        max_registry_entries: int = 500,
    ) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._max_registry_entries = max(max_registry_entries, 1)
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def get_job(self, job_id: str) -> Job | None:
        """Return a job by id."""

        pool = await self._get_pool()
        row = await pool.fetchrow(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = $1", job_id)
        if row is None:
            return None
        return self._to_job(row)

    async def create_job(self, job: Job) -> None:
        """Insert a new job row."""

        pool = await self._get_pool()
        async with pool.acquire() as connection:
            await self._write_job(connection, job, insert=True)

    async def try_lock(self, job_id: str, *, lock_token: float, ttl_seconds: float) -> Job | None:
        """Compare-and-set the lock token inside a row-locking transaction."""

        pool = await self._get_pool()
        async with pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = $1 FOR UPDATE",
                    job_id,
                )
                if row is None:
                    return None
                job = self._to_job(row)
                if not is_step_eligible(job):
                    return None
                if not lock_is_free(job, now=lock_token, ttl_seconds=ttl_seconds):
                    return None
                locked = begin_step(job, lock_token=lock_token)
                await connection.execute(
                    """
                    UPDATE jobs
                    SET lock_token = $2, status = $3, updated_at = $4
                    WHERE job_id = $1
                    """,
                    job_id,
                    locked.lock_token,
                    locked.status.value,
                    locked.updated_at,
                )
                return locked

    async def commit_step(self, job: Job, *, lock_token: float) -> Job | None:
        """Write step results when the lock token still matches."""

        pool = await self._get_pool()
        async with pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = $1 FOR UPDATE",
                    job.job_id,
                )
                if row is None:
                    return None
                stored = self._to_job(row)
                if stored.lock_token != lock_token:
                    return None
                committed = commit_step(stored, job)
                await self._write_job(connection, committed, insert=False)
                return committed

    async def apply_control(self, job_id: str, action: ControlAction) -> Job:
        """Apply a control command under a row lock."""

        pool = await self._get_pool()
        async with pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = $1 FOR UPDATE",
                    job_id,
                )
                if row is None:
                    raise JobNotFoundError(f"Job '{job_id}' not found.")
                controlled = apply_control(self._to_job(row), action)
                await connection.execute(
                    """
                    UPDATE jobs
                    SET status = $2, done = $3, updated_at = $4
                    WHERE job_id = $1
                    """,
                    job_id,
                    controlled.status.value,
                    controlled.done,
                    controlled.updated_at,
                )
                return controlled

    async def delete_job(self, job_id: str) -> None:
        pool = await self._get_pool()
        await pool.execute("DELETE FROM jobs WHERE job_id = $1", job_id)

    async def list_active_jobs(self) -> list[Job]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"SELECT {_JOB_COLUMNS} FROM jobs WHERE done = FALSE ORDER BY created_at ASC",
        )
        return [self._to_job(row) for row in rows]

    async def register(self, job: Job) -> list[str]:
        """Upsert the registry projection and evict entries over capacity."""

        pool = await self._get_pool()
        async with pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    """
                    INSERT INTO job_registry (job_id, kind, status, owner, created_at, last_seen)
                    VALUES ($1, $2, $3, $4, $5, NOW())
                    ON CONFLICT (job_id) DO UPDATE SET
                        status = EXCLUDED.status,
                        owner = EXCLUDED.owner,
                        last_seen = NOW()
                    """,
                    job.job_id,
                    job.kind,
                    job.status.value,
                    job.owner,
                    job.created_at,
                )
                rows = await connection.fetch(
                    """
                    DELETE FROM job_registry
                    WHERE job_id IN (
                        SELECT job_id
                        FROM job_registry
                        ORDER BY (status <> ALL($2::text[])) ASC, last_seen ASC
                        LIMIT GREATEST((SELECT COUNT(*) FROM job_registry) - $1, 0)
                    )
                    RETURNING job_id
                    """,
                    self._max_registry_entries,
                    _TERMINAL_STATUS_VALUES,
                )
        return [str(row["job_id"]) for row in rows]

    async def update_status(self, job_id: str, status: JobStatus) -> None:
        pool = await self._get_pool()
        await pool.execute(
            "UPDATE job_registry SET status = $2, last_seen = NOW() WHERE job_id = $1",
            job_id,
            status.value,
        )

    async def list_entries(self, kind: str | None = None) -> list[JobRegistryEntry]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            SELECT job_id, kind, status, owner, created_at, last_seen
            FROM job_registry
            WHERE $1::text IS NULL OR kind = $1
            ORDER BY created_at DESC, job_id ASC
            """,
            kind,
        )
        return [
            JobRegistryEntry(
                job_id=str(row["job_id"]),
                kind=str(row["kind"]),
                status=JobStatus(str(row["status"])),
                owner=row["owner"],
                created_at=row["created_at"],
                last_seen=row["last_seen"],
            )
            for row in rows
        ]

    async def gc(self, retention_days: float) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            DELETE FROM job_registry
            WHERE last_seen < NOW() - ($1::double precision * INTERVAL '1 day')
            RETURNING job_id
            """,
            max(retention_days, 0.0),
        )
        return [str(row["job_id"]) for row in rows]

    async def enqueue_trigger(self, *, topic: str, job_id: str, not_before: datetime) -> None:
        pool = await self._get_pool()
        await pool.execute(
            "INSERT INTO job_triggers (topic, job_id, due_at) VALUES ($1, $2, $3)",
            topic,
            job_id,
            not_before,
        )

    async def claim_due_triggers(self, *, limit: int, lease_seconds: float) -> list[PendingTrigger]:
        """Claim due triggers and move their visibility window via lease."""

        if limit <= 0:
            return []

        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            WITH due AS (
                SELECT id
                FROM job_triggers
                WHERE due_at <= NOW()
                ORDER BY due_at ASC, id ASC
                FOR UPDATE SKIP LOCKED
                LIMIT $1
            )
            UPDATE job_triggers AS triggers
            SET
                due_at = NOW() + ($2::double precision * INTERVAL '1 second'),
                attempts = triggers.attempts + 1
            FROM due
            WHERE triggers.id = due.id
            RETURNING triggers.id, triggers.topic, triggers.job_id, triggers.attempts
            """,
            limit,
            max(lease_seconds, 0.0),
        )
        return [
            PendingTrigger(
                trigger_id=int(row["id"]),
                topic=str(row["topic"]),
                job_id=str(row["job_id"]),
                attempts=int(row["attempts"]),
            )
            for row in rows
        ]

    async def acknowledge_trigger(self, trigger_id: int) -> None:
        pool = await self._get_pool()
        await pool.execute("DELETE FROM job_triggers WHERE id = $1", trigger_id)

    async def deliver_once(self, owner_id: str, job_id: str, message: str) -> bool:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            INSERT INTO owner_notifications (owner_id, job_id, message)
            VALUES ($1, $2, $3)
            ON CONFLICT (owner_id, job_id) DO NOTHING
            """,
            owner_id,
            job_id,
            message,
        )
        return result.endswith("1")

    async def consume(self, owner_id: str) -> list[OwnerNotification]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            UPDATE owner_notifications
            SET consumed_at = NOW()
            WHERE owner_id = $1 AND consumed_at IS NULL
            RETURNING owner_id, job_id, message, created_at
            """,
            owner_id,
        )
        notifications = [
            OwnerNotification(
                owner_id=str(row["owner_id"]),
                job_id=str(row["job_id"]),
                message=str(row["message"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]
        return sorted(notifications, key=lambda notification: notification.created_at)

    async def forget_job(self, job_id: str) -> None:
        pool = await self._get_pool()
        await pool.execute("DELETE FROM owner_notifications WHERE job_id = $1", job_id)

    async def close(self) -> None:
        """Close the pool if it was initialized."""

        pool = self._pool
        self._pool = None
        if pool is not None:
            await pool.close()

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_pool_size,
                    max_size=self._max_pool_size,
                )
                await self._ensure_schema(pool)
                self._pool = pool
        assert self._pool is not None
        return self._pool

    async def _ensure_schema(self, pool: asyncpg.Pool) -> None:
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                payload JSONB NOT NULL,
                owner TEXT,
                options JSONB NOT NULL DEFAULT '{}'::jsonb,
                target_owner_id TEXT,
                processed INTEGER NOT NULL DEFAULT 0,
                total INTEGER,
                created INTEGER NOT NULL DEFAULT 0,
                updated INTEGER NOT NULL DEFAULT 0,
                skipped INTEGER NOT NULL DEFAULT 0,
                error TEXT NOT NULL DEFAULT '',
                lock_token DOUBLE PRECISION NOT NULL DEFAULT 0,
                done BOOLEAN NOT NULL DEFAULT FALSE,
                batch_size INTEGER,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            CREATE INDEX IF NOT EXISTS idx_jobs_active ON jobs (created_at) WHERE done = FALSE;
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS job_registry (
                job_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                owner TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                last_seen TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            CREATE INDEX IF NOT EXISTS idx_job_registry_last_seen ON job_registry (last_seen);
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS job_triggers (
                id BIGSERIAL PRIMARY KEY,
                topic TEXT NOT NULL,
                job_id TEXT NOT NULL,
                due_at TIMESTAMPTZ NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            CREATE INDEX IF NOT EXISTS idx_job_triggers_due ON job_triggers (due_at, id);
            """
        )
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS owner_notifications (
                owner_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                message TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                consumed_at TIMESTAMPTZ,
                PRIMARY KEY (owner_id, job_id)
            );
            """
        )

    async def _write_job(self, connection: asyncpg.Connection, job: Job, *, insert: bool) -> None:
        values = (
            job.job_id,
            job.kind,
            job.status.value,
            json.dumps(job.payload_source.to_dict()),
            job.owner,
            json.dumps(job.options),
            job.target_owner_id,
            job.processed,
            job.total,
            job.created,
            job.updated,
            job.skipped,
            job.error,
            job.lock_token,
            job.done,
            job.batch_size,
            job.created_at,
            job.updated_at,
        )
        if insert:
            await connection.execute(
                f"""
                INSERT INTO jobs ({_JOB_COLUMNS})
                VALUES ($1, $2, $3, $4::jsonb, $5, $6::jsonb, $7, $8, $9, $10,
                        $11, $12, $13, $14, $15, $16, $17, $18)
                """,
                *values,
            )
            return
        await connection.execute(
            """
            UPDATE jobs SET
                kind = $2,
                status = $3,
                payload = $4::jsonb,
                owner = $5,
                options = $6::jsonb,
                target_owner_id = $7,
                processed = $8,
                total = $9,
                created = $10,
                updated = $11,
                skipped = $12,
                error = $13,
                lock_token = $14,
                done = $15,
                batch_size = $16,
                created_at = $17,
                updated_at = $18
            WHERE job_id = $1
            """,
            *values,
        )

    def _to_job(self, row: asyncpg.Record) -> Job:
        payload = self._decode_dict(row["payload"])
        return Job(
            job_id=str(row["job_id"]),
            kind=str(row["kind"]),
            status=JobStatus(str(row["status"])),
            payload_source=PayloadSource.from_dict(payload),
            owner=row["owner"],
            options=self._decode_dict(row["options"]),
            target_owner_id=row["target_owner_id"],
            processed=int(row["processed"]),
            total=None if row["total"] is None else int(row["total"]),
            created=int(row["created"]),
            updated=int(row["updated"]),
            skipped=int(row["skipped"]),
            error=str(row["error"] or ""),
            lock_token=float(row["lock_token"]),
            done=bool(row["done"]),
            batch_size=None if row["batch_size"] is None else int(row["batch_size"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _decode_dict(self, value: object) -> dict[str, Any]:
        decoded = json.loads(value) if isinstance(value, str) else value
        if decoded is None:
            return {}
        if not isinstance(decoded, dict):
            raise TypeError(f"Expected dict payload, got {type(decoded)!r}.")
        return decoded


__all__ = ["PostgresJobRepository"]
