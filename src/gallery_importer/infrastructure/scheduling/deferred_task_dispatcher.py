"""Background worker delivering deferred job triggers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from datetime import datetime

from gallery_importer.domain.jobs import PendingTrigger, utcnow
from gallery_importer.domain.ports import TriggerQueue

TriggerHandler = Callable[[str], Awaitable[object]]

logger = logging.getLogger(__name__)


class QueuedTaskTrigger:
    """Deferred task trigger writing to the dispatcher's queue under one topic."""

    def __init__(self, dispatcher: DeferredTaskDispatcher, topic: str) -> None:
        self._dispatcher = dispatcher
        self._topic = topic

    @property
    def topic(self) -> str:
        return self._topic

    async def schedule(self, job_id: str, not_before: datetime) -> None:
        """Queue one step of the job."""

        await self._dispatcher.schedule(self._topic, job_id, not_before)


class DeferredTaskDispatcher:
    """Claim due triggers with a lease and run their topic handlers."""

    def __init__(
        self,
        queue: TriggerQueue,
        *,
        poll_interval_seconds: float = 0.5,
        batch_size: int = 20,
        lease_seconds: float = 60.0,
        max_attempts: int = 5,
    ) -> None:
        self._queue = queue
        self._poll_interval_seconds = max(poll_interval_seconds, 0.01)
        self._batch_size = max(batch_size, 1)
        self._lease_seconds = max(lease_seconds, 0.01)
        self._max_attempts = max(max_attempts, 1)
        self._handlers: dict[str, TriggerHandler] = {}

        self._task: asyncio.Task[None] | None = None
        self._wake_event = asyncio.Event()
        self._stopping = asyncio.Event()
        self._lifecycle_lock = asyncio.Lock()

    def register_handler(self, topic: str, handler: TriggerHandler) -> None:
        """Route triggers of a topic to a handler taking the job id."""

        self._handlers[topic] = handler

    def trigger_for(self, topic: str) -> QueuedTaskTrigger:
        return QueuedTaskTrigger(self, topic)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def schedule(self, topic: str, job_id: str, not_before: datetime) -> None:
        """Persist a trigger and wake the loop when it is already due."""

        await self._queue.enqueue_trigger(topic=topic, job_id=job_id, not_before=not_before)
        if not_before <= utcnow():
            self._wake_event.set()

    async def start(self) -> None:
        """Start dispatcher background loop if not already running."""

        async with self._lifecycle_lock:
            task = self._task
            if task is not None and not task.done():
                return

            self._stopping.clear()
            self._wake_event.set()
            self._task = asyncio.create_task(
                self._run_loop(),
                name="deferred-task-dispatcher",
            )

    async def stop(self) -> None:
        """Stop dispatcher background loop."""

        async with self._lifecycle_lock:
            task = self._task
            if task is None:
                return
            self._task = None

            self._stopping.set()
            self._wake_event.set()
            task.cancel()

        with suppress(asyncio.CancelledError):
            await task

    async def dispatch_due_once(self) -> int:
        """Run handlers for one claimed batch and return the claimed count."""

        triggers = await self._queue.claim_due_triggers(
            limit=self._batch_size,
            lease_seconds=self._lease_seconds,
        )
        if not triggers:
            return 0

        await asyncio.gather(*(self._dispatch_one(trigger) for trigger in triggers))
        return len(triggers)

    async def _run_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.dispatch_due_once()
            except Exception:
                logger.exception("Deferred task dispatcher loop failed.")
                processed = 0

            if processed > 0:
                continue

            self._wake_event.clear()
            try:
                await asyncio.wait_for(
                    self._wake_event.wait(),
                    timeout=self._poll_interval_seconds,
                )
            except TimeoutError:
                pass

    async def _dispatch_one(self, trigger: PendingTrigger) -> None:
        handler = self._handlers.get(trigger.topic)
        if handler is None:
            logger.warning(
                "No handler for trigger topic '%s'; dropping trigger %s of job '%s'.",
                trigger.topic,
                trigger.trigger_id,
                trigger.job_id,
            )
            await self._queue.acknowledge_trigger(trigger.trigger_id)
            return

        try:
            await handler(trigger.job_id)
        except Exception:
            logger.exception(
                "Handler for '%s' trigger %s of job '%s' failed (attempt %s).",
                trigger.topic,
                trigger.trigger_id,
                trigger.job_id,
                trigger.attempts,
            )
            if trigger.attempts < self._max_attempts:
                return
            logger.warning(
                "Dropping trigger %s of job '%s' after %s attempts.",
                trigger.trigger_id,
                trigger.job_id,
                trigger.attempts,
            )

        await self._queue.acknowledge_trigger(trigger.trigger_id)


__all__ = ["DeferredTaskDispatcher", "QueuedTaskTrigger", "TriggerHandler"]
