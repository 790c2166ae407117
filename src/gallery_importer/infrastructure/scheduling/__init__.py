"""Deferred trigger scheduling."""

from gallery_importer.infrastructure.scheduling.deferred_task_dispatcher import (
    DeferredTaskDispatcher,
    QueuedTaskTrigger,
    TriggerHandler,
)

__all__ = ["DeferredTaskDispatcher", "QueuedTaskTrigger", "TriggerHandler"]
