"""Pacing and execution-mode policies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from gallery_importer.domain.gallery import ImporterOptions

_MEGABYTE = 1024 * 1024


@dataclass(slots=True, frozen=True)
class StepPacingPolicy:
    """Chooses the re-arm delay and adaptive batch size from step duration."""

    step_budget_seconds: float = 15.0
    continue_delay_seconds: float = 1.0
    slow_step_delay_seconds: float = 5.0
    comfortable_ratio: float = 0.8
    fast_ratio: float = 0.25

    def next_delay(self, elapsed_seconds: float) -> float:
        """Return the delay before the next step of a continuing job."""

        if elapsed_seconds < self.step_budget_seconds * self.comfortable_ratio:
            return self.continue_delay_seconds
        return self.slow_step_delay_seconds

    def next_batch_size(self, current: int, configured: int, elapsed_seconds: float) -> int:
        """Halve the batch after an overrun and grow it back after fast steps."""

        current = max(current, 1)
        if elapsed_seconds > self.step_budget_seconds:
            return max(current // 2, 1)
        if elapsed_seconds < self.step_budget_seconds * self.fast_ratio and current < configured:
            return min(current * 2, configured)
        return current


@dataclass(slots=True, frozen=True)
class ExecutionDecision:
    """Outcome of a background execution decision."""

    background: bool
    reason: str | None = None


class BackgroundExecutionPolicy(Protocol):
    """Decides whether an upload runs as a background job."""

    def decide(
        self,
        *,
        payload_size_bytes: int,
        options: ImporterOptions,
        requested: bool = False,
    ) -> ExecutionDecision:
        """Return the execution mode for one upload."""


@dataclass(slots=True, frozen=True)
class ResourceAwareExecutionPolicy:
    """Runs large, memory hungry or downloading imports in the background."""

    size_threshold_bytes: int = 3 * _MEGABYTE
    memory_budget_bytes: int = 512 * _MEGABYTE
    memory_overhead_bytes: int = 64 * _MEGABYTE
    memory_multiplier: int = 4

    def estimated_memory_bytes(self, payload_size_bytes: int) -> int:
        return payload_size_bytes * self.memory_multiplier + self.memory_overhead_bytes

    def decide(
        self,
        *,
        payload_size_bytes: int,
        options: ImporterOptions,
        requested: bool = False,
    ) -> ExecutionDecision:
        """Return the execution mode for one upload."""

        if payload_size_bytes >= self.size_threshold_bytes:
            size_mb = payload_size_bytes / _MEGABYTE
            return ExecutionDecision(
                background=True,
                reason=f"Large file detected ({size_mb:.2f} MB).",
            )
        if self.estimated_memory_bytes(payload_size_bytes) > self.memory_budget_bytes:
            return ExecutionDecision(
                background=True,
                reason="Insufficient memory for synchronous import.",
            )
        if options.download_images:
            return ExecutionDecision(
                background=True,
                reason="Background processing enabled for image downloads.",
            )
        return ExecutionDecision(background=requested)


__all__ = [
    "BackgroundExecutionPolicy",
    "ExecutionDecision",
    "ResourceAwareExecutionPolicy",
    "StepPacingPolicy",
]
