"""Worker Execution Service interface for orchestrator fan-out."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sprint_coordinator.scheduling.models import WorkerOutcome, WorkPackage


@dataclass(slots=True)
class WorkerRequest:
    """Inputs required to execute one work package."""

    run_id: str
    worker_id: str
    package: WorkPackage
    cancel_requested: Callable[[], bool] | None = None


class WorkerExecutionError(RuntimeError):
    """Worker execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class WorkerExecutionService(Protocol):
    """Protocol implemented by worker backends.

    No retry or idempotency guarantee is assumed by the caller.
    """

    async def execute(self, request: WorkerRequest) -> WorkerOutcome:
        """Run one work package and return its outputs and resource usage."""
