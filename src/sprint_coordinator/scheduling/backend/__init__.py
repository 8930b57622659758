"""Worker Execution Service implementations."""

from sprint_coordinator.scheduling.backend.base import (
    WorkerExecutionError,
    WorkerExecutionService,
    WorkerRequest,
)
from sprint_coordinator.scheduling.backend.cli_backend import CliWorkerService

__all__ = [
    "CliWorkerService",
    "WorkerExecutionError",
    "WorkerExecutionService",
    "WorkerRequest",
]
