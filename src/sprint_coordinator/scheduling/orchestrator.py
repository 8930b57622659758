"""Bounded-concurrency batched execution of work packages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import datetime
from typing import Any
from uuid import uuid4

from sprint_coordinator.scheduling.backend.base import WorkerExecutionService, WorkerRequest
from sprint_coordinator.scheduling.budget import BudgetTracker
from sprint_coordinator.scheduling.models import (
    ActiveWorker,
    ResultStatus,
    WorkerOutcome,
    WorkerResult,
    WorkerStatus,
    WorkPackage,
    utc_now,
)
from sprint_coordinator.scheduling.registry import WorkerRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 5
DEFAULT_TIMEOUT_SECONDS = 300.0


class WorkerTimeoutError(RuntimeError):
    """Worker did not report an outcome before its timeout."""


def iter_batches(packages: Sequence[WorkPackage], size: int) -> Iterator[list[WorkPackage]]:
    """Split packages into consecutive batches of at most ``size``."""

    if size < 1:
        raise ValueError(f"Batch size must be >= 1, got {size}")
    for start in range(0, len(packages), size):
        yield list(packages[start : start + size])


def check_outcome(outcome: object) -> WorkerOutcome:
    """Reject service results the budget and registry bookkeeping cannot record."""

    if not isinstance(outcome, WorkerOutcome):
        raise TypeError(f"Worker service returned {type(outcome).__name__}, not WorkerOutcome")
    usage = outcome.resource_usage
    if isinstance(usage, bool) or not isinstance(usage, int) or usage < 0:
        raise ValueError(f"Worker reported invalid resource usage: {usage!r}")
    return outcome


class ExecutionOrchestrator:
    """Launches workers in sequential batches and collects ordered results.

    All registry and budget bookkeeping happens on the event loop thread
    after a worker's outcome has been awaited.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        service: WorkerExecutionService,
        run_id: str,
        registry: WorkerRegistry | None = None,
        budget_tracker: BudgetTracker | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        cancel_on_timeout: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.service = service
        self.run_id = run_id
        self.registry = registry
        self.budget_tracker = budget_tracker
        self.max_concurrent = max_concurrent
        self.timeout_seconds = timeout_seconds
        self.cancel_on_timeout = cancel_on_timeout
        self._clock = clock
        self.active_workers: dict[str, ActiveWorker] = {}
        self.batch_sizes: list[int] = []
        self._abandoned: set[asyncio.Future[WorkerOutcome]] = set()

    @property
    def abandoned_count(self) -> int:
        """Timed-out calls still in flight."""

        return len(self._abandoned)

    async def launch_many(self, packages: Sequence[WorkPackage]) -> list[WorkerResult]:
        """Run all packages; results follow input order regardless of completion order."""

        results: list[WorkerResult] = []
        for batch in iter_batches(packages, self.max_concurrent):
            self.batch_sizes.append(len(batch))
            logger.info(
                "Run %s: launching batch %d with %d workers",
                self.run_id,
                len(self.batch_sizes),
                len(batch),
            )
            batch_results = await asyncio.gather(
                *(self._execute_worker(package) for package in batch),
            )
            results.extend(batch_results)
        return results

    def session_status(self) -> list[dict[str, Any]]:
        """Snapshot of the active-worker table."""

        now = self._clock()
        return [
            {
                "id": worker_id,
                "task": entry.package.description,
                "status": entry.status.value,
                "durationSeconds": ((entry.finished_at or now) - entry.started_at).total_seconds(),
            }
            for worker_id, entry in self.active_workers.items()
        ]

    async def _execute_worker(self, package: WorkPackage) -> WorkerResult:
        if package.worker_id is None:
            package.worker_id = f"worker-{uuid4().hex[:12]}"
        worker_id = package.worker_id
        entry = ActiveWorker(package=package, started_at=self._clock(), status=WorkerStatus.RUNNING)
        self.active_workers[worker_id] = entry
        if self.registry is not None:
            self.registry.write(worker_id, entry)
        if self.budget_tracker is not None and self.budget_tracker.get(worker_id) is None:
            self.budget_tracker.allocate(worker_id, package.budget)

        cancel_event = asyncio.Event()
        request = WorkerRequest(
            run_id=self.run_id,
            worker_id=worker_id,
            package=package,
            cancel_requested=cancel_event.is_set,
        )
        try:
            outcome = check_outcome(await self._run_with_timeout(request, cancel_event))
        except Exception as error:  # noqa: BLE001
            message = str(error) or error.__class__.__name__
            entry.status = WorkerStatus.ERROR
            entry.finished_at = self._clock()
            if self.registry is not None:
                self.registry.write(worker_id, entry, error=message)
            logger.warning("Worker %s (%s) failed: %s", worker_id, package.package_id, message)
            return WorkerResult(
                package_id=package.package_id,
                worker_id=worker_id,
                status=ResultStatus.ERROR,
                task_ids=package.task_ids,
                error=message,
                fallback=package.fallback,
            )

        entry.status = WorkerStatus.COMPLETED
        entry.finished_at = self._clock()
        if self.budget_tracker is not None:
            self.budget_tracker.track_usage(worker_id, outcome.resource_usage)
        if self.registry is not None:
            self.registry.write(worker_id, entry, outcome=outcome)
        return WorkerResult(
            package_id=package.package_id,
            worker_id=worker_id,
            status=ResultStatus.SUCCESS,
            task_ids=package.task_ids,
            outcome=outcome,
            fallback=package.fallback,
        )

    async def _run_with_timeout(
        self,
        request: WorkerRequest,
        cancel_event: asyncio.Event,
    ) -> WorkerOutcome:
        if self.timeout_seconds is None:
            return await self.service.execute(request)

        call = asyncio.ensure_future(self.service.execute(request))
        done, _ = await asyncio.wait({call}, timeout=self.timeout_seconds)
        if call in done:
            return call.result()

        cancel_event.set()
        if self.cancel_on_timeout:
            call.cancel()
        self._abandoned.add(call)
        call.add_done_callback(self._release_abandoned)
        raise WorkerTimeoutError(
            f"Worker {request.worker_id} timed out after {self.timeout_seconds:g}s",
        )

    def _release_abandoned(self, call: asyncio.Future[WorkerOutcome]) -> None:
        self._abandoned.discard(call)
        if call.cancelled():
            return
        error = call.exception()
        if error is not None:
            logger.debug("Abandoned worker call finished with error: %s", error)
