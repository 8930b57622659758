"""Prefect flow wrapping one full coordination run.

The flow drives the same ``SprintCoordinator`` used directly by library
callers; Prefect adds run tracking and naming on top.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from prefect import flow

from sprint_coordinator.config import Settings
from sprint_coordinator.scheduling.coordinator import CoordinationRun, SprintCoordinator
from sprint_coordinator.scheduling.models import Task
from sprint_coordinator.scheduling.reconciler import MergeResult, record_contributors

logger = logging.getLogger(__name__)


@flow(name="sprint_coordination_flow", validate_parameters=False)
async def sprint_coordination_flow(  # noqa: PLR0913
    *,
    tasks: Sequence[Task],
    settings: Settings,
    service: Any,
    run_id: str | None = None,
    merge: Callable[..., MergeResult] = record_contributors,
    on_progress: Callable[[str], None] | None = None,
) -> CoordinationRun:
    """Plan, execute and reconcile a sprint backlog.

    ``service`` is any ``WorkerExecutionService`` and ``merge`` any
    ``MergeFunction``. Prefect builds a parameter schema from these
    annotations, so Protocol classes cannot be used here.

    Raises ``StatusWriteError`` if the status document cannot be written;
    worker failures are reported in the returned run, never raised.
    """
    emit = on_progress or (lambda _: None)
    coordinator = SprintCoordinator(settings=settings, service=service, merge=merge)

    plan = coordinator.plan(tasks, run_id=run_id)
    emit(
        f"Run {plan.run_id}: {len(tasks)} tasks in {len(plan.packages)} work packages, "
        f"{len(plan.partition.sequential_plan)} sequential resources",
    )
    try:
        plan_path = coordinator.write_plan(plan)
    except OSError:
        logger.warning("Failed to write plan for run %s", plan.run_id, exc_info=True)
    else:
        emit(f"Plan: {plan_path}")

    run = await coordinator.execute(plan)
    emit(
        f"Run {run.run_id} finished: status={run.status.status.value} "
        f"completed={len(run.status.completed_tasks)} failed={len(run.status.failed_tasks)} "
        f"conflicts={len(run.status.conflicts)}",
    )
    return run
