"""Post-execution integration: sequential shared-resource phase and status record."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from sprint_coordinator.scheduling.models import (
    FailedTask,
    IntegrationConflict,
    Partition,
    RunStatus,
    SequentialResolution,
    SharedResourceUpdate,
    StatusRecord,
    WorkerResult,
    utc_now,
)

logger = logging.getLogger(__name__)

UPDATE_APPLIED = "applied"
UPDATE_PARTIAL = "partial"
UPDATE_SKIPPED = "skipped"
UPDATE_FAILED = "failed"

CONFLICT_MERGE_FAILED = "merge_failed"
CONFLICT_DROPPED_CONTRIBUTOR = "dropped_contributor"
CONFLICT_DUPLICATE_OUTPUT = "duplicate_output"
CONFLICT_FOREIGN_OWNERSHIP = "foreign_ownership"


@dataclass(slots=True, frozen=True)
class Contribution:
    """One successful worker's stake in a shared resource."""

    worker_id: str
    package_id: str
    task_ids: tuple[str, ...]
    outputs: tuple[str, ...]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class MergeResult:
    merged_from: tuple[str, ...]
    details: dict[str, Any] = field(default_factory=dict)


class MergeFunction(Protocol):
    """Folds contributions to one shared resource.

    Must be deterministic for the same contributor set and must list every
    contributor's worker id in ``merged_from``.
    """

    def __call__(
        self,
        resolution: SequentialResolution,
        contributions: Sequence[Contribution],
    ) -> MergeResult: ...


def record_contributors(
    resolution: SequentialResolution,
    contributions: Sequence[Contribution],
) -> MergeResult:
    """Default merge: content merge is external, so only record who contributed."""

    return MergeResult(
        merged_from=tuple(item.worker_id for item in contributions),
        details={
            "resolution": resolution.resolution,
            "contributions": [
                {"workerId": item.worker_id, "tasks": list(item.task_ids)}
                for item in contributions
            ],
        },
    )


class IntegrationReconciler:
    """Builds the run's status record from ordered worker results."""

    def __init__(
        self,
        *,
        merge: MergeFunction = record_contributors,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.merge = merge
        self._clock = clock

    def reconcile(
        self,
        *,
        run_id: str,
        results: Sequence[WorkerResult],
        partition: Partition,
    ) -> StatusRecord:
        completed_tasks: list[str] = []
        failed_tasks: list[FailedTask] = []
        for result in results:
            if result.ok:
                completed_tasks.extend(result.task_ids)
            else:
                failed_tasks.extend(
                    FailedTask(task_id=task_id, error=result.error or "unknown error")
                    for task_id in result.task_ids
                )

        successes = [result for result in results if result.ok]
        conflicts: list[IntegrationConflict] = []
        updates = [
            self._apply_shared(resolution, successes, set(completed_tasks), conflicts)
            for resolution in partition.sequential_plan
        ]
        conflicts.extend(find_residual_conflicts(successes, partition))
        for conflict in conflicts:
            logger.warning(
                "Run %s integration conflict on %s (%s): %s",
                run_id,
                conflict.resource,
                conflict.kind,
                conflict.message,
            )

        status = run_status(
            any_success=bool(successes),
            any_failure=bool(failed_tasks),
            any_conflict=bool(conflicts),
        )
        logger.info(
            "Run %s reconciled: status=%s completed=%d failed=%d conflicts=%d",
            run_id,
            status.value,
            len(completed_tasks),
            len(failed_tasks),
            len(conflicts),
        )
        return StatusRecord(
            run_id=run_id,
            status=status,
            timestamp=self._clock(),
            completed_tasks=completed_tasks,
            failed_tasks=failed_tasks,
            conflicts=conflicts,
            shared_resource_updates=updates,
        )

    def _apply_shared(
        self,
        resolution: SequentialResolution,
        successes: Sequence[WorkerResult],
        completed: set[str],
        conflicts: list[IntegrationConflict],
    ) -> SharedResourceUpdate:
        contributions = contributions_for(resolution, successes)
        contributors = tuple(item.worker_id for item in contributions)

        def _update(status: str, details: dict[str, Any] | None = None) -> SharedResourceUpdate:
            return SharedResourceUpdate(
                resource=resolution.resource,
                severity=resolution.severity,
                status=status,
                order=resolution.order,
                contributors=contributors,
                details=details or {},
            )

        if not contributions:
            return _update(UPDATE_SKIPPED)

        try:
            merged = self.merge(resolution, contributions)
        except Exception as error:  # noqa: BLE001
            conflicts.append(
                IntegrationConflict(
                    resource=resolution.resource,
                    kind=CONFLICT_MERGE_FAILED,
                    workers=contributors,
                    message=f"Merge failed: {error}",
                ),
            )
            return _update(UPDATE_FAILED)

        dropped = [worker_id for worker_id in contributors if worker_id not in merged.merged_from]
        if dropped:
            conflicts.append(
                IntegrationConflict(
                    resource=resolution.resource,
                    kind=CONFLICT_DROPPED_CONTRIBUTOR,
                    workers=tuple(dropped),
                    message=f"Merge dropped contributions from {', '.join(dropped)}",
                ),
            )
            return _update(UPDATE_FAILED, merged.details)

        pending = [task_id for task_id in resolution.order if task_id not in completed]
        if pending:
            details = dict(merged.details)
            details["pendingTasks"] = pending
            return _update(UPDATE_PARTIAL, details)
        return _update(UPDATE_APPLIED, merged.details)


def contributions_for(
    resolution: SequentialResolution,
    successes: Sequence[WorkerResult],
) -> list[Contribution]:
    """Successful workers that touched a resource, in result order."""

    contributing_tasks = set(resolution.order)
    contributions: list[Contribution] = []
    for result in successes:
        outputs = result.outcome.outputs if result.outcome is not None else ()
        if contributing_tasks.isdisjoint(result.task_ids) and resolution.resource not in outputs:
            continue
        contributions.append(
            Contribution(
                worker_id=result.worker_id,
                package_id=result.package_id,
                task_ids=result.task_ids,
                outputs=outputs,
                payload=dict(result.outcome.payload) if result.outcome is not None else {},
            ),
        )
    return contributions


def find_residual_conflicts(
    successes: Sequence[WorkerResult],
    partition: Partition,
) -> list[IntegrationConflict]:
    """Overlaps in worker outputs that pre-execution partitioning did not anticipate."""

    planned = {entry.resource for entry in partition.sequential_plan}
    claims: dict[str, list[str]] = {}
    conflicts: list[IntegrationConflict] = []

    for result in successes:
        if result.outcome is None:
            continue
        cluster = partition.cluster_of(result.task_ids[0]) if result.task_ids else None
        for artifact in dict.fromkeys(result.outcome.outputs):
            if artifact in planned:
                continue
            claims.setdefault(artifact, []).append(result.worker_id)
            owners = partition.owners_of(artifact)
            if cluster is not None and owners and cluster.cluster_id not in owners:
                conflicts.append(
                    IntegrationConflict(
                        resource=artifact,
                        kind=CONFLICT_FOREIGN_OWNERSHIP,
                        workers=(result.worker_id,),
                        message=(
                            f"Output of cluster {cluster.cluster_id} is owned by "
                            f"cluster {', '.join(str(owner) for owner in owners)}"
                        ),
                    ),
                )

    for artifact, workers in claims.items():
        if len(workers) > 1:
            conflicts.append(
                IntegrationConflict(
                    resource=artifact,
                    kind=CONFLICT_DUPLICATE_OUTPUT,
                    workers=tuple(workers),
                    message=f"Claimed by {len(workers)} workers",
                ),
            )
    return conflicts


def run_status(*, any_success: bool, any_failure: bool, any_conflict: bool) -> RunStatus:
    if not any_failure and not any_conflict:
        return RunStatus.COMPLETED
    if any_success:
        return RunStatus.PARTIAL
    return RunStatus.FAILED
