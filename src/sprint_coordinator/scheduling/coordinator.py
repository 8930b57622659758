"""Pipeline driver: analyze, partition, budget, execute, reconcile.

All per-run state lives in an explicit ``CoordinatorContext`` created for
each run, so two coordinators (or two runs) never share a registry or budget
ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sprint_coordinator.config import Settings
from sprint_coordinator.scheduling.analyzer import analyze_dependencies
from sprint_coordinator.scheduling.backend.base import WorkerExecutionService
from sprint_coordinator.scheduling.budget import BudgetReport, BudgetTracker, budget_for_task
from sprint_coordinator.scheduling.contracts import (
    BUDGET_REPORT_FILENAME,
    PLAN_FILENAME,
    STATUS_FILENAME,
    plan_to_payload,
    write_json,
    write_status_record,
)
from sprint_coordinator.scheduling.models import (
    DependencyAnalysis,
    Partition,
    StatusRecord,
    Task,
    WorkerResult,
    WorkPackage,
    utc_now,
)
from sprint_coordinator.scheduling.orchestrator import ExecutionOrchestrator
from sprint_coordinator.scheduling.partitioner import partition_tasks
from sprint_coordinator.scheduling.reconciler import (
    IntegrationReconciler,
    MergeFunction,
    record_contributors,
)
from sprint_coordinator.scheduling.registry import WorkerRegistry

logger = logging.getLogger(__name__)

PACKAGE_ID_PREFIX = "sprint-worker"
FALLBACK_SEQUENTIAL = "sequential"


def new_run_id() -> str:
    return f"run-{uuid4().hex[:12]}"


@dataclass(slots=True)
class CoordinationPlan:
    """Everything decided before any worker starts."""

    run_id: str
    analysis: DependencyAnalysis
    partition: Partition
    packages: list[WorkPackage]
    task_budgets: dict[str, int]


@dataclass(slots=True)
class CoordinatorContext:
    """Run-scoped collaborators passed explicitly through the pipeline."""

    run_id: str
    run_dir: Path
    registry: WorkerRegistry
    budget_tracker: BudgetTracker


@dataclass(slots=True)
class CoordinationRun:
    plan: CoordinationPlan
    results: list[WorkerResult]
    status: StatusRecord
    budget_report: BudgetReport
    status_path: Path
    session_status: list[dict[str, object]] = field(default_factory=list)

    @property
    def run_id(self) -> str:
        return self.plan.run_id


def build_work_packages(
    partition: Partition,
    tasks: Sequence[Task],
    task_budgets: dict[str, int],
) -> list[WorkPackage]:
    """One package per cluster; its budget is the sum of its task budgets."""

    titles = {task.task_id: task.title for task in tasks}
    return [
        WorkPackage(
            package_id=f"{PACKAGE_ID_PREFIX}-{cluster.cluster_id}",
            description="; ".join(titles[task_id] for task_id in cluster.task_ids),
            task_ids=tuple(cluster.task_ids),
            owned_resources=tuple(cluster.owned_resources),
            read_only_resources=tuple(cluster.read_only_resources),
            budget=sum(task_budgets[task_id] for task_id in cluster.task_ids),
            cluster_id=cluster.cluster_id,
            fallback=FALLBACK_SEQUENTIAL,
        )
        for cluster in partition.clusters
    ]


class SprintCoordinator:
    """Runs one scheduling invocation end to end."""

    def __init__(
        self,
        *,
        settings: Settings,
        service: WorkerExecutionService | None = None,
        merge: MergeFunction = record_contributors,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.service = service
        self.merge = merge
        self._clock = clock

    def plan(self, tasks: Sequence[Task], *, run_id: str | None = None) -> CoordinationPlan:
        """Analyze and partition without executing anything."""

        run_id = run_id or new_run_id()
        scheduling = self.settings.scheduling
        analysis = analyze_dependencies(tasks, critical_resources=scheduling.critical_resources)
        partition = partition_tasks(
            analysis,
            max_clusters=scheduling.max_clusters,
            read_only_resources=scheduling.read_only_resources,
        )
        base_allocation = self.settings.budget.base_allocation
        task_budgets = {
            task.task_id: budget_for_task(task, base_allocation=base_allocation) for task in tasks
        }
        packages = build_work_packages(partition, tasks, task_budgets)
        logger.info(
            "Run %s planned: %d tasks in %d clusters, %d sequential resources",
            run_id,
            len(tasks),
            len(partition.clusters),
            len(partition.sequential_plan),
        )
        return CoordinationPlan(
            run_id=run_id,
            analysis=analysis,
            partition=partition,
            packages=packages,
            task_budgets=task_budgets,
        )

    def write_plan(self, plan: CoordinationPlan) -> Path:
        path = self.run_dir(plan.run_id) / PLAN_FILENAME
        write_json(
            path,
            plan_to_payload(
                run_id=plan.run_id,
                partition=plan.partition,
                packages=plan.packages,
                task_budgets=plan.task_budgets,
                conflicts=[
                    {
                        "resource": conflict.resource,
                        "tasks": list(conflict.tasks),
                        "severity": conflict.severity.value,
                    }
                    for conflict in plan.analysis.conflicts
                ],
                ambiguities=[
                    {"task": ambiguity.task_id, "reason": ambiguity.reason}
                    for ambiguity in plan.analysis.ambiguities
                ],
            ),
        )
        return path

    def run_dir(self, run_id: str) -> Path:
        return self.settings.output_root / run_id

    def new_context(self, run_id: str) -> CoordinatorContext:
        budget = self.settings.budget
        return CoordinatorContext(
            run_id=run_id,
            run_dir=self.run_dir(run_id),
            registry=WorkerRegistry(self.settings.registry_root, run_id),
            budget_tracker=BudgetTracker(
                base_allocation=budget.base_allocation,
                warning_threshold=budget.warning_threshold,
                session_limit=budget.session_limit,
                clock=self._clock,
            ),
        )

    async def execute(self, plan: CoordinationPlan) -> CoordinationRun:
        """Run the parallel phase, reconcile, and write the status document.

        Raises ``StatusWriteError`` when the status document cannot be written.
        """

        if self.service is None:
            raise ValueError("A worker execution service is required to execute a plan.")

        context = self.new_context(plan.run_id)
        execution = self.settings.execution
        orchestrator = ExecutionOrchestrator(
            service=self.service,
            run_id=context.run_id,
            registry=context.registry,
            budget_tracker=context.budget_tracker,
            max_concurrent=execution.max_concurrent,
            timeout_seconds=execution.worker_timeout_seconds,
            cancel_on_timeout=execution.cancel_on_timeout,
            clock=self._clock,
        )
        results = await orchestrator.launch_many(plan.packages)

        reconciler = IntegrationReconciler(merge=self.merge, clock=self._clock)
        status = reconciler.reconcile(
            run_id=context.run_id,
            results=results,
            partition=plan.partition,
        )

        budget_report = context.budget_tracker.usage_report()
        if budget_report.session_limit_exceeded:
            logger.warning(
                "Run %s used %d of session limit %d",
                context.run_id,
                budget_report.total_used,
                budget_report.session_limit,
            )
        try:
            write_json(context.run_dir / BUDGET_REPORT_FILENAME, budget_report.to_payload())
        except OSError:
            logger.warning(
                "Failed to write budget report for run %s",
                context.run_id,
                exc_info=True,
            )

        status_path = context.run_dir / STATUS_FILENAME
        write_status_record(status_path, status)
        return CoordinationRun(
            plan=plan,
            results=results,
            status=status,
            budget_report=budget_report,
            status_path=status_path,
            session_status=orchestrator.session_status(),
        )

    async def run(self, tasks: Sequence[Task], *, run_id: str | None = None) -> CoordinationRun:
        plan = self.plan(tasks, run_id=run_id)
        try:
            self.write_plan(plan)
        except OSError:
            logger.warning("Failed to write plan for run %s", plan.run_id, exc_info=True)
        return await self.execute(plan)
