"""Controllers for coordinator CLI commands."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from pathlib import Path

from sprint_coordinator.config import Settings
from sprint_coordinator.scheduling.backend import CliWorkerService
from sprint_coordinator.scheduling.budget import calculate_budget, phase_budget
from sprint_coordinator.scheduling.contracts import (
    STATUS_FILENAME,
    read_status_document,
    read_tasks,
)
from sprint_coordinator.scheduling.coordinator import CoordinationPlan, SprintCoordinator
from sprint_coordinator.scheduling.flows import sprint_coordination_flow
from sprint_coordinator.scheduling.models import RunStatus, TaskAttributes


@dataclass(slots=True)
class CoordinatorPlanCommand:
    """CLI input for planning without execution."""

    backlog_path: Path
    output_root: Path | None
    max_clusters: int | None
    run_id: str | None
    write: bool = True


@dataclass(slots=True)
class CoordinatorRunCommand:
    """CLI input for a full coordination run."""

    backlog_path: Path
    output_root: Path | None
    command_template: str | None
    max_clusters: int | None
    max_concurrent: int | None
    timeout_seconds: float | None
    run_id: str | None


@dataclass(slots=True)
class CoordinatorBudgetCommand:
    """CLI input for a one-off budget calculation."""

    complexity: str
    priority: str
    task_type: str | None
    research_level: str | None
    document_count: int
    base_allocation: int | None
    phase: str | None = None
    tier: str | None = None


@dataclass(slots=True)
class CoordinatorStatusCommand:
    """CLI input for reading a run's status document."""

    run_id: str
    output_root: Path | None


@dataclass(slots=True)
class CoordinatorRunResult:
    """Run report to render in CLI."""

    lines: list[str]
    status: RunStatus


class CoordinatorCliController:
    """Coordinates planning, execution, budget and status CLI operations."""

    def plan(self, command: CoordinatorPlanCommand) -> list[str]:
        settings = _settings(command.output_root, max_clusters=command.max_clusters)
        tasks = read_tasks(command.backlog_path)
        coordinator = SprintCoordinator(settings=settings)
        plan = coordinator.plan(tasks, run_id=command.run_id)

        lines = render_plan_lines(plan)
        if command.write:
            lines.append(f"Plan: {coordinator.write_plan(plan)}")
        return lines

    def run(self, command: CoordinatorRunCommand) -> CoordinatorRunResult:
        settings = _settings(command.output_root, max_clusters=command.max_clusters)
        execution = settings.execution
        if command.max_concurrent is not None:
            execution = replace(execution, max_concurrent=command.max_concurrent)
        if command.timeout_seconds is not None:
            execution = replace(execution, worker_timeout_seconds=command.timeout_seconds)
        if command.command_template is not None:
            execution = replace(execution, command_template=command.command_template)
        settings = replace(settings, execution=execution)
        settings.validate_for_execution()

        tasks = read_tasks(command.backlog_path)
        service = CliWorkerService(
            command_template=execution.command_template,
            workdir_root=execution.workdir_root,
        )
        lines: list[str] = []
        run = asyncio.run(
            sprint_coordination_flow(
                tasks=tasks,
                settings=settings,
                service=service,
                run_id=command.run_id,
                on_progress=lines.append,
            ),
        )

        for result in run.results:
            outcome = (
                f"usage={result.outcome.resource_usage}"
                if result.outcome is not None
                else f"error={result.error}"
            )
            lines.append(
                f"Worker {result.worker_id} ({result.package_id}): "
                f"{result.status.value} tasks={','.join(result.task_ids)} {outcome}",
            )
        for failed in run.status.failed_tasks:
            lines.append(f"Failed task {failed.task_id}: {failed.error}")
        for conflict in run.status.conflicts:
            lines.append(
                f"Integration conflict [{conflict.kind}] {conflict.resource}: {conflict.message}",
            )
        lines.append(
            "Budget: "
            f"allocated={run.budget_report.total_allocated} used={run.budget_report.total_used} "
            f"session_limit_exceeded={run.budget_report.session_limit_exceeded}",
        )
        lines.append(f"Status: {run.status_path}")
        return CoordinatorRunResult(lines=lines, status=run.status.status)

    def budget(self, command: CoordinatorBudgetCommand) -> list[str]:
        settings = Settings.from_env()
        base_allocation = command.base_allocation or settings.budget.base_allocation
        if command.phase is not None:
            tier = command.tier or "standard"
            value = phase_budget(command.phase, tier, base_allocation=base_allocation)
            return [f"Phase budget {command.phase}/{tier}: {value}"]

        attributes = TaskAttributes(
            complexity=command.complexity,
            priority=command.priority,
            task_type=command.task_type,
            research_level=command.research_level,
            document_count=command.document_count,
        )
        return [f"Budget: {calculate_budget(attributes, base_allocation=base_allocation)}"]

    def status(self, command: CoordinatorStatusCommand) -> list[str]:
        settings = Settings.from_env(output_root=command.output_root)
        path = settings.output_root / command.run_id / STATUS_FILENAME
        if not path.exists():
            return [f"No status document for run {command.run_id} at {path}"]

        document = read_status_document(path)
        lines = [
            f"Run {document['runId']}: status={document['status']} at {document['timestamp']}",
            f"Completed tasks: {', '.join(document['completedTasks']) or '-'}",
        ]
        for failed in document["failedTasks"]:
            lines.append(f"Failed task {failed['task']}: {failed['error']}")
        for conflict in document.get("conflicts", []):
            lines.append(
                f"Integration conflict [{conflict['kind']}] "
                f"{conflict['resource']}: {conflict['message']}",
            )
        for update in document.get("sharedResourceUpdates", []):
            lines.append(
                f"Shared resource {update['resource']} [{update['severity']}]: "
                f"{update['status']} order={' -> '.join(update['order'])}",
            )
        return lines


def render_plan_lines(plan: CoordinationPlan) -> list[str]:
    """Human-readable summary of clusters and the sequential phase."""

    partition = plan.partition
    lines = [
        f"Run {plan.run_id}: {len(plan.analysis.tasks)} tasks, "
        f"{len(partition.clusters)} clusters, {len(plan.analysis.conflicts)} conflicts",
    ]
    for package in plan.packages:
        lines.append(
            f"Cluster {package.cluster_id} ({package.package_id}, budget={package.budget}): "
            f"{', '.join(package.task_ids)}",
        )
        lines.append(f"  owns: {', '.join(package.owned_resources) or '-'}")
    for entry in partition.sequential_plan:
        lines.append(
            f"Sequential: {entry.resource} [{entry.severity.value}] "
            f"order={' -> '.join(entry.order)}",
        )
    if partition.overflow_merged:
        lines.append(f"Overflow: {partition.overflow_merged} clusters merged into cluster 1")
    for ambiguity in plan.analysis.ambiguities:
        lines.append(f"Ambiguity: {ambiguity.task_id} ({ambiguity.reason})")
    return lines


def _settings(output_root: Path | None, *, max_clusters: int | None) -> Settings:
    settings = Settings.from_env(output_root=output_root)
    if max_clusters is not None:
        settings = replace(
            settings,
            scheduling=replace(settings.scheduling, max_clusters=max_clusters),
        )
    settings.validate()
    return settings
