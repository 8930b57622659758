"""File-based contracts: task backlog, work packages, registry and status documents."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from sprint_coordinator.scheduling.models import (
    ActiveWorker,
    Partition,
    StatusRecord,
    Task,
    TaskAttributes,
    WorkerOutcome,
    WorkPackage,
)

STATUS_FILENAME = "coordination-status.json"
PLAN_FILENAME = "coordination-plan.json"
BUDGET_REPORT_FILENAME = "budget-report.json"


class StatusWriteError(RuntimeError):
    """The coordination status document could not be durably written."""


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload as a full rewrite via temp file and rename."""

    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def read_tasks(path: Path) -> list[Task]:
    """Deserialize and validate a task backlog document."""

    raw = load_json(path)
    raw_tasks = raw.get("tasks")
    if not isinstance(raw_tasks, list):
        raise TypeError("backlog.tasks must be an array")

    tasks: list[Task] = []
    seen: set[str] = set()
    for item in raw_tasks:
        if not isinstance(item, dict):
            raise TypeError("backlog task entry must be an object")
        task = _parse_task(item)
        if task.task_id in seen:
            raise ValueError(f"Duplicate task id in backlog: {task.task_id!r}")
        seen.add(task.task_id)
        tasks.append(task)
    return tasks


def _parse_task(item: dict[str, Any]) -> Task:
    task_id = item.get("id")
    title = item.get("title")
    if not isinstance(task_id, str) or not task_id.strip():
        raise ValueError("backlog.id must be a non-empty string")
    if not isinstance(title, str):
        raise TypeError("backlog.title must be a string")
    for text_field in ("description", "acceptanceCriteria"):
        value = item.get(text_field, "")
        if not isinstance(value, str):
            raise TypeError(f"backlog.{text_field} must be a string")
    resources = item.get("resources", [])
    if not isinstance(resources, list) or not all(isinstance(res, str) for res in resources):
        raise TypeError("backlog.resources must be an array of strings")

    return Task(
        task_id=task_id.strip(),
        title=title,
        description=item.get("description", ""),
        acceptance_criteria=item.get("acceptanceCriteria", ""),
        resources=tuple(res.strip() for res in resources if res.strip()),
        attributes=_parse_attributes(item),
    )


def _parse_attributes(item: dict[str, Any]) -> TaskAttributes | None:
    keys = ("complexity", "priority", "taskType", "researchLevel", "documentCount")
    if not any(key in item for key in keys):
        return None
    for key in keys[:4]:
        value = item.get(key)
        if value is not None and not isinstance(value, str):
            raise TypeError(f"backlog.{key} must be a string when provided")
    document_count = item.get("documentCount", 1)
    if isinstance(document_count, bool) or not isinstance(document_count, int):
        raise TypeError("backlog.documentCount must be an integer")
    if document_count < 0:
        raise ValueError("backlog.documentCount must be >= 0")
    return TaskAttributes(
        complexity=item.get("complexity") or "standard",
        priority=item.get("priority") or "medium",
        task_type=item.get("taskType"),
        research_level=item.get("researchLevel"),
        document_count=document_count,
    )


def work_package_to_payload(package: WorkPackage) -> dict[str, Any]:
    """Serialize a work package for an external worker."""

    return {
        "packageId": package.package_id,
        "workerId": package.worker_id,
        "clusterId": package.cluster_id,
        "description": package.description,
        "tasks": list(package.task_ids),
        "ownedResources": list(package.owned_resources),
        "readOnlyResources": list(package.read_only_resources),
        "budget": package.budget,
    }


def read_work_package(path: Path) -> WorkPackage:
    """Load and validate a work package written by the coordinator."""

    raw = load_json(path)
    package_id = raw.get("packageId")
    if not isinstance(package_id, str) or not package_id.strip():
        raise ValueError("work_package.packageId must be a non-empty string")
    for list_field in ("tasks", "ownedResources", "readOnlyResources"):
        value = raw.get(list_field, [])
        if not isinstance(value, list) or not all(isinstance(entry, str) for entry in value):
            raise TypeError(f"work_package.{list_field} must be an array of strings")
    budget = raw.get("budget", 0)
    if isinstance(budget, bool) or not isinstance(budget, int):
        raise TypeError("work_package.budget must be an integer")
    return WorkPackage(
        package_id=package_id,
        description=str(raw.get("description", "")),
        task_ids=tuple(raw.get("tasks", [])),
        owned_resources=tuple(raw.get("ownedResources", [])),
        read_only_resources=tuple(raw.get("readOnlyResources", [])),
        budget=budget,
        worker_id=raw.get("workerId"),
        cluster_id=raw.get("clusterId"),
    )


def write_worker_outcome(path: Path, outcome: WorkerOutcome) -> None:
    """Serialize a worker result file (written by the external agent)."""

    write_json(
        path,
        {
            "outputs": list(outcome.outputs),
            "resource_usage": outcome.resource_usage,
            "payload": outcome.payload,
        },
    )


def read_worker_outcome(path: Path) -> WorkerOutcome:
    """Deserialize and validate a worker result file."""

    raw = load_json(path)
    outputs = raw.get("outputs", [])
    usage = raw.get("resource_usage", 0)
    payload = raw.get("payload", {})
    if not isinstance(outputs, list) or not all(isinstance(entry, str) for entry in outputs):
        raise TypeError("worker_result.outputs must be an array of strings")
    if isinstance(usage, bool) or not isinstance(usage, int) or usage < 0:
        raise ValueError("worker_result.resource_usage must be a non-negative integer")
    if not isinstance(payload, dict):
        raise TypeError("worker_result.payload must be an object")
    return WorkerOutcome(outputs=tuple(outputs), resource_usage=usage, payload=payload)


def registry_record_payload(
    *,
    worker_id: str,
    entry: ActiveWorker,
    outcome: WorkerOutcome | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    """Build one per-worker registry record."""

    payload: dict[str, Any] = {
        "workerId": worker_id,
        "taskDescription": entry.package.description,
        "startTime": entry.started_at.isoformat(),
        "outputs": list(outcome.outputs) if outcome is not None else [],
        "resourceUsage": outcome.resource_usage if outcome is not None else 0,
        "status": entry.status.value,
    }
    if entry.finished_at is not None:
        payload["endTime"] = entry.finished_at.isoformat()
    if error is not None:
        payload["error"] = error
    return payload


def status_record_to_payload(record: StatusRecord) -> dict[str, Any]:
    """Serialize the coordination status document."""

    return {
        "runId": record.run_id,
        "status": record.status.value,
        "timestamp": record.timestamp.isoformat(),
        "completedTasks": list(record.completed_tasks),
        "failedTasks": [
            {"task": failed.task_id, "error": failed.error} for failed in record.failed_tasks
        ],
        "conflicts": [
            {
                "resource": conflict.resource,
                "kind": conflict.kind,
                "workers": list(conflict.workers),
                "message": conflict.message,
            }
            for conflict in record.conflicts
        ],
        "sharedResourceUpdates": [
            {
                "resource": update.resource,
                "severity": update.severity.value,
                "status": update.status,
                "order": list(update.order),
                "contributors": list(update.contributors),
                "details": update.details,
            }
            for update in record.shared_resource_updates
        ],
    }


def write_status_record(path: Path, record: StatusRecord) -> None:
    """Rewrite the status document; failure is fatal for the run."""

    try:
        write_json_atomic(path, status_record_to_payload(record))
    except OSError as error:
        raise StatusWriteError(f"Failed to write coordination status to {path}: {error}") from error


def read_status_document(path: Path) -> dict[str, Any]:
    """Load a previously written status document."""

    raw = load_json(path)
    missing = [
        key
        for key in ("runId", "status", "timestamp", "completedTasks", "failedTasks")
        if key not in raw
    ]
    if missing:
        raise ValueError(f"Status document missing required fields: {', '.join(missing)}")
    return raw


def plan_to_payload(
    *,
    run_id: str,
    partition: Partition,
    packages: list[WorkPackage],
    task_budgets: dict[str, int],
    conflicts: list[dict[str, Any]],
    ambiguities: list[dict[str, Any]],
) -> dict[str, Any]:
    """Serialize the ownership plan of one run."""

    return {
        "runId": run_id,
        "clusters": [
            {
                "id": cluster.cluster_id,
                "tasks": list(cluster.task_ids),
                "ownedResources": list(cluster.owned_resources),
                "readOnlyResources": list(cluster.read_only_resources),
            }
            for cluster in partition.clusters
        ],
        "sequentialPlan": [
            {
                "resource": entry.resource,
                "severity": entry.severity.value,
                "resolution": entry.resolution,
                "order": list(entry.order),
            }
            for entry in partition.sequential_plan
        ],
        "overflowMerged": partition.overflow_merged,
        "postMergeOverlaps": [
            {"resource": overlap.resource, "clusters": list(overlap.cluster_ids)}
            for overlap in partition.post_merge_overlaps
        ],
        "workPackages": [work_package_to_payload(package) for package in packages],
        "taskBudgets": dict(task_budgets),
        "conflicts": conflicts,
        "ambiguities": ambiguities,
    }
