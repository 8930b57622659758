"""Domain models for task scheduling, execution and reconciliation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class Severity(str, Enum):
    """Conflict severity for a resource shared by several tasks."""

    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkerStatus(str, Enum):
    """Lifecycle states of one launched worker."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ResultStatus(str, Enum):
    """Outcome of one worker as seen by the caller."""

    SUCCESS = "success"
    ERROR = "error"


class RunStatus(str, Enum):
    """Overall outcome of a scheduling run."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TaskAttributes:
    """Attributes that drive the advisory budget of a task."""

    complexity: str = "standard"
    priority: str = "medium"
    task_type: str | None = None
    research_level: str | None = None
    document_count: int = 1


@dataclass(frozen=True, slots=True)
class Task:
    """One unit of work planned for the sprint."""

    task_id: str
    title: str
    description: str = ""
    acceptance_criteria: str = ""
    resources: tuple[str, ...] = ()
    attributes: TaskAttributes | None = None

    @property
    def text(self) -> str:
        """Free text used for resource inference."""

        return f"{self.title} {self.description} {self.acceptance_criteria}"


@dataclass(slots=True)
class Conflict:
    """Resource touched by two or more tasks."""

    resource: str
    tasks: tuple[str, ...]
    severity: Severity


@dataclass(slots=True)
class ExtractionAmbiguity:
    """Task for which no resource could be extracted or inferred."""

    task_id: str
    reason: str


class UsageGraph:
    """Bidirectional resource <-> task mapping, read-only after construction."""

    __slots__ = ("_resources_by_task", "_tasks_by_resource")

    def __init__(self, resources_by_task: Mapping[str, tuple[str, ...]]) -> None:
        by_task: dict[str, tuple[str, ...]] = {}
        by_resource: dict[str, list[str]] = {}
        for task_id, resources in resources_by_task.items():
            by_task[task_id] = tuple(resources)
            for resource in resources:
                users = by_resource.setdefault(resource, [])
                if task_id not in users:
                    users.append(task_id)
        self._resources_by_task = MappingProxyType(by_task)
        self._tasks_by_resource = MappingProxyType(
            {resource: tuple(users) for resource, users in by_resource.items()},
        )

    @property
    def resources_by_task(self) -> Mapping[str, tuple[str, ...]]:
        return self._resources_by_task

    @property
    def tasks_by_resource(self) -> Mapping[str, tuple[str, ...]]:
        return self._tasks_by_resource

    def resources_for(self, task_id: str) -> tuple[str, ...]:
        return self._resources_by_task.get(task_id, ())

    def tasks_for(self, resource: str) -> tuple[str, ...]:
        return self._tasks_by_resource.get(resource, ())

    def shared_resources(self) -> tuple[str, ...]:
        """Resources used by two or more tasks, in first-discovery order."""

        return tuple(
            resource for resource, users in self._tasks_by_resource.items() if len(users) > 1
        )


@dataclass(slots=True)
class DependencyAnalysis:
    """Output of dependency analysis over one task list."""

    tasks: tuple[Task, ...]
    graph: UsageGraph
    conflicts: list[Conflict] = field(default_factory=list)
    ambiguities: list[ExtractionAmbiguity] = field(default_factory=list)

    def conflict_for(self, resource: str) -> Conflict | None:
        for conflict in self.conflicts:
            if conflict.resource == resource:
                return conflict
        return None


@dataclass(slots=True)
class Cluster:
    """Tasks granted exclusive ownership of resources for the parallel phase."""

    cluster_id: int
    task_ids: list[str]
    owned_resources: list[str]
    read_only_resources: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SequentialResolution:
    """Shared resource deferred to the post-parallel sequential phase."""

    resource: str
    severity: Severity
    order: tuple[str, ...]
    resolution: str = "sequential"


@dataclass(slots=True)
class OwnershipOverlap:
    """Resource owned by more than one cluster after overflow merging."""

    resource: str
    cluster_ids: tuple[int, ...]


@dataclass(slots=True)
class Partition:
    """Conflict-free cluster assignment plus the sequential resolution plan."""

    clusters: list[Cluster]
    sequential_plan: list[SequentialResolution] = field(default_factory=list)
    overflow_merged: int = 0
    post_merge_overlaps: list[OwnershipOverlap] = field(default_factory=list)

    def cluster_of(self, task_id: str) -> Cluster | None:
        for cluster in self.clusters:
            if task_id in cluster.task_ids:
                return cluster
        return None

    def owners_of(self, resource: str) -> tuple[int, ...]:
        return tuple(
            cluster.cluster_id for cluster in self.clusters if resource in cluster.owned_resources
        )


@dataclass(slots=True)
class BudgetWarning:
    """Advisory budget warning emitted by usage tracking."""

    kind: str
    message: str
    created_at: datetime
    tokens_remaining: int | None = None
    overage: int | None = None


@dataclass(slots=True)
class Budget:
    """Per-worker allocation and usage; usage only grows."""

    allocated: int
    used: int = 0
    warnings: list[BudgetWarning] = field(default_factory=list)

    @property
    def usage_ratio(self) -> float:
        if self.allocated <= 0:
            return 0.0 if self.used == 0 else float("inf")
        return self.used / self.allocated


@dataclass(slots=True)
class WorkPackage:
    """Unit handed to one worker: one cluster with its budget."""

    package_id: str
    description: str
    task_ids: tuple[str, ...]
    owned_resources: tuple[str, ...] = ()
    read_only_resources: tuple[str, ...] = ()
    budget: int = 0
    worker_id: str | None = None
    cluster_id: int | None = None
    fallback: str | None = None


@dataclass(slots=True)
class WorkerOutcome:
    """Successful result reported by the Worker Execution Service."""

    outputs: tuple[str, ...] = ()
    resource_usage: int = 0
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WorkerResult:
    """Exactly one result per launched worker."""

    package_id: str
    worker_id: str
    status: ResultStatus
    task_ids: tuple[str, ...] = ()
    outcome: WorkerOutcome | None = None
    error: str | None = None
    fallback: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS


@dataclass(slots=True)
class ActiveWorker:
    """Active-worker table entry."""

    package: WorkPackage
    started_at: datetime
    status: WorkerStatus
    finished_at: datetime | None = None


@dataclass(slots=True)
class FailedTask:
    """Task that belonged to a failed worker."""

    task_id: str
    error: str


@dataclass(slots=True)
class SharedResourceUpdate:
    """Result of applying one shared resource in the sequential phase."""

    resource: str
    severity: Severity
    status: str
    order: tuple[str, ...]
    contributors: tuple[str, ...]
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IntegrationConflict:
    """Residual conflict found after execution; requires external resolution."""

    resource: str
    kind: str
    workers: tuple[str, ...]
    message: str


@dataclass(slots=True)
class StatusRecord:
    """Authoritative outcome of one scheduling run."""

    run_id: str
    status: RunStatus
    timestamp: datetime
    completed_tasks: list[str] = field(default_factory=list)
    failed_tasks: list[FailedTask] = field(default_factory=list)
    conflicts: list[IntegrationConflict] = field(default_factory=list)
    shared_resource_updates: list[SharedResourceUpdate] = field(default_factory=list)
