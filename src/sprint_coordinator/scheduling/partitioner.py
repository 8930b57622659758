"""Greedy ownership partitioning of tasks into conflict-free clusters."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sprint_coordinator.config import DEFAULT_READ_ONLY_RESOURCES
from sprint_coordinator.scheduling.models import (
    Cluster,
    DependencyAnalysis,
    OwnershipOverlap,
    Partition,
    SequentialResolution,
    Severity,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CLUSTERS = 3


@dataclass(slots=True)
class _Group:
    task_ids: list[str]
    resources: list[str] = field(default_factory=list)
    resource_set: set[str] = field(default_factory=set)

    def absorb(self, task_id: str, resources: Iterable[str]) -> None:
        self.task_ids.append(task_id)
        for resource in resources:
            if resource not in self.resource_set:
                self.resource_set.add(resource)
                self.resources.append(resource)


def partition_tasks(
    analysis: DependencyAnalysis,
    *,
    max_clusters: int = DEFAULT_MAX_CLUSTERS,
    read_only_resources: Sequence[str] = DEFAULT_READ_ONLY_RESOURCES,
) -> Partition:
    """Group tasks so that no resource is owned by two clusters.

    Tasks are taken in input order. Each unassigned task seeds a cluster that
    absorbs every remaining task whose resources intersect the cluster's
    resources, rescanning until nothing more is absorbed. Clusters beyond
    ``max_clusters`` are merged into the first cluster; nothing is dropped.
    """

    if max_clusters < 1:
        raise ValueError(f"max_clusters must be >= 1, got {max_clusters}")

    groups = _group_overlapping_tasks(analysis)
    overflow = max(0, len(groups) - max_clusters)
    if overflow:
        logger.warning(
            "Partition produced %d clusters, limit is %d; merging %d into cluster 1",
            len(groups),
            max_clusters,
            overflow,
        )
        head = groups[0]
        for extra in groups[max_clusters:]:
            for task_id in extra.task_ids:
                head.absorb(task_id, analysis.graph.resources_for(task_id))
        groups = groups[:max_clusters]

    positions = {task.task_id: index for index, task in enumerate(analysis.tasks)}
    clusters = [
        Cluster(
            cluster_id=index,
            task_ids=sorted(group.task_ids, key=positions.__getitem__),
            owned_resources=list(group.resources),
            read_only_resources=read_only_for(group.resources, read_only_resources),
        )
        for index, group in enumerate(groups, start=1)
    ]

    # Groups are resource-disjoint and merging only unions whole groups, so this
    # re-check is expected to find nothing; any hit is deferred to the
    # sequential phase rather than trusted.
    overlaps = find_ownership_overlaps(clusters)
    for overlap in overlaps:
        logger.warning(
            "Resource %s owned by clusters %s after merge; deferring to sequential phase",
            overlap.resource,
            ", ".join(str(cluster_id) for cluster_id in overlap.cluster_ids),
        )

    return Partition(
        clusters=clusters,
        sequential_plan=build_sequential_plan(analysis, overlaps),
        overflow_merged=overflow,
        post_merge_overlaps=overlaps,
    )


def _group_overlapping_tasks(analysis: DependencyAnalysis) -> list[_Group]:
    graph = analysis.graph
    remaining = [task.task_id for task in analysis.tasks]
    groups: list[_Group] = []

    while remaining:
        seed = remaining.pop(0)
        group = _Group(task_ids=[])
        group.absorb(seed, graph.resources_for(seed))

        absorbed = True
        while absorbed:
            absorbed = False
            for candidate in list(remaining):
                if group.resource_set.isdisjoint(graph.resources_for(candidate)):
                    continue
                remaining.remove(candidate)
                group.absorb(candidate, graph.resources_for(candidate))
                absorbed = True
        groups.append(group)

    return groups


def read_only_for(owned_resources: Sequence[str], patterns: Sequence[str]) -> list[str]:
    """Advisory read-only paths for a cluster; a convention, not access control."""

    return [
        pattern for pattern in patterns if not any(pattern in owned for owned in owned_resources)
    ]


def find_ownership_overlaps(clusters: Sequence[Cluster]) -> list[OwnershipOverlap]:
    """Resources owned by more than one cluster, in first-seen order."""

    owners: dict[str, list[int]] = {}
    for cluster in clusters:
        for resource in cluster.owned_resources:
            cluster_ids = owners.setdefault(resource, [])
            if cluster.cluster_id not in cluster_ids:
                cluster_ids.append(cluster.cluster_id)
    return [
        OwnershipOverlap(resource=resource, cluster_ids=tuple(cluster_ids))
        for resource, cluster_ids in owners.items()
        if len(cluster_ids) > 1
    ]


def build_sequential_plan(
    analysis: DependencyAnalysis,
    overlaps: Sequence[OwnershipOverlap] = (),
) -> list[SequentialResolution]:
    """Shared resources resolved one at a time after the parallel phase.

    Order follows resource discovery; within a resource, contributors follow
    task discovery order.
    """

    plan = [
        SequentialResolution(
            resource=conflict.resource,
            severity=conflict.severity,
            order=conflict.tasks,
        )
        for conflict in analysis.conflicts
    ]
    planned = {entry.resource for entry in plan}
    for overlap in overlaps:
        if overlap.resource in planned:
            continue
        plan.append(
            SequentialResolution(
                resource=overlap.resource,
                severity=Severity.HIGH,
                order=analysis.graph.tasks_for(overlap.resource),
            ),
        )
        planned.add(overlap.resource)
    return plan
