from __future__ import annotations

import logging

import allure
import pytest

from sprint_coordinator.scheduling.analyzer import analyze_dependencies
from sprint_coordinator.scheduling.models import Cluster, Severity
from sprint_coordinator.scheduling.partitioner import (
    build_sequential_plan,
    find_ownership_overlaps,
    partition_tasks,
    read_only_for,
)

pytestmark = [
    allure.epic("Scheduling Pipeline"),
    allure.feature("Ownership Partitioning"),
]


def _partition(tasks, **kwargs):
    return partition_tasks(analyze_dependencies(tasks), **kwargs)


def test_disjoint_tasks_get_one_cluster_each(task_factory) -> None:
    tasks = [task_factory(f"T{index}", f"src/file_{index}.js") for index in range(1, 4)]

    partition = _partition(tasks)

    assert [cluster.task_ids for cluster in partition.clusters] == [["T1"], ["T2"], ["T3"]]
    assert [cluster.cluster_id for cluster in partition.clusters] == [1, 2, 3]
    assert partition.sequential_plan == []
    assert partition.overflow_merged == 0


def test_tasks_sharing_a_resource_land_in_the_same_cluster(task_factory) -> None:
    tasks = [
        task_factory("T1", "a.js"),
        task_factory("T2", "b.js"),
        task_factory("T3", "a.js", "b.js"),
        task_factory("T4", "c.js"),
    ]

    partition = _partition(tasks)

    assert [cluster.task_ids for cluster in partition.clusters] == [["T1", "T2", "T3"], ["T4"]]
    assert partition.clusters[0].owned_resources == ["a.js", "b.js"]
    assert partition.cluster_of("T2") is partition.clusters[0]


def test_no_resource_is_owned_by_two_clusters(task_factory) -> None:
    tasks = [
        task_factory("T1", "a.js", "shared/x.js"),
        task_factory("T2", "b.js"),
        task_factory("T3", "c.js", "shared/x.js"),
        task_factory("T4", "b.js", "d.js"),
        task_factory("T5", "e.js"),
        task_factory("T6"),
    ]

    partition = _partition(tasks, max_clusters=10)

    assert find_ownership_overlaps(partition.clusters) == []
    assigned = [task_id for cluster in partition.clusters for task_id in cluster.task_ids]
    assert sorted(assigned) == ["T1", "T2", "T3", "T4", "T5", "T6"]


def test_overflow_merges_into_first_cluster_without_dropping_work(task_factory, caplog) -> None:
    tasks = [task_factory(f"T{index}", f"src/file_{index}.js") for index in range(1, 6)]

    with caplog.at_level(logging.WARNING):
        partition = _partition(tasks, max_clusters=3)

    assert [cluster.task_ids for cluster in partition.clusters] == [
        ["T1", "T4", "T5"],
        ["T2"],
        ["T3"],
    ]
    assert partition.clusters[0].owned_resources == [
        "src/file_1.js",
        "src/file_4.js",
        "src/file_5.js",
    ]
    assert partition.overflow_merged == 2
    assert partition.post_merge_overlaps == []
    assert "merging 2 into cluster 1" in caplog.text


def test_critical_resource_is_sequential_even_inside_one_cluster(task_factory) -> None:
    tasks = [
        task_factory("T1", "package.json", "src/a.js"),
        task_factory("T2", "src/b.js", "package.json"),
    ]

    partition = _partition(tasks)

    plan = partition.sequential_plan
    assert len(partition.clusters) == 1
    assert [(entry.resource, entry.severity, entry.order) for entry in plan] == [
        ("package.json", Severity.CRITICAL, ("T1", "T2")),
    ]


def test_sequential_plan_adds_post_merge_overlaps_as_high(task_factory) -> None:
    analysis = analyze_dependencies([task_factory("T1", "x.js"), task_factory("T2", "y.js")])
    overlaps = find_ownership_overlaps(
        [
            Cluster(cluster_id=1, task_ids=["T1"], owned_resources=["x.js"]),
            Cluster(cluster_id=2, task_ids=["T2"], owned_resources=["x.js", "y.js"]),
        ],
    )

    plan = build_sequential_plan(analysis, overlaps)

    assert [(overlap.resource, overlap.cluster_ids) for overlap in overlaps] == [("x.js", (1, 2))]
    assert [(entry.resource, entry.severity, entry.order) for entry in plan] == [
        ("x.js", Severity.HIGH, ("T1",)),
    ]


def test_read_only_patterns_skip_owned_areas() -> None:
    patterns = ("/config/*", "/utils/*", "/types/*", "/constants/*")

    assert read_only_for(["src/app.js"], patterns) == list(patterns)
    assert read_only_for(["src/utils/*.js"], patterns) == ["/config/*", "/types/*", "/constants/*"]


def test_partition_attaches_read_only_resources(task_factory) -> None:
    partition = _partition(
        [task_factory("T1", "a.js")],
        read_only_resources=("/shared/*",),
    )

    assert partition.clusters[0].read_only_resources == ["/shared/*"]


def test_max_clusters_must_be_positive(task_factory) -> None:
    with pytest.raises(ValueError, match="max_clusters"):
        _partition([task_factory("T1", "a.js")], max_clusters=0)


def test_partition_of_empty_backlog() -> None:
    partition = _partition([])

    assert partition.clusters == []
    assert partition.sequential_plan == []


def test_overflow_merge_keeps_ownership_disjoint(task_factory) -> None:
    tasks = [
        task_factory("T1", "src/a.js", "src/shared.js"),
        task_factory("T2", "src/b.js"),
        task_factory("T3", "src/shared.js", "src/c.js"),
        task_factory("T4", "src/d.js"),
    ]

    partition = _partition(tasks, max_clusters=2)

    assert partition.overflow_merged == 1
    assert partition.post_merge_overlaps == []
    for resource in ("src/a.js", "src/b.js", "src/c.js", "src/d.js", "src/shared.js"):
        assert len(partition.owners_of(resource)) == 1
