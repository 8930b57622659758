from __future__ import annotations

import logging

import allure
import pytest

from sprint_coordinator.scheduling.analyzer import (
    analyze_dependencies,
    assess_severity,
    extract_resources,
    infer_resources_from_title,
)
from sprint_coordinator.scheduling.models import Severity, Task

pytestmark = [
    allure.epic("Scheduling Pipeline"),
    allure.feature("Dependency Analysis"),
]


def test_explicit_resources_win_over_text_and_are_deduplicated() -> None:
    task = Task(
        task_id="T1",
        title="API cleanup",
        description="Update src/api/users.js",
        resources=("src/db.js", "src/db.js", "src/cache.js"),
    )

    assert extract_resources(task) == ("src/db.js", "src/cache.js")


def test_text_patterns_extract_paths_in_first_match_order() -> None:
    task = Task(
        task_id="T1",
        title="Add user endpoint",
        description="Update src/api/users.js and add package.json scripts.",
        acceptance_criteria="Tests live in tests/api/users.test.js.",
    )

    assert extract_resources(task) == (
        "src/api/users.js",
        "package.json",
        "tests/api/users.test.js",
    )


def test_labelled_paths_are_extracted() -> None:
    task = Task(task_id="T1", title="Refactor", description="component: Header")

    assert extract_resources(task) == ("Header",)


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Build REST API for orders", ("/api/routes.js", "/api/controllers/*.js")),
        ("New checkout UI", ("/components/*.jsx", "/styles/*.css")),
        ("Improve authentication flow", ("/api/auth/*.js", "/middleware/auth.js")),
        ("Normalize database indexes", ("/models/*.js", "/db/migrations/*.js")),
        ("API for UI components", ("/api/routes.js", "/api/controllers/*.js")),
    ],
)
def test_title_keywords_infer_resources(title: str, expected: tuple[str, ...]) -> None:
    assert infer_resources_from_title(title) == expected


def test_title_inference_requires_word_boundaries() -> None:
    assert infer_resources_from_title("Rapid prototyping session") == ()


def test_severity_rules() -> None:
    assert assess_severity("src/package.json", ("T1", "T2")) == Severity.CRITICAL
    assert assess_severity("src/a.js", ("T1", "T2", "T3")) == Severity.HIGH
    assert assess_severity("src/a.js", ("T1", "T2")) == Severity.MEDIUM


def test_analysis_reports_conflicts_in_discovery_order(task_factory) -> None:
    tasks = [
        task_factory("T1", "src/a.js", "package.json"),
        task_factory("T2", "src/b.js", "src/a.js"),
        task_factory("T3", "package.json", "src/a.js"),
        task_factory("T4", "src/c.js"),
    ]

    analysis = analyze_dependencies(tasks)

    assert [(item.resource, item.tasks, item.severity) for item in analysis.conflicts] == [
        ("src/a.js", ("T1", "T2", "T3"), Severity.HIGH),
        ("package.json", ("T1", "T3"), Severity.CRITICAL),
    ]
    assert analysis.graph.resources_for("T2") == ("src/b.js", "src/a.js")
    assert analysis.graph.tasks_for("src/c.js") == ("T4",)
    assert analysis.conflict_for("src/c.js") is None


def test_task_without_resources_is_flagged_not_raised(caplog) -> None:
    tasks = [Task(task_id="T1", title="Write release notes")]

    with caplog.at_level(logging.WARNING):
        analysis = analyze_dependencies(tasks)

    assert analysis.graph.resources_for("T1") == ()
    assert [(item.task_id, item.reason) for item in analysis.ambiguities] == [
        ("T1", "no_resources_extracted"),
    ]
    assert "No resources extracted for task T1" in caplog.text


def test_duplicate_task_ids_are_rejected(task_factory) -> None:
    with pytest.raises(ValueError, match="Duplicate task id"):
        analyze_dependencies([task_factory("T1", "a.js"), task_factory("T1", "b.js")])


def test_analysis_is_deterministic(task_factory) -> None:
    tasks = [task_factory(f"T{index}", "shared.js", f"own_{index}.js") for index in range(6)]

    first = analyze_dependencies(tasks)
    second = analyze_dependencies(tasks)

    assert first.conflicts == second.conflicts
    assert dict(first.graph.tasks_by_resource) == dict(second.graph.tasks_by_resource)


def test_custom_critical_list(task_factory) -> None:
    tasks = [task_factory("T1", "schema.sql"), task_factory("T2", "schema.sql")]

    analysis = analyze_dependencies(tasks, critical_resources=("schema.sql",))

    assert analysis.conflicts[0].severity == Severity.CRITICAL
