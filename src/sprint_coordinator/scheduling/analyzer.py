"""Deterministic resource extraction and conflict detection over tasks."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from sprint_coordinator.config import DEFAULT_CRITICAL_RESOURCES
from sprint_coordinator.scheduling.models import (
    Conflict,
    DependencyAnalysis,
    ExtractionAmbiguity,
    Severity,
    Task,
    UsageGraph,
)

logger = logging.getLogger(__name__)

HIGH_SEVERITY_MIN_TASKS = 3

_EXTENSIONS = r"(?:json|jsx|js|tsx|ts|css|html|py|ya?ml|sql)"

_ACTION_PATH = re.compile(
    rf"(?:update|modify|create|implement|add)\s+(?:in\s+)?([/\w\-.]+\.{_EXTENSIONS})\b",
    re.IGNORECASE,
)
_LABELLED_PATH = re.compile(r"(?:file|component|module|class):\s*([/\w\-.]+)", re.IGNORECASE)
_NESTED_PATH = re.compile(rf"([/\w\-]+/[\w\-.]+\.{_EXTENSIONS})\b", re.IGNORECASE)

_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (_ACTION_PATH, _LABELLED_PATH, _NESTED_PATH)

# Ordered: the first rule matching the task title wins.
_TITLE_INFERENCE_RULES: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (
        re.compile(r"\b(?:api|endpoints?)\b"),
        ("/api/routes.js", "/api/controllers/*.js"),
    ),
    (
        re.compile(r"\b(?:ui|components?)\b"),
        ("/components/*.jsx", "/styles/*.css"),
    ),
    (
        re.compile(r"\bauth"),
        ("/api/auth/*.js", "/middleware/auth.js"),
    ),
    (
        re.compile(r"\b(?:database|models?)\b"),
        ("/models/*.js", "/db/migrations/*.js"),
    ),
)


def extract_resources(task: Task) -> tuple[str, ...]:
    """Resources a task touches: explicit hints, then text patterns, then title keywords."""

    if task.resources:
        return _dedupe(task.resources)

    found: list[str] = []
    for pattern in _PATH_PATTERNS:
        for match in pattern.finditer(task.text):
            candidate = match.group(1).rstrip(".")
            if candidate and candidate not in found:
                found.append(candidate)
    if found:
        return tuple(found)

    return infer_resources_from_title(task.title)


def infer_resources_from_title(title: str) -> tuple[str, ...]:
    """Keyword-based fallback inference over the lower-cased title."""

    normalized = title.lower()
    for pattern, resources in _TITLE_INFERENCE_RULES:
        if pattern.search(normalized):
            return resources
    return ()


def assess_severity(
    resource: str,
    task_ids: Sequence[str],
    critical_resources: Iterable[str] = DEFAULT_CRITICAL_RESOURCES,
) -> Severity:
    """Severity of a resource shared by ``task_ids``."""

    if any(critical in resource for critical in critical_resources):
        return Severity.CRITICAL
    if len(task_ids) >= HIGH_SEVERITY_MIN_TASKS:
        return Severity.HIGH
    return Severity.MEDIUM


def analyze_dependencies(
    tasks: Sequence[Task],
    *,
    critical_resources: Iterable[str] = DEFAULT_CRITICAL_RESOURCES,
) -> DependencyAnalysis:
    """Build the usage graph and conflict list for ``tasks`` in input order."""

    critical = tuple(critical_resources)
    resources_by_task: dict[str, tuple[str, ...]] = {}
    ambiguities: list[ExtractionAmbiguity] = []

    for task in tasks:
        if task.task_id in resources_by_task:
            raise ValueError(f"Duplicate task id: {task.task_id!r}")
        resources = extract_resources(task)
        resources_by_task[task.task_id] = resources
        if not resources:
            logger.warning(
                "No resources extracted for task %s; scheduling unconstrained",
                task.task_id,
            )
            ambiguities.append(
                ExtractionAmbiguity(
                    task_id=task.task_id,
                    reason="no_resources_extracted",
                ),
            )

    graph = UsageGraph(resources_by_task)
    conflicts = [
        Conflict(
            resource=resource,
            tasks=graph.tasks_for(resource),
            severity=assess_severity(resource, graph.tasks_for(resource), critical),
        )
        for resource in graph.shared_resources()
    ]
    if conflicts:
        logger.info(
            "Dependency analysis: %d tasks, %d resources, %d conflicts (%d critical)",
            len(resources_by_task),
            len(graph.tasks_by_resource),
            len(conflicts),
            sum(1 for conflict in conflicts if conflict.severity == Severity.CRITICAL),
        )

    return DependencyAnalysis(
        tasks=tuple(tasks),
        graph=graph,
        conflicts=conflicts,
        ambiguities=ambiguities,
    )


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return tuple(deduped)
