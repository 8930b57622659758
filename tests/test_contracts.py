from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from sprint_coordinator.scheduling.contracts import (
    load_json,
    read_status_document,
    read_tasks,
    read_work_package,
    read_worker_outcome,
    registry_record_payload,
    work_package_to_payload,
    write_json,
    write_status_record,
)
from sprint_coordinator.scheduling.models import (
    ActiveWorker,
    FailedTask,
    IntegrationConflict,
    RunStatus,
    SharedResourceUpdate,
    Severity,
    StatusRecord,
    TaskAttributes,
    WorkerOutcome,
    WorkerStatus,
)

pytestmark = [
    allure.epic("Coordinator Runtime"),
    allure.feature("File Contracts"),
]

STARTED = datetime(2026, 2, 1, 9, 0, tzinfo=UTC)


def _backlog(tmp_path: Path, tasks) -> Path:
    path = tmp_path / "backlog.json"
    path.write_text(json.dumps({"tasks": tasks}), "utf-8")
    return path


def test_read_tasks_parses_attributes_only_when_present(backlog_file: Path) -> None:
    tasks = read_tasks(backlog_file)

    assert [task.task_id for task in tasks] == ["T1", "T2", "T3", "T4", "T5"]
    assert tasks[0].attributes == TaskAttributes(complexity="complex", priority="high")
    assert tasks[1].attributes is None
    assert tasks[1].resources == ("package.json", "scripts/build.js")
    assert tasks[3].attributes == TaskAttributes(task_type="documentation")


@pytest.mark.parametrize(
    ("tasks", "error", "match"),
    [
        ([{"id": "", "title": "x"}], ValueError, "backlog.id"),
        ([{"id": "T1", "title": 3}], TypeError, "backlog.title"),
        ([{"id": "T1", "title": "x", "resources": "a.js"}], TypeError, "backlog.resources"),
        ([{"id": "T1", "title": "x", "documentCount": "2"}], TypeError, "documentCount"),
        ([{"id": "T1", "title": "x", "priority": 5}], TypeError, "backlog.priority"),
        (
            [{"id": "T1", "title": "x"}, {"id": "T1", "title": "y"}],
            ValueError,
            "Duplicate task id",
        ),
        (["T1"], TypeError, "must be an object"),
    ],
)
def test_read_tasks_rejects_invalid_backlog(tmp_path: Path, tasks, error, match) -> None:
    with pytest.raises(error, match=match):
        read_tasks(_backlog(tmp_path, tasks))


def test_read_tasks_requires_tasks_array(tmp_path: Path) -> None:
    path = tmp_path / "backlog.json"
    path.write_text(json.dumps({"items": []}), "utf-8")

    with pytest.raises(TypeError, match="backlog.tasks"):
        read_tasks(path)


def test_load_json_rejects_non_object(tmp_path: Path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", "utf-8")

    with pytest.raises(TypeError, match="Expected JSON object"):
        load_json(path)


def test_work_package_payload_is_readable_by_workers(tmp_path: Path, package_factory) -> None:
    package = package_factory(3, worker_id="w-3", cluster_id=2)
    path = tmp_path / "work_package.json"
    write_json(path, work_package_to_payload(package))

    loaded = read_work_package(path)

    assert loaded.package_id == "pkg-3"
    assert loaded.worker_id == "w-3"
    assert loaded.cluster_id == 2
    assert loaded.task_ids == ("T3",)
    assert loaded.owned_resources == ("src/module_3.js",)
    assert loaded.budget == 10_000


@pytest.mark.parametrize(
    ("payload", "error"),
    [
        ({"outputs": "a.js"}, TypeError),
        ({"outputs": [], "resource_usage": -1}, ValueError),
        ({"outputs": [], "resource_usage": True}, ValueError),
        ({"outputs": [], "payload": []}, TypeError),
    ],
)
def test_read_worker_outcome_validates(tmp_path: Path, payload, error) -> None:
    path = tmp_path / "worker_result.json"
    path.write_text(json.dumps(payload), "utf-8")

    with pytest.raises(error):
        read_worker_outcome(path)


def test_registry_record_payload(package_factory) -> None:
    entry = ActiveWorker(
        package=package_factory(1),
        started_at=STARTED,
        status=WorkerStatus.RUNNING,
    )
    running = registry_record_payload(worker_id="w-1", entry=entry)

    entry.status = WorkerStatus.COMPLETED
    entry.finished_at = STARTED.replace(minute=5)
    done = registry_record_payload(
        worker_id="w-1",
        entry=entry,
        outcome=WorkerOutcome(outputs=("src/module_1.js",), resource_usage=42),
    )

    assert running == {
        "workerId": "w-1",
        "taskDescription": "Task 1",
        "startTime": "2026-02-01T09:00:00+00:00",
        "outputs": [],
        "resourceUsage": 0,
        "status": "running",
    }
    assert done["endTime"] == "2026-02-01T09:05:00+00:00"
    assert done["outputs"] == ["src/module_1.js"]
    assert done["resourceUsage"] == 42
    assert done["status"] == "completed"


def test_status_record_is_fully_rewritten(tmp_path: Path) -> None:
    path = tmp_path / "run-1" / "coordination-status.json"
    record = StatusRecord(
        run_id="run-1",
        status=RunStatus.PARTIAL,
        timestamp=STARTED,
        completed_tasks=["T1"],
        failed_tasks=[FailedTask(task_id="T2", error="boom")],
        conflicts=[
            IntegrationConflict(
                resource="README.md",
                kind="duplicate_output",
                workers=("w-1", "w-2"),
                message="Claimed by 2 workers",
            ),
        ],
        shared_resource_updates=[
            SharedResourceUpdate(
                resource="package.json",
                severity=Severity.CRITICAL,
                status="applied",
                order=("T1",),
                contributors=("w-1",),
            ),
        ],
    )

    write_status_record(path, record)
    record.status = RunStatus.COMPLETED
    record.failed_tasks = []
    write_status_record(path, record)

    document = read_status_document(path)
    assert document["status"] == "completed"
    assert document["failedTasks"] == []
    assert document["conflicts"][0]["workers"] == ["w-1", "w-2"]
    assert document["sharedResourceUpdates"][0]["severity"] == "critical"
    assert sorted(entry.name for entry in path.parent.iterdir()) == ["coordination-status.json"]


def test_read_status_document_requires_core_fields(tmp_path: Path) -> None:
    path = tmp_path / "coordination-status.json"
    path.write_text(json.dumps({"runId": "run-1", "status": "completed"}), "utf-8")

    with pytest.raises(ValueError, match="timestamp, completedTasks, failedTasks"):
        read_status_document(path)
