"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

from sprint_coordinator.config import ExecutionSettings, Settings
from sprint_coordinator.scheduling.backend.base import WorkerExecutionError, WorkerRequest
from sprint_coordinator.scheduling.models import Task, TaskAttributes, WorkerOutcome, WorkPackage

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m sprint_coordinator.scheduling.backend.echo_agent "
    "--work-package {work_package} --result-file {result_file}"
)


class SimulatedWorkerService:
    """Timer-based in-process worker: sleeps, then claims its owned resources."""

    def __init__(
        self,
        *,
        delays: dict[str, float] | None = None,
        failing: tuple[str, ...] = (),
        usage: dict[str, int] | None = None,
        outputs: dict[str, tuple[str, ...]] | None = None,
        default_delay: float = 0.01,
        default_usage: int = 1_000,
    ) -> None:
        self.delays = delays or {}
        self.failing = set(failing)
        self.usage = usage or {}
        self.outputs = outputs or {}
        self.default_delay = default_delay
        self.default_usage = default_usage
        self.started: list[str] = []
        self.finished: list[str] = []
        self.events: list[str] = []
        self.cancel_observed: dict[str, bool] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, request: WorkerRequest) -> WorkerOutcome:
        package = request.package
        self.started.append(package.package_id)
        self.events.append(f"start:{package.package_id}")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(package.package_id, self.default_delay))
            self.events.append(f"done:{package.package_id}")
        finally:
            self.in_flight -= 1
            if request.cancel_requested is not None:
                self.cancel_observed[package.package_id] = request.cancel_requested()
        if package.package_id in self.failing:
            raise WorkerExecutionError(f"{package.package_id} exploded", transient=False)
        self.finished.append(package.package_id)
        return WorkerOutcome(
            outputs=self.outputs.get(package.package_id, package.owned_resources),
            resource_usage=self.usage.get(package.package_id, self.default_usage),
            payload={"package": package.package_id},
        )


def make_package(index: int, *, resources: tuple[str, ...] | None = None, **kwargs) -> WorkPackage:
    task_id = f"T{index}"
    return WorkPackage(
        package_id=f"pkg-{index}",
        description=f"Task {index}",
        task_ids=kwargs.pop("task_ids", (task_id,)),
        owned_resources=resources if resources is not None else (f"src/module_{index}.js",),
        budget=kwargs.pop("budget", 10_000),
        **kwargs,
    )


def make_task(task_id: str, *resources: str, title: str | None = None, **attributes) -> Task:
    return Task(
        task_id=task_id,
        title=title or f"Task {task_id}",
        resources=tuple(resources),
        attributes=TaskAttributes(**attributes) if attributes else None,
    )


@pytest.fixture()
def simulated_service():
    """Factory for timer-based worker doubles."""

    return SimulatedWorkerService


@pytest.fixture()
def package_factory():
    return make_package


@pytest.fixture()
def task_factory():
    return make_task


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        output_root=tmp_path / "runs",
        registry_root=tmp_path / "registries",
        execution=ExecutionSettings(
            worker_timeout_seconds=5.0,
            command_template=ECHO_AGENT_COMMAND_TEMPLATE,
            workdir_root=tmp_path / "workdir",
        ),
    )


@pytest.fixture()
def echo_agent_template() -> str:
    return ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def backlog_file(tmp_path: Path) -> Path:
    """Five-task backlog: two share package.json, one has no resources."""

    path = tmp_path / "backlog.json"
    path.write_text(
        json.dumps(
            {
                "tasks": [
                    {
                        "id": "T1",
                        "title": "Add user endpoint",
                        "description": "Update src/api/users.js and add package.json scripts",
                        "acceptanceCriteria": "",
                        "complexity": "complex",
                        "priority": "high",
                    },
                    {
                        "id": "T2",
                        "title": "Add build script",
                        "description": "",
                        "acceptanceCriteria": "",
                        "resources": ["package.json", "scripts/build.js"],
                    },
                    {
                        "id": "T3",
                        "title": "Restyle header",
                        "description": "Modify src/styles/header.css",
                        "acceptanceCriteria": "",
                    },
                    {
                        "id": "T4",
                        "title": "Write release notes",
                        "description": "Summarize the sprint",
                        "acceptanceCriteria": "",
                        "taskType": "documentation",
                    },
                    {
                        "id": "T5",
                        "title": "Footer links",
                        "description": "",
                        "acceptanceCriteria": "",
                        "resources": ["src/components/footer.jsx"],
                    },
                ],
            },
        ),
        "utf-8",
    )
    return path
