"""Runtime configuration for scheduling, execution and budgets."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CRITICAL_RESOURCES: tuple[str, ...] = (
    "package.json",
    "db/schema.js",
    "config/index.js",
)
DEFAULT_READ_ONLY_RESOURCES: tuple[str, ...] = (
    "/config/*",
    "/utils/*",
    "/types/*",
    "/constants/*",
)


@dataclass(slots=True)
class SchedulingSettings:
    """Dependency analysis and ownership partitioning settings."""

    max_clusters: int = 3
    critical_resources: tuple[str, ...] = DEFAULT_CRITICAL_RESOURCES
    read_only_resources: tuple[str, ...] = DEFAULT_READ_ONLY_RESOURCES


@dataclass(slots=True)
class ExecutionSettings:
    """Worker fan-out settings."""

    max_concurrent: int = 5
    worker_timeout_seconds: float | None = 300.0
    cancel_on_timeout: bool = False
    command_template: str = ""
    workdir_root: Path = Path(".sprint_coordinator/workdir")


@dataclass(slots=True)
class BudgetSettings:
    """Advisory resource budget settings."""

    base_allocation: int = 10_000
    warning_threshold: float = 0.8
    session_limit: int = 100_000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    output_root: Path = Path(".sprint_coordinator/runs")
    registry_root: Path = Path(".sprint_coordinator/registries")
    scheduling: SchedulingSettings = field(default_factory=SchedulingSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    budget: BudgetSettings = field(default_factory=BudgetSettings)

    @classmethod
    def from_env(cls, output_root: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local runs."""

        return cls(
            output_root=output_root
            or Path(os.getenv("SPRINT_COORDINATOR_OUTPUT_ROOT", ".sprint_coordinator/runs")),
            registry_root=Path(
                os.getenv("SPRINT_COORDINATOR_REGISTRY_ROOT", ".sprint_coordinator/registries"),
            ),
            scheduling=SchedulingSettings(
                max_clusters=int(os.getenv("SPRINT_COORDINATOR_MAX_CLUSTERS", "3")),
                critical_resources=_env_csv(
                    "SPRINT_COORDINATOR_CRITICAL_RESOURCES",
                    default=DEFAULT_CRITICAL_RESOURCES,
                ),
                read_only_resources=_env_csv(
                    "SPRINT_COORDINATOR_READ_ONLY_RESOURCES",
                    default=DEFAULT_READ_ONLY_RESOURCES,
                ),
            ),
            execution=ExecutionSettings(
                max_concurrent=int(os.getenv("SPRINT_COORDINATOR_MAX_CONCURRENT", "5")),
                worker_timeout_seconds=_env_optional_float(
                    "SPRINT_COORDINATOR_WORKER_TIMEOUT_SECONDS",
                    default=300.0,
                ),
                cancel_on_timeout=_env_bool(
                    "SPRINT_COORDINATOR_CANCEL_ON_TIMEOUT",
                    default=False,
                ),
                command_template=os.getenv("SPRINT_COORDINATOR_COMMAND_TEMPLATE", ""),
                workdir_root=Path(
                    os.getenv("SPRINT_COORDINATOR_WORKDIR_ROOT", ".sprint_coordinator/workdir"),
                ),
            ),
            budget=BudgetSettings(
                base_allocation=int(os.getenv("SPRINT_COORDINATOR_BASE_ALLOCATION", "10000")),
                warning_threshold=float(
                    os.getenv("SPRINT_COORDINATOR_BUDGET_WARNING_THRESHOLD", "0.8"),
                ),
                session_limit=int(os.getenv("SPRINT_COORDINATOR_SESSION_LIMIT", "100000")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if limits are out of range."""

        if self.scheduling.max_clusters <= 0:
            raise ValueError("SPRINT_COORDINATOR_MAX_CLUSTERS must be > 0.")
        if self.execution.max_concurrent <= 0:
            raise ValueError("SPRINT_COORDINATOR_MAX_CONCURRENT must be > 0.")
        timeout = self.execution.worker_timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError(
                "SPRINT_COORDINATOR_WORKER_TIMEOUT_SECONDS must be > 0 (or 'none' to disable).",
            )
        if self.budget.base_allocation <= 0:
            raise ValueError("SPRINT_COORDINATOR_BASE_ALLOCATION must be > 0.")
        if not 0 < self.budget.warning_threshold < 1:
            raise ValueError("SPRINT_COORDINATOR_BUDGET_WARNING_THRESHOLD must be in (0, 1).")
        if self.budget.session_limit <= 0:
            raise ValueError("SPRINT_COORDINATOR_SESSION_LIMIT must be > 0.")

    def validate_for_execution(self, override_command_template: str | None = None) -> None:
        """Raise configuration error if no worker command is configured."""

        self.validate()
        template = (override_command_template or self.execution.command_template).strip()
        if not template:
            raise ValueError(
                "A worker command template is required. "
                "Set SPRINT_COORDINATOR_COMMAND_TEMPLATE or pass --command-template.",
            )
        if "{work_package}" not in template:
            raise ValueError("Worker command template must include {work_package}.")


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        normalized = part.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        values.append(normalized)
    return tuple(values)


def _env_optional_float(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"", "none", "off", "0"}:
        return None
    try:
        return float(normalized)
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
