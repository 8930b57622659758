"""Advisory resource budgets: per-task calculation and per-worker usage tracking."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sprint_coordinator.scheduling.models import (
    Budget,
    BudgetWarning,
    Task,
    TaskAttributes,
    utc_now,
)

logger = logging.getLogger(__name__)

BASE_ALLOCATION = 10_000
ROUNDING_STEP = 1_000
DOCUMENT_COUNT_STEP = 0.3
WARNING_THRESHOLD = 0.8
SESSION_LIMIT = 100_000

RESEARCH_LEVEL_MULTIPLIERS: dict[str, float] = {
    "minimal": 0.5,
    "medium": 1.0,
    "thorough": 2.0,
}
COMPLEXITY_MULTIPLIERS: dict[str, float] = {
    "simple": 0.8,
    "standard": 1.0,
    "complex": 1.5,
}
PRIORITY_MULTIPLIERS: dict[str, float] = {
    "low": 0.7,
    "medium": 1.0,
    "high": 1.3,
    "critical": 1.5,
}
TASK_TYPE_MULTIPLIERS: dict[str, float] = {
    "research": 1.2,
    "coding": 1.0,
    "analysis": 1.1,
    "documentation": 0.8,
    "testing": 0.9,
}

# Flat fallback budgets keyed by phase and tier; totals, not computed.
PHASE_BUDGETS: dict[str, dict[str, int]] = {
    "research": {
        "minimal": 15_000,
        "medium": 30_000,
        "thorough": 100_000,
    },
    "sprint_execution": {
        "simple": 8_000,
        "standard": 10_000,
        "complex": 15_000,
        "spike": 5_000,
    },
    "project_analysis": {
        "quick": 20_000,
        "standard": 40_000,
        "deep": 80_000,
    },
}

UNDERUSE_EFFICIENCY = 0.5
NEAR_LIMIT_EFFICIENCY = 0.95
UNDERUSE_FACTOR = 0.7
NEAR_LIMIT_FACTOR = 1.2


def calculate_budget(attributes: TaskAttributes, *, base_allocation: int = BASE_ALLOCATION) -> int:
    """Compute the advisory budget for one set of task attributes.

    Unknown research levels and task types leave the budget unchanged; unknown
    complexity and priority fall back to ``standard`` and ``medium``.
    """

    budget = float(base_allocation)
    if attributes.research_level is not None:
        budget *= RESEARCH_LEVEL_MULTIPLIERS.get(attributes.research_level, 1.0)
    budget *= COMPLEXITY_MULTIPLIERS.get(attributes.complexity or "standard", 1.0)
    if attributes.document_count >= 1:
        budget *= 1 + (attributes.document_count - 1) * DOCUMENT_COUNT_STEP
    budget *= PRIORITY_MULTIPLIERS.get(attributes.priority or "medium", 1.0)
    if attributes.task_type is not None:
        budget *= TASK_TYPE_MULTIPLIERS.get(attributes.task_type, 1.0)
    return _round_half_up(budget / ROUNDING_STEP) * ROUNDING_STEP


def phase_budget(phase: str, tier: str, *, base_allocation: int = BASE_ALLOCATION) -> int:
    """Static budget for a phase/tier pair, or the base allocation when unknown."""

    return PHASE_BUDGETS.get(phase, {}).get(tier, base_allocation)


def budget_for_task(task: Task, *, base_allocation: int = BASE_ALLOCATION) -> int:
    """Budget of a task, falling back to the static table without attributes."""

    if task.attributes is None:
        return phase_budget("sprint_execution", "standard", base_allocation=base_allocation)
    return calculate_budget(task.attributes, base_allocation=base_allocation)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(slots=True)
class WorkerBudgetSummary:
    """One row of the usage report."""

    worker_id: str
    allocated: int
    used: int
    efficiency: float | None
    warnings: list[BudgetWarning]


@dataclass(slots=True)
class BudgetReport:
    """Session-wide allocation and usage report."""

    created_at: datetime
    total_allocated: int
    total_used: int
    session_limit: int
    workers: list[WorkerBudgetSummary] = field(default_factory=list)

    @property
    def overall_efficiency(self) -> float | None:
        if self.total_allocated <= 0:
            return None
        return self.total_used / self.total_allocated

    @property
    def session_limit_exceeded(self) -> bool:
        return self.total_used > self.session_limit

    def to_payload(self) -> dict[str, Any]:
        """Serialize report for the budget report document."""

        return {
            "timestamp": self.created_at.isoformat(),
            "totalAllocated": self.total_allocated,
            "totalUsed": self.total_used,
            "overallEfficiency": _percent(self.overall_efficiency),
            "sessionLimit": self.session_limit,
            "sessionLimitExceeded": self.session_limit_exceeded,
            "workers": [
                {
                    "id": row.worker_id,
                    "allocated": row.allocated,
                    "used": row.used,
                    "efficiency": _percent(row.efficiency),
                    "warnings": [
                        {
                            "kind": warning.kind,
                            "message": warning.message,
                            "timestamp": warning.created_at.isoformat(),
                            "tokensRemaining": warning.tokens_remaining,
                            "overage": warning.overage,
                        }
                        for warning in row.warnings
                    ],
                }
                for row in self.workers
            ],
        }


def _percent(ratio: float | None) -> str | None:
    if ratio is None:
        return None
    return f"{round(ratio * 100)}%"


class BudgetTracker:
    """Per-run budget ledger.

    Must only be mutated from the control thread (the event loop driving the
    orchestrator); worker outcomes are folded in after they are awaited.
    """

    def __init__(
        self,
        *,
        base_allocation: int = BASE_ALLOCATION,
        warning_threshold: float = WARNING_THRESHOLD,
        session_limit: int = SESSION_LIMIT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.base_allocation = base_allocation
        self.warning_threshold = warning_threshold
        self.session_limit = session_limit
        self._clock = clock
        self._budgets: dict[str, Budget] = {}

    def allocate(self, worker_id: str, allocated: int) -> Budget:
        """Fix the allocation of a worker at launch."""

        if allocated < 0:
            raise ValueError(f"Budget allocation must be >= 0, got {allocated}")
        if worker_id in self._budgets:
            raise ValueError(f"Budget already allocated for worker {worker_id!r}")
        budget = Budget(allocated=allocated)
        self._budgets[worker_id] = budget
        return budget

    def track_usage(self, worker_id: str, used: int) -> Budget:
        """Accumulate usage and emit threshold/overage warnings once each."""

        if used < 0:
            raise ValueError(f"Reported usage must be >= 0, got {used}")
        budget = self._budgets.get(worker_id)
        if budget is None:
            logger.warning("Usage reported for unallocated worker %s", worker_id)
            budget = self._budgets[worker_id] = Budget(allocated=0)

        budget.used += used
        ratio = budget.usage_ratio
        kinds = {warning.kind for warning in budget.warnings}
        if self.warning_threshold <= ratio < 1.0 and "threshold" not in kinds:
            budget.warnings.append(
                BudgetWarning(
                    kind="threshold",
                    message=f"Approaching budget limit: {round(ratio * 100)}% used",
                    created_at=self._clock(),
                    tokens_remaining=budget.allocated - budget.used,
                ),
            )
            logger.warning("Worker %s at %d%% of budget", worker_id, round(ratio * 100))
        if ratio >= 1.0 and "overage" not in kinds:
            budget.warnings.append(
                BudgetWarning(
                    kind="overage",
                    message="Budget exceeded",
                    created_at=self._clock(),
                    overage=budget.used - budget.allocated,
                ),
            )
            logger.warning(
                "Worker %s exceeded budget: used=%d allocated=%d",
                worker_id,
                budget.used,
                budget.allocated,
            )
        return budget

    def get(self, worker_id: str) -> Budget | None:
        return self._budgets.get(worker_id)

    def remaining(self, worker_id: str) -> int:
        budget = self._budgets.get(worker_id)
        if budget is None:
            return self.base_allocation
        return max(0, budget.allocated - budget.used)

    def has_remaining(self, worker_id: str) -> bool:
        budget = self._budgets.get(worker_id)
        if budget is None:
            return True
        return budget.used < budget.allocated

    def usage_report(self) -> BudgetReport:
        """Totals and per-worker efficiency for the session."""

        rows = [
            WorkerBudgetSummary(
                worker_id=worker_id,
                allocated=budget.allocated,
                used=budget.used,
                efficiency=budget.used / budget.allocated if budget.allocated > 0 else None,
                warnings=list(budget.warnings),
            )
            for worker_id, budget in self._budgets.items()
        ]
        return BudgetReport(
            created_at=self._clock(),
            total_allocated=sum(row.allocated for row in rows),
            total_used=sum(row.used for row in rows),
            session_limit=self.session_limit,
            workers=rows,
        )


@dataclass(slots=True)
class BudgetRecommendation:
    """Suggested task-type multiplier change derived from past usage."""

    pattern: str
    task_type: str
    suggestion: str
    current_multiplier: float
    suggested_multiplier: float


def recommend_adjustments(history: Iterable[Mapping[str, Any]]) -> list[BudgetRecommendation]:
    """Suggest multiplier changes from historical ``{taskType, allocated, used}`` rows."""

    recommendations: list[BudgetRecommendation] = []
    for row in history:
        task_type = row.get("taskType")
        allocated = row.get("allocated") or 0
        used = row.get("used") or 0
        current = TASK_TYPE_MULTIPLIERS.get(task_type) if isinstance(task_type, str) else None
        if current is None or allocated <= 0:
            continue
        efficiency = used / allocated
        if efficiency < UNDERUSE_EFFICIENCY:
            recommendations.append(
                BudgetRecommendation(
                    pattern="underutilization",
                    task_type=task_type,
                    suggestion="Reduce allocation by 30%",
                    current_multiplier=current,
                    suggested_multiplier=round(current * UNDERUSE_FACTOR, 4),
                ),
            )
        elif efficiency > NEAR_LIMIT_EFFICIENCY:
            recommendations.append(
                BudgetRecommendation(
                    pattern="near-limit",
                    task_type=task_type,
                    suggestion="Increase allocation by 20%",
                    current_multiplier=current,
                    suggested_multiplier=round(current * NEAR_LIMIT_FACTOR, 4),
                ),
            )
    return recommendations
