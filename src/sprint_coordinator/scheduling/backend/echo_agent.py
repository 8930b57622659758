"""Local demo agent for CLI worker integration tests."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sprint_coordinator.scheduling.contracts import read_work_package, write_worker_outcome
from sprint_coordinator.scheduling.models import WorkerOutcome

USAGE_PER_TASK = 500
USAGE_PER_RESOURCE = 250


def main(argv: list[str] | None = None) -> int:
    """Claim every owned resource as an output with deterministic usage."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--work-package", required=True)
    parser.add_argument("--result-file", required=True)
    parser.add_argument(
        "--fail-task",
        action="append",
        default=[],
        help="Exit with an error when the package contains this task id.",
    )
    args = parser.parse_args(argv)

    package = read_work_package(Path(args.work_package))
    failing = sorted(set(args.fail_task) & set(package.task_ids))
    if failing:
        print(f"echo_agent: refusing tasks {', '.join(failing)}", file=sys.stderr)
        return 1

    outcome = WorkerOutcome(
        outputs=package.owned_resources,
        resource_usage=(
            USAGE_PER_TASK * len(package.task_ids)
            + USAGE_PER_RESOURCE * len(package.owned_resources)
        ),
        payload={
            "backend": "echo_agent",
            "tasks": list(package.task_ids),
        },
    )
    write_worker_outcome(Path(args.result_file), outcome)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
