"""CLI entrypoint for sprint-coordinator."""

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import rich_click as click

from sprint_coordinator import __version__
from sprint_coordinator.scheduling.budget import (
    COMPLEXITY_MULTIPLIERS,
    PHASE_BUDGETS,
    PRIORITY_MULTIPLIERS,
    RESEARCH_LEVEL_MULTIPLIERS,
    TASK_TYPE_MULTIPLIERS,
)
from sprint_coordinator.scheduling.controllers import (
    CoordinatorBudgetCommand,
    CoordinatorCliController,
    CoordinatorPlanCommand,
    CoordinatorRunCommand,
    CoordinatorStatusCommand,
)
from sprint_coordinator.scheduling.models import RunStatus

click.rich_click.USE_MARKDOWN = True
COORDINATOR_CONTROLLER = CoordinatorCliController()
_T = TypeVar("_T")

_BACKLOG_ARGUMENT = click.argument(
    "backlog_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
_OUTPUT_ROOT_OPTION = click.option(
    "--output-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for per-run plan, budget and status documents.",
)
_MAX_CLUSTERS_OPTION = click.option(
    "--max-clusters",
    type=click.IntRange(min=1),
    default=None,
    help="Upper bound on parallel clusters; extra clusters merge into cluster 1.",
)
_RUN_ID_OPTION = click.option("--run-id", default=None, help="Explicit run id.")


@click.group()
@click.version_option(version=__version__, prog_name="sprint-coordinator")
def sprint_coordinator() -> None:
    """Parallel sprint task coordinator.

    Plans conflict-free work packages from a task backlog, runs them through
    an external worker command in bounded batches, and writes a
    `coordination-status.json` document per run.
    """


@sprint_coordinator.command("plan")
@_BACKLOG_ARGUMENT
@_OUTPUT_ROOT_OPTION
@_MAX_CLUSTERS_OPTION
@_RUN_ID_OPTION
@click.option(
    "--write/--no-write",
    default=True,
    show_default=True,
    help="Write coordination-plan.json into the run directory.",
)
def plan(
    backlog_path: Path,
    output_root: Path | None,
    max_clusters: int | None,
    run_id: str | None,
    write: bool,
) -> None:
    """Analyze and partition a backlog without executing anything."""

    _emit_lines(
        _guarded(
            COORDINATOR_CONTROLLER.plan,
            CoordinatorPlanCommand(
                backlog_path=backlog_path,
                output_root=output_root,
                max_clusters=max_clusters,
                run_id=run_id,
                write=write,
            ),
        ),
    )


@sprint_coordinator.command("run")
@_BACKLOG_ARGUMENT
@_OUTPUT_ROOT_OPTION
@_MAX_CLUSTERS_OPTION
@_RUN_ID_OPTION
@click.option(
    "--command-template",
    default=None,
    help=(
        "Worker command. Must include `{work_package}`; `{result_file}`, "
        "`{worker_id}` and `{run_id}` are optional."
    ),
)
@click.option(
    "--max-concurrent",
    type=click.IntRange(min=1),
    default=None,
    help="Workers per batch.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-worker timeout.",
)
def run(  # noqa: PLR0913
    backlog_path: Path,
    output_root: Path | None,
    max_clusters: int | None,
    run_id: str | None,
    command_template: str | None,
    max_concurrent: int | None,
    timeout_seconds: float | None,
) -> None:
    """Plan, execute and reconcile a backlog."""

    result = _guarded(
        COORDINATOR_CONTROLLER.run,
        CoordinatorRunCommand(
            backlog_path=backlog_path,
            output_root=output_root,
            command_template=command_template,
            max_clusters=max_clusters,
            max_concurrent=max_concurrent,
            timeout_seconds=timeout_seconds,
            run_id=run_id,
        ),
    )
    _emit_lines(result.lines)
    if result.status == RunStatus.FAILED:
        raise click.ClickException("Coordination run failed: no work package succeeded.")


@sprint_coordinator.command("budget")
@click.option(
    "--complexity",
    type=click.Choice(sorted(COMPLEXITY_MULTIPLIERS)),
    default="standard",
    show_default=True,
)
@click.option(
    "--priority",
    type=click.Choice(sorted(PRIORITY_MULTIPLIERS)),
    default="medium",
    show_default=True,
)
@click.option("--task-type", type=click.Choice(sorted(TASK_TYPE_MULTIPLIERS)), default=None)
@click.option(
    "--research-level",
    type=click.Choice(sorted(RESEARCH_LEVEL_MULTIPLIERS)),
    default=None,
)
@click.option(
    "--document-count",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
)
@click.option(
    "--base-allocation",
    type=click.IntRange(min=1),
    default=None,
    help="Override SPRINT_COORDINATOR_BASE_ALLOCATION.",
)
@click.option(
    "--phase",
    type=click.Choice(sorted(PHASE_BUDGETS)),
    default=None,
    help="Look up the static phase table instead of computing from attributes.",
)
@click.option("--tier", default=None, help="Tier within --phase, for example `thorough`.")
def budget(  # noqa: PLR0913
    complexity: str,
    priority: str,
    task_type: str | None,
    research_level: str | None,
    document_count: int,
    base_allocation: int | None,
    phase: str | None,
    tier: str | None,
) -> None:
    """Compute the resource budget for one task."""

    _emit_lines(
        COORDINATOR_CONTROLLER.budget(
            CoordinatorBudgetCommand(
                complexity=complexity,
                priority=priority,
                task_type=task_type,
                research_level=research_level,
                document_count=document_count,
                base_allocation=base_allocation,
                phase=phase,
                tier=tier,
            ),
        ),
    )


@sprint_coordinator.command("status")
@click.argument("run_id")
@_OUTPUT_ROOT_OPTION
def status(run_id: str, output_root: Path | None) -> None:
    """Show the coordination status document of a run."""

    _emit_lines(
        _guarded(
            COORDINATOR_CONTROLLER.status,
            CoordinatorStatusCommand(run_id=run_id, output_root=output_root),
        ),
    )


def _guarded(handler: Callable[[Any], _T], command: Any) -> _T:
    try:
        return handler(command)
    except (TypeError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    sprint_coordinator()
