"""Subprocess-based Worker Execution Service for external CLI agents."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shlex
from pathlib import Path

from sprint_coordinator.scheduling.backend.base import WorkerExecutionError, WorkerRequest
from sprint_coordinator.scheduling.contracts import (
    read_worker_outcome,
    work_package_to_payload,
    write_json,
)
from sprint_coordinator.scheduling.models import WorkerOutcome

_POLL_SECONDS = 0.1
_TERMINATE_GRACE_SECONDS = 2.0
_STDERR_TAIL_CHARS = 500


class CliWorkerService:
    """Execute each work package through a command template.

    The template must include ``{work_package}``; ``{result_file}``,
    ``{worker_id}`` and ``{run_id}`` are optional placeholders. The agent
    writes its outcome JSON to the result file.
    """

    def __init__(self, *, command_template: str, workdir_root: Path) -> None:
        self.command_template = command_template
        self.workdir_root = workdir_root

    async def execute(self, request: WorkerRequest) -> WorkerOutcome:
        base_dir = self.workdir_root / request.run_id / request.worker_id
        package_path = base_dir / "input" / "work_package.json"
        result_path = base_dir / "output" / "worker_result.json"
        stdout_path = base_dir / "output" / "worker_stdout.log"
        stderr_path = base_dir / "output" / "worker_stderr.log"
        result_path.parent.mkdir(parents=True, exist_ok=True)
        result_path.unlink(missing_ok=True)

        payload = work_package_to_payload(request.package)
        payload["workerId"] = request.worker_id
        payload["runId"] = request.run_id
        payload["resultPath"] = str(result_path)
        write_json(package_path, payload)

        argv = build_run_args(
            command_template=self.command_template,
            package_path=package_path,
            result_path=result_path,
            worker_id=request.worker_id,
            run_id=request.run_id,
        )
        env = os.environ.copy()
        env["SPRINT_COORDINATOR_RUN_ID"] = request.run_id
        env["SPRINT_COORDINATOR_WORKER_ID"] = request.worker_id
        env["SPRINT_COORDINATOR_BUDGET"] = str(request.package.budget)

        with (
            stdout_path.open("w", encoding="utf-8") as stdout_handle,
            stderr_path.open("w", encoding="utf-8") as stderr_handle,
        ):
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    env=env,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                )
            except FileNotFoundError as error:
                raise WorkerExecutionError(
                    f"Worker command not found: {argv[0]}",
                    transient=False,
                ) from error
            except OSError as error:
                raise WorkerExecutionError(
                    f"Worker command failed to start: {error}",
                    transient=True,
                ) from error
            returncode = await _wait_with_cancel(process, request)

        if returncode != 0:
            raise WorkerExecutionError(
                f"Worker exited with code {returncode}: {_tail(stderr_path)}",
                transient=False,
            )
        if not result_path.exists():
            raise WorkerExecutionError(
                f"Worker did not write a result file at {result_path}",
                transient=False,
            )
        try:
            return read_worker_outcome(result_path)
        except (TypeError, ValueError) as error:
            raise WorkerExecutionError(
                f"Invalid worker result at {result_path}: {error}",
                transient=False,
            ) from error


def build_run_args(
    *,
    command_template: str,
    package_path: Path,
    result_path: Path,
    worker_id: str,
    run_id: str,
) -> list[str]:
    """Render the command template into an argv list."""

    stripped = command_template.strip()
    if not stripped:
        raise WorkerExecutionError("Worker command template is empty.", transient=False)
    if "{work_package}" not in stripped:
        raise WorkerExecutionError(
            "Worker command template must include {work_package}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            work_package=shlex.quote(str(package_path)),
            result_file=shlex.quote(str(result_path)),
            worker_id=shlex.quote(worker_id),
            run_id=shlex.quote(run_id),
        )
    except KeyError as error:
        raise WorkerExecutionError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise WorkerExecutionError(
            "Worker command template rendered empty command.",
            transient=False,
        )
    return argv


async def _wait_with_cancel(
    process: asyncio.subprocess.Process,
    request: WorkerRequest,
) -> int:
    try:
        while True:
            try:
                return await asyncio.wait_for(process.wait(), timeout=_POLL_SECONDS)
            except TimeoutError:
                if request.cancel_requested is not None and request.cancel_requested():
                    await _terminate_process(process)
                    raise WorkerExecutionError(
                        f"Worker {request.worker_id} canceled by coordinator",
                        transient=True,
                    ) from None
    except asyncio.CancelledError:
        await _terminate_process(process)
        raise


async def _terminate_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


def _tail(path: Path) -> str:
    try:
        text = path.read_text("utf-8", errors="replace")
    except OSError:
        return ""
    return text.strip()[-_STDERR_TAIL_CHARS:]
