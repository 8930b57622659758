"""Per-worker registry records, one JSON file per worker per run."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sprint_coordinator.scheduling.contracts import load_json, registry_record_payload, write_json
from sprint_coordinator.scheduling.models import ActiveWorker, WorkerOutcome

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """Writes registry records consumed by external registry consolidation."""

    def __init__(self, root_dir: Path, run_id: str) -> None:
        self.run_dir = root_dir / run_id

    def record_path(self, worker_id: str) -> Path:
        return self.run_dir / f"{worker_id}.json"

    def write(
        self,
        worker_id: str,
        entry: ActiveWorker,
        *,
        outcome: WorkerOutcome | None = None,
        error: str | None = None,
    ) -> bool:
        """Rewrite one record; a failed write is logged and does not stop the run."""

        payload = registry_record_payload(
            worker_id=worker_id,
            entry=entry,
            outcome=outcome,
            error=error,
        )
        try:
            write_json(self.record_path(worker_id), payload)
        except OSError:
            logger.warning("Failed to write registry record for %s", worker_id, exc_info=True)
            return False
        return True

    def read(self, worker_id: str) -> dict[str, Any]:
        return load_json(self.record_path(worker_id))
