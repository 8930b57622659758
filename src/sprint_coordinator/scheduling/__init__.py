"""Scheduling pipeline for parallel sprint tasks.

Stages, leaves first:

- ``analyzer``: extract the resources each task touches and flag shared ones.
- ``partitioner``: group tasks into clusters that own disjoint resources.
- ``budget``: per-task budgets and a per-run usage ledger.
- ``orchestrator``: run one worker per cluster in bounded batches.
- ``reconciler``: apply shared resources one at a time and build the
  status record.

Workers are external. The coordinator talks to them through a
``WorkerExecutionService`` and on-disk JSON contracts (work package in,
outcome out); ``backend.cli_backend`` runs any command template and
``backend.echo_agent`` is a deterministic local agent.
"""
