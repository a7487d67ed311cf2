"""Summaries of graph state for callers and the CLI."""

from __future__ import annotations

from campaigngraph.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ExecutionGraph,
    ExecutionSummary,
    Outcome,
    TaskStatus,
)


def outcome_of(counts: dict[TaskStatus, int], total: int) -> Outcome:
    if counts[TaskStatus.COMPLETED] == total:
        return Outcome.SUCCEEDED
    if any(counts[s] for s in ACTIVE_STATUSES):
        return Outcome.RUNNING
    if counts[TaskStatus.FAILED]:
        return Outcome.FAILED
    return Outcome.PARTIAL


def summarize(graph: ExecutionGraph) -> ExecutionSummary:
    """Pure function of graph state; calling it twice on an unchanged graph gives equal results."""
    counts = graph.count_by_status()
    total = len(graph.nodes)

    # Elapsed time comes from node timestamps, not the clock
    starts = [n.started_at for n in graph.nodes.values() if n.started_at is not None]
    marks = starts + [n.finished_at for n in graph.nodes.values() if n.finished_at is not None]
    elapsed_ms = (max(marks) - min(starts)) * 1000 if starts else 0.0

    done = sum(counts[s] for s in TERMINAL_STATUSES)
    progress = round(done / total * 100, 2) if total else 100.0

    return ExecutionSummary(
        graph_id=graph.id,
        campaign_id=graph.campaign_id,
        total=total,
        counts=counts,
        outcome=outcome_of(counts, total),
        elapsed_ms=elapsed_ms,
        progress=progress,
        depth=graph.depth,
        outputs={n.id: n.output for n in graph.nodes.values() if n.status == TaskStatus.COMPLETED},
        blocked={n.id: n.blocked_by for n in graph.nodes.values() if n.status == TaskStatus.BLOCKED},
    )
