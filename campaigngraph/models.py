"""Core data structures for the execution graph."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from campaigngraph.errors import InvalidGraphError, NodeNotFoundError


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    BLOCKED = "BLOCKED"
    SKIPPED = "SKIPPED"

    def __str__(self) -> str:
        return self.value


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.BLOCKED, TaskStatus.SKIPPED}
)
ACTIVE_STATUSES = frozenset(
    {TaskStatus.PENDING, TaskStatus.READY, TaskStatus.RUNNING, TaskStatus.RETRYING}
)
# A dependency in one of these can never complete, so its dependents block.
BLOCKING_STATUSES = frozenset({TaskStatus.FAILED, TaskStatus.BLOCKED, TaskStatus.SKIPPED})

# Automatic transitions driven by the scheduler loop.
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.READY, TaskStatus.BLOCKED}),
    TaskStatus.READY: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.RETRYING, TaskStatus.FAILED}),
    TaskStatus.RETRYING: frozenset({TaskStatus.READY}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.BLOCKED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}

# Operator actions: retry_failed_task and skip_blocked_task.
MANUAL_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.FAILED: frozenset({TaskStatus.READY, TaskStatus.PENDING}),
    TaskStatus.PENDING: frozenset({TaskStatus.SKIPPED}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.SKIPPED}),
}


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoalDescription:
    """What the organization wants done. Produces exactly one graph."""

    organization_id: str
    objective: str
    campaign_id: str | None = None
    template: str | None = None
    deadline: float | None = None
    contact_ids: tuple[str, ...] = ()
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskSpec:
    """A task definition before it becomes a node: what a catalog or planner hands the builder."""

    id: str
    type: str
    agent: str | None = None
    description: str = ""
    prerequisites: list[str] = field(default_factory=list)
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_backoff_ms: int | None = 30_000

    def delay_ms(self, attempt: int) -> float:
        """Backoff before re-running a node that has failed ``attempt`` times."""
        delay = self.backoff_ms * self.backoff_multiplier ** max(attempt - 1, 0)
        if self.max_backoff_ms is not None:
            delay = min(delay, self.max_backoff_ms)
        return delay


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@dataclass
class TaskNode:
    """One schedulable unit of work."""

    id: str
    type: str
    input: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    agent: str | None = None
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    attempt: int = 0
    output: Any = None
    error: str | None = None
    blocked_by: str | None = None  # root-cause node id when BLOCKED
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "input": self.input,
            "depends_on": self.depends_on,
            "agent": self.agent,
            "description": self.description,
            "status": self.status.value,
            "attempt": self.attempt,
            "output": self.output,
            "error": self.error,
            "blocked_by": self.blocked_by,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TaskNode:
        return cls(
            id=data["id"],
            type=data["type"],
            input=data.get("input") or {},
            depends_on=list(data.get("depends_on") or []),
            agent=data.get("agent"),
            description=data.get("description", ""),
            status=TaskStatus(data.get("status", TaskStatus.PENDING)),
            attempt=data.get("attempt", 0),
            output=data.get("output"),
            error=data.get("error"),
            blocked_by=data.get("blocked_by"),
            created_at=data.get("created_at") or time.time(),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
        )


@dataclass
class ExecutionGraph:
    organization_id: str
    campaign_id: str | None = None
    id: str = field(default_factory=generate_id)
    objective: str = ""
    nodes: dict[str, TaskNode] = field(default_factory=dict)
    edges: set[tuple[str, str]] = field(default_factory=set)
    depth: int = 0
    topological_order: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    def add(self, node: TaskNode):
        if node.id in self.nodes:
            raise InvalidGraphError(f"Duplicate node id: {node.id}")
        self.nodes[node.id] = node
        for dep in node.depends_on:
            self.edges.add((dep, node.id))

    def get(self, node_id: str) -> TaskNode | None:
        return self.nodes.get(node_id)

    def require(self, node_id: str) -> TaskNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def roots(self) -> list[TaskNode]:
        return [n for n in self.nodes.values() if not n.depends_on]

    def dependents(self, node_id: str) -> list[str]:
        """Direct dependents of a node, in insertion order."""
        return [n.id for n in self.nodes.values() if node_id in n.depends_on]

    def with_status(self, *statuses: TaskStatus) -> list[TaskNode]:
        return [n for n in self.nodes.values() if n.status in statuses]

    def count_by_status(self) -> dict[TaskStatus, int]:
        counts = {s: 0 for s in TaskStatus}
        for n in self.nodes.values():
            counts[n.status] += 1
        return counts

    def is_terminal(self) -> bool:
        return all(n.is_terminal for n in self.nodes.values())

    def position(self, node_id: str) -> int:
        return list(self.nodes).index(node_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "campaign_id": self.campaign_id,
            "objective": self.objective,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": sorted([list(e) for e in self.edges]),
            "depth": self.depth,
            "topological_order": self.topological_order,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ExecutionGraph:
        graph = cls(
            organization_id=data["organization_id"],
            campaign_id=data.get("campaign_id"),
            id=data["id"],
            objective=data.get("objective", ""),
            depth=data.get("depth", 0),
            topological_order=list(data.get("topological_order") or []),
            created_at=data.get("created_at") or time.time(),
        )
        for raw in data.get("nodes", []):
            graph.add(TaskNode.from_dict(raw))
        for from_id, to_id in data.get("edges", []):
            graph.edges.add((from_id, to_id))
        return graph


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass
class TaskExecutionResult:
    success: bool
    output: Any = None
    error: str | None = None
    retryable: bool = False
    error_type: str | None = None
    duration_ms: float = 0.0

    @classmethod
    def ok(cls, output: Any = None, duration_ms: float = 0.0) -> TaskExecutionResult:
        return cls(success=True, output=output, duration_ms=duration_ms)

    @classmethod
    def failure(
        cls, error: str, retryable: bool = False, error_type: str | None = None, duration_ms: float = 0.0
    ) -> TaskExecutionResult:
        return cls(success=False, error=error, retryable=retryable, error_type=error_type, duration_ms=duration_ms)


@dataclass
class ExecutionRecord:
    """Durable log entry for one task attempt."""

    graph_id: str
    node_id: str
    attempt: int
    status: TaskStatus
    organization_id: str
    campaign_id: str | None = None
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    error: str | None = None
    error_type: str | None = None
    retryable: bool = False
    started_at: float | None = None
    finished_at: float | None = None
    duration_ms: float = 0.0

    @property
    def is_retry(self) -> bool:
        return self.attempt > 1

    def to_dict(self) -> dict:
        return {
            "graph_id": self.graph_id,
            "node_id": self.node_id,
            "attempt": self.attempt,
            "is_retry": self.is_retry,
            "status": self.status.value,
            "organization_id": self.organization_id,
            "campaign_id": self.campaign_id,
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ExecutionRecord:
        return cls(
            graph_id=data["graph_id"],
            node_id=data["node_id"],
            attempt=data["attempt"],
            status=TaskStatus(data["status"]),
            organization_id=data["organization_id"],
            campaign_id=data.get("campaign_id"),
            input=data.get("input") or {},
            output=data.get("output"),
            error=data.get("error"),
            error_type=data.get("error_type"),
            retryable=data.get("retryable", False),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            duration_ms=data.get("duration_ms", 0.0),
        )


class Outcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    RUNNING = "RUNNING"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ExecutionSummary:
    """Point-in-time, read-only projection of a graph."""

    graph_id: str
    campaign_id: str | None
    total: int
    counts: dict[TaskStatus, int]
    outcome: Outcome
    elapsed_ms: float
    progress: float
    depth: int
    outputs: dict[str, Any] = field(default_factory=dict)
    blocked: dict[str, str | None] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.outcome != Outcome.RUNNING

    @property
    def has_failures(self) -> bool:
        return self.counts[TaskStatus.FAILED] > 0

    def count(self, status: TaskStatus) -> int:
        return self.counts[status]

    def to_dict(self) -> dict:
        return {
            "graph_id": self.graph_id,
            "campaign_id": self.campaign_id,
            "total": self.total,
            "counts": {s.value: c for s, c in self.counts.items()},
            "outcome": self.outcome.value,
            "elapsed_ms": self.elapsed_ms,
            "progress": self.progress,
            "depth": self.depth,
            "is_complete": self.is_complete,
            "has_failures": self.has_failures,
            "outputs": self.outputs,
            "blocked": self.blocked,
        }


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass
class GraphEvent:
    type: str
    graph_id: str
    node_id: str | None = None
    ts: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "graph_id": self.graph_id,
            "node_id": self.node_id,
            "ts": self.ts,
            "data": self.data,
        }


# ---------------------------------------------------------------------------
# Model responses
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ModelResponse:
    text: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str | None = None
    raw: Any = None
