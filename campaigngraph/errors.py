"""Exception types raised by the orchestrator."""

from __future__ import annotations


class GraphError(Exception):
    """Base class for orchestrator errors."""


class InvalidGraphError(GraphError):
    """The graph is cyclic or structurally invalid. Scheduling must not start."""

    def __init__(self, message: str, cycle: list[str] | None = None):
        super().__init__(message)
        self.cycle = cycle or []


class PlanningError(GraphError):
    """A model-backed plan could not be turned into task specs."""


class NodeNotFoundError(GraphError, KeyError):
    def __init__(self, node_id: str):
        super().__init__(f"Node {node_id} not found")
        self.node_id = node_id

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(GraphError):
    """A status change outside the node state machine was attempted."""

    def __init__(self, node_id: str, current: str, target: str):
        super().__init__(f"Node {node_id}: cannot move from {current} to {target}")
        self.node_id = node_id
        self.current = current
        self.target = target


class TaskExecutionError(GraphError):
    """Raised by task executors; ``retryable`` tells the runner how to classify it."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class RunTimeoutError(GraphError):
    """The run-level deadline elapsed. Node statuses are left as they were."""

    def __init__(self, graph_id: str, elapsed_ms: float):
        super().__init__(f"Graph {graph_id} timed out after {elapsed_ms:.0f}ms")
        self.graph_id = graph_id
        self.elapsed_ms = elapsed_ms


class PersistenceError(GraphError):
    """The persistence collaborator is unavailable; the run cannot continue safely."""
