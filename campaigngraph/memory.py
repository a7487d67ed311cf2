"""Records task successes and failures so later planning runs can learn from them."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from campaigngraph.models import ExecutionGraph, TaskExecutionResult, TaskNode

logger = logging.getLogger(__name__)


@dataclass
class MemoryEntry:
    memory_id: str
    memory_type: str  # SUCCESS | ERROR
    agent_type: str
    organization_id: str
    campaign_id: str | None
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "memory_id": self.memory_id,
            "memory_type": self.memory_type,
            "agent_type": self.agent_type,
            "organization_id": self.organization_id,
            "campaign_id": self.campaign_id,
            "content": self.content,
            "metadata": self.metadata,
            "ts": self.ts,
        }


def success_entry(graph: ExecutionGraph, node: TaskNode, result: TaskExecutionResult) -> MemoryEntry:
    content = (
        f"Task Success: {node.type} ({node.id})\n\n"
        f"Agent: {node.agent or 'Manual'}\n"
        f"Campaign: {graph.campaign_id}\n\n"
        f"Outcome:\n{json.dumps(result.output, indent=2, default=str)}\n\n"
        f"Duration: {result.duration_ms:.0f}ms"
    )
    return MemoryEntry(
        memory_id=f"success-{graph.id}-{node.id}-{int(time.time() * 1000)}",
        memory_type="SUCCESS",
        agent_type=node.agent or "graph-executor",
        organization_id=graph.organization_id,
        campaign_id=graph.campaign_id,
        content=content,
        metadata={"node_id": node.id, "task_type": node.type, "duration_ms": result.duration_ms},
    )


def error_entry(graph: ExecutionGraph, node: TaskNode, result: TaskExecutionResult) -> MemoryEntry:
    content = (
        f"Task Failure: {node.type} ({node.id})\n\n"
        f"Agent: {node.agent or 'Manual'}\n"
        f"Campaign: {graph.campaign_id}\n\n"
        f"Error:\n{result.error}\n\n"
        f"Attempts: {node.attempt}"
    )
    return MemoryEntry(
        memory_id=f"error-{graph.id}-{node.id}-{int(time.time() * 1000)}",
        memory_type="ERROR",
        agent_type=node.agent or "graph-executor",
        organization_id=graph.organization_id,
        campaign_id=graph.campaign_id,
        content=content,
        metadata={
            "node_id": node.id,
            "task_type": node.type,
            "error": result.error,
            "error_type": result.error_type,
            "attempts": node.attempt,
        },
    )


class MemoryStore(ABC):
    @abstractmethod
    async def store(self, entry: MemoryEntry):
        ...

    async def store_success_memory(self, graph: ExecutionGraph, node: TaskNode, result: TaskExecutionResult):
        await self.store(success_entry(graph, node, result))

    async def store_error_memory(self, graph: ExecutionGraph, node: TaskNode, result: TaskExecutionResult):
        await self.store(error_entry(graph, node, result))


class InMemoryMemoryStore(MemoryStore):
    def __init__(self):
        self.entries: list[MemoryEntry] = []

    async def store(self, entry: MemoryEntry):
        self.entries.append(entry)


class JsonlMemoryStore(MemoryStore):
    """Appends one JSON line per memory to ``path``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def store(self, entry: MemoryEntry):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")
        logger.debug(f"Stored {entry.memory_type} memory {entry.memory_id}")
