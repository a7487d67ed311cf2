"""Graph stores: node state snapshots plus an append-only log of execution attempts."""

from __future__ import annotations

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from campaigngraph.errors import PersistenceError
from campaigngraph.models import ExecutionGraph, ExecutionRecord, TaskStatus

logger = logging.getLogger(__name__)


class GraphStore(ABC):
    """Where graph state and per-attempt execution records live."""

    @abstractmethod
    async def save_graph(self, graph: ExecutionGraph):
        """Store the full graph (called once after build, and on resume)."""

    @abstractmethod
    async def load_graph(self, graph_id: str) -> ExecutionGraph:
        """Rehydrate a previously saved graph with its latest node state."""

    @abstractmethod
    async def persist_node_status(
        self, graph_id: str, node_id: str, status: TaskStatus, payload: dict[str, Any] | None = None
    ):
        """Record a node's new status plus its output/error and other mutable fields."""

    @abstractmethod
    async def record_execution(self, graph_id: str, node_id: str, record: ExecutionRecord):
        """Append one execution attempt."""

    @abstractmethod
    async def list_executions(self, graph_id: str, node_id: str | None = None) -> list[ExecutionRecord]:
        """Execution history, oldest first."""


def _apply_node_update(graph_data: dict, node_id: str, status: TaskStatus, payload: dict | None):
    for node in graph_data["nodes"]:
        if node["id"] == node_id:
            node.update(payload or {})
            node["status"] = status.value
            return
    raise PersistenceError(f"Node {node_id} not found in stored graph {graph_data['id']}")


class InMemoryGraphStore(GraphStore):
    def __init__(self):
        self._graphs: dict[str, dict] = {}
        self._executions: dict[str, list[ExecutionRecord]] = {}
        self.status_updates: list[tuple[str, str, TaskStatus]] = []

    async def save_graph(self, graph: ExecutionGraph):
        self._graphs[graph.id] = copy.deepcopy(graph.to_dict())

    async def load_graph(self, graph_id: str) -> ExecutionGraph:
        data = self._graphs.get(graph_id)
        if data is None:
            raise PersistenceError(f"Graph {graph_id} not found")
        return ExecutionGraph.from_dict(copy.deepcopy(data))

    async def persist_node_status(
        self, graph_id: str, node_id: str, status: TaskStatus, payload: dict[str, Any] | None = None
    ):
        data = self._graphs.get(graph_id)
        if data is None:
            raise PersistenceError(f"Graph {graph_id} not found")
        _apply_node_update(data, node_id, status, copy.deepcopy(payload))
        self.status_updates.append((graph_id, node_id, status))

    async def record_execution(self, graph_id: str, node_id: str, record: ExecutionRecord):
        self._executions.setdefault(graph_id, []).append(record)

    async def list_executions(self, graph_id: str, node_id: str | None = None) -> list[ExecutionRecord]:
        records = self._executions.get(graph_id, [])
        return [r for r in records if node_id is None or r.node_id == node_id]


class JsonFileGraphStore(GraphStore):
    """One folder per graph: graph.json holds current state, executions.jsonl the attempt log."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _graph_dir(self, graph_id: str) -> Path:
        return self.base_dir / graph_id

    def _read_graph(self, graph_id: str) -> dict:
        path = self._graph_dir(graph_id) / "graph.json"
        if not path.exists():
            raise PersistenceError(f"Graph {graph_id} not found in {self.base_dir}")
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

    def _write_graph(self, graph_id: str, data: dict):
        gdir = self._graph_dir(graph_id)
        tmp = gdir / "graph.json.tmp"
        try:
            gdir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, default=str))
            os.replace(tmp, gdir / "graph.json")
        except OSError as e:
            raise PersistenceError(f"Could not write graph {graph_id}: {e}") from e

    async def save_graph(self, graph: ExecutionGraph):
        self._write_graph(graph.id, graph.to_dict())
        logger.debug(f"Saved graph {graph.id} to {self._graph_dir(graph.id)}")

    async def load_graph(self, graph_id: str) -> ExecutionGraph:
        return ExecutionGraph.from_dict(self._read_graph(graph_id))

    async def persist_node_status(
        self, graph_id: str, node_id: str, status: TaskStatus, payload: dict[str, Any] | None = None
    ):
        data = self._read_graph(graph_id)
        _apply_node_update(data, node_id, status, payload)
        self._write_graph(graph_id, data)

    async def record_execution(self, graph_id: str, node_id: str, record: ExecutionRecord):
        path = self._graph_dir(graph_id) / "executions.jsonl"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a") as f:
                f.write(json.dumps(record.to_dict(), default=str) + "\n")
        except OSError as e:
            raise PersistenceError(f"Could not record execution for {graph_id}/{node_id}: {e}") from e

    async def list_executions(self, graph_id: str, node_id: str | None = None) -> list[ExecutionRecord]:
        path = self._graph_dir(graph_id) / "executions.jsonl"
        if not path.exists():
            return []
        records = []
        with open(path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = ExecutionRecord.from_dict(json.loads(line))
                if node_id is None or record.node_id == node_id:
                    records.append(record)
        return records
