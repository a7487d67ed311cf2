"""Scheduler — drives an execution graph to completion.

One coordinator task owns every write to the graph. Task executions run as
independent asyncio tasks and hand their results back through a completion
queue, which the coordinator drains at the start of every tick. A finished
task also sets a wake-up event, so results are handled as soon as they
arrive instead of waiting out the poll interval. Results that arrive after
the loop has ended are applied by the worker itself under the same lock the
manual APIs use.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from campaigngraph import events
from campaigngraph.config import (
    DEFAULT_BACKOFF_MS,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF_MS,
    DEFAULT_PARALLELISM,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
)
from campaigngraph.errors import InvalidTransitionError, RunTimeoutError
from campaigngraph.events import EventBus
from campaigngraph.memory import MemoryStore
from campaigngraph.models import (
    BLOCKING_STATUSES,
    MANUAL_TRANSITIONS,
    TRANSITIONS,
    ExecutionGraph,
    ExecutionRecord,
    ExecutionSummary,
    RetryPolicy,
    TaskExecutionResult,
    TaskNode,
    TaskStatus,
)
from campaigngraph.persistence import GraphStore
from campaigngraph.planner import validate_graph
from campaigngraph.runner import TaskRunner
from campaigngraph.summary import summarize

logger = logging.getLogger(__name__)


def _default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=DEFAULT_MAX_ATTEMPTS,
        backoff_ms=DEFAULT_BACKOFF_MS,
        backoff_multiplier=DEFAULT_BACKOFF_MULTIPLIER,
        max_backoff_ms=DEFAULT_MAX_BACKOFF_MS,
    )


@dataclass
class SchedulerConfig:
    parallelism: int = DEFAULT_PARALLELISM
    retry_policy: RetryPolicy = field(default_factory=_default_retry_policy)
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if self.retry_policy.max_attempts < 1:
            raise ValueError("retry_policy.max_attempts must be at least 1")
        if self.poll_interval_ms <= 0 or self.timeout_ms <= 0:
            raise ValueError("poll_interval_ms and timeout_ms must be positive")

    @classmethod
    def from_defaults(cls, **overrides) -> SchedulerConfig:
        """Config from the values in campaigngraph.config, with keyword overrides."""
        return cls(**overrides)


def _is_ordered(graph: ExecutionGraph) -> bool:
    return len(graph.topological_order) == len(graph.nodes) and set(graph.topological_order) == set(graph.nodes)


@dataclass
class _Completion:
    node_id: str
    result: TaskExecutionResult


class GraphRunner:
    """Runs one execution graph. Create one instance per running campaign."""

    def __init__(
        self,
        graph: ExecutionGraph | str,
        store: GraphStore,
        task_runner: TaskRunner,
        config: SchedulerConfig | None = None,
        event_bus: EventBus | None = None,
        memory: MemoryStore | None = None,
    ):
        if isinstance(graph, ExecutionGraph):
            self.graph_id = graph.id
            self.graph: ExecutionGraph | None = graph
        else:
            self.graph_id = graph
            self.graph = None
        self.store = store
        self.task_runner = task_runner
        self.config = config or SchedulerConfig()
        self.event_bus = event_bus or EventBus()
        self.memory = memory

        # (node_id, from, to) for every status change, in order
        self.history: list[tuple[str, TaskStatus, TaskStatus]] = []

        self._saved = False
        self._position: dict[str, int] = {}
        self._completions: asyncio.Queue[_Completion] = asyncio.Queue()
        self._wakeup = asyncio.Event()
        self._lock = asyncio.Lock()
        self._in_flight: dict[str, asyncio.Task] = {}
        self._side_tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._running = False
        self._started_at: float | None = None
        self.timed_out = False

        if self.graph is not None:
            self._index_graph()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def running_count(self) -> int:
        return len(self._graph.with_status(TaskStatus.RUNNING))

    @property
    def _graph(self) -> ExecutionGraph:
        if self.graph is None:
            raise RuntimeError(f"Graph {self.graph_id} is not loaded; call load_graph() first")
        return self.graph

    async def load_graph(self) -> ExecutionGraph:
        """Rehydrate the graph from the store, e.g. to resume a run after a restart."""
        if self._running:
            raise RuntimeError("Cannot reload the graph while the run is active")
        graph = await self.store.load_graph(self.graph_id)
        if not _is_ordered(graph):
            validate_graph(graph)
        self.graph = graph
        self._saved = True
        self._index_graph()
        logger.info(f"Loaded graph {graph.id}: {len(graph.nodes)} nodes")
        await self._recover_interrupted()
        return graph

    async def start(self):
        """Start the scheduling loop in the background. Returns immediately."""
        if self._running:
            raise RuntimeError("Execution already running")
        await self._ensure_ready()

        self._running = True
        self.timed_out = False
        self._started_at = time.monotonic()
        self._emit(events.GRAPH_STARTED, nodes=len(self._graph.nodes), depth=self._graph.depth)
        logger.info(
            f"Starting graph {self.graph_id} (parallelism={self.config.parallelism}, "
            f"timeout={self.config.timeout_ms}ms)"
        )
        self._loop_task = asyncio.create_task(self._execution_loop())

    async def stop(self):
        """Stop the loop and new dispatch. Tasks already RUNNING are left to finish."""
        self._halt("stopped")
        task = self._loop_task
        if task and task is not asyncio.current_task():
            await asyncio.wait([task])

    async def wait(self, raise_on_timeout: bool = False) -> ExecutionSummary:
        """Wait for the loop to end and return the summary at that point."""
        if self._loop_task:
            await self._loop_task
        if self.timed_out and raise_on_timeout:
            raise RunTimeoutError(self.graph_id, self.elapsed_ms)
        return self.get_execution_summary()

    async def run(self, raise_on_timeout: bool = False) -> ExecutionSummary:
        await self.start()
        return await self.wait(raise_on_timeout=raise_on_timeout)

    @property
    def elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        return (time.monotonic() - self._started_at) * 1000

    def get_execution_summary(self) -> ExecutionSummary:
        return summarize(self._graph)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _execution_loop(self):
        poll = self.config.poll_interval_ms / 1000
        try:
            while self._running:
                if self.elapsed_ms > self.config.timeout_ms:
                    self.timed_out = True
                    logger.warning(f"Graph {self.graph_id} timed out after {self.elapsed_ms:.0f}ms")
                    self._emit(events.GRAPH_TIMEOUT, elapsed_ms=self.elapsed_ms)
                    self._halt("timeout")
                    break

                async with self._lock:
                    await self._tick()

                if self._graph.is_terminal():
                    summary = self.get_execution_summary()
                    logger.info(f"Graph {self.graph_id} finished: {summary.outcome}")
                    self._emit(
                        events.GRAPH_COMPLETED,
                        outcome=summary.outcome.value,
                        counts={s.value: c for s, c in summary.counts.items()},
                    )
                    self._halt("completed")
                    break

                remaining = (self.config.timeout_ms - self.elapsed_ms) / 1000
                await self._wait_for_activity(max(min(poll, remaining), 0))

            # Results queued between the last tick and the halt
            async with self._lock:
                await self._drain_completions()
        except Exception as e:
            logger.error(f"Graph {self.graph_id} loop aborted: {e}", exc_info=True)
            self._emit(events.GRAPH_ERROR, error=str(e), error_type=type(e).__name__)
            self._halt("error")
            raise

    async def _wait_for_activity(self, timeout: float):
        """Sleep until the next poll, a task completion, or a stop request."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    def _halt(self, reason: str):
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        self._emit(events.GRAPH_STOPPED, reason=reason, in_flight=list(self._in_flight))

    async def execute_ready_tasks(self) -> list[str]:
        """Run a single tick by hand: collect results, scan readiness, dispatch.

        Returns the ids of the nodes dispatched in this tick.
        """
        await self._ensure_ready()
        async with self._lock:
            return await self._tick()

    async def drain_results(self, wait: bool = True) -> int:
        """Wait for in-flight tasks and apply anything still queued.

        Late results apply themselves once the loop has ended, so this mostly
        serves as a barrier. Returns how many queued results it handled.
        """
        if wait and self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
        async with self._lock:
            return await self._drain_completions()

    async def _tick(self) -> list[str]:
        await self._drain_completions()
        await self._scan_readiness()
        return await self._dispatch_ready()

    # ------------------------------------------------------------------
    # Readiness and propagation
    # ------------------------------------------------------------------

    async def _scan_readiness(self):
        graph = self._graph
        now = time.time()
        for node_id in graph.topological_order:
            node = graph.nodes[node_id]
            if node.status == TaskStatus.PENDING:
                deps = [graph.nodes[d] for d in node.depends_on]
                bad = next((d for d in deps if d.status in BLOCKING_STATUSES), None)
                if bad is not None:
                    await self._block(node, root=bad.blocked_by or bad.id, via=bad)
                    await self._propagate_block(node)
                elif all(d.status == TaskStatus.COMPLETED for d in deps):
                    await self._transition(node, TaskStatus.READY)
            elif node.status == TaskStatus.RETRYING:
                delay_ms = self.config.retry_policy.delay_ms(node.attempt)
                if node.finished_at is None or (now - node.finished_at) * 1000 >= delay_ms:
                    await self._transition(node, TaskStatus.READY)

    async def _block(self, node: TaskNode, root: str, via: TaskNode):
        if via.id == root:
            error = f"Upstream dependency {via.id} is {via.status.value}"
        else:
            error = f"Upstream dependency {via.id} is {via.status.value} (root cause: {root})"
        await self._transition(node, TaskStatus.BLOCKED, error=error, blocked_by=root, finished_at=time.time())
        logger.info(f"Node {node.id} blocked: {error}")
        self._emit(events.NODE_BLOCKED, node.id, root_cause=root, via=via.id, error=error)

    async def _propagate_block(self, source: TaskNode):
        """Block every PENDING transitive dependent of ``source`` in one topological pass."""
        graph = self._graph
        root = source.blocked_by or source.id
        order = graph.topological_order
        tainted = {source.id}
        for node_id in order[order.index(source.id) + 1:]:
            node = graph.nodes[node_id]
            via_id = next((d for d in node.depends_on if d in tainted), None)
            if via_id is None:
                continue
            if node.status == TaskStatus.PENDING:
                await self._block(node, root=root, via=graph.nodes[via_id])
                tainted.add(node_id)
            elif node.status == TaskStatus.BLOCKED:
                tainted.add(node_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_ready(self) -> list[str]:
        graph = self._graph
        slots = self.config.parallelism - self.running_count
        if slots <= 0:
            return []

        ready = sorted(
            graph.with_status(TaskStatus.READY),
            key=lambda n: (n.created_at, self._position.get(n.id, 0), n.id),
        )
        dispatched = []
        for node in ready[:slots]:
            await self._transition(
                node,
                TaskStatus.RUNNING,
                attempt=node.attempt + 1,
                started_at=time.time(),
                finished_at=None,
            )
            resolved = {d: graph.nodes[d].output for d in node.depends_on}
            logger.info(f"Launching node {node.id} ({node.type}, attempt {node.attempt})")
            self._emit(events.NODE_STARTED, node.id, attempt=node.attempt, task_type=node.type, agent=node.agent)

            task = asyncio.create_task(self._run_node(copy.deepcopy(node), resolved))
            self._in_flight[node.id] = task
            dispatched.append(node.id)
        return dispatched

    async def _run_node(self, node: TaskNode, resolved: dict[str, Any]):
        """Worker: runs outside the coordinator and only talks back through the queue.

        Once the loop is gone (stopped, timed out, or driven by hand) nobody
        polls the queue, so the worker applies its own result under the lock.
        """
        try:
            result = await self.task_runner.run(node, resolved)
        except asyncio.CancelledError:
            self._in_flight.pop(node.id, None)
            raise
        except Exception as e:
            logger.error(f"Task runner raised for node {node.id}: {e}", exc_info=True)
            result = TaskExecutionResult.failure(str(e), retryable=False, error_type=type(e).__name__)

        self._in_flight.pop(node.id, None)
        self._completions.put_nowait(_Completion(node.id, result))
        self._wakeup.set()

        if not self._running:
            async with self._lock:
                try:
                    await self._drain_completions()
                except Exception as e:
                    logger.error(f"Applying late result for node {node.id} failed: {e}", exc_info=True)
                    raise

    async def _drain_completions(self) -> int:
        handled = 0
        while not self._completions.empty():
            completion = self._completions.get_nowait()
            await self._handle_result(completion.node_id, completion.result)
            handled += 1
        return handled

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def handle_task_result(self, node_id: str, result: TaskExecutionResult):
        """Apply a task result to a RUNNING node."""
        async with self._lock:
            await self._handle_result(node_id, result)

    async def _handle_result(self, node_id: str, result: TaskExecutionResult):
        graph = self._graph
        node = graph.require(node_id)
        if node.status != TaskStatus.RUNNING:
            logger.warning(f"Ignoring result for node {node_id}: status is {node.status.value}, not RUNNING")
            return

        finished_at = time.time()
        policy = self.config.retry_policy
        if result.success:
            status = TaskStatus.COMPLETED
        elif result.retryable and node.attempt < policy.max_attempts:
            status = TaskStatus.RETRYING
        else:
            status = TaskStatus.FAILED

        await self.store.record_execution(
            graph.id,
            node.id,
            ExecutionRecord(
                graph_id=graph.id,
                node_id=node.id,
                attempt=node.attempt,
                status=TaskStatus.COMPLETED if result.success else TaskStatus.FAILED,
                organization_id=graph.organization_id,
                campaign_id=graph.campaign_id,
                input=node.input,
                output=result.output,
                error=result.error,
                error_type=result.error_type,
                retryable=result.retryable,
                started_at=node.started_at,
                finished_at=finished_at,
                duration_ms=result.duration_ms,
            ),
        )

        if status == TaskStatus.COMPLETED:
            await self._transition(node, status, output=result.output, error=None, finished_at=finished_at)
            logger.info(f"Node {node.id} completed (attempt {node.attempt})")
            self._emit(events.NODE_COMPLETED, node.id, attempt=node.attempt, duration_ms=result.duration_ms)
            if self.memory:
                self._side_task(self.memory.store_success_memory(graph, node, result))

        elif status == TaskStatus.RETRYING:
            await self._transition(node, status, finished_at=finished_at)
            delay_ms = policy.delay_ms(node.attempt)
            logger.info(f"Node {node.id} failed attempt {node.attempt}, retrying in {delay_ms:.0f}ms: {result.error}")
            self._emit(events.NODE_RETRYING, node.id, attempt=node.attempt, delay_ms=delay_ms, error=result.error)

        else:
            await self._transition(node, status, error=result.error, finished_at=finished_at)
            logger.warning(
                f"Node {node.id} failed after {node.attempt} attempt(s) "
                f"(retryable={result.retryable}): {result.error}"
            )
            self._emit(
                events.NODE_FAILED, node.id, attempt=node.attempt, error=result.error, retryable=result.retryable
            )
            if self.memory:
                self._side_task(self.memory.store_error_memory(graph, node, result))
            await self._propagate_block(node)

    # ------------------------------------------------------------------
    # Manual interventions
    # ------------------------------------------------------------------

    async def retry_failed_task(self, node_id: str) -> TaskStatus:
        """Give a FAILED node a fresh set of attempts.

        Dependents already BLOCKED stay blocked.
        """
        await self._ensure_ready()
        async with self._lock:
            graph = self._graph
            node = graph.require(node_id)
            deps_done = all(graph.nodes[d].status == TaskStatus.COMPLETED for d in node.depends_on)
            target = TaskStatus.READY if deps_done else TaskStatus.PENDING
            await self._transition(
                node,
                target,
                manual=True,
                attempt=0,
                error=None,
                blocked_by=None,
                started_at=None,
                finished_at=None,
            )
            logger.info(f"Node {node_id} reset for retry ({target.value})")
            self._emit(events.NODE_RETRY_REQUESTED, node_id, status=target.value)
        self._wakeup.set()
        return target

    async def skip_blocked_task(self, node_id: str, reason: str | None = None):
        """Mark a PENDING or BLOCKED node SKIPPED.

        Descendants that were blocked before the skip are not re-evaluated.
        """
        await self._ensure_ready()
        async with self._lock:
            node = self._graph.require(node_id)
            reason = reason or "Task skipped"
            await self._transition(
                node, TaskStatus.SKIPPED, manual=True, error=reason, blocked_by=None, finished_at=time.time()
            )
            logger.info(f"Node {node_id} skipped: {reason}")
            self._emit(events.NODE_SKIPPED, node_id, reason=reason)
        self._wakeup.set()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ensure_ready(self):
        if self.graph is None:
            await self.load_graph()
        if not _is_ordered(self._graph):
            # Assembled with add() rather than the planner
            validate_graph(self._graph)
            self._index_graph()
        if not self._saved:
            await self.store.save_graph(self._graph)
            self._saved = True

    def _index_graph(self):
        self._position = {nid: i for i, nid in enumerate(self._graph.nodes)}

    async def _recover_interrupted(self):
        """Nodes persisted as RUNNING lost their worker with the previous process."""
        for node in self._graph.with_status(TaskStatus.RUNNING):
            if node.id in self._in_flight:
                continue
            logger.warning(f"Node {node.id} was RUNNING when the previous run ended; treating as a failed attempt")
            await self._handle_result(
                node.id,
                TaskExecutionResult.failure(
                    "Interrupted before a result was recorded", retryable=True, error_type="Interrupted"
                ),
            )

    async def _transition(self, node: TaskNode, target: TaskStatus, manual: bool = False, **fields):
        allowed = (MANUAL_TRANSITIONS if manual else TRANSITIONS).get(node.status, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(node.id, node.status.value, target.value)

        previous = node.status
        node.status = target
        for name, value in fields.items():
            setattr(node, name, value)
        self.history.append((node.id, previous, target))

        await self.store.persist_node_status(
            self._graph.id,
            node.id,
            target,
            {
                "attempt": node.attempt,
                "output": node.output,
                "error": node.error,
                "blocked_by": node.blocked_by,
                "started_at": node.started_at,
                "finished_at": node.finished_at,
            },
        )
        logger.debug(f"Node {node.id}: {previous.value} -> {target.value}")

    def _emit(self, event_type: str, node_id: str | None = None, /, **data):
        try:
            self.event_bus.emit_simple(event_type, self.graph_id, node_id, **data)
        except Exception as e:
            logger.warning(f"Event sink failed on {event_type}: {e}", exc_info=True)

    def _side_task(self, coro):
        """Best-effort background work; its failure never touches node state."""
        task = asyncio.create_task(coro)
        self._side_tasks.add(task)
        task.add_done_callback(self._side_task_done)

    def _side_task_done(self, task: asyncio.Task):
        self._side_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Memory write for graph {self.graph_id} failed: {exc}")
