"""Runs a single node and turns whatever happened into a TaskExecutionResult."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from campaigngraph.config import DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_TEMPERATURE
from campaigngraph.errors import TaskExecutionError
from campaigngraph.models import TaskExecutionResult, TaskNode
from campaigngraph.providers import ModelProvider, create_provider

logger = logging.getLogger(__name__)


class TaskExecutor(ABC):
    """The external collaborator that actually does a task's work."""

    @abstractmethod
    async def execute(self, node: TaskNode, task_input: dict[str, Any]) -> Any:
        """Do the work and return its output. Raise to signal failure."""

    def is_retryable(self, error: BaseException) -> bool:
        """Classify an unexpected exception. Unknown failures are permanent."""
        return False


class TaskRunner:
    """Stateless with respect to the graph: reads a node, returns a result."""

    def __init__(self, executor: TaskExecutor, task_timeout_seconds: float | None = None):
        self.executor = executor
        self.task_timeout_seconds = task_timeout_seconds or None

    async def run(self, node: TaskNode, resolved_inputs: dict[str, Any]) -> TaskExecutionResult:
        missing = [d for d in node.depends_on if d not in resolved_inputs]
        if missing:
            # The scheduler only dispatches nodes whose dependencies are COMPLETED
            logger.error(f"Node {node.id} dispatched without outputs for: {', '.join(missing)}")
            return TaskExecutionResult.failure(
                f"Missing dependency outputs: {', '.join(missing)}",
                retryable=False,
                error_type="MissingDependencyOutput",
            )

        task_input = {
            **node.input,
            "dependency_outputs": {d: resolved_inputs[d] for d in node.depends_on},
        }

        start = time.monotonic()
        try:
            if self.task_timeout_seconds:
                output = await asyncio.wait_for(
                    self.executor.execute(node, task_input), timeout=self.task_timeout_seconds
                )
            else:
                output = await self.executor.execute(node, task_input)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            # Raised by wait_for, or by the executor itself with no task timeout set
            if self.task_timeout_seconds:
                message = f"Task timed out after {self.task_timeout_seconds}s"
            else:
                message = str(e) or "TimeoutError"
            return TaskExecutionResult.failure(
                message,
                retryable=True,
                error_type="TimeoutError",
                duration_ms=_elapsed_ms(start),
            )
        except TaskExecutionError as e:
            return TaskExecutionResult.failure(
                str(e), retryable=e.retryable, error_type=type(e).__name__, duration_ms=_elapsed_ms(start)
            )
        except Exception as e:
            retryable = self.executor.is_retryable(e)
            logger.warning(f"Node {node.id} raised {type(e).__name__} (retryable={retryable}): {e}")
            return TaskExecutionResult.failure(
                str(e) or type(e).__name__,
                retryable=retryable,
                error_type=type(e).__name__,
                duration_ms=_elapsed_ms(start),
            )

        return TaskExecutionResult.ok(output, duration_ms=_elapsed_ms(start))


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

TaskHandler = Callable[[TaskNode, dict[str, Any]], Awaitable[Any] | Any]


class CallableTaskExecutor(TaskExecutor):
    """Dispatches to a handler registered per task type."""

    def __init__(self, default: TaskHandler | None = None):
        self._handlers: dict[str, TaskHandler] = {}
        self._default = default

    def register(self, task_type: str, handler: TaskHandler):
        self._handlers[task_type] = handler

    def types(self) -> list[str]:
        return list(self._handlers.keys())

    async def execute(self, node: TaskNode, task_input: dict[str, Any]) -> Any:
        handler = self._handlers.get(node.type, self._default)
        if handler is None:
            raise TaskExecutionError(f"No handler registered for task type '{node.type}'", retryable=False)

        result = handler(node, task_input)
        # Handle both sync and async handlers
        if hasattr(result, "__await__"):
            result = await result
        return result


class AgentTaskExecutor(TaskExecutor):
    """Performs a task with a language-model call on behalf of the node's agent."""

    def __init__(
        self,
        provider: ModelProvider | None = None,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.provider = provider or create_provider(model)
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def execute(self, node: TaskNode, task_input: dict[str, Any]) -> Any:
        if not node.agent:
            # No agent: a manual checkpoint that completes immediately
            return {"message": "No-op task completed"}

        system = task_input.get("system_prompt") or (
            f"You are a {node.agent} agent executing a {node.type} task for a marketing campaign.\n"
            "Complete the task and return your results as a JSON object."
        )
        prompt = task_input.get("prompt") or self._build_prompt(node, task_input)

        response = await self.provider.generate(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            temperature=task_input.get("temperature", self.temperature),
            max_tokens=task_input.get("max_tokens", self.max_tokens),
            json_mode=True,
        )
        if not response.text:
            raise TaskExecutionError(f"Agent {node.agent} returned an empty response", retryable=True)

        logger.info(
            f"[{node.agent}] {node.id} used {response.usage.input_tokens}+{response.usage.output_tokens} tokens"
        )
        return _parse_output(response.text)

    def is_retryable(self, error: BaseException) -> bool:
        return self.provider.is_retryable(error)

    def _build_prompt(self, node: TaskNode, task_input: dict[str, Any]) -> str:
        details = {k: v for k, v in task_input.items() if k not in ("system_prompt", "prompt")}
        return (
            f"Task: {node.description or node.type} (node {node.id})\n\n"
            f"Input:\n{json.dumps(details, indent=2, default=str)}"
        )


def _parse_output(text: str) -> Any:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.strip("`")
        if stripped.startswith("json"):
            stripped = stripped[4:]
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return {"text": text}
