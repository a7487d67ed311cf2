"""Test the task runner and executors."""

import asyncio

import httpx

from campaigngraph.errors import TaskExecutionError
from campaigngraph.models import ModelResponse, TaskNode, TokenUsage
from campaigngraph.providers.base import ModelProvider, ProviderAdapter
from campaigngraph.runner import AgentTaskExecutor, CallableTaskExecutor, TaskExecutor, TaskRunner


class RecordingExecutor(TaskExecutor):
    def __init__(self, outcome=None, exc=None, delay=0.0):
        self.outcome = outcome
        self.exc = exc
        self.delay = delay
        self.inputs = []

    async def execute(self, node, task_input):
        self.inputs.append(task_input)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc:
            raise self.exc
        return self.outcome


def test_success_passes_dependency_outputs():
    executor = RecordingExecutor(outcome={"done": True})
    node = TaskNode(id="b", type="draft", input={"tone": "formal"}, depends_on=["a"])
    result = asyncio.run(TaskRunner(executor).run(node, {"a": {"contacts": 3}}))

    assert result.success
    assert result.output == {"done": True}
    assert result.duration_ms >= 0
    assert executor.inputs[0] == {"tone": "formal", "dependency_outputs": {"a": {"contacts": 3}}}


def test_missing_dependency_output_is_permanent_failure():
    executor = RecordingExecutor(outcome=1)
    node = TaskNode(id="b", type="draft", depends_on=["a"])
    result = asyncio.run(TaskRunner(executor).run(node, {}))

    assert not result.success
    assert not result.retryable
    assert result.error_type == "MissingDependencyOutput"
    assert executor.inputs == []


def test_task_execution_error_keeps_its_classification():
    node = TaskNode(id="a", type="t")
    transient = asyncio.run(TaskRunner(RecordingExecutor(exc=TaskExecutionError("busy", retryable=True))).run(node, {}))
    assert not transient.success and transient.retryable
    assert transient.error == "busy"

    permanent = asyncio.run(TaskRunner(RecordingExecutor(exc=TaskExecutionError("bad input"))).run(node, {}))
    assert not permanent.retryable
    assert permanent.error_type == "TaskExecutionError"


def test_unknown_exceptions_are_not_retryable_by_default():
    node = TaskNode(id="a", type="t")
    result = asyncio.run(TaskRunner(RecordingExecutor(exc=ValueError("nope"))).run(node, {}))
    assert not result.success
    assert not result.retryable
    assert result.error == "nope"
    assert result.error_type == "ValueError"


def test_task_timeout_is_retryable():
    node = TaskNode(id="a", type="t")
    runner = TaskRunner(RecordingExecutor(outcome=1, delay=1.0), task_timeout_seconds=0.01)
    result = asyncio.run(runner.run(node, {}))
    assert not result.success
    assert result.retryable
    assert result.error_type == "TimeoutError"
    assert result.error == "Task timed out after 0.01s"


def test_executor_timeout_without_task_timeout_keeps_its_message():
    node = TaskNode(id="a", type="t")
    result = asyncio.run(TaskRunner(RecordingExecutor(exc=TimeoutError("upstream slow"))).run(node, {}))
    assert not result.success
    assert result.retryable
    assert result.error == "upstream slow"

    bare = asyncio.run(TaskRunner(RecordingExecutor(exc=TimeoutError())).run(node, {}))
    assert bare.error == "TimeoutError"


def test_callable_executor_sync_and_async_handlers():
    executor = CallableTaskExecutor()
    executor.register("sync", lambda node, task_input: {"sync": node.id})

    async def async_handler(node, task_input):
        return {"async": node.id}

    executor.register("async", async_handler)
    runner = TaskRunner(executor)

    assert asyncio.run(runner.run(TaskNode(id="a", type="sync"), {})).output == {"sync": "a"}
    assert asyncio.run(runner.run(TaskNode(id="b", type="async"), {})).output == {"async": "b"}
    assert set(executor.types()) == {"sync", "async"}


def test_callable_executor_without_handler_fails_permanently():
    result = asyncio.run(TaskRunner(CallableTaskExecutor()).run(TaskNode(id="a", type="unknown"), {}))
    assert not result.success
    assert not result.retryable
    assert "No handler" in result.error


# ---------------------------------------------------------------------------
# Agent executor
# ---------------------------------------------------------------------------


class FakeAdapter(ProviderAdapter):
    def __init__(self, text=None, exc=None):
        self.text = text
        self.exc = exc
        self.calls = []

    async def generate(self, messages, system=None, temperature=0.7, max_tokens=4096, json_mode=False):
        self.calls.append({"messages": messages, "system": system, "json_mode": json_mode})
        if self.exc:
            raise self.exc
        return ModelResponse(text=self.text, usage=TokenUsage(10, 5))

    def is_retryable(self, error):
        return False


def test_agent_executor_parses_json_output():
    adapter = FakeAdapter(text='```json\n{"pitch": "hello"}\n```')
    executor = AgentTaskExecutor(provider=ModelProvider(adapter))
    node = TaskNode(id="draft", type="draft", agent="content-agent", description="Write a pitch")
    result = asyncio.run(TaskRunner(executor).run(node, {}))

    assert result.success
    assert result.output == {"pitch": "hello"}
    assert adapter.calls[0]["json_mode"] is True
    assert "content-agent" in adapter.calls[0]["system"]
    assert "Write a pitch" in adapter.calls[0]["messages"][0]["content"]


def test_agent_executor_wraps_plain_text():
    executor = AgentTaskExecutor(provider=ModelProvider(FakeAdapter(text="just words")))
    result = asyncio.run(TaskRunner(executor).run(TaskNode(id="a", type="t", agent="pr-agent"), {}))
    assert result.output == {"text": "just words"}


def test_agent_executor_without_agent_is_noop():
    adapter = FakeAdapter(text="unused")
    executor = AgentTaskExecutor(provider=ModelProvider(adapter))
    result = asyncio.run(TaskRunner(executor).run(TaskNode(id="a", type="checkpoint"), {}))
    assert result.output == {"message": "No-op task completed"}
    assert adapter.calls == []


def test_agent_executor_empty_response_is_retryable():
    executor = AgentTaskExecutor(provider=ModelProvider(FakeAdapter(text="")))
    result = asyncio.run(TaskRunner(executor).run(TaskNode(id="a", type="t", agent="pr-agent"), {}))
    assert not result.success
    assert result.retryable


def test_agent_executor_transport_errors_are_retryable():
    adapter = FakeAdapter(exc=httpx.ConnectError("connection refused"))
    executor = AgentTaskExecutor(provider=ModelProvider(adapter))
    result = asyncio.run(TaskRunner(executor).run(TaskNode(id="a", type="t", agent="pr-agent"), {}))
    assert not result.success
    assert result.retryable
    assert result.error_type == "ConnectError"
