"""Graph builder — turns a goal into a validated execution graph."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from campaigngraph.config import PLANNER_MAX_DEPTH, PLANNER_MAX_TASKS, PLANNER_TEMPERATURE
from campaigngraph.errors import InvalidGraphError, PlanningError
from campaigngraph.models import ExecutionGraph, GoalDescription, TaskNode, TaskSpec

if TYPE_CHECKING:
    from campaigngraph.catalog import TaskCatalog
    from campaigngraph.providers import ModelProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def build_graph(goal: GoalDescription, catalog: "TaskCatalog") -> ExecutionGraph:
    """Expand a goal through the catalog and build its execution graph.

    Raises InvalidGraphError if the expanded tasks do not form a DAG.
    """
    specs = catalog.expand(goal)
    return build_graph_from_specs(goal, specs)


def build_graph_from_specs(goal: GoalDescription, specs: list[TaskSpec]) -> ExecutionGraph:
    graph = ExecutionGraph(
        organization_id=goal.organization_id,
        campaign_id=goal.campaign_id,
        objective=goal.objective,
    )
    created_at = time.time()
    for spec in specs:
        graph.add(
            TaskNode(
                id=spec.id,
                type=spec.type,
                input=dict(spec.input),
                depends_on=list(dict.fromkeys(spec.prerequisites)),
                agent=spec.agent,
                description=spec.description,
                created_at=created_at,
            )
        )

    validate_graph(graph)
    logger.info(
        f"Built graph {graph.id}: {len(graph.nodes)} nodes, {len(graph.edges)} edges, depth {graph.depth}"
    )
    return graph


def validate_graph(graph: ExecutionGraph) -> ExecutionGraph:
    """Check structure, then fill in topological order and depth."""
    for node in graph.nodes.values():
        missing = [d for d in node.depends_on if d not in graph.nodes]
        if missing:
            raise InvalidGraphError(f"Node {node.id} depends on unknown node(s): {', '.join(missing)}")
    for from_id, to_id in graph.edges:
        if from_id not in graph.nodes or to_id not in graph.nodes:
            raise InvalidGraphError(f"Edge {from_id} -> {to_id} references an unknown node")

    cycle = find_cycle(graph)
    if cycle:
        raise InvalidGraphError(f"Cycle detected: {' -> '.join(cycle)}", cycle=cycle)

    graph.topological_order = topological_order(graph)
    graph.depth = compute_depth(graph, graph.topological_order)
    return graph


def find_cycle(graph: ExecutionGraph) -> list[str] | None:
    """DFS over dependency edges. Returns the first cycle found, in edge direction."""
    white, grey, black = 0, 1, 2
    color = {nid: white for nid in graph.nodes}
    stack: list[str] = []

    def visit(node_id: str) -> list[str] | None:
        color[node_id] = grey
        stack.append(node_id)
        for dep in graph.nodes[node_id].depends_on:
            if color[dep] == grey:
                # stack holds a dependency chain, so reverse it to read upstream -> downstream
                path = stack[stack.index(dep):] + [dep]
                return list(reversed(path))
            if color[dep] == white:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[node_id] = black
        return None

    for node_id in graph.nodes:
        if color[node_id] == white:
            found = visit(node_id)
            if found:
                return found
    return None


def topological_order(graph: ExecutionGraph) -> list[str]:
    """Kahn's algorithm; among ready nodes, insertion order wins."""
    indegree = {nid: len(n.depends_on) for nid, n in graph.nodes.items()}
    position = {nid: i for i, nid in enumerate(graph.nodes)}
    dependents: dict[str, list[str]] = {nid: [] for nid in graph.nodes}
    for node in graph.nodes.values():
        for dep in node.depends_on:
            dependents[dep].append(node.id)

    ready = [nid for nid, deg in indegree.items() if deg == 0]
    order: list[str] = []
    while ready:
        ready.sort(key=position.__getitem__)
        current = ready.pop(0)
        order.append(current)
        for child in dependents[current]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)

    if len(order) != len(graph.nodes):
        raise InvalidGraphError("Graph is not acyclic")
    return order


def compute_depth(graph: ExecutionGraph, order: list[str]) -> int:
    """Longest dependency chain, in edges. Roots sit at depth 0."""
    level: dict[str, int] = {}
    for node_id in order:
        deps = graph.nodes[node_id].depends_on
        level[node_id] = max((level[d] + 1 for d in deps), default=0)
    return max(level.values(), default=0)


# ---------------------------------------------------------------------------
# Model-backed planning
# ---------------------------------------------------------------------------


class PlannedTask(BaseModel):
    step: int
    title: str
    description: str = ""
    type: str = "agent_task"
    agent: str | None = None
    dependencies: list[int] = Field(default_factory=list)


class Plan(BaseModel):
    tasks: list[PlannedTask]
    reasoning: str = ""


_PLANNER_SYSTEM = """You are an expert task planner for autonomous marketing agents.

Break the goal into concrete, executable tasks that form a directed acyclic graph.

Guidelines:
1. Tasks must be specific and actionable
2. Identify dependencies between tasks by step number
3. Assign an agent to each task (e.g. crm-agent, content-agent, seo-agent, pr-agent, quality-agent)
4. Keep the graph simple
5. At most {max_tasks} tasks
6. At most {max_depth} levels of dependencies

Respond with JSON only:
{{
  "tasks": [
    {{"step": 1, "title": "...", "description": "...", "type": "content", "agent": "content-agent", "dependencies": []}}
  ],
  "reasoning": "why this plan"
}}"""

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_plan(text: str) -> Plan:
    match = _FENCE.search(text)
    body = match.group(1) if match else text
    try:
        return Plan.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError) as e:
        raise PlanningError(f"Model returned an unusable plan: {e}") from e


def plan_to_specs(plan: Plan, goal: GoalDescription) -> list[TaskSpec]:
    specs = []
    for task in sorted(plan.tasks, key=lambda t: t.step):
        specs.append(
            TaskSpec(
                id=f"task-{task.step}",
                type=task.type,
                agent=task.agent,
                description=task.description,
                prerequisites=[f"task-{d}" for d in task.dependencies],
                input={
                    "title": task.title,
                    "description": task.description,
                    "objective": goal.objective,
                    "campaign_id": goal.campaign_id,
                },
            )
        )
    return specs


async def plan_from_goal(
    goal: GoalDescription,
    provider: "ModelProvider",
    max_tasks: int = PLANNER_MAX_TASKS,
    max_depth: int = PLANNER_MAX_DEPTH,
) -> ExecutionGraph:
    """Ask the model for a task breakdown and build a graph from it."""
    logger.info(f"Planning graph for goal: {goal.objective[:80]}")

    user = f"Goal: {goal.objective}"
    if goal.context:
        user += f"\n\nContext:\n{json.dumps(goal.context, indent=2, default=str)}"
    user += "\n\nGenerate a task breakdown and execution plan."

    response = await provider.generate(
        messages=[{"role": "user", "content": user}],
        system=_PLANNER_SYSTEM.format(max_tasks=max_tasks, max_depth=max_depth),
        temperature=PLANNER_TEMPERATURE,
        max_tokens=2000,
        json_mode=True,
    )
    if not response.text:
        raise PlanningError("Model returned no content")

    plan = parse_plan(response.text)
    if not plan.tasks:
        raise PlanningError("Model returned an empty plan")
    if len(plan.tasks) > max_tasks:
        raise PlanningError(f"Plan has {len(plan.tasks)} tasks, limit is {max_tasks}")

    graph = build_graph_from_specs(goal, plan_to_specs(plan, goal))
    if graph.depth >= max_depth:
        raise PlanningError(f"Plan is {graph.depth + 1} levels deep, limit is {max_depth}")

    logger.info(f"Plan reasoning: {plan.reasoning[:200]}")
    return graph
