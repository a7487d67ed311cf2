"""Command-line interface for planning and running campaign graphs."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from campaigngraph.catalog import TaskCatalog, create_default_catalog
from campaigngraph.config import DATA_DIR, DEFAULT_MODEL, DEFAULT_PARALLELISM, DEFAULT_TASK_TIMEOUT_SECONDS
from campaigngraph.errors import GraphError
from campaigngraph.events import EventBus
from campaigngraph.memory import JsonlMemoryStore
from campaigngraph.models import ExecutionGraph, ExecutionSummary, GoalDescription, Outcome, TaskStatus
from campaigngraph.persistence import JsonFileGraphStore
from campaigngraph.planner import build_graph
from campaigngraph.providers.factory import available_vendors
from campaigngraph.runner import AgentTaskExecutor, CallableTaskExecutor, TaskRunner
from campaigngraph.scheduler import GraphRunner, SchedulerConfig

console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.READY: "yellow",
    TaskStatus.RUNNING: "blue",
    TaskStatus.RETRYING: "magenta",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.BLOCKED: "red",
    TaskStatus.SKIPPED: "dim",
}


def print_templates(catalog: TaskCatalog):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Tasks", style="yellow")
    table.add_column("Description")
    for template in catalog.templates():
        marker = " (default)" if template.name == catalog.default else ""
        table.add_row(template.name + marker, template.title, str(len(template.tasks)), template.description)
    console.print(table)


def print_graph(graph: ExecutionGraph):
    """Print nodes in topological order with their dependencies."""
    console.print(f"\n[bold cyan]Execution graph {graph.id}[/bold cyan] (depth {graph.depth})")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Node ID", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Agent", style="yellow")
    table.add_column("Dependencies", style="blue")
    for node_id in graph.topological_order:
        node = graph.nodes[node_id]
        deps = ", ".join(node.depends_on) if node.depends_on else "none"
        table.add_row(node.id, node.type, node.agent or "-", deps)
    console.print(table)


def print_status(graph: ExecutionGraph):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Node ID", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", style="yellow")
    table.add_column("Error", style="red")
    for node_id in graph.topological_order:
        node = graph.nodes[node_id]
        style = STATUS_STYLES.get(node.status, "white")
        error = node.error[:50] + "..." if node.error and len(node.error) > 50 else (node.error or "-")
        table.add_row(node.id, f"[{style}]{node.status.value}[/{style}]", str(node.attempt), error)
    console.print(table)


def print_summary(summary: ExecutionSummary):
    color = {
        Outcome.SUCCEEDED: "green",
        Outcome.PARTIAL: "yellow",
        Outcome.FAILED: "red",
        Outcome.RUNNING: "blue",
    }[summary.outcome]
    counts = ", ".join(f"{s.value.lower()}={c}" for s, c in summary.counts.items() if c)
    console.print(
        f"\n[bold {color}]{summary.outcome.value}[/bold {color}] "
        f"{summary.progress:.0f}% of {summary.total} tasks ({counts}) in {summary.elapsed_ms / 1000:.1f}s"
    )
    for node_id, root in summary.blocked.items():
        console.print(f"  [dim]{node_id} blocked by {root}[/dim]")


def _goal_from_args(args) -> GoalDescription:
    return GoalDescription(
        organization_id=args.organization,
        objective=args.objective,
        campaign_id=args.campaign,
        template=args.template,
        contact_ids=tuple(args.contact or ()),
    )


async def run_campaign(args, catalog: TaskCatalog) -> ExecutionSummary:
    graph = build_graph(_goal_from_args(args), catalog)
    print_graph(graph)

    data_dir = Path(args.data_dir)
    if args.dry_run:
        executor = CallableTaskExecutor(default=lambda node, task_input: {"message": "No-op task completed"})
    else:
        executor = AgentTaskExecutor(model=args.model)

    runner = GraphRunner(
        graph,
        store=JsonFileGraphStore(data_dir),
        task_runner=TaskRunner(executor, task_timeout_seconds=DEFAULT_TASK_TIMEOUT_SECONDS),
        config=SchedulerConfig.from_defaults(parallelism=args.parallelism),
        event_bus=EventBus(log_file=data_dir / graph.id / "events.jsonl"),
        memory=JsonlMemoryStore(data_dir / graph.id / "memory.jsonl"),
    )

    console.print("\n[bold yellow]Executing graph...[/bold yellow]")
    summary = await runner.run()
    print_status(graph)
    print_summary(summary)
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="campaigngraph", description="Plan and run campaign task graphs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("templates", help="List campaign templates")

    for name, help_text in (("plan", "Print the graph for a template"), ("run", "Build and execute a graph")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("objective", help="What the campaign should achieve")
        p.add_argument("--template", "-t", default=None, help="Template name (default: catalog default)")
        p.add_argument("--organization", "-o", default="local", help="Organization id")
        p.add_argument("--campaign", "-c", default=None, help="Campaign id")
        p.add_argument("--contact", action="append", help="Contact id (repeatable)")
        if name == "run":
            p.add_argument("--dry-run", action="store_true", help="Complete every task with a no-op executor")
            p.add_argument("--parallelism", "-p", type=int, default=DEFAULT_PARALLELISM)
            p.add_argument("--model", default=DEFAULT_MODEL, help="vendor/model for agent tasks")
            p.add_argument("--data-dir", default=str(DATA_DIR), help="Where graph state is written")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    catalog = create_default_catalog()

    try:
        if args.command == "templates":
            print_templates(catalog)
        elif args.command == "plan":
            print_graph(build_graph(_goal_from_args(args), catalog))
        elif args.command == "run":
            if not args.dry_run and not available_vendors():
                console.print(
                    "[red]ERROR: No model provider configured. "
                    "Set ANTHROPIC_API_KEY or OPENAI_API_KEY in .env, or use --dry-run.[/red]"
                )
                return 2
            summary = asyncio.run(run_campaign(args, catalog))
            return 0 if summary.outcome == Outcome.SUCCEEDED else 1
    except GraphError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 2
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user.[/yellow]")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
