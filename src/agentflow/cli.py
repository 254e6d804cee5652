"""AgentFlow operator CLI."""

import asyncio
import json
import sys
from collections.abc import Callable
from functools import wraps
from typing import Any

import click
import structlog
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from agentflow.config import get_settings
from agentflow.core.errors import AgentFlowError
from agentflow.core.models import MemoryKind, Plan, PlanningContext, RuleKind
from agentflow.database.session import init_db
from agentflow.runtime import AgentRuntime, build_runtime
from agentflow.utils.logging import configure_logging

console = Console()
logger = structlog.get_logger()

STATUS_STYLES = {
    "pending": "dim",
    "in_progress": "yellow",
    "completed": "green",
    "failed": "red",
    "cancelled": "magenta",
    "skipped": "dim",
}


def _runtime() -> AgentRuntime:
    return build_runtime(get_settings())


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report AgentFlow errors as a red message and exit code 1."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AgentFlowError as e:
            logger.error("cli_command_failed", command=func.__name__, error=str(e))
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            sys.exit(1)

    return wrapper


def _parse_json_list(value: str, option: str) -> list[Any]:
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint=option)
    if not isinstance(data, list):
        raise click.BadParameter("expected a JSON array", param_hint=option)
    return data


def _print_plan(plan: Plan) -> None:
    style = STATUS_STYLES.get(plan.status.value, "")
    console.print(f"[bold]{plan.id}[/bold]  [{style}]{plan.status.value}[/{style}]")
    console.print(f"Task: {plan.task}")
    if plan.error:
        console.print(f"[red]Error: {plan.error}[/red]")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Description")
    table.add_column("Tool")
    table.add_column("Deps")
    table.add_column("Status")
    for step in plan.steps:
        step_style = STATUS_STYLES.get(step.status.value, "")
        table.add_row(
            str(step.order),
            step.description,
            ".".join(p for p in (step.tool, step.action) if p) or "-",
            ",".join(str(d) for d in step.dependencies) or "-",
            f"[{step_style}]{step.status.value}[/{step_style}]",
        )
    console.print(table)

    if plan.result is not None:
        console.print(f"Result: {json.dumps(plan.result, default=str)[:500]}")


@click.group()
@click.version_option()
def main():
    """AgentFlow - plans, rules and memory for agents."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


@main.command(name="init-db")
def init_db_command():
    """Create the database tables."""
    settings = get_settings()
    init_db(settings.database_url)
    console.print(f"[green]✓[/green] Database initialized: {settings.database_url}")


# ============================================================================
# Plans
# ============================================================================


@main.group()
def plan():
    """Create, run and inspect plans."""
    pass


@plan.command(name="create")
@click.argument("task")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@click.option("--owner", "owner_id", required=True, help="Owner (user) ID")
@click.option("--tool", "tools", multiple=True, help="Available tool (repeatable)")
@click.option("--kb", "knowledge_base_ids", multiple=True, help="Knowledge base ID (repeatable)")
@click.option("--constraint", "constraints", multiple=True, help="Constraint (repeatable)")
@click.option("--max-steps", type=int, default=None, help="Maximum number of steps")
@handle_errors
def plan_create(task, agent_id, owner_id, tools, knowledge_base_ids, constraints, max_steps):
    """Draft a plan for TASK."""
    runtime = _runtime()
    if runtime.generator is None:
        console.print("[bold red]Error:[/bold red] ANTHROPIC_API_KEY is required to draft plans")
        sys.exit(1)

    context = PlanningContext(
        agent_id=agent_id,
        owner_id=owner_id,
        available_tools=list(tools),
        knowledge_base_ids=list(knowledge_base_ids),
        constraints=list(constraints),
        max_steps=max_steps,
    )
    created = asyncio.run(runtime.generator.create_plan(task, context))
    _print_plan(created)
    if not created.steps:
        console.print("[yellow]Warning: the drafted plan has no steps[/yellow]")


@plan.command(name="run")
@click.argument("plan_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def plan_run(plan_id, agent_id):
    """Execute PLAN_ID."""
    runtime = _runtime()
    result = asyncio.run(runtime.executor.execute_plan(plan_id, agent_id))
    _print_plan(result)
    if result.status.value == "failed":
        sys.exit(1)


@plan.command(name="show")
@click.argument("plan_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def plan_show(plan_id, agent_id):
    """Show PLAN_ID."""
    found = _runtime().executor.get_plan(plan_id, agent_id)
    if found is None:
        console.print(f"[bold red]Error:[/bold red] Plan '{plan_id}' not found")
        sys.exit(1)
    _print_plan(found)


@plan.command(name="list")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def plan_list(agent_id):
    """List an agent's plans."""
    plans = _runtime().executor.list_plans(agent_id)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    for p in plans:
        style = STATUS_STYLES.get(p.status.value, "")
        table.add_row(
            p.id,
            p.task[:60],
            f"[{style}]{p.status.value}[/{style}]",
            f"{p.current_step_index}/{len(p.steps)}",
        )
    console.print(table)


@plan.command(name="cancel")
@click.argument("plan_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def plan_cancel(plan_id, agent_id):
    """Cancel PLAN_ID."""
    _runtime().executor.cancel_plan(plan_id, agent_id)
    console.print(f"[green]✓[/green] Plan {plan_id} cancelled")


# ============================================================================
# Rules
# ============================================================================


@main.group()
def rules():
    """Manage agent rules and guardrails."""
    pass


@rules.command(name="list")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def rules_list(agent_id):
    """List an agent's rules, highest priority first."""
    all_rules = sorted(_runtime().rules.get_rules(agent_id), key=lambda r: r.priority, reverse=True)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Priority", justify="right")
    table.add_column("Enabled")
    table.add_column("Actions")
    for rule in all_rules:
        table.add_row(
            rule.id,
            rule.name,
            rule.kind.value,
            str(rule.priority),
            "[green]yes[/green]" if rule.enabled else "[dim]no[/dim]",
            ", ".join(a.kind.value for a in rule.actions),
        )
    console.print(table)


@rules.command(name="add")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@click.option("--owner", "owner_id", required=True, help="Owner (user) ID")
@click.option("--name", required=True, help="Rule name")
@click.option("--description", default="", help="Rule description")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in RuleKind]),
    default=RuleKind.CONDITION.value,
    help="Rule kind",
)
@click.option("--priority", type=int, default=None, help="Priority (higher evaluates first)")
@click.option("--conditions", default="[]", help="Conditions as a JSON array")
@click.option("--actions", default="[]", help="Actions as a JSON array")
@handle_errors
def rules_add(agent_id, owner_id, name, description, kind, priority, conditions, actions):
    """Create a rule."""
    rule = _runtime().rules.create_rule(
        agent_id,
        owner_id,
        name,
        description,
        kind,
        _parse_json_list(conditions, "--conditions"),
        _parse_json_list(actions, "--actions"),
        priority=priority,
    )
    console.print(f"[green]✓[/green] Rule created: {rule.id} (priority {rule.priority})")


@rules.command(name="toggle")
@click.argument("rule_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@click.option("--enable/--disable", default=True, help="Enable or disable the rule")
@handle_errors
def rules_toggle(rule_id, agent_id, enable):
    """Enable or disable RULE_ID."""
    rule = _runtime().rules.toggle_rule(rule_id, agent_id, enable)
    console.print(f"[green]✓[/green] Rule {rule.id} {'enabled' if rule.enabled else 'disabled'}")


@rules.command(name="delete")
@click.argument("rule_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def rules_delete(rule_id, agent_id):
    """Delete RULE_ID."""
    _runtime().rules.delete_rule(rule_id, agent_id)
    console.print(f"[green]✓[/green] Rule {rule_id} deleted")


# ============================================================================
# Memory
# ============================================================================


@main.group()
def memory():
    """Inspect and maintain agent memory."""
    pass


@memory.command(name="add")
@click.argument("content")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@click.option("--owner", "owner_id", required=True, help="Owner (user) ID")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in MemoryKind]),
    default=MemoryKind.SHORT_TERM.value,
    help="Memory kind",
)
@click.option("--importance", type=float, default=0.5, help="Importance in [0, 1]")
@click.option("--ttl-days", type=float, default=None, help="Days until the memory expires")
@handle_errors
def memory_add(content, agent_id, owner_id, kind, importance, ttl_days):
    """Store CONTENT as a memory."""
    stored = _runtime().memory.store(
        agent_id, owner_id, content, kind, importance, ttl_days=ttl_days
    )
    console.print(f"[green]✓[/green] Memory stored: {stored.id} (importance {stored.importance:.2f})")


@memory.command(name="list")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@click.option("--kind", type=click.Choice([k.value for k in MemoryKind]), default=None)
@click.option("--min-importance", type=float, default=None)
@click.option("--limit", type=int, default=20, show_default=True)
@handle_errors
def memory_list(agent_id, kind, min_importance, limit):
    """List an agent's memories, best first (counts as an access)."""
    memories = _runtime().memory.retrieve(
        agent_id, kind=kind, min_importance=min_importance, limit=limit
    )

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Kind")
    table.add_column("Importance", justify="right")
    table.add_column("Accesses", justify="right")
    table.add_column("Content")
    for m in memories:
        table.add_row(m.id, m.kind.value, f"{m.importance:.2f}", str(m.access_count), m.content[:80])
    console.print(table)


@memory.command(name="stats")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def memory_stats(agent_id):
    """Show memory statistics for an agent."""
    stats = _runtime().memory.get_stats(agent_id)
    console.print(f"Total: {stats.total}")
    for kind, count in sorted(stats.by_kind.items()):
        console.print(f"  {kind}: {count}")
    console.print(f"Average importance: {stats.avg_importance:.2f}")


@memory.command(name="consolidate")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@click.option("--owner", "owner_id", required=True, help="Owner (user) ID")
@handle_errors
def memory_consolidate(agent_id, owner_id):
    """Merge important short-term memories into long-term memories."""
    created = _runtime().memory.consolidate(agent_id, owner_id)
    console.print(f"[green]✓[/green] Created {len(created)} long-term memories")


@memory.command(name="delete")
@click.argument("memory_id")
@click.option("--agent", "agent_id", required=True, help="Agent ID")
@handle_errors
def memory_delete(memory_id, agent_id):
    """Delete MEMORY_ID."""
    _runtime().memory.delete_memory(memory_id, agent_id)
    console.print(f"[green]✓[/green] Memory {memory_id} deleted")


if __name__ == "__main__":
    main()
