"""Plan generation and execution."""

from agentflow.planning.executor import PlanExecutor
from agentflow.planning.generator import PlanGenerator, parse_draft
from agentflow.planning.templates import resolve_templates

__all__ = ["PlanExecutor", "PlanGenerator", "parse_draft", "resolve_templates"]
