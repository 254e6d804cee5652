"""Agent rules and guardrails."""

from agentflow.rules.conditions import MISSING, evaluate_condition, evaluate_conditions, resolve_path
from agentflow.rules.engine import RuleEngine

__all__ = [
    "MISSING",
    "RuleEngine",
    "evaluate_condition",
    "evaluate_conditions",
    "resolve_path",
]
