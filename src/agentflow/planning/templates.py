"""Step parameter templating.

A step's params may reference the result of an earlier completed step with
``{{step_N_result}}``. A param that is exactly one placeholder takes the
result as is; a placeholder inside a longer string is replaced by the
result's text. References to steps that are not earlier and completed stay
literal.
"""

import json
import re
from typing import Any

from agentflow.core.models import Step, StepStatus

PLACEHOLDER = re.compile(r"\{\{step_(\d+)_result\}\}")


def _available(index: int, steps: list[Step], current_index: int) -> bool:
    return index < current_index and index < len(steps) and steps[index].status == StepStatus.COMPLETED


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def _resolve_string(value: str, steps: list[Step], current_index: int) -> Any:
    whole = PLACEHOLDER.fullmatch(value)
    if whole:
        index = int(whole.group(1))
        return steps[index].result if _available(index, steps, current_index) else value

    def substitute(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if not _available(index, steps, current_index):
            return match.group(0)
        return _as_text(steps[index].result)

    return PLACEHOLDER.sub(substitute, value)


def _resolve_value(value: Any, steps: list[Step], current_index: int) -> Any:
    if isinstance(value, str):
        return _resolve_string(value, steps, current_index)
    if isinstance(value, dict):
        return {k: _resolve_value(v, steps, current_index) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(v, steps, current_index) for v in value]
    return value


def resolve_templates(params: dict[str, Any], steps: list[Step], current_index: int) -> dict[str, Any]:
    """Return a copy of ``params`` with step-result placeholders substituted.

    Args:
        params: Step params (not modified)
        steps: All steps of the plan
        current_index: Index of the step about to run

    Returns:
        Resolved params
    """
    return {key: _resolve_value(value, steps, current_index) for key, value in params.items()}
