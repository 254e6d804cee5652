"""Core data models for AgentFlow."""

import re
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from agentflow.utils.coercion import to_number


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    """Generate a prefixed unique identifier (e.g. ``plan_<uuid>``)."""
    return f"{prefix}_{uuid.uuid4()}"


# ============================================================================
# Enums
# ============================================================================


class PlanStatus(str, Enum):
    """Plan lifecycle: pending -> in_progress -> completed | failed | cancelled."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PLAN_STATUSES = frozenset(
    {PlanStatus.COMPLETED, PlanStatus.FAILED, PlanStatus.CANCELLED}
)


class StepStatus(str, Enum):
    """Step lifecycle: pending -> in_progress -> completed | failed | skipped."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RuleKind(str, Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    GUARDRAIL = "guardrail"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    REGEX = "regex"
    EXISTS = "exists"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ActionKind(str, Enum):
    """Action kinds. Only STOP_EXECUTION has meaning to the engine itself."""

    EXECUTE_TOOL = "execute_tool"
    SEND_NOTIFICATION = "send_notification"
    STORE_MEMORY = "store_memory"
    UPDATE_CONTEXT = "update_context"
    STOP_EXECUTION = "stop_execution"


class MemoryKind(str, Enum):
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"
    EPISODIC = "episodic"
    SEMANTIC = "semantic"


# ============================================================================
# Plans
# ============================================================================


class Step(BaseModel):
    """One unit of work within a Plan."""

    id: str = Field(default_factory=lambda: new_id("step"))
    order: int = Field(..., ge=0, description="Position in the plan at creation time")
    description: str
    tool: str | None = None
    action: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: str | None = None
    dependencies: list[int] = Field(
        default_factory=list, description="Indices of steps that must be completed first"
    )
    started_at: datetime | None = None
    completed_at: datetime | None = None


class Plan(BaseModel):
    """An ordered set of steps generated to accomplish one task."""

    id: str = Field(default_factory=lambda: new_id("plan"))
    agent_id: str
    owner_id: str
    task: str
    steps: list[Step] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    current_step_index: int = Field(0, ge=0)
    result: Any = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PLAN_STATUSES

    def last_completed_result(self) -> Any:
        """Result of the highest-index completed step, or None."""
        for step in reversed(self.steps):
            if step.status == StepStatus.COMPLETED:
                return step.result
        return None


class PlanningContext(BaseModel):
    """Inputs to plan generation besides the task text."""

    agent_id: str
    owner_id: str
    available_tools: list[str] = Field(default_factory=list)
    knowledge_base_ids: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    max_steps: int | None = Field(None, ge=1)


# ============================================================================
# Rules
# ============================================================================


class Condition(BaseModel):
    """A single comparison against a dot-path field of the evaluation context."""

    field: str = Field(..., min_length=1, description="Dot path into the evaluation context")
    operator: ConditionOperator
    value: Any = None
    logical_operator: LogicalOperator | None = Field(
        None,
        validation_alias=AliasChoices("logical_operator", "logicalOperator"),
        description="How this condition folds into the running result (default AND)",
    )

    @model_validator(mode="after")
    def check_operand(self) -> "Condition":
        if self.operator == ConditionOperator.REGEX:
            if not isinstance(self.value, str):
                raise ValueError("regex condition requires a string pattern")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"invalid regex pattern {self.value!r}: {e}") from e
        elif self.operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            if to_number(self.value) is None:
                raise ValueError(
                    f"{self.operator.value} condition requires a numeric value, got {self.value!r}"
                )
        return self


class Action(BaseModel):
    """An effect requested by a matched rule."""

    kind: ActionKind = Field(..., validation_alias=AliasChoices("kind", "type"))
    params: dict[str, Any] = Field(default_factory=dict)


class Rule(BaseModel):
    """A named, prioritized condition -> action definition scoped to one agent."""

    id: str = Field(default_factory=lambda: new_id("rule"))
    agent_id: str
    owner_id: str
    name: str = Field(..., min_length=1)
    description: str = ""
    kind: RuleKind
    priority: int = Field(..., strict=True, description="Higher is evaluated first")
    enabled: bool = Field(True, strict=True)
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def stops_execution(self) -> bool:
        return any(a.kind == ActionKind.STOP_EXECUTION for a in self.actions)


class RuleEvaluation(BaseModel):
    """Aggregate outcome of evaluating an agent's rules against a context."""

    matched_rules: list[Rule] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    should_stop: bool = False
    stop_reason: str | None = None


# ============================================================================
# Memory
# ============================================================================


def clamp_importance(value: Any) -> float:
    """Importance always lands in [0, 1]."""
    number = to_number(value)
    if number is None:
        raise ValueError(f"importance must be a number, got {value!r}")
    return max(0.0, min(1.0, number))


class Memory(BaseModel):
    """A stored note associated with an agent, ranked by importance."""

    id: str = Field(default_factory=lambda: new_id("mem"))
    agent_id: str
    owner_id: str
    kind: MemoryKind = MemoryKind.SHORT_TERM
    content: str
    context: dict[str, Any] | None = None
    importance: float = 0.5
    access_count: int = Field(0, ge=0)
    last_accessed_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None

    @field_validator("importance", mode="before")
    @classmethod
    def validate_importance(cls, v: Any) -> float:
        return clamp_importance(v)


class MemoryStats(BaseModel):
    total: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    avg_importance: float = 0.0
