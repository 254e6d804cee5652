"""Plan Generator - drafts a dependency-aware plan for a task."""

import json
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from agentflow.config import Settings
from agentflow.core.errors import ValidationError
from agentflow.core.models import Plan, PlanningContext, PlanStatus, Step, utcnow
from agentflow.database.store import KeyedStore, agent_partition, plan_key
from agentflow.memory.store import MemoryStore
from agentflow.planning.prompts import build_planning_prompt
from agentflow.services.completion import CompletionService
from agentflow.services.knowledge import KnowledgeRetriever, NullKnowledgeRetriever

logger = structlog.get_logger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class DraftStep(BaseModel):
    """Step shape expected from the drafting model."""

    description: str = Field(..., min_length=1)
    tool: str | None = None
    action: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[int] = Field(default_factory=list)

    @field_validator("params", "dependencies", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return {} if info.field_name == "params" else []
        return v


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def parse_draft(text: str) -> list[Any] | None:
    """Extract the raw step list from a drafting response.

    Accepts a bare JSON array or an object with a ``steps`` array, optionally
    wrapped in a Markdown code fence.

    Returns:
        The raw step list, or None if the response holds no parseable list
    """
    fenced = _FENCE.search(text)
    candidate = (fenced.group(1) if fenced else text).strip()

    data = _loads(candidate)
    if data is None:
        # Tolerate prose around the JSON
        for opener, closer in ("{", "}"), ("[", "]"):
            start, end = candidate.find(opener), candidate.rfind(closer)
            if start != -1 and end > start:
                data = _loads(candidate[start : end + 1])
                if data is not None:
                    break

    if isinstance(data, dict):
        data = data.get("steps")
    return data if isinstance(data, list) else None


class PlanGenerator:
    """Turns a task description into a persisted, pending Plan."""

    def __init__(
        self,
        store: KeyedStore,
        memory: MemoryStore,
        completion: CompletionService,
        knowledge: KnowledgeRetriever | None = None,
        temperature: float = 0.3,
        memory_limit: int = 10,
        memory_min_importance: float = 0.5,
        knowledge_top_k: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._memory = memory
        self._completion = completion
        self._knowledge = knowledge or NullKnowledgeRetriever()
        self.temperature = temperature
        self.memory_limit = memory_limit
        self.memory_min_importance = memory_min_importance
        self.knowledge_top_k = knowledge_top_k
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: KeyedStore,
        memory: MemoryStore,
        completion: CompletionService,
        settings: Settings,
        knowledge: KnowledgeRetriever | None = None,
    ) -> "PlanGenerator":
        return cls(
            store,
            memory,
            completion,
            knowledge=knowledge,
            temperature=settings.planner_temperature,
            memory_limit=settings.planner_memory_limit,
            memory_min_importance=settings.planner_memory_min_importance,
            knowledge_top_k=settings.planner_knowledge_top_k,
        )

    async def _gather_knowledge(self, task: str, context: PlanningContext) -> list[str]:
        excerpts: list[str] = []
        for kb_id in context.knowledge_base_ids:
            excerpts.extend(
                await self._knowledge.query(task, kb_id, context.agent_id, top_k=self.knowledge_top_k)
            )
        return excerpts

    def _build_steps(self, raw_steps: list[Any], max_steps: int | None) -> list[Step]:
        if max_steps is not None and len(raw_steps) > max_steps:
            logger.warning("plan_draft_truncated", drafted=len(raw_steps), max_steps=max_steps)
            raw_steps = raw_steps[:max_steps]

        steps: list[Step] = []
        for index, raw in enumerate(raw_steps):
            try:
                draft = DraftStep.model_validate(raw)
            except PydanticValidationError as e:
                raise ValidationError(f"Drafted step {index} is malformed: {e}") from e
            steps.append(Step(order=index, **draft.model_dump()))
        return steps

    async def create_plan(self, task: str, context: PlanningContext) -> Plan:
        """Draft and persist a plan for a task.

        When the drafting response holds no parseable step list the plan is
        still created, with no steps; callers must check for that.

        Args:
            task: Natural-language task
            context: Agent, owner, available tools, knowledge bases, constraints

        Returns:
            The persisted pending Plan

        Raises:
            ValidationError: If a drafted step has a malformed shape
        """
        log = logger.bind(agent_id=context.agent_id)
        log.info("plan_creation_start", task=task[:200])

        memories = self._memory.retrieve(
            context.agent_id,
            min_importance=self.memory_min_importance,
            limit=self.memory_limit,
        )
        knowledge = await self._gather_knowledge(task, context)

        response = await self._completion.complete(
            build_planning_prompt(context, memories, knowledge),
            [{"role": "user", "content": f"Task: {task}"}],
            temperature=self.temperature,
        )

        raw_steps = parse_draft(response)
        if raw_steps is None:
            log.warning("plan_draft_unparseable", response_length=len(response))
            raw_steps = []

        now = self._clock()
        plan = Plan(
            agent_id=context.agent_id,
            owner_id=context.owner_id,
            task=task,
            steps=self._build_steps(raw_steps, context.max_steps),
            status=PlanStatus.PENDING,
            current_step_index=0,
            created_at=now,
            updated_at=now,
        )
        self._store.put(
            agent_partition(plan.agent_id), plan_key(plan.id), plan.model_dump(mode="json")
        )

        log.info(
            "plan_created",
            plan_id=plan.id,
            steps=len(plan.steps),
            memories=len(memories),
            knowledge_excerpts=len(knowledge),
        )
        return plan
