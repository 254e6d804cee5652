"""Plan Executor - drives a plan's steps to completion.

Execution is a single forward pass from ``current_step_index``:

1. A step whose dependencies are not all earlier, completed steps is skipped.
2. The agent's rules are evaluated; a stop signal cancels the plan.
3. ``{{step_N_result}}`` placeholders in the params are resolved.
4. The tool is invoked. A failure fails the plan (no retries); a success is
   recorded on the step and as an episodic memory.
5. The step index advances and the plan is persisted.

Steps run strictly one after another; independent steps are not
parallelized. Cancellation is cooperative and observed at the top of each
iteration.
"""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic_core import to_jsonable_python

from agentflow.config import Settings
from agentflow.core.errors import ExecutionFailure, NotFoundError, PlanStateError
from agentflow.core.models import MemoryKind, Plan, PlanStatus, Step, StepStatus, utcnow
from agentflow.database.store import PLAN_PREFIX, KeyedStore, agent_partition, plan_key
from agentflow.memory.store import MemoryStore
from agentflow.planning.templates import resolve_templates
from agentflow.rules.engine import RuleEngine
from agentflow.services.tools import ToolInvocation, ToolService

logger = structlog.get_logger(__name__)

RESUMABLE_STATUSES = frozenset({PlanStatus.PENDING, PlanStatus.IN_PROGRESS})

# camelCase field paths accepted in rule conditions
CONTEXT_ALIASES = {
    "agent_id": "agentId",
    "owner_id": "ownerId",
    "plan_id": "planId",
    "step_index": "stepIndex",
    "prior_results": "priorResults",
}


class PlanExecutor:
    """Executes, inspects and cancels persisted plans."""

    def __init__(
        self,
        store: KeyedStore,
        rules: RuleEngine,
        memory: MemoryStore,
        tools: ToolService,
        step_memory_importance: float = 0.6,
        completion_memory_importance: float = 0.8,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._rules = rules
        self._memory = memory
        self._tools = tools
        self.step_memory_importance = step_memory_importance
        self.completion_memory_importance = completion_memory_importance
        self._clock = clock
        # Advisory, in-process: one active execution per plan
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        store: KeyedStore,
        rules: RuleEngine,
        memory: MemoryStore,
        tools: ToolService,
        settings: Settings,
    ) -> "PlanExecutor":
        return cls(
            store,
            rules,
            memory,
            tools,
            step_memory_importance=settings.step_memory_importance,
            completion_memory_importance=settings.completion_memory_importance,
        )

    # ------------------ queries -----------------

    def get_plan(self, plan_id: str, agent_id: str) -> Plan | None:
        item = self._store.get(agent_partition(agent_id), plan_key(plan_id))
        return Plan.model_validate(item) if item else None

    def list_plans(self, agent_id: str) -> list[Plan]:
        """All plans of an agent in creation order."""
        return [
            Plan.model_validate(item)
            for item in self._store.query(agent_partition(agent_id), PLAN_PREFIX)
        ]

    # ------------------ cancellation ------------

    def cancel_plan(self, plan_id: str, agent_id: str) -> Plan:
        """Mark a plan cancelled.

        A running execution notices at its next step boundary; an in-flight
        step is not interrupted.

        Raises:
            NotFoundError: If the agent has no such plan
            PlanStateError: If the plan already completed or failed
        """
        plan = self.get_plan(plan_id, agent_id)
        if plan is None:
            raise NotFoundError(f"Plan '{plan_id}' not found for agent '{agent_id}'")
        if plan.status == PlanStatus.CANCELLED:
            return plan
        if plan.is_terminal:
            raise PlanStateError(f"Cannot cancel plan with status: {plan.status.value}")

        now = self._clock()
        # Partial update so a concurrent executor's step data is not clobbered
        item = self._store.update(
            agent_partition(agent_id),
            plan_key(plan_id),
            {"status": PlanStatus.CANCELLED.value, "updated_at": now.isoformat()},
        )
        logger.info("plan_cancelled", plan_id=plan_id, agent_id=agent_id)
        return Plan.model_validate(item)

    def _persisted_status(self, plan: Plan) -> PlanStatus | None:
        item = self._store.get(agent_partition(plan.agent_id), plan_key(plan.id))
        return PlanStatus(item["status"]) if item else None

    def _observe_cancellation(self, plan: Plan) -> bool:
        if plan.status == PlanStatus.CANCELLED:
            return True
        if self._persisted_status(plan) == PlanStatus.CANCELLED:
            plan.status = PlanStatus.CANCELLED
            return True
        return False

    def _save(self, plan: Plan) -> None:
        # An external cancellation wins over the executor's own status
        self._observe_cancellation(plan)
        plan.updated_at = self._clock()
        self._store.put(
            agent_partition(plan.agent_id), plan_key(plan.id), plan.model_dump(mode="json")
        )

    # ------------------ execution ---------------

    @staticmethod
    def _dependencies_met(plan: Plan, index: int) -> bool:
        return all(
            0 <= dep < index and plan.steps[dep].status == StepStatus.COMPLETED
            for dep in plan.steps[index].dependencies
        )

    def _rule_context(self, plan: Plan, index: int) -> dict[str, Any]:
        step = plan.steps[index]
        now = self._clock()
        context = {
            "agent_id": plan.agent_id,
            "owner_id": plan.owner_id,
            "plan_id": plan.id,
            "task": plan.task,
            "step_index": index,
            "input": step.params,
            "prior_results": [s.result for s in plan.steps[:index]],
            "step": {"tool": step.tool, "action": step.action, "description": step.description},
            "time": {"hour": now.hour, "weekday": now.isoweekday(), "iso": now.isoformat()},
        }
        for name, alias in CONTEXT_ALIASES.items():
            context[alias] = context[name]
        return context

    def _remember_step(self, plan: Plan, step: Step) -> None:
        result = step.result if isinstance(step.result, str) else json.dumps(step.result)
        self._memory.store(
            plan.agent_id,
            plan.owner_id,
            f"Completed: {step.description}. Result: {result}",
            MemoryKind.EPISODIC,
            self.step_memory_importance,
            {"plan_id": plan.id, "step_id": step.id},
        )

    async def execute_plan(self, plan_id: str, agent_id: str) -> Plan:
        """Run a pending or interrupted plan to a terminal status.

        Args:
            plan_id: Plan to execute
            agent_id: Agent owning the plan

        Returns:
            The plan in its final state (completed, failed or cancelled), or
            as far as it got if cancelled externally

        Raises:
            NotFoundError: If the agent has no such plan
            PlanStateError: If the plan is terminal or already executing
            ExecutionFailure: If persistence fails mid-execution
        """
        lock = self._locks.setdefault(plan_id, asyncio.Lock())
        if lock.locked():
            raise PlanStateError(f"Plan '{plan_id}' is already executing")

        async with lock:
            try:
                return await self._run(plan_id, agent_id)
            finally:
                self._locks.pop(plan_id, None)

    async def _run(self, plan_id: str, agent_id: str) -> Plan:
        plan = self.get_plan(plan_id, agent_id)
        if plan is None:
            raise NotFoundError(f"Plan '{plan_id}' not found for agent '{agent_id}'")
        if plan.status not in RESUMABLE_STATUSES:
            raise PlanStateError(f"Cannot execute plan with status: {plan.status.value}")

        log = logger.bind(plan_id=plan_id, agent_id=agent_id)
        log.info(
            "plan_execution_start",
            steps=len(plan.steps),
            start_index=plan.current_step_index,
        )

        try:
            plan.status = PlanStatus.IN_PROGRESS
            self._save(plan)

            for index in range(plan.current_step_index, len(plan.steps)):
                if self._observe_cancellation(plan):
                    log.info("plan_cancellation_observed", step_index=index)
                    return plan

                step = plan.steps[index]

                if not self._dependencies_met(plan, index):
                    step.status = StepStatus.SKIPPED
                    log.info("step_skipped", step_index=index, dependencies=step.dependencies)
                    plan.current_step_index = index + 1
                    self._save(plan)
                    continue

                evaluation = self._rules.evaluate_rules(self._rule_context(plan, index))
                if evaluation.should_stop:
                    plan.status = PlanStatus.CANCELLED
                    plan.error = f"Execution stopped by rule: {evaluation.stop_reason}"
                    self._save(plan)
                    log.info("plan_stopped_by_rule", step_index=index, reason=evaluation.stop_reason)
                    return plan

                params = resolve_templates(step.params, plan.steps, index)

                step.status = StepStatus.IN_PROGRESS
                step.started_at = self._clock()
                self._save(plan)

                try:
                    result = await self._tools.invoke(
                        step.tool,
                        step.action,
                        params,
                        ToolInvocation(agent_id=agent_id, owner_id=plan.owner_id, plan_id=plan.id),
                    )
                except Exception as e:
                    step.status = StepStatus.FAILED
                    step.error = str(e)
                    plan.status = PlanStatus.FAILED
                    plan.error = f"Step {index} failed: {e}"
                    self._save(plan)
                    log.error("step_failed", step_index=index, tool=step.tool, error=str(e))
                    return plan

                step.result = to_jsonable_python(result, fallback=str)
                step.status = StepStatus.COMPLETED
                step.completed_at = self._clock()
                log.info("step_completed", step_index=index, tool=step.tool)

                self._remember_step(plan, step)

                plan.current_step_index = index + 1
                self._save(plan)

            if self._observe_cancellation(plan):
                log.info("plan_cancellation_observed", step_index=len(plan.steps))
                return plan

            plan.status = PlanStatus.COMPLETED
            plan.completed_at = self._clock()
            plan.result = plan.last_completed_result()

            self._memory.store(
                agent_id,
                plan.owner_id,
                f"Completed task: {plan.task}",
                MemoryKind.LONG_TERM,
                self.completion_memory_importance,
                {"plan_id": plan.id, "result": plan.result},
            )

            self._save(plan)
            log.info("plan_completed", steps=len(plan.steps))
            return plan

        except Exception as e:
            log.error("plan_execution_error", error=str(e), exc_info=True)
            plan.status = PlanStatus.FAILED
            plan.error = str(e)
            try:
                self._save(plan)
            except Exception as save_error:
                log.error("plan_failure_not_persisted", error=str(save_error))
            if isinstance(e, ExecutionFailure):
                raise
            raise ExecutionFailure(f"Plan '{plan_id}' execution failed: {e}") from e
