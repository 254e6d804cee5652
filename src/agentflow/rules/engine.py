"""Rule Engine - prioritized condition -> action rules and guardrails.

Rules are scoped to one agent and evaluated highest priority first, equal
priorities in creation order. A matching rule that carries a
``stop_execution`` action ends evaluation immediately.
"""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from agentflow.core.errors import NotFoundError, ValidationError
from agentflow.core.models import (
    Action,
    ActionKind,
    Condition,
    Rule,
    RuleEvaluation,
    RuleKind,
    utcnow,
)
from agentflow.database.store import RULE_PREFIX, KeyedStore, agent_partition, rule_key
from agentflow.rules.conditions import evaluate_conditions

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"name", "description", "kind", "priority", "enabled", "conditions", "actions"}
)


class RuleEngine:
    """Rule CRUD and evaluation for agents."""

    DEFAULT_PRIORITY = 50

    def __init__(
        self,
        store: KeyedStore,
        default_priority: int = DEFAULT_PRIORITY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self.default_priority = default_priority
        self._clock = clock

    def _save(self, rule: Rule) -> None:
        self._store.put(
            agent_partition(rule.agent_id), rule_key(rule.id), rule.model_dump(mode="json")
        )

    # ------------------ management --------------

    def create_rule(
        self,
        agent_id: str,
        owner_id: str,
        name: str,
        description: str,
        kind: RuleKind | str,
        conditions: list[Condition | dict[str, Any]],
        actions: list[Action | dict[str, Any]],
        priority: int | None = None,
    ) -> Rule:
        """Create and persist a new, enabled rule.

        Args:
            agent_id: Agent the rule belongs to
            owner_id: Owning user
            name: Rule name
            description: Free-text description
            kind: trigger, condition, action or guardrail
            conditions: Conditions (models or dicts)
            actions: Actions (models or dicts)
            priority: Signed integer, higher evaluates first (default: engine default)

        Returns:
            Created Rule

        Raises:
            ValidationError: If any condition, action or field is malformed
        """
        now = self._clock()
        try:
            rule = Rule(
                agent_id=agent_id,
                owner_id=owner_id,
                name=name,
                description=description,
                kind=kind,
                priority=self.default_priority if priority is None else priority,
                enabled=True,
                conditions=conditions,
                actions=actions,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            logger.error("rule_validation_failed", agent_id=agent_id, name=name, error=str(e))
            raise ValidationError(f"Invalid rule '{name}': {e}") from e

        self._save(rule)
        logger.info(
            "rule_created",
            rule_id=rule.id,
            agent_id=agent_id,
            name=name,
            kind=rule.kind.value,
            priority=rule.priority,
        )
        return rule

    def get_rules(self, agent_id: str) -> list[Rule]:
        """All rules of an agent in creation order."""
        return [
            Rule.model_validate(item)
            for item in self._store.query(agent_partition(agent_id), RULE_PREFIX)
        ]

    def get_rule(self, rule_id: str, agent_id: str) -> Rule | None:
        item = self._store.get(agent_partition(agent_id), rule_key(rule_id))
        return Rule.model_validate(item) if item else None

    def update_rule(self, rule_id: str, agent_id: str, **updates: Any) -> Rule:
        """Update a rule's editable fields.

        Raises:
            NotFoundError: If the agent has no such rule
            ValidationError: If a field is not editable or the result is malformed
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update rule fields: {', '.join(sorted(unknown))}")

        rule = self.get_rule(rule_id, agent_id)
        if rule is None:
            raise NotFoundError(f"Rule '{rule_id}' not found for agent '{agent_id}'")

        data = rule.model_dump()
        data.update(updates)
        data["updated_at"] = self._clock()
        try:
            updated = Rule.model_validate(data)
        except PydanticValidationError as e:
            logger.error("rule_validation_failed", rule_id=rule_id, error=str(e))
            raise ValidationError(f"Invalid update for rule '{rule_id}': {e}") from e

        self._save(updated)
        logger.info("rule_updated", rule_id=rule_id, agent_id=agent_id, fields=sorted(updates))
        return updated

    def toggle_rule(self, rule_id: str, agent_id: str, enabled: bool) -> Rule:
        """Enable or disable a rule."""
        return self.update_rule(rule_id, agent_id, enabled=enabled)

    def delete_rule(self, rule_id: str, agent_id: str) -> None:
        if not self._store.delete(agent_partition(agent_id), rule_key(rule_id)):
            raise NotFoundError(f"Rule '{rule_id}' not found for agent '{agent_id}'")
        logger.info("rule_deleted", rule_id=rule_id, agent_id=agent_id)

    # ------------------ evaluation --------------

    def evaluate_rules(self, context: Mapping[str, Any]) -> RuleEvaluation:
        """Evaluate an agent's enabled rules against a context snapshot.

        Matched rules and their actions are collected in evaluation order.
        The first matched rule with a ``stop_execution`` action sets
        ``should_stop`` and ends evaluation; lower-priority rules are not
        looked at. Non-stop actions are returned for the caller to apply.

        Args:
            context: Evaluation context; must contain ``agent_id``

        Returns:
            RuleEvaluation with matched rules, actions and the stop signal
        """
        agent_id = context.get("agent_id")
        if not agent_id:
            raise ValidationError("Rule evaluation context requires an agent_id")

        rules = [r for r in self.get_rules(agent_id) if r.enabled]
        # sort is stable: equal priorities keep creation order
        rules.sort(key=lambda r: r.priority, reverse=True)

        evaluation = RuleEvaluation()
        for rule in rules:
            if not evaluate_conditions(rule.conditions, context):
                continue

            evaluation.matched_rules.append(rule)
            evaluation.actions.extend(rule.actions)
            logger.debug("rule_matched", rule_id=rule.id, name=rule.name, priority=rule.priority)

            if rule.stops_execution:
                stop = next(a for a in rule.actions if a.kind == ActionKind.STOP_EXECUTION)
                evaluation.should_stop = True
                evaluation.stop_reason = stop.params.get("reason") or f"Stopped by rule '{rule.name}'"
                logger.info(
                    "rule_stop_execution",
                    rule_id=rule.id,
                    name=rule.name,
                    agent_id=agent_id,
                    reason=evaluation.stop_reason,
                )
                break

        return evaluation
