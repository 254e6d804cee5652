"""Unit tests for the rule engine."""

import pytest

from agentflow.core.errors import NotFoundError, ValidationError
from agentflow.core.models import ActionKind, RuleKind

AGENT_ID = "agent_1"
OWNER_ID = "user_1"

EXTERNAL_RECIPIENT = [{"field": "input.to", "operator": "contains", "value": "@external.com"}]
STOP = [{"kind": "stop_execution", "params": {"reason": "External recipients need approval"}}]
NOTIFY = [{"kind": "send_notification", "params": {"channel": "ops"}}]


def make_rule(engine, name, conditions=None, actions=None, priority=None, agent_id=AGENT_ID):
    return engine.create_rule(
        agent_id,
        OWNER_ID,
        name,
        f"{name} description",
        RuleKind.GUARDRAIL,
        conditions if conditions is not None else [],
        actions if actions is not None else [],
        priority=priority,
    )


def context(**fields):
    return {"agent_id": AGENT_ID, **fields}


# ============================================================================
# CRUD
# ============================================================================


def test_create_rule_defaults(rule_engine, clock):
    """Test a new rule is enabled and gets the default priority."""
    rule = make_rule(rule_engine, "no-external", EXTERNAL_RECIPIENT, STOP)

    assert rule.id.startswith("rule_")
    assert rule.priority == 50
    assert rule.enabled is True
    assert rule.kind == RuleKind.GUARDRAIL
    assert rule.created_at == clock.now
    assert rule.actions[0].kind == ActionKind.STOP_EXECUTION
    assert rule_engine.get_rule(rule.id, AGENT_ID) == rule


def test_create_rule_accepts_action_type_key(rule_engine):
    rule = make_rule(rule_engine, "notify", actions=[{"type": "send_notification", "params": {}}])

    assert rule.actions[0].kind == ActionKind.SEND_NOTIFICATION


@pytest.mark.parametrize(
    "conditions, actions, priority",
    [
        ([{"field": "input.to", "operator": "between", "value": 1}], [], None),
        ([{"field": "input.to", "operator": "regex", "value": "("}], [], None),
        ([{"operator": "exists"}], [], None),
        ([], [{"kind": "launch_rockets"}], None),
        ([], [], "high"),
    ],
)
def test_create_rule_validation(rule_engine, conditions, actions, priority):
    """Test malformed rules are rejected and not stored."""
    with pytest.raises(ValidationError):
        make_rule(rule_engine, "bad", conditions, actions, priority=priority)

    assert rule_engine.get_rules(AGENT_ID) == []


def test_get_rules_in_creation_order(rule_engine):
    make_rule(rule_engine, "first", priority=1)
    make_rule(rule_engine, "second", priority=100)
    make_rule(rule_engine, "other agent", agent_id="agent_2")

    assert [r.name for r in rule_engine.get_rules(AGENT_ID)] == ["first", "second"]


def test_get_rule_missing(rule_engine):
    assert rule_engine.get_rule("rule_missing", AGENT_ID) is None


def test_update_rule(rule_engine, clock):
    rule = make_rule(rule_engine, "notify", actions=NOTIFY)
    clock.advance(minutes=5)

    updated = rule_engine.update_rule(rule.id, AGENT_ID, priority=75, name="notify ops")

    assert updated.priority == 75
    assert updated.name == "notify ops"
    assert updated.created_at == rule.created_at
    assert updated.updated_at == clock.now
    assert rule_engine.get_rule(rule.id, AGENT_ID).priority == 75


def test_update_rule_rejects_unknown_fields(rule_engine):
    rule = make_rule(rule_engine, "notify")

    with pytest.raises(ValidationError):
        rule_engine.update_rule(rule.id, AGENT_ID, agent_id="agent_2")


def test_update_rule_rejects_invalid_values(rule_engine):
    rule = make_rule(rule_engine, "notify")

    with pytest.raises(ValidationError):
        rule_engine.update_rule(rule.id, AGENT_ID, conditions=[{"field": "x", "operator": "nope"}])

    assert rule_engine.get_rule(rule.id, AGENT_ID).conditions == []


def test_update_rule_missing(rule_engine):
    with pytest.raises(NotFoundError):
        rule_engine.update_rule("rule_missing", AGENT_ID, priority=1)


def test_update_rule_of_other_agent(rule_engine):
    rule = make_rule(rule_engine, "notify")

    with pytest.raises(NotFoundError):
        rule_engine.update_rule(rule.id, "agent_2", priority=1)


def test_toggle_rule(rule_engine):
    rule = make_rule(rule_engine, "notify")

    assert rule_engine.toggle_rule(rule.id, AGENT_ID, False).enabled is False
    assert rule_engine.get_rule(rule.id, AGENT_ID).enabled is False
    assert rule_engine.toggle_rule(rule.id, AGENT_ID, True).enabled is True


def test_delete_rule(rule_engine):
    rule = make_rule(rule_engine, "notify")

    rule_engine.delete_rule(rule.id, AGENT_ID)

    assert rule_engine.get_rule(rule.id, AGENT_ID) is None
    with pytest.raises(NotFoundError):
        rule_engine.delete_rule(rule.id, AGENT_ID)


# ============================================================================
# Evaluation
# ============================================================================


def test_evaluate_requires_agent_id(rule_engine):
    with pytest.raises(ValidationError):
        rule_engine.evaluate_rules({"input": {}})


def test_evaluate_no_rules(rule_engine):
    evaluation = rule_engine.evaluate_rules(context())

    assert evaluation.matched_rules == []
    assert evaluation.actions == []
    assert evaluation.should_stop is False
    assert evaluation.stop_reason is None


def test_stop_rule_short_circuits_lower_priority(rule_engine):
    """Test that a matching stop rule ends evaluation before lower priorities."""
    notify = make_rule(rule_engine, "notify", EXTERNAL_RECIPIENT, NOTIFY, priority=90)
    guard = make_rule(rule_engine, "guard", EXTERNAL_RECIPIENT, STOP, priority=100)

    evaluation = rule_engine.evaluate_rules(context(input={"to": "bob@external.com"}))

    assert [r.id for r in evaluation.matched_rules] == [guard.id]
    assert notify.id not in [r.id for r in evaluation.matched_rules]
    assert evaluation.should_stop is True
    assert evaluation.stop_reason == "External recipients need approval"
    assert [a.kind for a in evaluation.actions] == [ActionKind.STOP_EXECUTION]


def test_non_matching_stop_rule_does_not_stop(rule_engine):
    make_rule(rule_engine, "guard", EXTERNAL_RECIPIENT, STOP, priority=100)
    notify = make_rule(rule_engine, "notify", [], NOTIFY, priority=10)

    evaluation = rule_engine.evaluate_rules(context(input={"to": "alice@example.com"}))

    assert [r.id for r in evaluation.matched_rules] == [notify.id]
    assert evaluation.should_stop is False
    assert evaluation.actions[0].params == {"channel": "ops"}


def test_matched_actions_collected_in_priority_order(rule_engine):
    low = make_rule(rule_engine, "low", [], [{"kind": "update_context"}], priority=-5)
    high = make_rule(rule_engine, "high", [], NOTIFY, priority=20)

    evaluation = rule_engine.evaluate_rules(context())

    assert [r.id for r in evaluation.matched_rules] == [high.id, low.id]
    assert [a.kind for a in evaluation.actions] == [
        ActionKind.SEND_NOTIFICATION,
        ActionKind.UPDATE_CONTEXT,
    ]


def test_equal_priorities_keep_creation_order(rule_engine):
    """Test that the earlier-created of two equal-priority stop rules wins."""
    first = make_rule(
        rule_engine, "first", [], [{"kind": "stop_execution", "params": {"reason": "first"}}]
    )
    make_rule(
        rule_engine, "second", [], [{"kind": "stop_execution", "params": {"reason": "second"}}]
    )

    evaluation = rule_engine.evaluate_rules(context())

    assert [r.id for r in evaluation.matched_rules] == [first.id]
    assert evaluation.stop_reason == "first"


def test_disabled_rules_are_ignored(rule_engine):
    guard = make_rule(rule_engine, "guard", [], STOP)
    rule_engine.toggle_rule(guard.id, AGENT_ID, False)

    evaluation = rule_engine.evaluate_rules(context())

    assert evaluation.matched_rules == []
    assert evaluation.should_stop is False


def test_rules_of_other_agents_are_ignored(rule_engine):
    make_rule(rule_engine, "guard", [], STOP, agent_id="agent_2")

    assert rule_engine.evaluate_rules(context()).should_stop is False


def test_default_stop_reason(rule_engine):
    make_rule(rule_engine, "quiet-hours", [], [{"kind": "stop_execution"}])

    evaluation = rule_engine.evaluate_rules(context())

    assert evaluation.stop_reason == "Stopped by rule 'quiet-hours'"


def test_quiet_hours_guardrail(rule_engine):
    """Test a time-based guardrail."""
    make_rule(
        rule_engine,
        "quiet-hours",
        [{"field": "time.hour", "operator": "greater_than", "value": 22}],
        [{"kind": "stop_execution", "params": {"reason": "No actions after 10 PM"}}],
    )

    assert rule_engine.evaluate_rules(context(time={"hour": 23})).should_stop is True
    assert rule_engine.evaluate_rules(context(time={"hour": 9})).should_stop is False
