"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agentflow.core.models import Plan, Step
from agentflow.database.models import Base
from agentflow.database.store import SQLKeyedStore, agent_partition, plan_key
from agentflow.memory.store import MemoryStore
from agentflow.planning.executor import PlanExecutor
from agentflow.rules.engine import RuleEngine
from agentflow.services.tools import ToolRegistry

AGENT_ID = "agent_1"
OWNER_ID = "user_1"


class FakeClock:
    """Controllable clock; call it for the current time."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeCompletion:
    """CompletionService returning a canned response and recording calls."""

    def __init__(self, response: str = ""):
        self.response = response
        self.calls: list[dict[str, Any]] = []

    async def complete(self, system_prompt, messages, temperature=None, model=None) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "messages": messages,
                "temperature": temperature,
                "model": model,
            }
        )
        return self.response


class FakeKnowledge:
    """KnowledgeRetriever returning fixed excerpts per knowledge base."""

    def __init__(self, excerpts: dict[str, list[str]]):
        self.excerpts = excerpts
        self.queries: list[tuple[str, str, int]] = []

    async def query(self, query, knowledge_base_id, agent_id, top_k=5) -> list[str]:
        self.queries.append((query, knowledge_base_id, top_k))
        return self.excerpts.get(knowledge_base_id, [])[:top_k]


# ============================================================================
# Storage
# ============================================================================


@pytest.fixture
def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine) -> SQLKeyedStore:
    """Keyed store on the in-memory database."""
    return SQLKeyedStore(sessionmaker(bind=db_engine, autoflush=False))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Components
# ============================================================================


@pytest.fixture
def memory_store(store, clock) -> MemoryStore:
    return MemoryStore(store, clock=clock)


@pytest.fixture
def rule_engine(store, clock) -> RuleEngine:
    return RuleEngine(store, clock=clock)


@pytest.fixture
def tool_registry(memory_store) -> ToolRegistry:
    """Registry with the built-in memory tool plus an ``echo`` tool returning its params."""
    registry = ToolRegistry(memory=memory_store)
    registry.register("echo", lambda action, params, invocation: params)
    return registry


@pytest.fixture
def executor(store, rule_engine, memory_store, tool_registry, clock) -> PlanExecutor:
    return PlanExecutor(store, rule_engine, memory_store, tool_registry, clock=clock)


@pytest.fixture
def save_plan(store):
    """Persist a plan built from step dicts and return it."""

    def _save(steps: list[dict[str, Any]], task: str = "Test task", **fields: Any) -> Plan:
        plan = Plan(
            agent_id=AGENT_ID,
            owner_id=OWNER_ID,
            task=task,
            steps=[Step(order=i, **step) for i, step in enumerate(steps)],
            **fields,
        )
        store.put(agent_partition(AGENT_ID), plan_key(plan.id), plan.model_dump(mode="json"))
        return plan

    return _save


@pytest.fixture
def completion() -> FakeCompletion:
    """Completion service; set ``.response`` to the text it should return."""
    return FakeCompletion()


@pytest.fixture
def knowledge() -> FakeKnowledge:
    return FakeKnowledge(
        {"kb_handbook": ["Invoices go to billing@example.com", "Reply within 24h"]}
    )
