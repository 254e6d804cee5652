"""Composition root wiring AgentFlow components from settings."""

from dataclasses import dataclass

from agentflow.config import Settings, get_settings
from agentflow.database.session import get_session_factory, init_db
from agentflow.database.store import KeyedStore, SQLKeyedStore
from agentflow.memory.store import MemoryStore
from agentflow.planning.executor import PlanExecutor
from agentflow.planning.generator import PlanGenerator
from agentflow.rules.engine import RuleEngine
from agentflow.services.completion import AnthropicCompletionService, CompletionService
from agentflow.services.knowledge import KnowledgeRetriever, NullKnowledgeRetriever
from agentflow.services.tools import ToolRegistry


@dataclass
class AgentRuntime:
    """All components sharing one keyed store."""

    settings: Settings
    store: KeyedStore
    memory: MemoryStore
    rules: RuleEngine
    tools: ToolRegistry
    generator: PlanGenerator | None
    executor: PlanExecutor


def build_runtime(
    settings: Settings | None = None,
    store: KeyedStore | None = None,
    completion: CompletionService | None = None,
    knowledge: KnowledgeRetriever | None = None,
) -> AgentRuntime:
    """Build a runtime.

    Args:
        settings: Settings (defaults to get_settings())
        store: Keyed store (defaults to an SQL store on settings.database_url)
        completion: Completion service (defaults to Anthropic when an API key is set)
        knowledge: Knowledge retriever (defaults to one that finds nothing)

    Returns:
        AgentRuntime; ``generator`` is None when no completion service is available
    """
    settings = settings or get_settings()

    if store is None:
        init_db(settings.database_url)
        store = SQLKeyedStore(get_session_factory(settings.database_url))

    if completion is None and settings.anthropic_api_key:
        completion = AnthropicCompletionService(settings)

    knowledge = knowledge or NullKnowledgeRetriever()
    memory = MemoryStore.from_settings(store, settings)
    rules = RuleEngine(store, default_priority=settings.default_rule_priority)
    tools = ToolRegistry(
        completion=completion,
        memory=memory,
        knowledge=knowledge,
        llm_temperature=settings.llm_tool_temperature,
    )
    generator = (
        PlanGenerator.from_settings(store, memory, completion, settings, knowledge=knowledge)
        if completion is not None
        else None
    )
    executor = PlanExecutor.from_settings(store, rules, memory, tools, settings)

    return AgentRuntime(
        settings=settings,
        store=store,
        memory=memory,
        rules=rules,
        tools=tools,
        generator=generator,
        executor=executor,
    )
