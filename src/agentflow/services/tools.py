"""Tool execution service.

Plan steps name a tool and an action; the executor hands both, with the
resolved params, to a ``ToolService``. ``ToolRegistry`` dispatches to
registered handlers and ships the built-in ``llm``, ``memory`` and
``knowledge`` tools. Mail, calendar and chat integrations are registered by
the host application.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from agentflow.core.errors import ExecutionFailure, ToolNotFoundError
from agentflow.core.models import MemoryKind
from agentflow.memory.store import MemoryStore
from agentflow.services.completion import CompletionService
from agentflow.services.knowledge import KnowledgeRetriever

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolInvocation:
    """Who a tool call is made on behalf of."""

    agent_id: str
    owner_id: str
    plan_id: str | None = None


ToolHandler = Callable[[str | None, dict[str, Any], ToolInvocation], Any | Awaitable[Any]]


class ToolService(Protocol):
    """Abstract interface for tool execution."""

    async def invoke(
        self,
        tool: str | None,
        action: str | None,
        params: dict[str, Any],
        invocation: ToolInvocation,
    ) -> Any:
        """Run ``tool.action`` with params; raise on failure."""


class ToolRegistry:
    """ToolService dispatching to named handlers."""

    DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

    def __init__(
        self,
        completion: CompletionService | None = None,
        memory: MemoryStore | None = None,
        knowledge: KnowledgeRetriever | None = None,
        llm_temperature: float = 0.7,
    ):
        self._handlers: dict[str, ToolHandler] = {}
        self._completion = completion
        self._memory = memory
        self._knowledge = knowledge
        self.llm_temperature = llm_temperature

        if completion is not None:
            self.register("llm", self._llm_tool)
        if memory is not None:
            self.register("memory", self._memory_tool)
        if knowledge is not None:
            self.register("knowledge", self._knowledge_tool)

    def register(self, name: str, handler: ToolHandler) -> None:
        """Register (or replace) the handler for a tool name."""
        self._handlers[name] = handler
        logger.debug("tool_registered", tool=name)

    @property
    def tools(self) -> list[str]:
        return sorted(self._handlers)

    async def invoke(
        self,
        tool: str | None,
        action: str | None,
        params: dict[str, Any],
        invocation: ToolInvocation,
    ) -> Any:
        """Dispatch a tool call.

        A step without a tool is acknowledged without doing anything.

        Raises:
            ToolNotFoundError: If the tool is not registered
        """
        if tool is None:
            return {"success": True, "action": action, "params": params}

        handler = self._handlers.get(tool)
        if handler is None:
            raise ToolNotFoundError(f"Tool '{tool}' is not registered")

        logger.info("tool_invoked", tool=tool, action=action, agent_id=invocation.agent_id)
        result = handler(action, params, invocation)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ------------------ built-in tools ----------

    async def _llm_tool(
        self, action: str | None, params: dict[str, Any], invocation: ToolInvocation
    ) -> str:
        prompt = params.get("input") or params.get("prompt")
        if not prompt:
            raise ExecutionFailure("llm tool requires an 'input' or 'prompt' param")
        if not isinstance(prompt, str):
            prompt = str(prompt)

        temperature = params.get("temperature")
        return await self._completion.complete(
            params.get("system_prompt") or self.DEFAULT_SYSTEM_PROMPT,
            [{"role": "user", "content": prompt}],
            temperature=self.llm_temperature if temperature is None else temperature,
            model=params.get("model"),
        )

    def _memory_tool(
        self, action: str | None, params: dict[str, Any], invocation: ToolInvocation
    ) -> Any:
        if action == "store":
            if not params.get("content"):
                raise ExecutionFailure("memory.store requires a 'content' param")
            memory = self._memory.store(
                invocation.agent_id,
                invocation.owner_id,
                str(params["content"]),
                params.get("kind", MemoryKind.SHORT_TERM),
                params.get("importance", 0.5),
                params.get("context"),
            )
            return memory.model_dump(mode="json")

        if action == "retrieve":
            memories = self._memory.retrieve(
                invocation.agent_id,
                kind=params.get("kind"),
                min_importance=params.get("min_importance"),
                limit=params.get("limit"),
            )
            return [m.model_dump(mode="json") for m in memories]

        raise ExecutionFailure(f"Unknown memory action: {action}")

    async def _knowledge_tool(
        self, action: str | None, params: dict[str, Any], invocation: ToolInvocation
    ) -> list[str]:
        if action != "query":
            raise ExecutionFailure(f"Unknown knowledge action: {action}")
        if not params.get("query") or not params.get("knowledge_base_id"):
            raise ExecutionFailure("knowledge.query requires 'query' and 'knowledge_base_id' params")

        return await self._knowledge.query(
            params["query"],
            params["knowledge_base_id"],
            invocation.agent_id,
            top_k=params.get("top_k", 5),
        )
