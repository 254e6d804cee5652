"""Collaborator services consumed by planning: completion, tools, knowledge."""

from agentflow.services.completion import AnthropicCompletionService, CompletionService
from agentflow.services.knowledge import KnowledgeRetriever, NullKnowledgeRetriever
from agentflow.services.tools import ToolInvocation, ToolRegistry, ToolService

__all__ = [
    "AnthropicCompletionService",
    "CompletionService",
    "KnowledgeRetriever",
    "NullKnowledgeRetriever",
    "ToolInvocation",
    "ToolRegistry",
    "ToolService",
]
