"""Knowledge retrieval collaborator.

Embedding search over knowledge bases is provided by the host application;
AgentFlow only needs text excerpts for a query.
"""

from typing import Protocol


class KnowledgeRetriever(Protocol):
    """Abstract interface for knowledge-base search."""

    async def query(
        self, query: str, knowledge_base_id: str, agent_id: str, top_k: int = 5
    ) -> list[str]:
        """Return up to ``top_k`` excerpts relevant to ``query``."""


class NullKnowledgeRetriever:
    """Retriever used when no knowledge backend is configured."""

    async def query(
        self, query: str, knowledge_base_id: str, agent_id: str, top_k: int = 5
    ) -> list[str]:
        return []
