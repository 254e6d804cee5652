"""Agent memory: storage, ranked retrieval and consolidation."""

from agentflow.memory.consolidation import group_by_time_proximity
from agentflow.memory.store import MemoryStore

__all__ = ["MemoryStore", "group_by_time_proximity"]
