"""Agent Memory Store - importance-weighted, tiered agent memory.

Memories live in the agent's partition of the keyed store. Retrieval ranks
by importance, falling back to recency for memories whose importance lies
within the tie band, and touches every returned memory (access count and
last-access time). Consolidation merges runs of important short-term
memories into long-term ones and deletes the sources.
"""

import functools
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from agentflow.config import Settings
from agentflow.core.errors import NotFoundError, ValidationError
from agentflow.core.models import Memory, MemoryKind, MemoryStats, clamp_importance, utcnow
from agentflow.database.store import MEMORY_PREFIX, KeyedStore, agent_partition, memory_key
from agentflow.memory.consolidation import group_by_time_proximity

logger = structlog.get_logger(__name__)


class MemoryStore:
    """Per-agent memory persistence, ranking and consolidation."""

    DEFAULT_TIE_BAND = 0.1
    DEFAULT_CONSOLIDATION_WINDOW = timedelta(hours=1)
    DEFAULT_CONSOLIDATION_MIN_IMPORTANCE = 0.7

    def __init__(
        self,
        store: KeyedStore,
        tie_band: float = DEFAULT_TIE_BAND,
        consolidation_window: timedelta = DEFAULT_CONSOLIDATION_WINDOW,
        consolidation_min_importance: float = DEFAULT_CONSOLIDATION_MIN_IMPORTANCE,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the memory store.

        Args:
            store: Keyed store holding the memory records
            tie_band: Importance difference under which retrieval orders by recency
            consolidation_window: Creation gap that separates consolidation groups
            consolidation_min_importance: Importance floor for consolidation
            clock: Source of the current time
        """
        self._store = store
        self.tie_band = tie_band
        self.consolidation_window = consolidation_window
        self.consolidation_min_importance = consolidation_min_importance
        self._clock = clock

    @classmethod
    def from_settings(
        cls, store: KeyedStore, settings: Settings, clock: Callable[[], datetime] = utcnow
    ) -> "MemoryStore":
        return cls(
            store,
            tie_band=settings.memory_tie_band,
            consolidation_window=timedelta(minutes=settings.memory_consolidation_window_minutes),
            consolidation_min_importance=settings.memory_consolidation_min_importance,
            clock=clock,
        )

    # ------------------ writes ------------------

    def _save(self, memory: Memory) -> None:
        self._store.put(
            agent_partition(memory.agent_id),
            memory_key(memory.id),
            memory.model_dump(mode="json"),
        )

    def store(
        self,
        agent_id: str,
        owner_id: str,
        content: str,
        kind: MemoryKind | str = MemoryKind.SHORT_TERM,
        importance: float = 0.5,
        context: dict[str, Any] | None = None,
        ttl_days: float | None = None,
    ) -> Memory:
        """Store a new memory.

        Importance is clamped to [0, 1]. ``expires_at`` is recorded from
        ``ttl_days`` but not enforced.

        Raises:
            ValidationError: If the kind, importance or ttl is malformed
        """
        now = self._clock()
        try:
            memory = Memory(
                agent_id=agent_id,
                owner_id=owner_id,
                kind=kind,
                content=content,
                context=context,
                importance=importance,
                access_count=0,
                last_accessed_at=now,
                created_at=now,
                expires_at=now + timedelta(days=ttl_days) if ttl_days is not None else None,
            )
        except (PydanticValidationError, ValueError, TypeError) as e:
            logger.error("memory_validation_failed", agent_id=agent_id, error=str(e))
            raise ValidationError(f"Invalid memory: {e}") from e
        self._save(memory)

        logger.info(
            "memory_stored",
            memory_id=memory.id,
            agent_id=agent_id,
            kind=memory.kind.value,
            importance=memory.importance,
        )
        return memory

    def update_importance(self, memory_id: str, agent_id: str, importance: float) -> Memory:
        """Set a memory's importance (clamped to [0, 1])."""
        memory = self.get_memory(memory_id, agent_id)
        if memory is None:
            raise NotFoundError(f"Memory '{memory_id}' not found for agent '{agent_id}'")

        try:
            clamped = clamp_importance(importance)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        memory = memory.model_copy(update={"importance": clamped})
        self._save(memory)
        logger.info("memory_importance_updated", memory_id=memory_id, importance=memory.importance)
        return memory

    def delete_memory(self, memory_id: str, agent_id: str) -> None:
        """Delete a memory.

        Raises:
            NotFoundError: If the agent has no such memory
        """
        if not self._store.delete(agent_partition(agent_id), memory_key(memory_id)):
            raise NotFoundError(f"Memory '{memory_id}' not found for agent '{agent_id}'")
        logger.info("memory_deleted", memory_id=memory_id, agent_id=agent_id)

    def clear_all(self, agent_id: str, kind: MemoryKind | str | None = None) -> int:
        """Delete all of an agent's memories, optionally of one kind.

        Returns:
            Number of deleted memories
        """
        memories = self.list_memories(agent_id, kind=kind)
        for memory in memories:
            self._store.delete(agent_partition(agent_id), memory_key(memory.id))

        logger.info("memories_cleared", agent_id=agent_id, kind=kind, count=len(memories))
        return len(memories)

    # ------------------ reads -------------------

    def get_memory(self, memory_id: str, agent_id: str) -> Memory | None:
        """Fetch one memory without touching its access metadata."""
        item = self._store.get(agent_partition(agent_id), memory_key(memory_id))
        return Memory.model_validate(item) if item else None

    def list_memories(self, agent_id: str, kind: MemoryKind | str | None = None) -> list[Memory]:
        """All of an agent's memories in creation order, without touching them."""
        memories = [
            Memory.model_validate(item)
            for item in self._store.query(agent_partition(agent_id), MEMORY_PREFIX)
        ]
        if kind is not None:
            try:
                kind = MemoryKind(kind)
            except ValueError as e:
                raise ValidationError(f"Unknown memory kind: {kind!r}") from e
            memories = [m for m in memories if m.kind == kind]
        return memories

    def _compare(self, a: Memory, b: Memory) -> int:
        diff = b.importance - a.importance
        if diff != 0 and abs(diff) >= self.tie_band:
            return 1 if diff > 0 else -1
        # Within the tie band: most recently accessed first
        if a.last_accessed_at > b.last_accessed_at:
            return -1
        if a.last_accessed_at < b.last_accessed_at:
            return 1
        return 0

    def retrieve(
        self,
        agent_id: str,
        kind: MemoryKind | str | None = None,
        min_importance: float | None = None,
        limit: int | None = None,
    ) -> list[Memory]:
        """Retrieve an agent's memories ranked by importance and recency.

        Every returned memory is touched: its access count is incremented and
        its last-access time set to now, both in storage and in the returned
        value.

        Args:
            agent_id: Agent whose memories to retrieve
            kind: Only memories of this kind (optional)
            min_importance: Only memories with at least this importance (optional)
            limit: Maximum number of memories to return (optional)

        Returns:
            Touched memories, best first
        """
        memories = self.list_memories(agent_id, kind=kind)

        if min_importance is not None:
            memories = [m for m in memories if m.importance >= min_importance]

        memories = sorted(memories, key=functools.cmp_to_key(self._compare))

        if limit is not None:
            memories = memories[:limit]

        now = self._clock()
        touched: list[Memory] = []
        for memory in memories:
            memory = memory.model_copy(
                update={"access_count": memory.access_count + 1, "last_accessed_at": now}
            )
            self._store.update(
                agent_partition(agent_id),
                memory_key(memory.id),
                memory.model_dump(mode="json", include={"access_count", "last_accessed_at"}),
            )
            touched.append(memory)

        logger.debug(
            "memories_retrieved",
            agent_id=agent_id,
            kind=kind,
            min_importance=min_importance,
            count=len(touched),
        )
        return touched

    def get_stats(self, agent_id: str) -> MemoryStats:
        """Aggregate count, per-kind count and mean importance."""
        memories = self.list_memories(agent_id)

        by_kind: dict[str, int] = {}
        for memory in memories:
            by_kind[memory.kind.value] = by_kind.get(memory.kind.value, 0) + 1

        avg = sum(m.importance for m in memories) / len(memories) if memories else 0.0
        return MemoryStats(total=len(memories), by_kind=by_kind, avg_importance=avg)

    # ------------------ consolidation -----------

    def consolidate(self, agent_id: str, owner_id: str) -> list[Memory]:
        """Merge runs of important short-term memories into long-term memories.

        Each group of short-term memories created less than the consolidation
        window apart becomes one long-term memory whose content joins the
        sources with ". " and whose importance is their mean. Sources are
        deleted once the merged memory is stored.

        Returns:
            The created long-term memories
        """
        candidates = self.retrieve(
            agent_id,
            kind=MemoryKind.SHORT_TERM,
            min_importance=self.consolidation_min_importance,
        )
        groups = group_by_time_proximity(candidates, self.consolidation_window)

        consolidated: list[Memory] = []
        for group in groups:
            merged = self.store(
                agent_id,
                owner_id,
                ". ".join(m.content for m in group),
                MemoryKind.LONG_TERM,
                sum(m.importance for m in group) / len(group),
                {"consolidated_from": [m.id for m in group]},
            )
            for memory in group:
                self.delete_memory(memory.id, agent_id)
            consolidated.append(merged)

        logger.info(
            "memories_consolidated",
            agent_id=agent_id,
            sources=len(candidates),
            groups=len(consolidated),
        )
        return consolidated
