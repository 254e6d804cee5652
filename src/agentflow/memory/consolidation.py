"""Time-proximity grouping for memory consolidation."""

from datetime import timedelta

from agentflow.core.models import Memory


def group_by_time_proximity(memories: list[Memory], window: timedelta) -> list[list[Memory]]:
    """Group memories into runs of close creation times.

    Memories are sorted by ``created_at``; a memory joins the current run when
    it was created less than ``window`` after the previous memory of the run,
    otherwise it starts a new run. Singletons form their own group.

    Args:
        memories: Memories to group (any order)
        window: Largest gap (exclusive) between consecutive members of a group

    Returns:
        Groups in chronological order, each in chronological order
    """
    groups: list[list[Memory]] = []
    current: list[Memory] = []

    for memory in sorted(memories, key=lambda m: m.created_at):
        if current and memory.created_at - current[-1].created_at >= window:
            groups.append(current)
            current = []
        current.append(memory)

    if current:
        groups.append(current)

    return groups
