"""Database models and persistence."""

from agentflow.database.models import Base, Record
from agentflow.database.session import get_db_session, init_db
from agentflow.database.store import KeyedStore, SQLKeyedStore, agent_partition

__all__ = [
    "Base",
    "Record",
    "KeyedStore",
    "SQLKeyedStore",
    "agent_partition",
    "init_db",
    "get_db_session",
]
