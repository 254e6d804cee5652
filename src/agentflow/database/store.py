"""Persistent keyed store.

Components never talk to SQLAlchemy directly; they receive a ``KeyedStore``
and address items by (partition_key, sort_key). Every agent owns one
partition (``AGENT#<agent_id>``) holding its plans, rules and memories under
``PLAN#``, ``RULE#`` and ``MEM#`` sort keys.
"""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from agentflow.core.errors import ExecutionFailure, NotFoundError
from agentflow.database.models import Record
from agentflow.database.session import get_db_session, get_session_factory

logger = structlog.get_logger(__name__)

PLAN_PREFIX = "PLAN#"
RULE_PREFIX = "RULE#"
MEMORY_PREFIX = "MEM#"


def agent_partition(agent_id: str) -> str:
    return f"AGENT#{agent_id}"


def plan_key(plan_id: str) -> str:
    return f"{PLAN_PREFIX}{plan_id}"


def rule_key(rule_id: str) -> str:
    return f"{RULE_PREFIX}{rule_id}"


def memory_key(memory_id: str) -> str:
    return f"{MEMORY_PREFIX}{memory_id}"


class KeyedStore(Protocol):
    """Abstract interface for partitioned item persistence."""

    def get(self, partition_key: str, sort_key: str) -> dict[str, Any] | None:
        """Return the item stored under the key, or None."""

    def put(self, partition_key: str, sort_key: str, item: dict[str, Any]) -> None:
        """Insert or replace the item stored under the key."""

    def query(self, partition_key: str, sort_key_prefix: str | None = None) -> list[dict[str, Any]]:
        """Return all items of a partition in insertion order, optionally by sort-key prefix."""

    def update(self, partition_key: str, sort_key: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge changes into an existing item and return the result."""

    def delete(self, partition_key: str, sort_key: str) -> bool:
        """Delete the item; returns False when nothing was stored under the key."""


class SQLKeyedStore:
    """KeyedStore backed by the ``records`` table through SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker | Callable[[], Session] | None = None):
        """Initialize the store.

        Args:
            session_factory: Session factory (defaults to the one for the configured URL)
        """
        self._session_factory = session_factory or get_session_factory()

    @contextmanager
    def _session(self, operation: str, **log_context: Any) -> Generator[Session, None, None]:
        try:
            with get_db_session(session_factory=self._session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("keyed_store_failed", operation=operation, error=str(e), **log_context)
            raise ExecutionFailure(f"Keyed store {operation} failed: {e}") from e

    @staticmethod
    def _find(session: Session, partition_key: str, sort_key: str) -> Record | None:
        return session.execute(
            select(Record).where(
                Record.partition_key == partition_key, Record.sort_key == sort_key
            )
        ).scalar_one_or_none()

    def get(self, partition_key: str, sort_key: str) -> dict[str, Any] | None:
        with self._session("get", partition_key=partition_key, sort_key=sort_key) as session:
            record = self._find(session, partition_key, sort_key)
            return dict(record.payload) if record else None

    def put(self, partition_key: str, sort_key: str, item: dict[str, Any]) -> None:
        with self._session("put", partition_key=partition_key, sort_key=sort_key) as session:
            record = self._find(session, partition_key, sort_key)
            if record is None:
                session.add(
                    Record(partition_key=partition_key, sort_key=sort_key, payload=dict(item))
                )
            else:
                record.payload = dict(item)
        logger.debug("keyed_store_put", partition_key=partition_key, sort_key=sort_key)

    def query(self, partition_key: str, sort_key_prefix: str | None = None) -> list[dict[str, Any]]:
        with self._session("query", partition_key=partition_key) as session:
            stmt = select(Record).where(Record.partition_key == partition_key)
            if sort_key_prefix:
                stmt = stmt.where(Record.sort_key.startswith(sort_key_prefix, autoescape=True))
            records = session.execute(stmt.order_by(Record.id)).scalars().all()
            return [dict(r.payload) for r in records]

    def update(self, partition_key: str, sort_key: str, changes: dict[str, Any]) -> dict[str, Any]:
        with self._session("update", partition_key=partition_key, sort_key=sort_key) as session:
            record = self._find(session, partition_key, sort_key)
            if record is None:
                raise NotFoundError(f"No item under {partition_key}/{sort_key}")
            # Reassign so the JSON column change is detected
            record.payload = {**record.payload, **changes}
            return dict(record.payload)

    def delete(self, partition_key: str, sort_key: str) -> bool:
        with self._session("delete", partition_key=partition_key, sort_key=sort_key) as session:
            record = self._find(session, partition_key, sort_key)
            if record is None:
                return False
            session.delete(record)
            return True
