"""Unit tests for the SQL-backed keyed store and session helpers."""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from agentflow.core.errors import ExecutionFailure, NotFoundError
from agentflow.database.models import Record
from agentflow.database.session import (
    _engine_kwargs,
    cleanup_db_connections,
    get_db_session,
    get_session_factory,
    init_db,
)
from agentflow.database.store import (
    MEMORY_PREFIX,
    PLAN_PREFIX,
    SQLKeyedStore,
    agent_partition,
    memory_key,
    plan_key,
)

PARTITION = agent_partition("agent_1")


# ============================================================================
# Keys
# ============================================================================


def test_key_helpers():
    """Test partition and sort key formats."""
    assert agent_partition("a1") == "AGENT#a1"
    assert plan_key("p1") == "PLAN#p1"
    assert memory_key("m1") == "MEM#m1"


# ============================================================================
# CRUD
# ============================================================================


def test_put_and_get(store):
    """Test storing and fetching an item."""
    store.put(PARTITION, plan_key("p1"), {"id": "p1", "task": "Send report"})

    assert store.get(PARTITION, plan_key("p1")) == {"id": "p1", "task": "Send report"}


def test_get_missing_returns_none(store):
    assert store.get(PARTITION, plan_key("nope")) is None


def test_put_replaces_existing_item(store):
    """Test that put overwrites rather than merges."""
    store.put(PARTITION, plan_key("p1"), {"id": "p1", "task": "old", "extra": 1})
    store.put(PARTITION, plan_key("p1"), {"id": "p1", "task": "new"})

    assert store.get(PARTITION, plan_key("p1")) == {"id": "p1", "task": "new"}
    assert len(store.query(PARTITION)) == 1


def test_query_filters_by_prefix_in_insertion_order(store):
    """Test prefix queries return items in insertion order."""
    store.put(PARTITION, plan_key("b"), {"id": "b"})
    store.put(PARTITION, memory_key("m"), {"id": "m"})
    store.put(PARTITION, plan_key("a"), {"id": "a"})

    plans = store.query(PARTITION, PLAN_PREFIX)
    memories = store.query(PARTITION, MEMORY_PREFIX)

    assert [p["id"] for p in plans] == ["b", "a"]
    assert [m["id"] for m in memories] == ["m"]
    assert len(store.query(PARTITION)) == 3


def test_query_is_scoped_to_partition(store):
    """Test that items of another agent are invisible."""
    store.put(PARTITION, plan_key("p1"), {"id": "p1"})
    store.put(agent_partition("agent_2"), plan_key("p2"), {"id": "p2"})

    assert [p["id"] for p in store.query(PARTITION, PLAN_PREFIX)] == ["p1"]
    assert store.get(agent_partition("agent_2"), plan_key("p1")) is None


def test_query_prefix_with_like_wildcards(store):
    """Test that ``%`` and ``_`` in a prefix match literally."""
    store.put(PARTITION, "X_1", {"id": "underscore"})
    store.put(PARTITION, "XA1", {"id": "letter"})

    assert [i["id"] for i in store.query(PARTITION, "X_")] == ["underscore"]


def test_update_merges_changes(store):
    """Test that update shallow-merges into the stored item."""
    store.put(PARTITION, plan_key("p1"), {"id": "p1", "status": "pending", "task": "t"})

    updated = store.update(PARTITION, plan_key("p1"), {"status": "cancelled"})

    assert updated == {"id": "p1", "status": "cancelled", "task": "t"}
    assert store.get(PARTITION, plan_key("p1"))["status"] == "cancelled"


def test_update_missing_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.update(PARTITION, plan_key("nope"), {"status": "cancelled"})


def test_delete(store):
    """Test delete reports whether something was removed."""
    store.put(PARTITION, plan_key("p1"), {"id": "p1"})

    assert store.delete(PARTITION, plan_key("p1")) is True
    assert store.get(PARTITION, plan_key("p1")) is None
    assert store.delete(PARTITION, plan_key("p1")) is False


def test_database_errors_become_execution_failures():
    """Test that SQLAlchemy errors surface as ExecutionFailure and roll back."""
    session = Mock()
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    failing_store = SQLKeyedStore(session_factory=Mock(return_value=session))

    with pytest.raises(ExecutionFailure) as exc_info:
        failing_store.get(PARTITION, plan_key("p1"))

    assert "database is locked" in str(exc_info.value)
    session.rollback.assert_called_once()
    session.close.assert_called_once()


# ============================================================================
# Session helpers
# ============================================================================


def test_init_db_creates_tables_for_file_database(tmp_path):
    """Test a store on a fresh SQLite file after init_db."""
    url = f"sqlite:///{tmp_path / 'agentflow.sqlite'}"
    try:
        init_db(url)
        init_db(url)  # idempotent
        file_store = SQLKeyedStore(get_session_factory(url))
        file_store.put(PARTITION, plan_key("p1"), {"id": "p1"})

        assert file_store.get(PARTITION, plan_key("p1")) == {"id": "p1"}
    finally:
        cleanup_db_connections()


def test_engine_kwargs():
    """Test pool options by backend."""
    assert _engine_kwargs("sqlite://")["poolclass"] is not None
    assert "pool_size" not in _engine_kwargs("sqlite:///file.db")
    assert _engine_kwargs("postgresql://localhost/agentflow")["pool_size"] == 5


def test_get_db_session_commits_and_closes():
    session = Mock()

    with get_db_session(session_factory=Mock(return_value=session)) as yielded:
        assert yielded is session

    session.commit.assert_called_once()
    session.rollback.assert_not_called()
    session.close.assert_called_once()


def test_get_db_session_rolls_back_on_error():
    """Test any error rolls back, closes and propagates unchanged."""
    session = Mock()

    with pytest.raises(KeyError):
        with get_db_session(session_factory=Mock(return_value=session)):
            raise KeyError("boom")

    session.commit.assert_not_called()
    session.rollback.assert_called_once()
    session.close.assert_called_once()


def test_get_db_session_uses_configured_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'session.sqlite'}"
    try:
        init_db(url)
        with get_db_session(url) as session:
            session.add(
                Record(partition_key=PARTITION, sort_key=plan_key("p1"), payload={"id": "p1"})
            )

        file_store = SQLKeyedStore(get_session_factory(url))
        assert file_store.get(PARTITION, plan_key("p1")) == {"id": "p1"}
    finally:
        cleanup_db_connections()
