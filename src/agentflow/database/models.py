"""SQLAlchemy database models for AgentFlow."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())


class Record(Base, TimestampMixin):
    """One item of the keyed store.

    Items are addressed by (partition_key, sort_key), e.g.
    ("AGENT#a1", "PLAN#plan_..."). The surrogate id preserves insertion
    order for partition queries.
    """

    __tablename__ = "records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    partition_key = Column(String(255), nullable=False)
    sort_key = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("partition_key", "sort_key", name="uq_records_key"),
        Index("idx_records_partition", "partition_key", "id"),
    )
