"""
Base SQLAlchemy configuration for the relational store.

All table models inherit from the Base class defined here.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, MetaData, String
from sqlalchemy.orm import declarative_base

# Define a consistent naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

Base = declarative_base(metadata=metadata)


def new_id() -> str:
    """Generate an opaque primary key."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(Base):
    """Base model for all featureguard tables."""

    __abstract__ = True

    id = Column(String(36), primary_key=True, default=new_id)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


__all__ = ["Base", "BaseModel", "metadata", "new_id", "utcnow"]
