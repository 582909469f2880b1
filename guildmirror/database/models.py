"""
guildmirror.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Backing tables of the hierarchical state store.

Tables:
- store_objects  — one row per node (container or leaf) keyed by its
                   dot-separated path; holds the structural definition
                   plus externally-attached per-node config (``custom``)
- store_states   — current value of every leaf node, with the
                   acknowledgement flag that separates echoes from
                   user-initiated writes
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Generic JSON everywhere, JSONB on PostgreSQL
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all guildmirror ORM models."""


# ---------------------------------------------------------------------------
# Objects: node definitions
# ---------------------------------------------------------------------------
class StoreObject(Base):
    __tablename__ = "store_objects"

    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # folder | channel | state
    common: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    native: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    custom: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<StoreObject id={self.id!r} type={self.type}>"


# ---------------------------------------------------------------------------
# States: leaf values
# ---------------------------------------------------------------------------
class StoreState(Base):
    __tablename__ = "store_states"

    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    val: Mapped[Any] = mapped_column(JSONType, nullable=True)
    ack: Mapped[bool] = mapped_column(Boolean, default=False)
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False)  # last write, epoch ms
    lc: Mapped[int] = mapped_column(BigInteger, nullable=False)  # last value change, epoch ms

    def __repr__(self) -> str:
        return f"<StoreState id={self.id!r} val={self.val!r} ack={self.ack}>"
