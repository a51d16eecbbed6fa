"""
SQLAlchemy models for the SQL record store.

- user_state: one row per learner, the JSON state plus its version
- user_state_history: audit trail of every write (creation/update/migration)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

StateJSON = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class UserStateRecord(Base):
    """Authoritative learner state, versioned for compare-and-set."""

    __tablename__ = "user_state"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[dict[str, Any]] = mapped_column(StateJSON, nullable=False)
    sync_source: Mapped[str] = mapped_column(Text, nullable=False)
    last_sync_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserStateRecord(user_id={self.user_id}, version={self.version})>"


class UserStateHistory(Base):
    """One row per committed write."""

    __tablename__ = "user_state_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    change_type: Mapped[str] = mapped_column(Text, nullable=False)  # 'creation', 'update', 'migration'
    version_from: Mapped[int | None] = mapped_column(Integer)
    version_to: Mapped[int] = mapped_column(Integer, nullable=False)
    sync_source: Mapped[str] = mapped_column(Text, nullable=False)
    new_state: Mapped[dict[str, Any]] = mapped_column(StateJSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return (
            f"<UserStateHistory(user_id={self.user_id}, {self.change_type} "
            f"v{self.version_from}->v{self.version_to})>"
        )
