"""
linkbridge.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- linked_users          — Game account ↔ Discord account pairs
- currency_trade_counts — Trades per currency since the last world reset
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all LinkBridge ORM models."""


# ---------------------------------------------------------------------------
# Linked users: one row per game account / Discord account pair
# ---------------------------------------------------------------------------
class LinkedUserRow(Base):
    __tablename__ = "linked_users"
    __table_args__ = (
        UniqueConstraint("game_name", name="uq_linked_users_game_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_name: Mapped[str] = mapped_column(String(100), nullable=False)
    discord_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    guild_id: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Currency trade counts
# ---------------------------------------------------------------------------
class CurrencyTradeCount(Base):
    __tablename__ = "currency_trade_counts"

    currency: Mapped[str] = mapped_column(String(100), primary_key=True)
    trades: Mapped[int] = mapped_column(Integer, default=0)
