"""
SQLAlchemy ORM models (reward ledger + delivery bookkeeping)
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import String, Integer, Text, TIMESTAMP, Date, Numeric, func, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from reward.infrastructure.db.session import Base


class UserReward(Base):
    """
    Reward ledger: one accumulator per user per UTC calendar day.

    total_distance_km never goes below zero; points are kept as the plain
    running sum of deltas and are not clamped.
    Rows are never deleted, even when they decay to zero.
    """
    __tablename__ = "user_rewards"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(256), nullable=False)
    reward_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    total_distance_km: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, server_default="0"
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    last_updated_utc: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "reward_date", name="uq_user_rewards_user_date"),
    )


class ProcessedEvent(Base):
    """Idempotency register: one row per journey event already applied to the ledger."""
    __tablename__ = "processed_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(256), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("event_type", "event_id", name="uq_processed_events_type_id"),
    )


class OutboxMessage(Base):
    """
    Outgoing integration events, written in the same transaction as the
    ledger change and relayed to the broker after commit.
    """
    __tablename__ = "outbox_messages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_outbox_messages_unprocessed", "processed_at", "id"),
    )
