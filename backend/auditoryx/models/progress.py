"""
SQLAlchemy models for the XP ledger.

``XPTransaction`` is the append-only log; the unique key on
(uid, event, context_id) is what makes awards idempotent. ``UserProgress``
holds the running totals and is versioned so concurrent awards for the same
user serialise on a compare-and-swap.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.constants import DAILY_XP_CAP
from ..core.enums import Tier, XPSource
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class UserProgress(Base):
    """Running XP totals, streak and tier for one user."""

    __tablename__ = "user_progress"

    uid = Column(String(26), ForeignKey("users.id"), primary_key=True)
    total_xp = Column(Integer, nullable=False, default=0)
    daily_xp = Column(Integer, nullable=False, default=0)
    daily_bucket = Column(Date, nullable=True)
    streak_count = Column(Integer, nullable=False, default=0)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    tier = Column(String(20), nullable=False, default=Tier.STANDARD.value)
    tier_frozen = Column(Boolean, nullable=False, default=False)
    late_deliveries = Column(Integer, nullable=False, default=0)
    points_month = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    version_id = Column(Integer, nullable=False)

    user = relationship("User", back_populates="progress")

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="ck_user_progress_total_xp"),
        CheckConstraint(
            f"daily_xp >= 0 AND daily_xp <= {DAILY_XP_CAP}", name="ck_user_progress_daily_cap"
        ),
        CheckConstraint("points_month >= 0", name="ck_user_progress_points_month"),
    )

    def __repr__(self) -> str:
        return f"<UserProgress {self.uid} xp={self.total_xp} tier={self.tier}>"


class XPTransaction(Base):
    """One XP credit. Rows are never updated or deleted."""

    __tablename__ = "xp_transactions"
    __table_args__ = (
        UniqueConstraint("uid", "event", "context_id", name="uq_xp_transactions_uid_event_context"),
        Index("ix_xp_transactions_uid_occurred", "uid", "occurred_at"),
        CheckConstraint("amount_awarded >= 0", name="ck_xp_transactions_amount"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    uid = Column(String(26), ForeignKey("users.id"), nullable=False)
    event = Column(String(40), nullable=False)
    amount_awarded = Column(Integer, nullable=False)
    nominal_amount = Column(Integer, nullable=False)
    context_id = Column(String(255), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    day_bucket = Column(Date, nullable=False)
    daily_cap_reached = Column(Boolean, nullable=False, default=False)
    source = Column(String(10), nullable=False, default=XPSource.EVENT.value)


class AdminXPOperation(Base):
    """Audit record for manual XP and tier actions."""

    __tablename__ = "admin_xp_operations"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    admin_uid = Column(String(26), nullable=True)
    target_uid = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    operation = Column(String(30), nullable=False)
    amount = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
