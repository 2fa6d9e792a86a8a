"""Leaderboard snapshot rows, rebuilt wholesale per (city, role) on every run."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint
import ulid

from ..database import Base


class LeaderboardEntry(Base):
    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint("city", "role", "rank", name="uq_leaderboard_entries_group_rank"),
        Index("ix_leaderboard_entries_group", "city", "role"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    city = Column(String(120), nullable=False)
    role = Column(String(30), nullable=False)
    uid = Column(String(26), nullable=False)
    display_name = Column(String(120), nullable=False)
    points_month = Column(Integer, nullable=False)
    rank = Column(Integer, nullable=False)
    # YYYY-MM of the points being ranked
    period = Column(String(7), nullable=False)
    generated_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
