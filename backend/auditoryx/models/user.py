# backend/auditoryx/models/user.py
"""
Minimal user profile read by the ledger.

Authentication lives elsewhere; the ledger only needs display data, the
leaderboard bucket (city, role) and the accounting timezone.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship
import ulid

from ..database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    display_name = Column(String(120), nullable=False)
    city = Column(String(120), nullable=True, index=True)
    # CreatorRole value; clients have none
    role = Column(String(30), nullable=True, index=True)
    timezone = Column(String(64), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    progress = relationship("UserProgress", uselist=False, back_populates="user")

    def __repr__(self) -> str:
        return f"<User {self.id} {self.display_name!r}>"
