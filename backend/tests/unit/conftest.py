from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import ulid

from auditoryx.core import booking_lock
from auditoryx.core.enums import BookingStatus, PaymentStatus
from auditoryx.database import Base

# Import models so Base.metadata is populated for create_all.
import auditoryx.models  # noqa: F401
from auditoryx.models.booking import Booking
from auditoryx.models.progress import UserProgress
from auditoryx.models.user import User

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def unit_db() -> Iterator[Session]:
    """
    Fresh in-memory database per test.

    Services commit and roll back on their own, so the savepoint trick does
    not apply; each test gets its own engine instead.
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def _redis_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    """The booking mutex fails open without Redis."""
    monkeypatch.setattr(booking_lock, "_get_sync_redis", lambda: None)


@pytest.fixture(autouse=True)
def _no_backoff_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("auditoryx.services.base.time.sleep", lambda _seconds: None)


@pytest.fixture
def make_user(unit_db: Session) -> Callable[..., User]:
    def _make(
        display_name: str = "Test User",
        *,
        city: Optional[str] = None,
        role: Optional[str] = None,
        tz: Optional[str] = None,
    ) -> User:
        user = User(
            id=str(ulid.ULID()),
            display_name=display_name,
            city=city,
            role=role,
            timezone=tz,
        )
        unit_db.add(user)
        unit_db.commit()
        return user

    return _make


@pytest.fixture
def make_progress(unit_db: Session) -> Callable[..., UserProgress]:
    def _make(user: User, **fields: Any) -> UserProgress:
        values: dict[str, Any] = {
            "total_xp": 0,
            "daily_xp": 0,
            "streak_count": 0,
            "tier": "standard",
            "tier_frozen": False,
            "late_deliveries": 0,
            "points_month": 0,
        }
        values.update(fields)
        progress = UserProgress(uid=user.id, **values)
        unit_db.add(progress)
        unit_db.commit()
        return progress

    return _make


@pytest.fixture
def make_booking(unit_db: Session, make_user: Callable[..., User]) -> Callable[..., Booking]:
    def _make(
        *,
        client: Optional[User] = None,
        provider: Optional[User] = None,
        status: BookingStatus = BookingStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        scheduled_at: Optional[datetime] = None,
        total_cost_cents: int = 10000,
        payment_intent_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Booking:
        client = client or make_user("Client")
        provider = provider or make_user("Provider", city="Tokyo", role="producer")
        booking = Booking(
            id=str(ulid.ULID()),
            client_uid=client.id,
            provider_uid=provider.id,
            status=status.value,
            payment_status=payment_status.value,
            scheduled_at=scheduled_at or NOW + timedelta(days=7),
            total_cost_cents=total_cost_cents,
            payment_intent_id=payment_intent_id,
            created_at=created_at or NOW,
        )
        unit_db.add(booking)
        unit_db.commit()
        return booking

    return _make
