# backend/auditoryx/database/__init__.py
"""
Ledger engine, session factory and declarative base.

Sessions are created with ``expire_on_commit=False``: services commit inside
``retry_on_conflict`` and hand the committed ORM objects straight to the
response schemas.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from auditoryx.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Disconnects worth one more try; anything else propagates immediately
TRANSIENT_DB_ERRORS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "connection reset by peer",
    "database is locked",
)


def _engine_options(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_timeout": settings.database_pool_timeout,
        "pool_recycle": 300,
        "pool_pre_ping": True,
    }


engine: Engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; whatever the handler left pending is committed on success."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def retry_delay(attempt: int) -> float:
    """Seconds to wait before attempt ``attempt + 1``: 0.1 * 2^(n-1) plus up to 0.05 * n jitter."""
    return 0.1 * (2 ** (attempt - 1)) + random.uniform(0, 0.05 * attempt)


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int = 3) -> T:
    """Run a read that may hit a dropped connection, retrying transient failures."""
    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except OperationalError as exc:
            message = str(exc).lower()
            transient = any(snippet in message for snippet in TRANSIENT_DB_ERRORS)
            if not transient or attempt == max_attempts:
                raise
            delay = retry_delay(attempt)
            logger.warning(
                "Transient DB failure, retrying",
                extra={"op": op_name, "attempt": attempt, "delay": delay, "error": str(exc)},
            )
            time.sleep(delay)
    raise AssertionError("unreachable")


__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "get_db",
    "retry_delay",
    "with_db_retry",
]
