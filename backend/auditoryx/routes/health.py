# backend/auditoryx/routes/health.py
"""
Liveness and health checks: /live never touches the database, /health runs one
trivial query against the ledger store.
"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class LiveHealthResponse(BaseModel):
    ok: bool


class HealthCheckResponse(BaseModel):
    status: str
    environment: str
    database: bool
    timestamp: datetime


@router.get("/live", response_model=LiveHealthResponse)
def live_check(response: Response) -> LiveHealthResponse:
    response.headers["Cache-Control"] = "no-store"
    return LiveHealthResponse(ok=True)


@router.get("/health", response_model=HealthCheckResponse)
def health_check(db: Session = Depends(get_db)) -> HealthCheckResponse:
    try:
        db.execute(text("SELECT 1"))
        db_status = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        db_status = False

    return HealthCheckResponse(
        status="healthy" if db_status else "degraded",
        environment=settings.environment,
        database=db_status,
        timestamp=datetime.now(timezone.utc),
    )
