# backend/auditoryx/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.routing import APIRoute

from .core.config import settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .errors import register_error_handlers
from .routes import health, prometheus
from .routes.v1 import (
    admin_xp as admin_xp_v1,
    bookings as bookings_v1,
    leaderboards as leaderboards_v1,
    xp as xp_v1,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} ledger API starting up...")
    logger.info(f"Environment: {settings.environment}")
    yield
    logger.info(f"{BRAND_NAME} ledger API shutting down...")


def _unique_operation_id(route: APIRoute) -> str:
    methods = "_".join(sorted(m.lower() for m in route.methods or []))
    path = route.path_format.strip("/").replace("/", "_").replace("{", "").replace("}", "")
    name = (route.name or "operation").lower().replace(" ", "_")
    return f"{methods}__{path}__{name}".strip("_")


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
        generate_unique_id_function=_unique_operation_id,
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(xp_v1.router, prefix="/xp")
    api_v1.include_router(admin_xp_v1.router, prefix="/admin/xp")
    api_v1.include_router(leaderboards_v1.router, prefix="/leaderboards")

    app.include_router(api_v1)
    app.include_router(health.router)
    app.include_router(prometheus.router)
    return app


app = create_app()
