"""
Clan Battle Platform API Server

FastAPI server exposing the battle scheduler to an external cron trigger
plus schedule administration endpoints. Token-based authentication.

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8001

Environment Variables:
    SCHEDULER_API_TOKEN - Required secret token for authentication
    DATABASE_URL - sqlite:///path.db or postgres://... connection URL
    DEVELOPMENT_MODE - Run one scheduler check on startup
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

import pytz
from fastapi import FastAPI
from pydantic import BaseModel

from api.v1 import scheduler
from core.correlation_middleware import CorrelationMiddleware
from core.logging import setup_logging, get_logger
from core.middleware import setup_middleware
from core.settings import settings
from db.base import close_db, init_db, run_with_connection
from services.battle_scheduler import BattleScheduler
from utils.game_time import GAME_TZ


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    game_time: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(
        log_level=settings.log_level,
        json_format=settings.log_format == "json",
        service_name=settings.service_name,
    )
    log = get_logger()
    log.info("server_starting", service=settings.service_name)

    init_db()
    log.info("database_initialized")

    if settings.development_mode:
        # No cron in development; catch up once at startup
        result = await asyncio.to_thread(
            run_with_connection, BattleScheduler().check_and_advance
        )
        log.info("startup_scheduler_check", status=result.status, battle_id=result.battle_id)

    yield

    close_db()
    log.info("server_stopped")


app = FastAPI(
    title="Clan Battle Platform",
    description="Battle schedule and clan battle aggregation service",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(CorrelationMiddleware)
setup_middleware(app)

app.include_router(scheduler.router, prefix="/v1")


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint (no auth required)."""
    now = datetime.now(pytz.utc)
    return HealthResponse(
        status="healthy",
        timestamp=now.isoformat(),
        game_time=now.astimezone(GAME_TZ).isoformat(),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8001)
