"""
main.py — HabitPulse API
Habit tracking with streaks, milestones and cached analytics dashboards.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from habitpulse import __version__
from habitpulse.config import LOG_LEVEL, CACHE_REAP_INTERVAL_SECONDS
from habitpulse.database import init_db
from habitpulse.errors import HabitPulseError
from habitpulse.redis_client import redis_connection
from habitpulse.routes.admin_routes import router as admin_router
from habitpulse.routes.analytics_routes import router as analytics_router
from habitpulse.routes.habit_routes import router as habit_router
from habitpulse.routes.tracking_routes import router as tracking_router
from habitpulse.services.cache_service import analytics_cache, run_reaper

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    if await redis_connection.get_client() is None and redis_connection.configured:
        logger.warning("Starting without Redis, analytics cache is in-process only")
    reaper = asyncio.create_task(run_reaper(analytics_cache, CACHE_REAP_INTERVAL_SECONDS))
    logger.info("HabitPulse started")
    try:
        yield
    finally:
        reaper.cancel()
        try:
            await reaper
        except asyncio.CancelledError:
            pass
        await redis_connection.close()
        logger.info("HabitPulse stopped")


app = FastAPI(title="HabitPulse", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HabitPulseError)
async def habitpulse_error_handler(request: Request, exc: HabitPulseError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/api/v1/health-check")
async def health():
    return {
        "status": "ok",
        "version": __version__,
        "cache_backend": "redis" if redis_connection.is_connected() else "memory",
    }


app.include_router(habit_router)
app.include_router(tracking_router)
app.include_router(analytics_router)
app.include_router(admin_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("habitpulse.main:app", host="0.0.0.0", port=8000, reload=True)
