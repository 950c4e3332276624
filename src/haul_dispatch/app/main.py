"""FastAPI application entry point for the Haul Dispatch API."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from haul_dispatch.app.config import get_settings
from haul_dispatch.app.routes.ws import broadcast_change
from haul_dispatch.domain.schemas import HealthResponse
from haul_dispatch.infra.database import async_session, init_db
from haul_dispatch.services.change_notifier import notifier
from haul_dispatch.services.request_expiry import expire_stale_requests

logger = logging.getLogger(__name__)


async def request_sweep_loop():
    """Expire stale pending requests on a fixed interval."""
    settings = get_settings()
    while True:
        try:
            async with async_session() as db:
                expired_count = await expire_stale_requests(
                    db, older_than=timedelta(hours=settings.request_expiry_hours)
                )
                if expired_count:
                    logger.info("Request sweep: expired %d requests", expired_count)
        except Exception as e:
            logger.error("Request sweep error: %s", e)
        await asyncio.sleep(settings.request_sweep_interval_minutes * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database, wire sinks, start the sweep."""
    await init_db()
    notifier.add_sink(broadcast_change)

    sweep = asyncio.create_task(request_sweep_loop())
    yield
    sweep.cancel()
    with suppress(asyncio.CancelledError):
        await sweep


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Haul Dispatch API",
    lifespan=lifespan,
    debug=settings.debug,
)

_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from haul_dispatch.app.routes.loads import router as loads_router
from haul_dispatch.app.routes.requests import router as requests_router
from haul_dispatch.app.routes.trips import router as trips_router
from haul_dispatch.app.routes.dashboard import router as dashboard_router
from haul_dispatch.app.routes.ws import router as ws_router

app.include_router(loads_router)
app.include_router(requests_router)
app.include_router(trips_router)
app.include_router(dashboard_router)
app.include_router(ws_router)


@app.get("/health", tags=["health"], response_model=HealthResponse)
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "haul-dispatch"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "haul_dispatch.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
