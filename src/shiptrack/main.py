import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shiptrack.auth import login, logout
from shiptrack.config import settings
from shiptrack.routers import health, maintenance, shipments, tracking, webhooks
from shiptrack.storage import database
from shiptrack.tasks.scheduler import shutdown_scheduler, start_scheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting shiptrack")
    database.init_db()
    if settings.scheduler_enabled:
        start_scheduler()
    yield
    # Shutdown
    if settings.scheduler_enabled:
        shutdown_scheduler()
    logger.info("shiptrack shutdown")


app = FastAPI(title="shiptrack", lifespan=lifespan)

# Include routers
app.include_router(health.router)
app.include_router(webhooks.router, prefix="/webhooks")
app.include_router(shipments.router, prefix="/shipments")
app.include_router(tracking.router, prefix="/track")
app.include_router(maintenance.router, prefix="/cron")

app.add_api_route("/login", login, methods=["POST"])
app.add_api_route("/logout", logout, methods=["GET"])


@app.exception_handler(database.StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: database.StoreUnavailable):
    logger.error(f"Record store unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable"})
