"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from apscheduler.schedulers.background import BackgroundScheduler

from src.agency_csv.api.endpoints import health, csv_import, csv_export, runner_api
from src.agency_csv.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

scheduler: BackgroundScheduler | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler

    logger.info(f"Starting Agency CSV API in {settings.APP_ENV} environment")

    if settings.IMPORT_RUNNER_ENABLED:
        from src.agency_csv.services.import_runner import run_import_runner_tick
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            run_import_runner_tick,
            'interval',
            minutes=settings.IMPORT_RUNNER_INTERVAL_MINUTES,
            id='import_runner',
            replace_existing=True,
            max_instances=1
        )
        scheduler.start()
        logger.info(f"Import runner started - running every {settings.IMPORT_RUNNER_INTERVAL_MINUTES} minutes")

    yield

    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Import runner stopped")
    logger.info("Shutting down Agency CSV API")


app = FastAPI(
    title="Agency CSV - Bulk Import and Export",
    description="CSV import and export of clients, contacts and notes for agency tenants",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(health.router, tags=["Health"])
app.include_router(csv_import.router)
app.include_router(csv_export.router)
app.include_router(runner_api.router)


@app.get("/")
def root():
    return {
        "message": "Agency CSV API",
        "environment": settings.APP_ENV,
        "docs": "/docs"
    }
