"""Import runner management endpoints"""
from datetime import datetime, timezone
from fastapi import APIRouter, HTTPException
from sqlalchemy import select, func

from src.agency_csv.api.deps import CurrentContext, DbSession, SessionFactory
from src.agency_csv.config import settings
from src.agency_csv.models.csv_import import CsvImport, ImportStatus
from src.agency_csv.services.import_runner import get_queued_job_ids, run_pending_imports

router = APIRouter(prefix="/api/runner", tags=["Runner"])


@router.post("/trigger")
def trigger_runner(context: CurrentContext, session_factory: SessionFactory):
    if not context.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    processed = run_pending_imports(session_factory)
    return {
        "message": "Import runner tick executed",
        "processed": processed,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/status")
def runner_status(db: DbSession, context: CurrentContext):
    processing = db.execute(
        select(func.count()).select_from(CsvImport).where(
            CsvImport.status == ImportStatus.PROCESSING,
            CsvImport.deleted_at.is_(None)
        )
    ).scalar()

    return {
        "enabled": settings.IMPORT_RUNNER_ENABLED,
        "interval_minutes": settings.IMPORT_RUNNER_INTERVAL_MINUTES,
        "queued": len(get_queued_job_ids(db, limit=1000)),
        "processing": processing
    }
