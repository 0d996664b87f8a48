"""Health check endpoint"""
from fastapi import APIRouter
from sqlalchemy import text

from src.agency_csv.api.deps import SessionFactory
from src.agency_csv.config import settings

router = APIRouter()


@router.get("/health")
def health_check(session_factory: SessionFactory):
    db_status = "unknown"
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "ok",
        "environment": settings.APP_ENV,
        "database": db_status
    }
