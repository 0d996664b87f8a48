"""Background runner for imports queued with a mapping attached"""
import logging
from typing import Callable, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.agency_csv.models.csv_import import CsvImport, ImportStatus
from src.agency_csv.services.csv_import import process_import
from src.agency_csv.services.errors import CsvImportError

logger = logging.getLogger(__name__)

MAX_JOBS_PER_TICK = 5


def get_queued_job_ids(db: Session, limit: int = MAX_JOBS_PER_TICK) -> List[str]:
    stmt = (
        select(CsvImport.id)
        .where(
            CsvImport.status == ImportStatus.PENDING,
            CsvImport.field_mapping.isnot(None),
            CsvImport.deleted_at.is_(None),
        )
        .order_by(CsvImport.created_at, CsvImport.id)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def run_pending_imports(session_factory: Callable[[], Session], limit: int = MAX_JOBS_PER_TICK) -> int:
    """Process queued imports one after another, each in its own session"""
    with session_factory() as db:
        job_ids = get_queued_job_ids(db, limit)

    processed = 0
    for job_id in job_ids:
        with session_factory() as db:
            try:
                job = process_import(db, job_id)
                processed += 1
                logger.info(f"Runner finished import {job_id} with status {job.status.value}")
            except CsvImportError as e:
                logger.warning(f"Runner could not process import {job_id}: {e}")
            except Exception:
                logger.exception(f"Error in import runner for {job_id}")

    return processed


def run_import_runner_tick() -> None:
    from src.agency_csv.database import SessionLocal

    logger.info("Import runner tick started")
    count = run_pending_imports(SessionLocal)
    logger.info(f"Import runner tick completed: {count} imports processed")
