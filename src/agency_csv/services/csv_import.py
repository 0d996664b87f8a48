"""CSV import jobs: creation, column mapping, batch processing and lifecycle"""
import csv
import io
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Mapping, Optional, Union

from sqlalchemy import select, func, update
from sqlalchemy.orm import Session

from src.agency_csv.config import get_settings
from src.agency_csv.models.csv_import import CsvImport, ImportStatus, CANCELLABLE_STATUSES
from src.agency_csv.schemas.csv_import import ImportOptions, ImportStatistics
from src.agency_csv.services.audit import log_action
from src.agency_csv.services.csv_reader import open_csv, count_rows, read_headers
from src.agency_csv.services.entity_schema import EntitySchema, EntityType, schema_for
from src.agency_csv.services.entity_writer import (
    EntityStore,
    SqlEntityStore,
    WriteAction,
    write_entity,
)
from src.agency_csv.services.errors import (
    EmptyFileError,
    FileUnreadableError,
    ImportNotFoundError,
    ImportPermissionError,
    ImportStateError,
    JobFatalError,
    MappingRequiredError,
    RequiredFieldUnmappedError,
)
from src.agency_csv.services.header_mapper import (
    column_mapping_to_fields,
    project_row,
    resolve_mapping,
)
from src.agency_csv.services.row_validator import validate_row

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_job(db: Session, job_id: str, tenant_id: Optional[str] = None) -> Optional[CsvImport]:
    query = select(CsvImport).where(CsvImport.id == job_id, CsvImport.deleted_at.is_(None))
    if tenant_id:
        query = query.where(CsvImport.tenant_id == tenant_id)
    return db.execute(query).scalar_one_or_none()


def _require_job(db: Session, job_id: str, tenant_id: Optional[str] = None) -> CsvImport:
    job = get_job(db, job_id, tenant_id)
    if not job:
        raise ImportNotFoundError(f"Import {job_id} not found")
    return job


def list_jobs(
    db: Session,
    tenant_id: str,
    status: Optional[ImportStatus] = None,
    entity_type: Optional[Union[str, EntityType]] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> List[CsvImport]:
    query = (
        select(CsvImport)
        .where(CsvImport.tenant_id == tenant_id, CsvImport.deleted_at.is_(None))
        .order_by(CsvImport.created_at.desc(), CsvImport.id)
    )

    if status:
        query = query.where(CsvImport.status == status)
    if entity_type:
        query = query.where(CsvImport.entity_type == schema_for(entity_type).entity_type.value)
    if user_id:
        query = query.where(CsvImport.user_id == user_id)

    query = query.limit(limit).offset(offset)
    return list(db.execute(query).scalars().all())


def create_import_job(
    db: Session,
    tenant_id: str,
    user_id: str,
    entity_type: Union[str, EntityType],
    filename: str,
    file_path: str,
    file_size: int,
    options: Optional[ImportOptions] = None
) -> CsvImport:
    schema = schema_for(entity_type)
    options = options or ImportOptions()

    try:
        total_rows = count_rows(file_path)
    except (FileUnreadableError, EmptyFileError) as e:
        logger.warning(f"Could not count rows of {file_path}: {e}")
        total_rows = 0

    job = CsvImport(
        tenant_id=tenant_id,
        user_id=user_id,
        entity_type=schema.entity_type.value,
        filename=filename,
        file_path=file_path,
        file_size=file_size,
        total_rows=total_rows,
        processed_rows=0,
        failed_rows=0,
        status=ImportStatus.PENDING,
        validation_errors={},
        import_options=options.model_dump(),
    )
    db.add(job)
    db.flush()

    log_action(
        db=db,
        tenant_id=tenant_id,
        actor_user_id=user_id,
        action="csv_import_created",
        target_type="csv_import",
        target_id=job.id,
        meta={"entity_type": job.entity_type, "filename": filename, "total_rows": total_rows}
    )
    logger.info(f"Created import {job.id}: {job.entity_type} from {filename} ({total_rows} rows)")

    return job


def attach_mapping(
    db: Session,
    job_id: str,
    mapping: Optional[Mapping[str, Optional[str]]] = None,
    tenant_id: Optional[str] = None
) -> CsvImport:
    """Attach a field -> column mapping, or auto-match when `mapping` is None.

    The persisted `field_mapping` is column -> field.
    """
    job = _require_job(db, job_id, tenant_id)

    if job.status != ImportStatus.PENDING:
        raise ImportStateError(f"Cannot change the mapping of an import with status '{job.status.value}'")

    schema = schema_for(job.entity_type)
    headers = read_headers(job.file_path)
    resolution = resolve_mapping(headers, schema, mapping)
    if not resolution.is_valid:
        raise RequiredFieldUnmappedError(resolution.errors)

    job.field_mapping = resolution.column_mapping()

    log_action(
        db=db,
        tenant_id=job.tenant_id,
        actor_user_id=job.user_id,
        action="csv_import_mapped",
        target_type="csv_import",
        target_id=job.id,
        meta={"field_mapping": job.field_mapping, "auto": mapping is None}
    )

    return job


def _fail_job(db: Session, job: CsvImport, error: Exception) -> None:
    job.status = ImportStatus.FAILED
    job.error_message = str(error)
    job.completed_at = _now()

    log_action(
        db=db,
        tenant_id=job.tenant_id,
        actor_user_id=job.user_id,
        action="csv_import_failed",
        target_type="csv_import",
        target_id=job.id,
        meta={"error": str(error), "processed_rows": job.processed_rows, "failed_rows": job.failed_rows}
    )
    logger.warning(f"Import {job.id} failed: {error}")


def _is_cancelled(db: Session, job_id: str) -> bool:
    """Read the committed status through a short-lived session of its own"""
    with Session(bind=db.get_bind()) as poll:
        status = poll.execute(
            select(CsvImport.status).where(CsvImport.id == job_id)
        ).scalar_one()
    return status == ImportStatus.CANCELLED


def _mapped_fields(job: CsvImport, schema: EntitySchema, headers: List[str]) -> Dict[str, str]:
    mapping = column_mapping_to_fields(job.field_mapping or {})
    resolution = resolve_mapping(headers, schema, mapping)
    if not resolution.is_valid:
        raise RequiredFieldUnmappedError(resolution.errors)
    return resolution.mapping


def _run_batch_loop(
    db: Session,
    job: CsvImport,
    schema: EntitySchema,
    store: EntityStore,
    batch_size: int
) -> Dict[str, int]:
    """Validate and write every row; returns per-outcome counts.

    Each row's write and the job counters are committed before the next
    row starts, so no lock is held while the loop moves on and a cancel
    from another session lands within one row. The error map is written
    every `batch_size` rows and once more at the end.
    """
    job_id = job.id
    tenant_id = job.tenant_id
    options = ImportOptions(**(job.import_options or {}))
    errors: Dict[str, List[str]] = dict(job.validation_errors or {})
    total_rows = job.total_rows
    processed_rows = job.processed_rows
    failed_rows = job.failed_rows
    counts = {action.value: 0 for action in WriteAction}
    counts["invalid"] = 0
    counts["cancelled"] = 0

    with open_csv(job.file_path) as csv_file:
        mapping = _mapped_fields(job, schema, csv_file.headers)
        db.commit()

        try:
            for row_number, raw in enumerate(csv_file.rows, start=1):
                if _is_cancelled(db, job_id):
                    counts["cancelled"] = 1
                    break

                total_rows = max(total_rows, row_number)

                validation = validate_row(schema, project_row(raw, mapping), row_number)
                if not validation.is_valid:
                    errors[str(row_number)] = validation.messages
                    failed_rows += 1
                    counts["invalid"] += 1
                else:
                    outcome = write_entity(schema, validation.normalized, tenant_id, options, store)
                    counts[outcome.action.value] += 1
                    if outcome.is_written:
                        processed_rows += 1
                    elif outcome.action == WriteAction.FAILED:
                        errors[str(row_number)] = [f"Row {row_number}: {outcome.reason}"]
                        failed_rows += 1

                job.total_rows = total_rows
                job.processed_rows = processed_rows
                job.failed_rows = failed_rows
                if row_number % batch_size == 0:
                    job.validation_errors = dict(errors)
                db.commit()
        finally:
            job.total_rows = total_rows
            job.processed_rows = processed_rows
            job.failed_rows = failed_rows
            job.validation_errors = dict(errors)

    return counts


def process_import(
    db: Session,
    job_id: str,
    store: Optional[EntityStore] = None,
    tenant_id: Optional[str] = None,
    batch_size: Optional[int] = None
) -> CsvImport:
    """Run a pending import to completion, cancellation or failure.

    Individual bad rows never fail the job; only conditions that stop the
    loop from running (missing mapping, unknown entity type, unreadable or
    empty file) do, and those are re-raised after the job is marked failed.
    """
    job = _require_job(db, job_id, tenant_id)

    if job.status != ImportStatus.PENDING:
        raise ImportStateError(f"Cannot process an import with status '{job.status.value}'")

    try:
        schema = schema_for(job.entity_type)
        if not job.field_mapping:
            raise MappingRequiredError("A column mapping must be attached before processing")
    except JobFatalError as e:
        _fail_job(db, job, e)
        db.commit()
        raise

    # only one caller may move the job out of pending
    claimed = db.execute(
        update(CsvImport)
        .where(
            CsvImport.id == job.id,
            CsvImport.status == ImportStatus.PENDING,
            CsvImport.deleted_at.is_(None),
        )
        .values(status=ImportStatus.PROCESSING, started_at=_now(), error_message=None)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not claimed:
        db.rollback()
        raise ImportStateError(f"Import {job_id} is no longer pending")

    log_action(
        db=db,
        tenant_id=job.tenant_id,
        actor_user_id=job.user_id,
        action="csv_import_processing",
        target_type="csv_import",
        target_id=job.id,
    )
    db.commit()
    logger.info(f"Processing import {job.id} ({job.entity_type}, {job.filename})")

    batch_size = batch_size or get_settings().CSV_PROGRESS_BATCH_SIZE
    store = store or SqlEntityStore(db, schema)

    try:
        job.total_rows = count_rows(job.file_path)
        counts = _run_batch_loop(db, job, schema, store, batch_size)
    except JobFatalError as e:
        _fail_job(db, job, e)
        db.commit()
        raise
    except Exception as e:
        logger.exception(f"Unexpected error while processing import {job.id}")
        db.rollback()
        _fail_job(db, job, e)
        db.commit()
        raise

    if counts["cancelled"] or _is_cancelled(db, job.id):
        # keep the cancel's own completed_at, which may come from another session
        db.commit()
        db.refresh(job)
        job.status = ImportStatus.CANCELLED
        if job.completed_at is None:
            job.completed_at = _now()
        logger.info(
            f"Import {job.id} cancelled: processed={job.processed_rows}, failed={job.failed_rows}"
        )
    else:
        job.status = ImportStatus.COMPLETED
        job.completed_at = _now()
        log_action(
            db=db,
            tenant_id=job.tenant_id,
            actor_user_id=job.user_id,
            action="csv_import_completed",
            target_type="csv_import",
            target_id=job.id,
            meta={
                "total_rows": job.total_rows,
                "inserted": counts[WriteAction.INSERTED.value],
                "updated": counts[WriteAction.UPDATED.value],
                "skipped": counts[WriteAction.SKIPPED.value],
                "failed_rows": job.failed_rows,
            }
        )
        logger.info(
            f"Import {job.id} completed: total={job.total_rows}, processed={job.processed_rows}, "
            f"failed={job.failed_rows}, skipped={counts[WriteAction.SKIPPED.value]}"
        )

    db.commit()
    return job


def cancel_import(
    db: Session,
    job_id: str,
    tenant_id: Optional[str] = None,
    actor_user_id: Optional[str] = None
) -> CsvImport:
    job = _require_job(db, job_id, tenant_id)

    if job.status not in CANCELLABLE_STATUSES:
        raise ImportStateError(f"Cannot cancel an import with status '{job.status.value}'")

    previous = job.status
    job.status = ImportStatus.CANCELLED
    job.completed_at = _now()

    log_action(
        db=db,
        tenant_id=job.tenant_id,
        actor_user_id=actor_user_id or job.user_id,
        action="csv_import_cancelled",
        target_type="csv_import",
        target_id=job.id,
        meta={"previous_status": previous.value, "processed_rows": job.processed_rows, "failed_rows": job.failed_rows}
    )

    return job


def _remove_stored_file(path: str) -> None:
    if not path or not os.path.exists(path):
        return
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"Could not remove stored import file {path}: {e}")


def delete_import(
    db: Session,
    job_id: str,
    actor_user_id: str,
    is_admin: bool = False,
    tenant_id: Optional[str] = None,
    remove_file: bool = True
) -> bool:
    job = _require_job(db, job_id, tenant_id)

    if not is_admin and job.user_id != actor_user_id:
        raise ImportPermissionError("Only the owner or an administrator can delete this import")

    if job.status == ImportStatus.PROCESSING:
        raise ImportStateError("Cannot delete an import while it is processing")

    job.deleted_at = _now()
    if remove_file:
        _remove_stored_file(job.file_path)

    log_action(
        db=db,
        tenant_id=job.tenant_id,
        actor_user_id=actor_user_id,
        action="csv_import_deleted",
        target_type="csv_import",
        target_id=job.id,
        meta={"filename": job.filename, "status": job.status.value}
    )

    return True


def get_statistics(db: Session, tenant_id: str) -> ImportStatistics:
    base = (CsvImport.tenant_id == tenant_id, CsvImport.deleted_at.is_(None))

    by_status = {
        status.value if isinstance(status, ImportStatus) else str(status): count
        for status, count in db.execute(
            select(CsvImport.status, func.count()).where(*base).group_by(CsvImport.status)
        ).all()
    }
    by_entity_type = dict(
        db.execute(
            select(CsvImport.entity_type, func.count()).where(*base).group_by(CsvImport.entity_type)
        ).all()
    )
    processed, failed = db.execute(
        select(
            func.coalesce(func.sum(CsvImport.processed_rows), 0),
            func.coalesce(func.sum(CsvImport.failed_rows), 0),
        ).where(*base)
    ).one()

    return ImportStatistics(
        total_imports=sum(by_status.values()),
        by_status=by_status,
        by_entity_type=by_entity_type,
        total_rows_processed=int(processed),
        total_rows_failed=int(failed),
    )


def _row_sort_key(key: str):
    return (0, int(key)) if key.isdigit() else (1, key)


def iter_error_report(job: CsvImport) -> Iterator[str]:
    """CSV lines of `row_number,errors` for a job's recorded row errors"""
    buffer = io.StringIO()
    writer = csv.writer(buffer)

    def flush() -> str:
        value = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        return value

    writer.writerow(["row_number", "errors"])
    yield flush()

    if job.error_message:
        writer.writerow(["", job.error_message])
        yield flush()

    errors = job.validation_errors or {}
    for key in sorted(errors, key=_row_sort_key):
        writer.writerow([key, "; ".join(errors[key])])
        yield flush()
