"""CSV import endpoints: upload, mapping review, processing and history"""
import os
from typing import Optional
from fastapi import APIRouter, File, Form, HTTPException, Query, Response, UploadFile
from fastapi.responses import StreamingResponse

from src.agency_csv.api.deps import CurrentContext, DbSession, ImporterContext, IMPORT_ROLES
from src.agency_csv.models.csv_import import CsvImport, ImportStatus
from src.agency_csv.schemas.csv_import import (
    AttachMappingRequest,
    ImportJobListResponse,
    ImportJobResponse,
    ImportOptions,
    ImportStatistics,
    MappingPreview,
    UploadResponse,
)
from src.agency_csv.services.csv_export import build_template
from src.agency_csv.services.csv_import import (
    attach_mapping,
    cancel_import,
    create_import_job,
    delete_import,
    get_job,
    get_statistics,
    iter_error_report,
    list_jobs,
    process_import,
)
from src.agency_csv.services.csv_reader import read_headers
from src.agency_csv.services.entity_schema import schema_for
from src.agency_csv.services.errors import (
    CsvImportError,
    ImportNotFoundError,
    ImportPermissionError,
    ImportStateError,
    JobFatalError,
)
from src.agency_csv.services.header_mapper import column_mapping_to_fields, create_mapping_preview
from src.agency_csv.services.upload import store_upload

router = APIRouter(prefix="/api/imports", tags=["Import"])


def _http_error(e: CsvImportError) -> HTTPException:
    if isinstance(e, ImportNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ImportPermissionError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ImportStateError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _visible_job(db, job_id: str, context) -> CsvImport:
    job = get_job(db, job_id, tenant_id=context.tenant_id)
    if not job or (context.role not in IMPORT_ROLES and job.user_id != context.user_id):
        raise HTTPException(status_code=404, detail=f"Import {job_id} not found")
    return job


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_csv(
    db: DbSession,
    context: ImporterContext,
    entity_type: str = Form(...),
    skip_duplicates: bool = Form(False),
    update_existing: bool = Form(False),
    file: UploadFile = File(...)
):
    """
    Store an uploaded CSV and create a pending import.
    Returns the job together with suggested column mappings for review.
    """
    try:
        schema = schema_for(entity_type)
        content = await file.read()
        file_path, file_size = store_upload(content, file.filename)
    except CsvImportError as e:
        raise _http_error(e)

    try:
        headers = read_headers(file_path)
    except CsvImportError as e:
        os.remove(file_path)
        raise _http_error(e)

    job = create_import_job(
        db,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        entity_type=schema.entity_type,
        filename=file.filename,
        file_path=file_path,
        file_size=file_size,
        options=ImportOptions(skip_duplicates=skip_duplicates, update_existing=update_existing),
    )
    db.commit()
    db.refresh(job)

    return UploadResponse(
        job=ImportJobResponse.model_validate(job),
        mapping=create_mapping_preview(headers, schema),
    )


@router.get("", response_model=ImportJobListResponse)
def list_imports(
    db: DbSession,
    context: CurrentContext,
    status: Optional[ImportStatus] = Query(None),
    entity_type: Optional[str] = Query(None),
    mine: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0)
):
    user_id = context.user_id if mine or context.role not in IMPORT_ROLES else None
    try:
        jobs = list_jobs(
            db,
            tenant_id=context.tenant_id,
            status=status,
            entity_type=entity_type,
            user_id=user_id,
            limit=limit,
            offset=offset,
        )
    except CsvImportError as e:
        raise _http_error(e)

    return ImportJobListResponse(
        imports=[ImportJobResponse.model_validate(j) for j in jobs],
        total=len(jobs)
    )


@router.get("/statistics", response_model=ImportStatistics)
def import_statistics(db: DbSession, context: ImporterContext):
    return get_statistics(db, context.tenant_id)


@router.get("/template/{entity_type}")
def download_template(entity_type: str, context: ImporterContext):
    try:
        content = build_template(entity_type)
    except CsvImportError as e:
        raise _http_error(e)

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{entity_type}_import_template.csv"'},
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
def get_import(job_id: str, db: DbSession, context: CurrentContext):
    return ImportJobResponse.model_validate(_visible_job(db, job_id, context))


@router.get("/{job_id}/mapping", response_model=MappingPreview)
def get_mapping_preview(job_id: str, db: DbSession, context: ImporterContext):
    job = _visible_job(db, job_id, context)
    try:
        headers = read_headers(job.file_path)
        return create_mapping_preview(headers, schema_for(job.entity_type))
    except CsvImportError as e:
        raise _http_error(e)


@router.put("/{job_id}/mapping", response_model=ImportJobResponse)
def save_mapping(job_id: str, request: AttachMappingRequest, db: DbSession, context: ImporterContext):
    """
    Attach the reviewed column mapping.
    With `process` set, the import runs immediately afterwards.
    """
    _visible_job(db, job_id, context)

    mapping = request.field_mapping
    if request.column_mappings is not None:
        mapping = column_mapping_to_fields({cm.original: cm.mapped_to for cm in request.column_mappings})

    try:
        job = attach_mapping(db, job_id, mapping, tenant_id=context.tenant_id)
        db.commit()
    except CsvImportError as e:
        db.rollback()
        raise _http_error(e)

    if request.process:
        return run_import(job_id, db, context)

    db.refresh(job)
    return ImportJobResponse.model_validate(job)


@router.post("/{job_id}/process", response_model=ImportJobResponse)
def run_import(job_id: str, db: DbSession, context: ImporterContext):
    _visible_job(db, job_id, context)
    try:
        job = process_import(db, job_id, tenant_id=context.tenant_id)
    except JobFatalError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CsvImportError as e:
        raise _http_error(e)

    db.refresh(job)
    return ImportJobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=ImportJobResponse)
def cancel(job_id: str, db: DbSession, context: ImporterContext):
    _visible_job(db, job_id, context)
    try:
        job = cancel_import(db, job_id, tenant_id=context.tenant_id, actor_user_id=context.user_id)
        db.commit()
    except CsvImportError as e:
        db.rollback()
        raise _http_error(e)

    db.refresh(job)
    return ImportJobResponse.model_validate(job)


@router.delete("/{job_id}", status_code=204)
def delete(job_id: str, db: DbSession, context: CurrentContext):
    _visible_job(db, job_id, context)
    try:
        delete_import(
            db,
            job_id,
            actor_user_id=context.user_id,
            is_admin=context.is_admin,
            tenant_id=context.tenant_id,
        )
        db.commit()
    except CsvImportError as e:
        db.rollback()
        raise _http_error(e)

    return Response(status_code=204)


@router.get("/{job_id}/errors")
def download_error_report(job_id: str, db: DbSession, context: CurrentContext):
    job = _visible_job(db, job_id, context)
    return StreamingResponse(
        iter(list(iter_error_report(job))),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="import_{job.id[:8]}_errors.csv"'},
    )
