"""CSV export endpoints"""
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from src.agency_csv.api.deps import ImporterContext, SessionFactory
from src.agency_csv.schemas.csv_import import ExportField, ExportFilters
from src.agency_csv.services.csv_export import build_export, export_filename, list_export_fields
from src.agency_csv.services.errors import CsvImportError

router = APIRouter(prefix="/api/exports", tags=["Export"])


def _split_fields(fields: Optional[str]):
    if not fields:
        return None
    return [f.strip() for f in fields.split(",") if f.strip()]


@router.get("/{entity_type}")
def export_entities(
    entity_type: str,
    context: ImporterContext,
    session_factory: SessionFactory,
    fields: Optional[str] = Query(None, description="Comma separated field names"),
    active_only: bool = Query(False),
    created_after: Optional[date] = Query(None),
    created_before: Optional[date] = Query(None),
    search: Optional[str] = Query(None)
):
    try:
        filters = ExportFilters(
            active_only=active_only,
            created_after=created_after,
            created_before=created_before,
            search=search,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors()[0]["msg"])

    db = session_factory()
    try:
        chunks = build_export(
            db, context.tenant_id, entity_type, _split_fields(fields), filters,
            actor_user_id=context.user_id,
        )
    except CsvImportError as e:
        db.close()
        raise HTTPException(status_code=400, detail=str(e))

    def stream():
        try:
            yield from chunks
            db.commit()
        finally:
            db.close()

    return StreamingResponse(
        stream(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(entity_type)}"'},
    )


@router.get("/{entity_type}/fields", response_model=List[ExportField])
def get_export_fields(entity_type: str, context: ImporterContext):
    try:
        return list_export_fields(entity_type)
    except CsvImportError as e:
        raise HTTPException(status_code=400, detail=str(e))
