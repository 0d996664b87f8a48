"""Streaming CSV export of tenant entities"""
import csv
import io
import logging
from datetime import datetime, time, timedelta
from typing import Iterator, List, Optional, Sequence, Union

from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from src.agency_csv.config import get_settings
from src.agency_csv.schemas.csv_import import ExportField, ExportFilters
from src.agency_csv.services.audit import log_action
from src.agency_csv.services.csv_normalizer import format_cell
from src.agency_csv.services.entity_schema import EntitySchema, EntityType, schema_for
from src.agency_csv.services.entity_writer import ENTITY_MODELS
from src.agency_csv.services.errors import ExportFieldError

logger = logging.getLogger(__name__)


def resolve_export_fields(schema: EntitySchema, fields: Optional[Sequence[str]] = None) -> List[str]:
    if not fields:
        return list(schema.fields)

    unknown = [f for f in fields if f not in schema.exportable]
    if unknown:
        raise ExportFieldError(unknown, schema.entity_type.value)
    return list(fields)


def build_export_query(tenant_id: str, schema: EntitySchema, filters: ExportFilters):
    model = ENTITY_MODELS[schema.entity_type]
    query = select(model).where(model.tenant_id == tenant_id)

    if filters.active_only and hasattr(model, "is_active"):
        query = query.where(model.is_active.is_(True))

    if filters.created_after:
        query = query.where(model.created_at >= datetime.combine(filters.created_after, time.min))

    if filters.created_before:
        end = datetime.combine(filters.created_before + timedelta(days=1), time.min)
        query = query.where(model.created_at < end)

    if filters.search and schema.searchable:
        pattern = _like_pattern(filters.search)
        query = query.where(or_(*[
            getattr(model, name).ilike(pattern, escape="\\") for name in schema.searchable
        ]))

    return query.order_by(model.id)


def _like_pattern(text: str) -> str:
    """Substring pattern where % and _ in the search text match literally"""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _csv_line(values: List[str]) -> bytes:
    buffer = io.StringIO()
    csv.writer(buffer).writerow(values)
    return buffer.getvalue().encode("utf-8")


def _stream_rows(
    db: Session,
    query,
    schema: EntitySchema,
    columns: List[str],
    batch_size: int,
    tenant_id: str,
    actor_user_id: Optional[str]
) -> Iterator[bytes]:
    yield _csv_line([schema.label_for(name) for name in columns])

    row_count = 0
    result = db.execute(query.execution_options(yield_per=batch_size))
    try:
        for entity in result.scalars():
            yield _csv_line([format_cell(getattr(entity, name, None)) for name in columns])
            row_count += 1
    finally:
        result.close()

    # only a fully streamed export is audited
    log_action(
        db=db,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        action="csv_export",
        target_type="export",
        meta={
            "entity_type": schema.entity_type.value,
            "fields": columns,
            "row_count": row_count,
        }
    )
    logger.info(f"Exported {row_count} {schema.entity_type.value} rows for tenant {tenant_id}")


def build_export(
    db: Session,
    tenant_id: str,
    entity_type: Union[str, EntityType],
    fields: Optional[Sequence[str]] = None,
    filters: Optional[ExportFilters] = None,
    batch_size: Optional[int] = None,
    actor_user_id: Optional[str] = None
) -> Iterator[bytes]:
    """CSV bytes for the tenant's entities, one line per chunk.

    Field selection and entity type are checked before anything is yielded.
    Each call returns a fresh iterator over a new query. Once the last row
    is streamed a `csv_export` audit entry is flushed; the caller commits it.
    """
    schema = schema_for(entity_type)
    columns = resolve_export_fields(schema, fields)
    query = build_export_query(tenant_id, schema, filters or ExportFilters())
    return _stream_rows(
        db, query, schema, columns,
        batch_size or get_settings().CSV_EXPORT_BATCH_SIZE,
        tenant_id, actor_user_id,
    )


def list_export_fields(entity_type: Union[str, EntityType]) -> List[ExportField]:
    """Selectable export columns in default order, export-only columns last"""
    schema = schema_for(entity_type)
    return [
        ExportField(name=name, label=schema.label_for(name), required=name in schema.required)
        for name in schema.exportable
    ]


def build_template(entity_type: Union[str, EntityType]) -> str:
    """Header-only CSV that auto-maps cleanly on import"""
    schema = schema_for(entity_type)
    return _csv_line([schema.label_for(name) for name in schema.fields]).decode("utf-8")


def export_filename(entity_type: Union[str, EntityType], now: Optional[datetime] = None) -> str:
    schema = schema_for(entity_type)
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H%M%S")
    return f"{schema.entity_type.value}_export_{stamp}.csv"
