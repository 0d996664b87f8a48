"""Insert/update/skip decisions for validated import rows"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Type

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from src.agency_csv.models import Client, Contact, Note
from src.agency_csv.models.base import Base
from src.agency_csv.schemas.csv_import import ImportOptions
from src.agency_csv.services.entity_schema import EntitySchema, EntityType

logger = logging.getLogger(__name__)

ENTITY_MODELS: Dict[EntityType, Type[Base]] = {
    EntityType.CLIENTS: Client,
    EntityType.CONTACTS: Contact,
    EntityType.NOTES: Note,
}


class WriteAction(str, enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class WriteOutcome:
    action: WriteAction
    entity_id: Optional[Any] = None
    reason: Optional[str] = None

    @property
    def is_written(self) -> bool:
        return self.action in (WriteAction.INSERTED, WriteAction.UPDATED)


class EntityStore(Protocol):
    """Tenant-scoped storage for one entity type"""

    def find_by_key(self, tenant_id: str, key: str) -> Optional[Any]:
        """Existing record (anything with an `id`) whose dedup key equals `key`"""
        ...

    def insert(self, tenant_id: str, record: Mapping[str, Any]) -> Any:
        ...

    def update(self, entity_id: Any, record: Mapping[str, Any]) -> bool:
        ...


class SqlEntityStore:
    """EntityStore over the SQLAlchemy entity tables.

    Each write runs inside a SAVEPOINT so a rejected row leaves the
    surrounding session usable for the rest of the batch.
    """

    def __init__(self, db: Session, schema: EntitySchema):
        self.db = db
        self.schema = schema
        self.model = ENTITY_MODELS[schema.entity_type]

    def _columns(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in record.items() if self.schema.is_field(k)}

    def find_by_key(self, tenant_id: str, key: str):
        if not self.schema.dedup_key or not key:
            return None
        column = getattr(self.model, self.schema.dedup_key)
        return self.db.execute(
            select(self.model)
            .where(self.model.tenant_id == tenant_id, func.lower(column) == key.lower())
            .order_by(self.model.id)
            .limit(1)
        ).scalars().first()

    def insert(self, tenant_id: str, record: Mapping[str, Any]) -> int:
        with self.db.begin_nested():
            entity = self.model(tenant_id=tenant_id, **self._columns(record))
            self.db.add(entity)
        return entity.id

    def update(self, entity_id: int, record: Mapping[str, Any]) -> bool:
        with self.db.begin_nested():
            entity = self.db.get(self.model, entity_id)
            if entity is None:
                return False
            for name, value in self._columns(record).items():
                setattr(entity, name, value)
        return True


def dedup_key_for(schema: EntitySchema, record: Mapping[str, Any]) -> str:
    if not schema.dedup_key:
        return ""
    value = record.get(schema.dedup_key)
    if value is None:
        return ""
    return str(value).strip().lower()


def write_entity(
    schema: EntitySchema,
    record: Mapping[str, Any],
    tenant_id: str,
    options: ImportOptions,
    store: EntityStore
) -> WriteOutcome:
    """Insert, update or skip one normalized record.

    A row without a dedup key is always inserted. An existing match is only
    overwritten when `update_existing` is set; otherwise it is skipped as a
    duplicate. Storage errors come back as a `failed` outcome.
    """
    key = dedup_key_for(schema, record)

    try:
        existing = store.find_by_key(tenant_id, key) if key else None

        if existing is not None:
            if options.update_existing:
                if not store.update(existing.id, record):
                    return WriteOutcome(WriteAction.FAILED, reason=f"Existing record {existing.id} could not be updated")
                return WriteOutcome(WriteAction.UPDATED, entity_id=existing.id)
            return WriteOutcome(WriteAction.SKIPPED, entity_id=existing.id, reason="duplicate")

        new_id = store.insert(tenant_id, record)
        return WriteOutcome(WriteAction.INSERTED, entity_id=new_id)
    except Exception as e:
        logger.warning(f"Storage write failed for {schema.entity_type.value} (tenant={tenant_id}): {e}")
        return WriteOutcome(WriteAction.FAILED, reason=str(e))
