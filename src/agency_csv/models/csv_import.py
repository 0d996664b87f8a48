"""CsvImport model - one bulk-import attempt and its progress"""
import enum
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Enum, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from src.agency_csv.models.base import Base


class ImportStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({ImportStatus.PENDING, ImportStatus.PROCESSING})


def _new_id() -> str:
    return str(uuid.uuid4())


class CsvImport(Base):
    __tablename__ = "csv_imports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ImportStatus] = mapped_column(
        Enum(ImportStatus, native_enum=False, values_callable=lambda e: [m.value for m in e], length=20),
        nullable=False,
        default=ImportStatus.PENDING,
        index=True
    )
    field_mapping: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True), nullable=True)
    validation_errors: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True), nullable=True)
    import_options: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def skip_duplicates(self) -> bool:
        return bool((self.import_options or {}).get("skip_duplicates", False))

    @property
    def update_existing(self) -> bool:
        return bool((self.import_options or {}).get("update_existing", False))
