"""CSV import/export schemas with mapping preview support"""
from datetime import date, datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, model_validator

from src.agency_csv.models.csv_import import ImportStatus


class ColumnMapping(BaseModel):
    original: str
    mapped_to: Optional[str] = None
    confidence: float = 0.0


class MappingPreview(BaseModel):
    entity_type: str
    columns: List[ColumnMapping]
    unmapped_columns: List[str]
    missing_required: List[str]
    required_fields: List[str] = []
    optional_fields: List[str] = []


class ImportOptions(BaseModel):
    skip_duplicates: bool = False
    update_existing: bool = False


class ColumnMappingUpdate(BaseModel):
    original: str
    mapped_to: Optional[str]


class AttachMappingRequest(BaseModel):
    """Either `field_mapping` (field -> column) or `column_mappings`; neither means auto-match"""
    field_mapping: Optional[Dict[str, Optional[str]]] = None
    column_mappings: Optional[List[ColumnMappingUpdate]] = None
    process: bool = False


class ImportJobResponse(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    entity_type: str
    filename: str
    file_size: int
    total_rows: int
    processed_rows: int
    failed_rows: int
    status: ImportStatus
    field_mapping: Optional[Dict[str, str]] = None
    validation_errors: Optional[Dict[str, List[str]]] = None
    import_options: Optional[Dict[str, bool]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ImportJobListResponse(BaseModel):
    imports: List[ImportJobResponse]
    total: int


class UploadResponse(BaseModel):
    job: ImportJobResponse
    mapping: MappingPreview


class ImportStatistics(BaseModel):
    total_imports: int
    by_status: Dict[str, int]
    by_entity_type: Dict[str, int]
    total_rows_processed: int
    total_rows_failed: int


class ExportFilters(BaseModel):
    active_only: bool = False
    created_after: Optional[date] = None
    created_before: Optional[date] = None
    search: Optional[str] = None

    @model_validator(mode="after")
    def check_date_range(self) -> "ExportFilters":
        if self.created_after and self.created_before and self.created_after > self.created_before:
            raise ValueError("created_after must be on or before created_before")
        if self.search is not None:
            self.search = self.search.strip() or None
        return self


class ExportField(BaseModel):
    name: str
    label: str
    required: bool = False
