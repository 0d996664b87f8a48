"""Exceptions raised by the CSV import/export services"""
from typing import List, Optional


class CsvImportError(Exception):
    """Base exception for CSV import/export operations"""
    pass


class JobFatalError(CsvImportError):
    """Prevents an import job from running; the job ends in `failed`"""
    pass


class FileUnreadableError(JobFatalError):
    pass


class EmptyFileError(JobFatalError):
    pass


class UnknownEntityType(JobFatalError, ValueError):
    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: '{entity_type}'")


class MappingRequiredError(JobFatalError):
    pass


class RequiredFieldUnmappedError(JobFatalError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Required fields are not mapped")


class ImportNotFoundError(CsvImportError):
    pass


class ImportStateError(CsvImportError):
    pass


class ImportPermissionError(CsvImportError):
    pass


class UploadRejectedError(CsvImportError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors))


class ExportFieldError(CsvImportError, ValueError):
    def __init__(self, fields: List[str], entity_type: Optional[str] = None):
        self.fields = list(fields)
        target = f" for {entity_type}" if entity_type else ""
        super().__init__(f"Unknown export field(s){target}: {', '.join(self.fields)}")
