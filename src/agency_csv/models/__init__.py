"""Database models"""
from src.agency_csv.models.base import Base
from src.agency_csv.models.client import Client
from src.agency_csv.models.contact import Contact
from src.agency_csv.models.note import Note
from src.agency_csv.models.csv_import import CsvImport, ImportStatus
from src.agency_csv.models.audit_log import AuditLog

__all__ = ["Base", "Client", "Contact", "Note", "CsvImport", "ImportStatus", "AuditLog"]
