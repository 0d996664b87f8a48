"""Registry of importable entity types and their field rules.

Every other part of the import/export pipeline (header mapping, row
validation, entity writing, export) reads its field lists from here.
"""
import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from src.agency_csv.services.errors import UnknownEntityType


class EntityType(str, enum.Enum):
    CLIENTS = "clients"
    CONTACTS = "contacts"
    NOTES = "notes"


class Rule(str, enum.Enum):
    NON_EMPTY = "non_empty"
    EMAIL = "email"
    PHONE = "phone"
    BOOLEAN = "boolean"
    INTEGER = "integer"


EXPORT_ONLY_FIELDS: Tuple[str, ...] = ("id", "created_at", "updated_at")

EXPORT_ONLY_LABELS: Dict[str, str] = {
    "id": "ID",
    "created_at": "Created Date",
    "updated_at": "Updated Date",
}


@dataclass(frozen=True)
class EntitySchema:
    entity_type: EntityType
    required: Tuple[str, ...]
    optional: Tuple[str, ...]
    validators: Dict[str, Rule] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    searchable: Tuple[str, ...] = ()
    dedup_key: Optional[str] = None

    @property
    def fields(self) -> Tuple[str, ...]:
        """Required then optional fields, in a fixed order"""
        return self.required + self.optional

    @property
    def exportable(self) -> Tuple[str, ...]:
        return self.fields + EXPORT_ONLY_FIELDS

    def label_for(self, field_name: str) -> str:
        if field_name in self.labels:
            return self.labels[field_name]
        if field_name in EXPORT_ONLY_LABELS:
            return EXPORT_ONLY_LABELS[field_name]
        return field_name

    def rule_for(self, field_name: str) -> Optional[Rule]:
        return self.validators.get(field_name)

    def is_field(self, field_name: str) -> bool:
        return field_name in self.required or field_name in self.optional


_SCHEMAS: Dict[EntityType, EntitySchema] = {
    EntityType.CLIENTS: EntitySchema(
        entity_type=EntityType.CLIENTS,
        required=("name",),
        optional=(
            "email", "phone", "company", "address", "city", "state",
            "postal_code", "country", "notes", "is_active",
        ),
        validators={
            "name": Rule.NON_EMPTY,
            "email": Rule.EMAIL,
            "phone": Rule.PHONE,
            "is_active": Rule.BOOLEAN,
        },
        labels={
            "name": "Name",
            "email": "Email",
            "phone": "Phone",
            "company": "Company",
            "address": "Address",
            "city": "City",
            "state": "State",
            "postal_code": "Postal Code",
            "country": "Country",
            "notes": "Notes",
            "is_active": "Active",
        },
        searchable=("name", "email", "company"),
        dedup_key="email",
    ),
    EntityType.CONTACTS: EntitySchema(
        entity_type=EntityType.CONTACTS,
        required=("first_name", "last_name"),
        optional=(
            "email", "phone", "mobile", "job_title", "department",
            "is_primary", "notes", "is_active", "client_id",
        ),
        validators={
            "first_name": Rule.NON_EMPTY,
            "last_name": Rule.NON_EMPTY,
            "email": Rule.EMAIL,
            "phone": Rule.PHONE,
            "mobile": Rule.PHONE,
            "is_primary": Rule.BOOLEAN,
            "is_active": Rule.BOOLEAN,
            "client_id": Rule.INTEGER,
        },
        labels={
            "first_name": "First Name",
            "last_name": "Last Name",
            "email": "Email",
            "phone": "Phone",
            "mobile": "Mobile",
            "job_title": "Job Title",
            "department": "Department",
            "is_primary": "Primary Contact",
            "notes": "Notes",
            "is_active": "Active",
            "client_id": "Client ID",
        },
        searchable=("first_name", "last_name", "email"),
        dedup_key="email",
    ),
    EntityType.NOTES: EntitySchema(
        entity_type=EntityType.NOTES,
        required=("content",),
        optional=("subject", "client_id", "contact_id", "project_id", "is_pinned"),
        validators={
            "content": Rule.NON_EMPTY,
            "client_id": Rule.INTEGER,
            "contact_id": Rule.INTEGER,
            "project_id": Rule.INTEGER,
            "is_pinned": Rule.BOOLEAN,
        },
        labels={
            "content": "Content",
            "subject": "Subject",
            "client_id": "Client ID",
            "contact_id": "Contact ID",
            "project_id": "Project ID",
            "is_pinned": "Pinned",
        },
        searchable=("subject", "content"),
        dedup_key=None,
    ),
}


def resolve_entity_type(entity_type: Union[str, EntityType]) -> EntityType:
    if isinstance(entity_type, EntityType):
        return entity_type
    try:
        return EntityType((entity_type or "").strip().lower())
    except ValueError:
        raise UnknownEntityType(str(entity_type)) from None


def schema_for(entity_type: Union[str, EntityType]) -> EntitySchema:
    resolved = resolve_entity_type(entity_type)
    schema = _SCHEMAS.get(resolved)
    if schema is None:
        raise UnknownEntityType(resolved.value)
    return schema


def available_entity_types() -> Tuple[EntityType, ...]:
    return tuple(_SCHEMAS.keys())
