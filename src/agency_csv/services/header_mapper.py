"""Match CSV headers to entity schema fields"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from src.agency_csv.services.entity_schema import EntitySchema
from src.agency_csv.services.csv_normalizer import normalize_column_name
from src.agency_csv.schemas.csv_import import ColumnMapping, MappingPreview


@dataclass
class MappingResolution:
    mapping: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def column_mapping(self) -> Dict[str, str]:
        return invert_mapping(self.mapping)


def match_header(header: str, schema: EntitySchema) -> Tuple[Optional[str], float]:
    key = normalize_column_name(header)
    if not key:
        return None, 0.0

    for name in schema.fields:
        if key == name:
            return name, 1.0

    for name in schema.fields:
        if key == normalize_column_name(schema.label_for(name)):
            return name, 0.9

    return None, 0.0


def auto_map_columns(headers: List[str], schema: EntitySchema) -> Dict[str, str]:
    """field -> header; the first header matching a field wins"""
    mapping: Dict[str, str] = {}
    for header in headers:
        name, _ = match_header(header, schema)
        if name and name not in mapping:
            mapping[name] = header
    return mapping


def resolve_mapping(
    headers: List[str],
    schema: EntitySchema,
    explicit_mapping: Optional[Mapping[str, Optional[str]]] = None
) -> MappingResolution:
    errors: List[str] = []

    if explicit_mapping is not None:
        mapping: Dict[str, str] = {}
        known_headers = set(headers)
        for name, header in explicit_mapping.items():
            if not header:
                continue
            if not schema.is_field(name):
                errors.append(f"Unknown field '{name}' for {schema.entity_type.value}")
                continue
            if header not in known_headers:
                errors.append(f"Column '{header}' mapped to '{name}' is not in the CSV headers")
                continue
            mapping[name] = header
    else:
        mapping = auto_map_columns(headers, schema)

    for name in schema.required:
        if name not in mapping:
            errors.append(f"Required field '{name}' is not mapped to any column")

    return MappingResolution(mapping=mapping, errors=errors)


def invert_mapping(mapping: Mapping[str, str]) -> Dict[str, str]:
    """field -> header  becomes  header -> field"""
    return {header: name for name, header in mapping.items()}


def column_mapping_to_fields(column_mapping: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """header -> field  becomes  field -> header; unmapped columns are dropped"""
    fields: Dict[str, str] = {}
    for header, name in column_mapping.items():
        if name and name not in fields:
            fields[name] = header
    return fields


def project_row(record: Mapping[str, str], mapping: Mapping[str, str]) -> Dict[str, str]:
    """Rename a raw CSV record's columns to schema field names"""
    return {name: record.get(header, "") for name, header in mapping.items()}


def create_mapping_preview(headers: List[str], schema: EntitySchema) -> MappingPreview:
    columns = []
    unmapped = []
    mapped_targets = set()

    for header in headers:
        name, confidence = match_header(header, schema)
        if name and name not in mapped_targets:
            columns.append(ColumnMapping(original=header, mapped_to=name, confidence=confidence))
            mapped_targets.add(name)
        else:
            columns.append(ColumnMapping(original=header, mapped_to=None, confidence=0.0))
            unmapped.append(header)

    missing = [name for name in schema.required if name not in mapped_targets]

    return MappingPreview(
        entity_type=schema.entity_type.value,
        columns=columns,
        unmapped_columns=unmapped,
        missing_required=missing,
        required_fields=list(schema.required),
        optional_fields=list(schema.optional),
    )
