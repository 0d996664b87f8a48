"""Per-row validation and normalization against an entity schema"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from email_validator import validate_email, EmailNotValidError

from src.agency_csv.services.entity_schema import EntitySchema, Rule
from src.agency_csv.services.csv_normalizer import (
    normalize_boolean,
    normalize_email,
    normalize_integer,
    normalize_phone,
    normalize_text,
)


@dataclass(frozen=True)
class FieldError:
    field: str
    row_number: int
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class RowValidation:
    row_number: int
    normalized: Dict[str, Any] = field(default_factory=dict)
    errors: List[FieldError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def messages(self) -> List[str]:
        return [e.message for e in self.errors]


def _check_value(name: str, rule: Optional[Rule], raw: str, row_number: int) -> Tuple[Any, Optional[str]]:
    if rule == Rule.EMAIL:
        try:
            validated = validate_email(normalize_email(raw), check_deliverability=False)
            return validated.normalized, None
        except EmailNotValidError as e:
            return None, f"Row {row_number}: Invalid email format for '{name}': {str(e)}"

    if rule == Rule.PHONE:
        phone, is_valid = normalize_phone(raw)
        if not is_valid:
            return None, f"Row {row_number}: Invalid phone number for '{name}': '{raw}'"
        return phone, None

    if rule == Rule.BOOLEAN:
        value, is_ambiguous = normalize_boolean(raw)
        if is_ambiguous:
            return None, f"Row {row_number}: Ambiguous value for '{name}': '{raw}' (use true/false, yes/no, 1/0)"
        return value, None

    if rule == Rule.INTEGER:
        value = normalize_integer(raw)
        if value is None:
            return None, f"Row {row_number}: '{name}' must be a whole number: '{raw}'"
        return value, None

    return normalize_text(raw), None


def validate_row(schema: EntitySchema, record: Mapping[str, Optional[str]], row_number: int) -> RowValidation:
    """Validate one row already projected onto schema field names.

    Every violation in the row is reported; the normalized record only holds
    fields with a non-empty value.
    """
    result = RowValidation(row_number=row_number)

    for name in schema.fields:
        raw = (record.get(name) or "").strip()

        if not raw:
            if name in schema.required:
                result.errors.append(FieldError(
                    field=name,
                    row_number=row_number,
                    message=f"Row {row_number}: Missing required field '{name}'"
                ))
            continue

        value, error = _check_value(name, schema.rule_for(name), raw, row_number)
        if error:
            result.errors.append(FieldError(field=name, row_number=row_number, message=error))
        else:
            result.normalized[name] = value

    return result
