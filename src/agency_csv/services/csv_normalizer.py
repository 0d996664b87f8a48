"""Normalization helpers shared by header mapping, validation and export"""
import re
import unicodedata
from datetime import datetime
from typing import Any, Optional, Tuple


BOOLEAN_TRUE_VALUES = {"true", "1", "yes", "y", "on", "t", "active"}

BOOLEAN_FALSE_VALUES = {"false", "0", "no", "n", "off", "f", "inactive"}

PHONE_ALLOWED = re.compile(r"^\+?[\d\s\-().]+(?:\s*(?:x|ext\.?)\s*\d{1,6})?$", re.IGNORECASE)
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15


def normalize_to_halfwidth(text: str) -> str:
    return unicodedata.normalize("NFKC", text)


def normalize_column_name(name: str) -> str:
    """Trimmed, case-insensitive form used to compare headers with field names"""
    return normalize_to_halfwidth(name or "").strip().lower()


def normalize_text(text: str) -> str:
    return normalize_to_halfwidth(text).strip()


def normalize_email(email: str) -> str:
    email = normalize_to_halfwidth(email)
    return email.strip().lower()


def normalize_phone(value: str) -> Tuple[Optional[str], bool]:
    """Returns (normalized, is_valid)"""
    value = normalize_text(value)
    if not PHONE_ALLOWED.match(value):
        return None, False
    main = re.split(r"(?i)x|ext", value)[0]
    digits = re.sub(r"\D", "", main)
    if len(digits) < PHONE_MIN_DIGITS or len(digits) > PHONE_MAX_DIGITS:
        return None, False
    return re.sub(r"\s+", " ", value), True


def normalize_boolean(value: str) -> Tuple[Optional[bool], bool]:
    """Returns (parsed, is_ambiguous)"""
    value = normalize_text(value).lower()

    if value in BOOLEAN_TRUE_VALUES:
        return True, False
    if value in BOOLEAN_FALSE_VALUES:
        return False, False

    return None, True


def normalize_integer(value: str) -> Optional[int]:
    value = normalize_text(value)
    if re.fullmatch(r"[+-]?\d+", value):
        return int(value)
    if re.fullmatch(r"[+-]?\d+\.0+", value):
        return int(value.split(".")[0])
    return None


def format_cell(value: Any) -> str:
    """Render a stored value for a CSV cell"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)
