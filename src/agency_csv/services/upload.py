"""Validation and storage of uploaded CSV files"""
import logging
import os
import re
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from src.agency_csv.config import Settings, get_settings
from src.agency_csv.services.csv_reader import decode_csv_content
from src.agency_csv.services.errors import UploadRejectedError

logger = logging.getLogger(__name__)


def validate_upload(filename: Optional[str], size: int, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    errors: List[str] = []

    if not filename:
        raise UploadRejectedError(["No file was uploaded"])

    if size <= 0:
        errors.append("Uploaded file is empty")
    elif size > settings.max_upload_bytes:
        errors.append(f"File size exceeds {settings.CSV_MAX_UPLOAD_MB}MB limit")

    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if extension not in settings.allowed_extensions:
        errors.append(f"Only {', '.join('.' + e for e in settings.allowed_extensions)} files are allowed")

    if errors:
        raise UploadRejectedError(errors)


def get_safe_filename(original_filename: str, now: Optional[datetime] = None) -> str:
    name = os.path.basename(original_filename or "upload.csv")
    base, extension = os.path.splitext(name)
    base = re.sub(r"[^a-zA-Z0-9_.-]", "_", base).strip("._") or "upload"
    extension = re.sub(r"[^a-zA-Z0-9]", "", extension).lower() or "csv"
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    return f"{base}_{stamp}_{uuid.uuid4().hex[:8]}.{extension}"


def store_upload(content: bytes, filename: str, settings: Optional[Settings] = None) -> Tuple[str, int]:
    """Validate, re-encode as UTF-8 and save an upload; returns (path, size in bytes)"""
    settings = settings or get_settings()
    validate_upload(filename, len(content), settings)

    text = decode_csv_content(content)

    upload_dir = settings.CSV_UPLOAD_DIR
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, get_safe_filename(filename))

    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)

    logger.info(f"Stored upload {filename} ({len(content)} bytes) at {path}")
    return path, len(content)
