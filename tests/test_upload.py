import os
from datetime import datetime

import pytest

from src.agency_csv.config import Settings
from src.agency_csv.services.errors import FileUnreadableError, UploadRejectedError
from src.agency_csv.services.upload import get_safe_filename, store_upload, validate_upload


@pytest.fixture()
def upload_settings(tmp_path):
    return Settings(CSV_UPLOAD_DIR=str(tmp_path / "uploads"), CSV_MAX_UPLOAD_MB=1)


def test_accepts_csv_and_txt(upload_settings):
    validate_upload("clients.csv", 100, upload_settings)
    validate_upload("CLIENTS.TXT", 100, upload_settings)


def test_rejects_missing_file(upload_settings):
    with pytest.raises(UploadRejectedError) as exc_info:
        validate_upload(None, 0, upload_settings)
    assert exc_info.value.errors == ["No file was uploaded"]


def test_collects_every_problem(upload_settings):
    with pytest.raises(UploadRejectedError) as exc_info:
        validate_upload("clients.xlsx", 2 * 1024 * 1024, upload_settings)

    assert exc_info.value.errors == [
        "File size exceeds 1MB limit",
        "Only .csv, .txt files are allowed",
    ]


def test_rejects_empty_upload(upload_settings):
    with pytest.raises(UploadRejectedError):
        validate_upload("clients.csv", 0, upload_settings)


def test_safe_filename():
    name = get_safe_filename("../../my clients (v2).CSV", now=datetime(2026, 10, 17, 12, 0, 0))

    assert name.startswith("my_clients__v2_20261017120000_")
    assert name.endswith(".csv")
    assert "/" not in name


def test_store_upload_writes_utf8(upload_settings):
    content = "name\nCafé\n".encode("cp1252")

    path, size = store_upload(content, "clients.csv", upload_settings)

    assert size == len(content)
    assert os.path.dirname(path) == upload_settings.CSV_UPLOAD_DIR
    with open(path, encoding="utf-8") as f:
        assert f.read() == "name\nCafé\n"


def test_store_upload_rejects_before_writing(upload_settings):
    with pytest.raises(UploadRejectedError):
        store_upload(b"name\nAcme\n", "clients.exe", upload_settings)
    assert not os.path.exists(upload_settings.CSV_UPLOAD_DIR)


def test_decode_failure_is_unreadable():
    from src.agency_csv.services.csv_reader import decode_csv_content, UPLOAD_ENCODINGS

    assert UPLOAD_ENCODINGS[-1] == "cp1252"
    with pytest.raises(FileUnreadableError):
        decode_csv_content(b"\x81\x8d\x8f\x90\x9d")
