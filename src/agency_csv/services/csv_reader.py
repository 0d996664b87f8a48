"""Lazy CSV reading with a header row and positional record mapping"""
import csv
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List

from src.agency_csv.services.errors import EmptyFileError, FileUnreadableError

UPLOAD_ENCODINGS = ["utf-8-sig", "cp1252"]


@dataclass
class CsvFile:
    headers: List[str]
    rows: Iterator[Dict[str, str]]


def decode_csv_content(content: bytes) -> str:
    for encoding in UPLOAD_ENCODINGS:
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    raise FileUnreadableError("Unable to decode CSV file. Supported encodings: UTF-8, Windows-1252")


def _is_blank(cells: List[str]) -> bool:
    return not any(cell.strip() for cell in cells)


def _next_cells(reader) -> List[str]:
    try:
        return next(reader)
    except UnicodeDecodeError as e:
        raise FileUnreadableError(f"CSV file is not valid UTF-8: {e.reason}") from e
    except csv.Error as e:
        raise FileUnreadableError(f"Malformed CSV: {e}") from e


def _read_headers(reader) -> List[str]:
    while True:
        try:
            cells = _next_cells(reader)
        except StopIteration:
            raise EmptyFileError("CSV file has no header row") from None
        if not _is_blank(cells):
            break

    headers = []
    for idx, cell in enumerate(cells, start=1):
        name = cell.strip()
        headers.append(name or f"column_{idx}")
    return headers


def _iter_records(reader, headers: List[str]) -> Iterator[Dict[str, str]]:
    width = len(headers)
    while True:
        try:
            cells = _next_cells(reader)
        except StopIteration:
            return
        if _is_blank(cells):
            continue

        # short rows are padded, extra cells dropped
        if len(cells) < width:
            cells = cells + [""] * (width - len(cells))

        record: Dict[str, str] = {}
        for header, value in zip(headers, cells[:width]):
            record.setdefault(header, value)
        yield record


@contextmanager
def open_csv(path: str) -> Iterator[CsvFile]:
    """Open a CSV file for one pass over its rows.

    The file handle is closed when the block exits, whether the rows were
    fully consumed, iteration stopped early, or an exception was raised.
    Reopening the same path yields the same sequence of records.
    """
    try:
        handle = open(path, "r", encoding="utf-8-sig", newline="")
    except OSError as e:
        raise FileUnreadableError(f"Unable to open CSV file: {e.strerror or e}") from e

    try:
        reader = csv.reader(handle)
        headers = _read_headers(reader)
        yield CsvFile(headers=headers, rows=_iter_records(reader, headers))
    finally:
        handle.close()


def read_headers(path: str) -> List[str]:
    with open_csv(path) as csv_file:
        return list(csv_file.headers)


def count_rows(path: str) -> int:
    with open_csv(path) as csv_file:
        return sum(1 for _ in csv_file.rows)
