#!/usr/bin/env python3
"""
Run CSV imports from the command line.

Examples (from the project root):
  .venv/bin/python scripts/process_import.py --job-id 6f1c...      # one pending import
  .venv/bin/python scripts/process_import.py --auto-map --job-id 6f1c...
  .venv/bin/python scripts/process_import.py --pending             # every queued import

DATABASE_URL must be set (or present in .env).
"""
import argparse
import logging
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from src.agency_csv.config import settings
from src.agency_csv.database import SessionLocal
from src.agency_csv.services.csv_import import attach_mapping, process_import
from src.agency_csv.services.errors import CsvImportError
from src.agency_csv.services.import_runner import run_pending_imports


def main():
    parser = argparse.ArgumentParser(description="Process pending CSV imports")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--job-id", help="Import to process")
    group.add_argument("--pending", action="store_true", help="Process every queued import with a mapping")
    parser.add_argument("--auto-map", action="store_true", help="Attach an auto-matched mapping before processing")
    parser.add_argument("--limit", type=int, default=50, help="Maximum imports to process with --pending")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    if args.pending:
        count = run_pending_imports(SessionLocal, limit=args.limit)
        print(f"Done: {count} imports processed.")
        return

    db = SessionLocal()
    try:
        if args.auto_map:
            attach_mapping(db, args.job_id)
            db.commit()
        job = process_import(db, args.job_id)
        print(
            f"Done: import {job.id} {job.status.value} "
            f"(total={job.total_rows}, processed={job.processed_rows}, failed={job.failed_rows})"
        )
    except CsvImportError as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
