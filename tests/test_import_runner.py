import os

from sqlalchemy import select, func

from src.agency_csv.models import Client, CsvImport, ImportStatus
from src.agency_csv.services.csv_import import attach_mapping, create_import_job
from src.agency_csv.services.import_runner import get_queued_job_ids, run_pending_imports

TENANT = "tenant-a"


def _queue(db, path, mapped=True):
    job = create_import_job(
        db,
        tenant_id=TENANT,
        user_id="user-1",
        entity_type="clients",
        filename=os.path.basename(path),
        file_path=path,
        file_size=os.path.getsize(path),
    )
    if mapped:
        attach_mapping(db, job.id)
    return job.id


def test_only_mapped_pending_jobs_are_queued(db, write_csv):
    mapped_id = _queue(db, write_csv("name\nAcme\n"))
    _queue(db, write_csv("name\nBeta\n"), mapped=False)
    db.commit()

    assert get_queued_job_ids(db) == [mapped_id]


def test_runner_processes_queued_jobs(db, session_factory, write_csv):
    first = _queue(db, write_csv("name\nAcme\nBeta\n"))
    second = _queue(db, write_csv("name\nGamma\n"))
    db.commit()
    db.close()

    processed = run_pending_imports(session_factory)

    assert processed == 2
    statuses = db.execute(select(CsvImport.id, CsvImport.status)).all()
    assert dict(statuses) == {first: ImportStatus.COMPLETED, second: ImportStatus.COMPLETED}
    assert db.execute(select(func.count()).select_from(Client)).scalar() == 3


def test_runner_continues_after_a_failed_job(db, session_factory, write_csv):
    broken_path = write_csv("name\nAcme\n")
    broken = _queue(db, broken_path)
    healthy = _queue(db, write_csv("name\nBeta\n"))
    db.commit()
    db.close()
    os.remove(broken_path)

    processed = run_pending_imports(session_factory)

    assert processed == 1
    assert db.get(CsvImport, broken).status == ImportStatus.FAILED
    assert db.get(CsvImport, healthy).status == ImportStatus.COMPLETED
    assert get_queued_job_ids(db) == []
