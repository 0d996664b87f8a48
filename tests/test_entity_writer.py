from sqlalchemy import select, func

from src.agency_csv.models import Client, Note
from src.agency_csv.schemas.csv_import import ImportOptions
from src.agency_csv.services.entity_schema import schema_for
from src.agency_csv.services.entity_writer import (
    SqlEntityStore,
    WriteAction,
    dedup_key_for,
    write_entity,
)

CLIENTS = schema_for("clients")
TENANT = "tenant-a"


def test_new_record_is_inserted(memory_store):
    outcome = write_entity(CLIENTS, {"name": "Acme", "email": "a@x.com"}, TENANT, ImportOptions(), memory_store)

    assert outcome.action == WriteAction.INSERTED
    assert outcome.is_written
    assert len(memory_store.records) == 1


def test_duplicate_is_skipped_by_default(memory_store):
    memory_store.insert(TENANT, {"name": "Acme", "email": "a@x.com"})

    outcome = write_entity(CLIENTS, {"name": "Acme 2", "email": "A@X.com"}, TENANT, ImportOptions(), memory_store)

    assert outcome.action == WriteAction.SKIPPED
    assert outcome.reason == "duplicate"
    assert memory_store.records[0].record["name"] == "Acme"


def test_skip_duplicates_option(memory_store):
    memory_store.insert(TENANT, {"name": "Acme", "email": "a@x.com"})

    outcome = write_entity(
        CLIENTS, {"name": "Acme", "email": "a@x.com"}, TENANT, ImportOptions(skip_duplicates=True), memory_store
    )

    assert outcome.action == WriteAction.SKIPPED
    assert "update" not in memory_store.calls


def test_same_key_in_other_tenant_is_inserted(memory_store):
    memory_store.insert("tenant-b", {"name": "Acme", "email": "a@x.com"})

    outcome = write_entity(CLIENTS, {"name": "Acme", "email": "a@x.com"}, TENANT, ImportOptions(), memory_store)

    assert outcome.action == WriteAction.INSERTED


def test_missing_key_always_inserts(memory_store):
    memory_store.insert(TENANT, {"name": "Beta"})

    outcome = write_entity(CLIENTS, {"name": "Beta"}, TENANT, ImportOptions(update_existing=True), memory_store)

    assert outcome.action == WriteAction.INSERTED
    assert memory_store.calls.count("find") == 0
    assert len(memory_store.records) == 2


def test_update_existing_merges_present_fields(memory_store):
    memory_store.insert(TENANT, {"name": "Acme", "email": "a@x.com", "phone": "555-1111", "address": "1 Main St"})

    outcome = write_entity(
        CLIENTS,
        {"name": "Acme", "email": "a@x.com", "phone": "555-0000"},
        TENANT,
        ImportOptions(update_existing=True),
        memory_store,
    )

    assert outcome.action == WriteAction.UPDATED
    assert memory_store.records[0].record["phone"] == "555-0000"
    assert memory_store.records[0].record["address"] == "1 Main St"


def test_storage_error_becomes_failed_outcome(memory_store):
    def broken_insert(tenant_id, record):
        raise RuntimeError("disk full")

    memory_store.insert = broken_insert

    outcome = write_entity(CLIENTS, {"name": "Acme"}, TENANT, ImportOptions(), memory_store)

    assert outcome.action == WriteAction.FAILED
    assert outcome.reason == "disk full"


def test_dedup_key_for():
    assert dedup_key_for(CLIENTS, {"email": "  A@X.com "}) == "a@x.com"
    assert dedup_key_for(CLIENTS, {"name": "Acme"}) == ""
    assert dedup_key_for(schema_for("notes"), {"content": "hi"}) == ""


def test_sql_store_update_keeps_absent_columns(db):
    db.add(Client(tenant_id=TENANT, name="Acme", email="a@x.com", phone="555-1111", address="1 Main St"))
    db.commit()
    store = SqlEntityStore(db, CLIENTS)

    outcome = write_entity(
        CLIENTS,
        {"name": "Acme", "email": "a@x.com", "phone": "555-0000"},
        TENANT,
        ImportOptions(update_existing=True),
        store,
    )
    db.commit()

    client = db.execute(select(Client)).scalar_one()
    assert outcome.action == WriteAction.UPDATED
    assert client.phone == "555-0000"
    assert client.address == "1 Main St"


def test_sql_store_is_tenant_scoped_and_case_insensitive(db):
    db.add(Client(tenant_id=TENANT, name="Acme", email="A@X.com"))
    db.add(Client(tenant_id="tenant-b", name="Other", email="b@x.com"))
    db.commit()
    store = SqlEntityStore(db, CLIENTS)

    assert store.find_by_key(TENANT, "a@x.com").name == "Acme"
    assert store.find_by_key(TENANT, "b@x.com") is None
    assert store.update(9999, {"name": "Ghost"}) is False


def test_sql_store_failed_insert_leaves_session_usable(db):
    store = SqlEntityStore(db, schema_for("notes"))

    failed = write_entity(schema_for("notes"), {"subject": "no content"}, TENANT, ImportOptions(), store)
    inserted = write_entity(schema_for("notes"), {"content": "Call back"}, TENANT, ImportOptions(), store)
    db.commit()

    assert failed.action == WriteAction.FAILED
    assert inserted.action == WriteAction.INSERTED
    assert db.execute(select(func.count()).select_from(Note)).scalar() == 1
