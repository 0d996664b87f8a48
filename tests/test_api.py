import csv
import io

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from src.agency_csv.api.deps import get_session_factory
from src.agency_csv.config import settings
from src.agency_csv.database import get_db
from src.agency_csv.main import app
from src.agency_csv.models import AuditLog, Client

HEADERS = {"X-Tenant-Id": "tenant-a", "X-User-Id": "user-1", "X-User-Role": "agency"}
THREE_ROWS = b"name,email\nAcme,a@x.com\nBeta,\nGamma,not-valid\n"


@pytest.fixture()
def client(session_factory, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "CSV_UPLOAD_DIR", str(tmp_path / "uploads"))

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _upload(client, content=THREE_ROWS, filename="clients.csv", entity_type="clients", headers=HEADERS, **form):
    data = {"entity_type": entity_type}
    data.update({k: str(v).lower() for k, v in form.items()})
    return client.post(
        "/api/imports",
        data=data,
        files={"file": (filename, content, "text/csv")},
        headers=headers,
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"


def test_context_headers_required(client):
    assert client.get("/api/imports").status_code == 422
    response = client.get("/api/imports", headers={"X-Tenant-Id": "", "X-User-Id": "u"})
    assert response.status_code == 401


def test_end_user_roles_cannot_upload(client):
    response = _upload(client, headers={**HEADERS, "X-User-Role": "end_client"})
    assert response.status_code == 403


def test_upload_returns_job_and_mapping_preview(client):
    response = _upload(client, skip_duplicates=True)

    assert response.status_code == 201
    body = response.json()
    assert body["job"]["status"] == "pending"
    assert body["job"]["total_rows"] == 3
    assert body["job"]["import_options"] == {"skip_duplicates": True, "update_existing": False}
    assert "file_path" not in body["job"]
    assert [c["mapped_to"] for c in body["mapping"]["columns"]] == ["name", "email"]
    assert body["mapping"]["missing_required"] == []


def test_upload_rejections(client):
    assert _upload(client, filename="clients.xlsx").status_code == 400
    assert _upload(client, entity_type="projects").status_code == 400
    assert _upload(client, content=b"\n\n").status_code == 400


def test_full_import_flow(client):
    job_id = _upload(client).json()["job"]["id"]

    response = client.put(f"/api/imports/{job_id}/mapping", json={"process": True}, headers=HEADERS)

    assert response.status_code == 200
    job = response.json()
    assert job["status"] == "completed"
    assert job["processed_rows"] == 2
    assert job["failed_rows"] == 1
    assert list(job["validation_errors"]) == ["3"]

    report = client.get(f"/api/imports/{job_id}/errors", headers=HEADERS)
    assert report.status_code == 200
    lines = list(csv.reader(io.StringIO(report.text)))
    assert lines[0] == ["row_number", "errors"]
    assert lines[1][0] == "3"


def test_explicit_column_mapping(client):
    job_id = _upload(client, content=b"Company,Mail\nAcme,a@x.com\n").json()["job"]["id"]

    response = client.put(
        f"/api/imports/{job_id}/mapping",
        json={"column_mappings": [
            {"original": "Company", "mapped_to": "name"},
            {"original": "Mail", "mapped_to": "email"},
        ]},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["field_mapping"] == {"Company": "name", "Mail": "email"}
    assert client.post(f"/api/imports/{job_id}/process", headers=HEADERS).json()["processed_rows"] == 1


def test_unmapped_required_field_is_rejected(client):
    job_id = _upload(client, content=b"Email\na@x.com\n").json()["job"]["id"]

    preview = client.get(f"/api/imports/{job_id}/mapping", headers=HEADERS).json()
    response = client.put(f"/api/imports/{job_id}/mapping", json={}, headers=HEADERS)

    assert preview["missing_required"] == ["name"]
    assert response.status_code == 400


def test_process_without_mapping_fails_job(client):
    job_id = _upload(client).json()["job"]["id"]

    response = client.post(f"/api/imports/{job_id}/process", headers=HEADERS)

    assert response.status_code == 422
    job = client.get(f"/api/imports/{job_id}", headers=HEADERS).json()
    assert job["status"] == "failed"
    assert job["error_message"]


def test_cancel_and_state_conflicts(client):
    job_id = _upload(client).json()["job"]["id"]

    assert client.post(f"/api/imports/{job_id}/cancel", headers=HEADERS).json()["status"] == "cancelled"
    assert client.post(f"/api/imports/{job_id}/cancel", headers=HEADERS).status_code == 409
    assert client.post(f"/api/imports/{job_id}/process", headers=HEADERS).status_code == 409


def test_delete_permissions(client):
    job_id = _upload(client).json()["job"]["id"]
    other_user = {**HEADERS, "X-User-Id": "user-2"}
    admin = {**HEADERS, "X-User-Id": "user-3", "X-User-Role": "admin"}

    assert client.delete(f"/api/imports/{job_id}", headers=other_user).status_code == 403
    assert client.delete(f"/api/imports/{job_id}", headers=admin).status_code == 204
    assert client.get(f"/api/imports/{job_id}", headers=HEADERS).status_code == 404


def test_jobs_are_hidden_from_other_tenants(client):
    job_id = _upload(client).json()["job"]["id"]
    other_tenant = {**HEADERS, "X-Tenant-Id": "tenant-b"}

    assert client.get(f"/api/imports/{job_id}", headers=other_tenant).status_code == 404
    assert client.get("/api/imports", headers=other_tenant).json()["total"] == 0


def test_list_and_statistics(client):
    _upload(client)
    _upload(client, content=b"content\nCall back\n", entity_type="notes")

    listing = client.get("/api/imports", params={"entity_type": "notes"}, headers=HEADERS).json()
    stats = client.get("/api/imports/statistics", headers=HEADERS).json()

    assert listing["total"] == 1
    assert listing["imports"][0]["entity_type"] == "notes"
    assert stats["total_imports"] == 2
    assert stats["by_status"] == {"pending": 2}


def test_template_download(client):
    response = client.get("/api/imports/template/clients", headers=HEADERS)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.startswith("Name,Email,Phone")


def test_export_streams_csv(client, session_factory):
    with session_factory() as db:
        db.add_all([
            Client(tenant_id="tenant-a", name="Acme", email="a@x.com", is_active=True),
            Client(tenant_id="tenant-a", name="Beta", email="b@x.com", is_active=False),
        ])
        db.commit()

    response = client.get(
        "/api/exports/clients",
        params={"fields": "name, email", "active_only": "true"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert "clients_export_" in response.headers["content-disposition"]
    assert list(csv.reader(io.StringIO(response.text))) == [["Name", "Email"], ["Acme", "a@x.com"]]


def test_export_rejects_unknown_fields_and_bad_ranges(client):
    assert client.get("/api/exports/clients", params={"fields": "budget"}, headers=HEADERS).status_code == 400
    assert client.get("/api/exports/projects", headers=HEADERS).status_code == 400
    response = client.get(
        "/api/exports/clients",
        params={"created_after": "2026-02-01", "created_before": "2026-01-01"},
        headers=HEADERS,
    )
    assert response.status_code == 400


def test_runner_trigger_requires_admin(client):
    assert client.post("/api/runner/trigger", headers=HEADERS).status_code == 403

    job_id = _upload(client).json()["job"]["id"]
    client.put(f"/api/imports/{job_id}/mapping", json={}, headers=HEADERS)

    response = client.post("/api/runner/trigger", headers={**HEADERS, "X-User-Role": "owner"})

    assert response.json()["processed"] == 1
    assert client.get(f"/api/imports/{job_id}", headers=HEADERS).json()["status"] == "completed"


def test_export_fields_listing(client):
    response = client.get("/api/exports/contacts/fields", headers=HEADERS)

    assert response.status_code == 200
    fields = response.json()
    assert fields[:2] == [
        {"name": "first_name", "label": "First Name", "required": True},
        {"name": "last_name", "label": "Last Name", "required": True},
    ]
    assert [f["name"] for f in fields[-3:]] == ["id", "created_at", "updated_at"]
    assert client.get("/api/exports/projects/fields", headers=HEADERS).status_code == 400
    assert client.get("/api/exports/contacts/fields", headers={**HEADERS, "X-User-Role": "end_client"}).status_code == 403


def test_export_is_audited_once_streamed(client, session_factory):
    with session_factory() as db:
        db.add(Client(tenant_id="tenant-a", name="Acme", email="a@x.com"))
        db.commit()

    assert client.get("/api/exports/clients", params={"fields": "name"}, headers=HEADERS).status_code == 200

    with session_factory() as db:
        entry = db.execute(select(AuditLog).where(AuditLog.action == "csv_export")).scalar_one()
        assert entry.actor_user_id == "user-1"
        assert entry.tenant_id == "tenant-a"
