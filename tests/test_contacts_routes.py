import io
from unittest.mock import patch

import pytest

from conftest import TENANT_ID
from contact_intake.models import ContactUpload, ContactUploadStatus, db


@pytest.fixture
def queued_messages():
    messages = []

    def fake_publish(message):
        messages.append(dict(message))
        return "task-1"

    with patch("contact_intake.importer.views._upload_service.publisher", fake_publish):
        yield messages


def upload_form(content=b"email\na@example.com\n", filename="contacts.csv", **fields):
    data = {"file": (io.BytesIO(content), filename)}
    data.update(fields)
    return data


def test_requests_without_tenant_header_are_rejected(client):
    response = client.get("/contacts/")

    assert response.status_code == 400
    assert response.get_json() == {"error": "X-Tenant-Id header is required"}


def test_create_and_fetch_contact(client, auth_headers):
    response = client.post("/contacts/", json={"phone": "9876543210", "first_name": "Asha"}, headers=auth_headers)

    assert response.status_code == 201
    contact = response.get_json()
    assert contact["phone"] == "+919876543210"

    fetched = client.get(f"/contacts/{contact['id']}", headers=auth_headers)
    assert fetched.status_code == 200
    assert fetched.get_json()["first_name"] == "Asha"


def test_duplicate_contact_is_a_conflict(client, auth_headers):
    client.post("/contacts/", json={"email": "a@example.com"}, headers=auth_headers)

    response = client.post("/contacts/", json={"email": "A@example.com"}, headers=auth_headers)

    assert response.status_code == 409
    assert response.get_json() == {"error": "Contact with the same email or phone number already exists"}


def test_unknown_contact_is_not_found(client, auth_headers):
    response = client.get("/contacts/missing", headers=auth_headers)

    assert response.status_code == 404
    assert response.get_json() == {"error": "Contact not found"}


def test_group_field_and_value_endpoints(client, auth_headers):
    group = client.post("/contacts/groups", json={"name": "VIP"}, headers=auth_headers).get_json()
    field_response = client.post(
        f"/contacts/groups/{group['id']}/fields",
        json={"name": "age", "field_type": "number", "validation_rules": {"min": 18}},
        headers=auth_headers,
    )
    assert field_response.status_code == 201
    contact = client.post("/contacts/", json={"email": "a@example.com"}, headers=auth_headers).get_json()

    validation = client.post(
        f"/contacts/groups/{group['id']}/validate-fields", json={"age": 15}, headers=auth_headers
    ).get_json()
    assert validation["is_valid"] is False
    assert validation["errors"][0]["rule"] == "min"

    rejected = client.put(
        f"/contacts/{contact['id']}/groups/{group['id']}/fields", json={"age": 15}, headers=auth_headers
    )
    assert rejected.status_code == 422
    assert rejected.get_json()["error"] == "Field validation failed"

    stored = client.put(
        f"/contacts/{contact['id']}/groups/{group['id']}/fields", json={"age": 40}, headers=auth_headers
    )
    assert stored.status_code == 200
    assert stored.get_json()["field_values"] == {"age": 40}

    groups = client.get("/contacts/groups", headers=auth_headers).get_json()
    assert groups["data"][0]["contact_count"] == 1

    removed = client.delete(f"/contacts/{contact['id']}/groups/{group['id']}", headers=auth_headers)
    assert removed.get_json() == {"removed": True}


def test_bulk_upload_returns_accepted_job(client, auth_headers, queued_messages):
    response = client.post(
        "/contacts/bulk-upload",
        data=upload_form(submission_id="sub-1"),
        headers=auth_headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 202
    payload = response.get_json()
    assert payload["status"] == "pending"
    assert payload["status_url"] == f"/contacts/bulk-upload/{payload['id']}/status"
    assert queued_messages[0]["uploadId"] == payload["id"]


def test_bulk_upload_validation_errors(client, auth_headers, queued_messages):
    missing = client.post("/contacts/bulk-upload", data={}, headers=auth_headers, content_type="multipart/form-data")
    assert missing.status_code == 400
    assert missing.get_json() == {"error": "No file uploaded"}

    wrong_type = client.post(
        "/contacts/bulk-upload",
        data=upload_form(filename="contacts.json"),
        headers=auth_headers,
        content_type="multipart/form-data",
    )
    assert wrong_type.status_code == 400
    assert wrong_type.get_json() == {"error": "Unsupported file format. Please upload Excel or CSV file"}
    assert queued_messages == []


def test_bulk_upload_can_create_group(client, auth_headers, queued_messages):
    response = client.post(
        "/contacts/bulk-upload",
        data=upload_form(create_new_group="true", new_group_name="Imported"),
        headers=auth_headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 202
    assert queued_messages[0]["contactGroupId"] == response.get_json()["contact_group_id"]


def test_bulk_upload_status_list_and_errors(client, auth_headers):
    upload = ContactUpload(
        tenant_id=TENANT_ID,
        uploaded_by="user-1",
        filename="stored.csv",
        original_filename="contacts.csv",
        file_size=10,
        status=ContactUploadStatus.COMPLETED,
        total_records=8,
        processed_records=8,
        accepted_records=7,
        rejected_records=1,
        errors=[{"row": 4, "message": "Either phone or email is required", "data": {"first_name": "X"}}],
    )
    db.session.add(upload)
    db.session.commit()

    status = client.get(f"/contacts/bulk-upload/{upload.id}/status", headers=auth_headers).get_json()
    assert status["completion_percentage"] == 100
    assert status["rejected_records"] == 1

    listing = client.get("/contacts/bulk-upload", headers=auth_headers).get_json()
    assert [item["id"] for item in listing["data"]] == [upload.id]

    report = client.get(f"/contacts/bulk-upload/{upload.id}/errors", headers=auth_headers)
    assert report.status_code == 200
    assert report.mimetype == "text/csv"
    assert f"upload_errors_{upload.id}.csv" in report.headers["Content-Disposition"]
    assert report.get_data(as_text=True).startswith("Row,Error Message,Data\n4,")


def test_error_report_without_errors(client, auth_headers):
    upload = ContactUpload(
        tenant_id=TENANT_ID,
        uploaded_by="user-1",
        filename="stored.csv",
        original_filename="contacts.csv",
        file_size=10,
        status=ContactUploadStatus.COMPLETED,
    )
    db.session.add(upload)
    db.session.commit()

    response = client.get(f"/contacts/bulk-upload/{upload.id}/errors", headers=auth_headers)

    assert response.status_code == 400
    assert response.get_json() == {"error": "No errors found for this upload"}


def test_health_endpoints(client):
    assert client.get("/contacts/health").get_json()["status"] == "ok"

    worker = client.get("/contacts/worker_health")
    assert worker.status_code == 200
    assert worker.get_json()["status"] == "disabled"


def test_worker_health_runs_heartbeat_when_enabled(app, client):
    app.extensions["contact_uploads"]["worker_enabled"] = True

    response = client.get("/contacts/worker_health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["heartbeat"]["status"] == "ok"


def test_unexpected_errors_return_generic_500(client, auth_headers):
    with patch(
        "contact_intake.routes.contacts._contact_service.list_groups",
        side_effect=RuntimeError("database exploded"),
    ):
        response = client.get("/contacts/groups", headers=auth_headers)

    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}
