from __future__ import annotations

from io import BytesIO

from panchayat.core.extensions import db
from panchayat.core.models import ApplicationStatus, WarishApplication, WarishDocument
from panchayat.warish.collaborators import STORAGE_KEY, StorageGateway

from conftest import PDF_BYTES


def _submit(client, payload) -> dict:
    response = client.post("/warish/applications", json=payload)
    assert response.status_code == 201
    return response.get_json()["data"]


def _upload(client, application_id: int, doc_type: str = "death_certificate"):
    return client.post(
        f"/warish/applications/{application_id}/documents",
        data={"doc_type": doc_type, "file": (BytesIO(PDF_BYTES), "proof.pdf", "application/pdf")},
        content_type="multipart/form-data",
    )


def _to_review(client, payload) -> int:
    application_id = _submit(client, payload)["id"]
    assert client.post(f"/warish/applications/{application_id}/assign", json={"staff_id": "staff-1"}).status_code == 200
    assert _upload(client, application_id).status_code == 201
    assert client.post(f"/warish/applications/{application_id}/review", json={}).status_code == 200
    return application_id


def test_login_rejects_bad_password(client):
    response = client.post("/auth/login", json={"email": "staff@panchayat.local", "password": "nope"})
    assert response.status_code == 401
    assert response.get_json() == {"success": False, "error": {"kind": "Unauthorized", "message": "Invalid credentials"}}


def test_staff_routes_require_login(client):
    response = client.get("/warish/applications")
    assert response.status_code == 401
    assert response.get_json()["error"]["kind"] == "Unauthorized"


def test_public_submit_and_acknowledgment_lookup(client, application_payload):
    data = _submit(client, application_payload())
    assert data["status"] == "SUBMITTED"

    response = client.get("/warish/applications/ack", query_string={"code": data["acknowledgment_code"]})
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["data"]["deceased_name"] == "Bimal Pal"
    assert "remarks" not in body["data"]

    missing = client.get("/warish/applications/ack", query_string={"code": "ACK/LH/1999/0001"})
    assert missing.status_code == 404
    assert missing.get_json()["error"]["kind"] == "NotFound"


def test_submit_validation_error_envelope(client, application_payload):
    response = client.post("/warish/applications", json=application_payload(date_of_death=""))
    assert response.status_code == 400
    body = response.get_json()
    assert body["success"] is False
    assert body["error"]["kind"] == "Validation"


def test_end_to_end_certificate_flow(app, client, login_staff, application_payload):
    login_staff()
    application_id = _to_review(client, application_payload())

    response = client.post(f"/warish/applications/{application_id}/approve", json={"memo_number": "12/25"})
    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "Validation"

    response = client.post(
        f"/warish/applications/{application_id}/approve",
        json={"memo_number": "12/25", "memo_date": "2025-08-20"},
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "APPROVED"
    assert response.get_json()["data"]["renew_date"] == "2026-01-01"

    eligibility = client.get(f"/warish/applications/{application_id}/eligibility").get_json()
    assert eligibility["data"]["eligible"] is True

    response = client.post(f"/warish/applications/{application_id}/certificate")
    assert response.status_code == 201
    certificate = response.get_json()["data"]
    assert certificate["kind"] == "CERTIFICATE_OUTPUT"
    assert certificate["remarks"] == "System generated certificate"

    again = client.post(f"/warish/applications/{application_id}/certificate")
    assert again.status_code == 409
    assert again.get_json()["error"]["kind"] == "Conflict"

    eligibility = client.get(f"/warish/applications/{application_id}/eligibility").get_json()
    assert eligibility["data"]["eligible"] is False

    tree = client.get(f"/warish/certificates/{certificate['id']}/lineage").get_json()["data"]
    assert [node["name"] for node in tree] == ["Kalpana Pal", "Sourav Pal"]
    assert tree[1]["children"][0]["depth"] == 2

    with app.app_context():
        application = db.session.get(WarishApplication, application_id)
        assert application.status == ApplicationStatus.CERTIFICATE_GENERATED
        assert WarishDocument.query.filter_by(application_id=application_id).count() == 2


def test_invalid_transition_reports_current_and_target(client, login_staff, application_payload):
    login_staff()
    application_id = _submit(client, application_payload())["id"]
    response = client.post(f"/warish/applications/{application_id}/reject", json={"remark": "Documents are forged"})
    assert response.status_code == 409
    error = response.get_json()["error"]
    assert error["kind"] == "InvalidTransition"
    assert error["current"] == "SUBMITTED"
    assert error["target"] == "REJECTED"


def test_assignment_locked_after_review(client, login_staff, application_payload):
    login_staff()
    application_id = _to_review(client, application_payload())
    response = client.post(f"/warish/applications/{application_id}/assign", json={"staff_id": "staff-2"})
    assert response.status_code == 409
    assert response.get_json()["error"]["kind"] == "AssignmentLocked"


def test_assign_to_unknown_staff_is_404(client, login_staff, application_payload):
    login_staff()
    application_id = _submit(client, application_payload())["id"]
    response = client.post(f"/warish/applications/{application_id}/assign", json={"staff_id": "ghost-9"})
    assert response.status_code == 404
    assert response.get_json()["error"]["kind"] == "NotFound"
    detail = client.get(f"/warish/applications/{application_id}").get_json()["data"]
    assert detail["status"] == "SUBMITTED"
    assert detail["assigned_staff_id"] is None


def test_reopen_requires_admin_role(client, login_staff, login_admin, application_payload):
    login_staff()
    application_id = _to_review(client, application_payload())
    client.post(f"/warish/applications/{application_id}/reject", json={"remark": "Heir proof is unreadable"})

    forbidden = client.post(f"/warish/applications/{application_id}/reopen", json={"remark": "Recheck"})
    assert forbidden.status_code == 403
    assert forbidden.get_json()["error"]["kind"] == "Forbidden"

    client.post("/auth/logout")
    login_admin()
    response = client.post(f"/warish/applications/{application_id}/reopen", json={"remark": "Recheck"})
    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "UNDER_REVIEW"


def test_document_verification_endpoints(client, login_staff, application_payload):
    login_staff()
    application_id = _to_review(client, application_payload())
    document_id = _upload(client, application_id, "affidavit").get_json()["data"]["id"]

    rejected = client.post(f"/warish/documents/{document_id}/reject").get_json()["data"]
    assert rejected["verified"] is False
    verified = client.post(f"/warish/documents/{document_id}/verify").get_json()["data"]
    assert verified["verified"] is True
    assert verified["remarks"] == "Manually verified"

    bulk = client.post(f"/warish/applications/{application_id}/documents/verify-all").get_json()["data"]
    assert bulk["verified"] == 1

    bad = client.post(
        f"/warish/applications/{application_id}/documents",
        data={"doc_type": "affidavit", "file": (BytesIO(b"img"), "a.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert bad.status_code == 400


def test_lineage_depth_limit_is_422(client, login_staff, application_payload):
    login_staff()
    application_id = _submit(client, application_payload())["id"]
    response = client.get(f"/warish/applications/{application_id}/lineage", query_string={"max_depth": 1})
    assert response.status_code == 422
    assert response.get_json()["error"]["kind"] == "DepthExceeded"

    response = client.post(
        f"/warish/applications/{application_id}/family-members",
        json={"name": "Asha Pal", "relation": "Daughter", "living_status": "ALIVE"},
    )
    assert response.status_code == 201
    tree = client.get(f"/warish/applications/{application_id}/lineage").get_json()["data"]
    assert [node["name"] for node in tree] == ["Kalpana Pal", "Sourav Pal", "Asha Pal"]


def test_correction_endpoints(client, login_staff, application_payload):
    login_staff()
    application_id = _to_review(client, application_payload())
    client.post(
        f"/warish/applications/{application_id}/approve",
        json={"memo_number": "7/GP/2026", "memo_date": "2026-04-01"},
    )

    response = client.post(
        f"/warish/applications/{application_id}/corrections",
        json={"description": "Village misspelt", "field_name": "village_name", "proposed_value": "Raipur Gram"},
    )
    assert response.status_code == 201
    correction = response.get_json()["data"]
    assert correction["current_value"] == "Raipur"

    duplicate = client.post(
        f"/warish/applications/{application_id}/corrections",
        json={"description": "Again", "field_name": "village_name", "proposed_value": "Raipur"},
    )
    assert duplicate.status_code == 409

    resolved = client.post(
        f"/warish/corrections/{correction['id']}/resolve",
        json={"resolution": "Checked voter roll", "apply": True, "reopen": True},
    )
    assert resolved.status_code == 200
    assert resolved.get_json()["data"]["outcome"] == "APPLIED"

    detail = client.get(f"/warish/applications/{application_id}").get_json()["data"]
    assert detail["village_name"] == "Raipur Gram"
    assert detail["status"] == "UNDER_REVIEW"

    listed = client.get(f"/warish/applications/{application_id}/corrections", query_string={"status": "resolved"})
    assert len(listed.get_json()["data"]) == 1


def test_search_endpoint(client, login_staff, application_payload):
    login_staff()
    _submit(client, application_payload())
    rows = client.get("/warish/applications", query_string={"deceased_name": "bimal"}).get_json()["data"]
    assert [row["deceased_name"] for row in rows] == ["Bimal Pal"]


def test_storage_failure_maps_to_502(app, client, login_staff, application_payload):
    class BrokenStorage:
        def upload(self, content, mime_type, folder_hint, filename):
            raise OSError("disk full")

        def delete(self, storage_id):
            return None

    app.extensions[STORAGE_KEY] = StorageGateway(BrokenStorage(), timeout_seconds=2)
    login_staff()
    application_id = _submit(client, application_payload())["id"]
    response = _upload(client, application_id)
    assert response.status_code == 502
    assert response.get_json()["error"]["kind"] == "StorageFailure"


def test_unexpected_error_is_reported_as_internal(client, login_staff, monkeypatch):
    def boom(filters):
        raise RuntimeError("database on fire")

    monkeypatch.setattr("panchayat.warish.routes.search_applications", boom)
    login_staff()
    response = client.get("/warish/applications")
    assert response.status_code == 500
    assert response.get_json() == {
        "success": False,
        "error": {"kind": "Internal", "message": "An internal error occurred"},
    }
