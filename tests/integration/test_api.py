"""
Integration tests for the HTTP API.
Storage and notifications are faked; the metadata store is in-memory SQLite.
"""
from datetime import datetime, timedelta, timezone

import pytest

from ephemera.models import DeletionStatus, StoredObject

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}
PDF = {"file_name": "report.pdf", "mime_type": "application/pdf", "size": 12}


def presign(client, headers, **overrides):
    body = dict(PDF)
    body.update(overrides)
    return client.post("/api/v1/uploads/presign", json=body, headers=headers)


def complete(client, headers, key, **overrides):
    body = dict(PDF, key=key)
    body.update(overrides)
    return client.post("/api/v1/uploads/complete", json=body, headers=headers)


@pytest.mark.integration
class TestUploadEndpoints:
    def test_single_upload_flow(self, client, storage, owner_headers, notifier):
        response = presign(client, owner_headers)
        assert response.status_code == 200
        plan = response.json()
        assert plan["upload_type"] == "single"
        assert plan["url"]
        assert plan["key"].startswith("uploads/user-1/")

        storage.put(plan["key"])
        response = complete(client, owner_headers, plan["key"])

        assert response.status_code == 201
        data = response.json()
        assert data["key"] == plan["key"]
        assert data["status"] == "COMPLETED"
        assert data["deleted_at"] is None
        assert notifier.events[-1][0] == "upload.completed"

    def test_multipart_upload_flow(self, client, storage, owner_headers, db):
        response = presign(client, owner_headers, multipart=True, parts=2)
        assert response.status_code == 200
        plan = response.json()
        assert plan["upload_type"] == "multipart"
        assert [p["part_number"] for p in plan["parts"]] == [1, 2]

        etag2 = storage.upload_part(plan["session_id"], 2, b"world")
        etag1 = storage.upload_part(plan["session_id"], 1, b"hello ")
        response = complete(
            client, owner_headers, plan["key"],
            multipart=True,
            session_id=plan["session_id"],
            parts=[{"part_number": 2, "etag": etag2}, {"part_number": 1, "etag": etag1}],
        )

        assert response.status_code == 201
        assert storage.objects[plan["key"]] == b"hello world"

    def test_assembly_failure(self, client, storage, owner_headers, db):
        plan = presign(client, owner_headers, multipart=True, parts=1).json()
        etag = storage.upload_part(plan["session_id"], 1, b"x")
        storage.assembly_fails = True

        response = complete(
            client, owner_headers, plan["key"],
            multipart=True,
            session_id=plan["session_id"],
            parts=[{"part_number": 1, "etag": etag}],
        )

        assert response.status_code == 502
        assert response.json()["error"] == "assembly_failed"
        assert db.query(StoredObject).count() == 0

        response = client.post(
            "/api/v1/uploads/abort",
            json={"key": plan["key"], "session_id": plan["session_id"]},
            headers=owner_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"aborted": False}

    def test_missing_owner_header(self, client):
        response = client.post("/api/v1/uploads/presign", json=PDF)
        assert response.status_code == 401

    def test_disallowed_mime_type(self, client, owner_headers):
        response = presign(client, owner_headers, mime_type="application/x-msdownload")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_multipart_requires_part_count(self, client, owner_headers):
        response = presign(client, owner_headers, multipart=True)
        assert response.status_code == 422

    def test_complete_foreign_key(self, client, storage):
        plan = presign(client, {"X-Owner-Id": "user-2"}).json()
        storage.put(plan["key"])

        response = complete(client, {"X-Owner-Id": "user-1"}, plan["key"])

        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    def test_complete_without_uploaded_object(self, client, owner_headers):
        plan = presign(client, owner_headers).json()

        response = complete(client, owner_headers, plan["key"])

        assert response.status_code == 400


@pytest.mark.integration
class TestFileEndpoints:
    def test_download_url(self, client, make_object, owner_headers):
        obj = make_object()

        response = client.get(f"/api/v1/files/{obj.id}/download", headers=owner_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["download_url"]
        assert data["expires_in_seconds"] == 300

    def test_download_unknown_object(self, client, owner_headers):
        response = client.get("/api/v1/files/missing/download", headers=owner_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_delete_then_download(self, client, make_object, owner_headers, db):
        obj = make_object()

        response = client.delete(f"/api/v1/files/{obj.id}", headers=owner_headers)
        assert response.status_code == 202
        assert response.json()["deleted_at"] is not None

        response = client.get(f"/api/v1/files/{obj.id}/download", headers=owner_headers)
        assert response.status_code == 404

        response = client.delete(f"/api/v1/files/{obj.id}", headers=owner_headers)
        assert response.status_code == 404

    def test_delete_foreign_object(self, client, make_object, owner_headers):
        obj = make_object(owner_id="user-2")

        response = client.delete(f"/api/v1/files/{obj.id}", headers=owner_headers)

        assert response.status_code == 404


@pytest.mark.integration
class TestCleanupEndpoints:
    def test_requires_admin_token(self, client):
        assert client.post("/api/v1/cleanup/run").status_code == 403
        assert client.post("/api/v1/cleanup/run", headers={"X-Admin-Token": "wrong"}).status_code == 403
        assert client.get("/api/v1/cleanup/audit").status_code == 403

    def test_run_cleanup_in_background(self, client, make_object, db):
        obj = make_object(expiry=datetime.now(timezone.utc) - timedelta(hours=1))

        response = client.post("/api/v1/cleanup/run", headers=ADMIN_HEADERS)

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "scheduled"
        assert body["run_id"]

        db.expire_all()
        assert db.get(StoredObject, obj.id).deleted_at is not None

        response = client.get(
            "/api/v1/cleanup/audit",
            params={"object_id": obj.id},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["status"] == DeletionStatus.SOFT_DELETED.value
        assert entries[0]["reason"] == "expired"
        assert entries[0]["key"] == obj.key

    def test_audit_status_filter(self, client, make_object, owner_headers):
        obj = make_object()
        client.delete(f"/api/v1/files/{obj.id}", headers=owner_headers)

        response = client.get("/api/v1/cleanup/audit", params={"status": "HARD_DELETED"}, headers=ADMIN_HEADERS)
        assert response.json() == []

        response = client.get("/api/v1/cleanup/audit", params={"status": "SOFT_DELETED"}, headers=ADMIN_HEADERS)
        assert [e["reason"] for e in response.json()] == ["manual"]


@pytest.mark.integration
class TestServiceEndpoints:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["version"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client, owner_headers):
        presign(client, owner_headers)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "uploads_started_total" in response.text
        assert "api_requests_total" in response.text
