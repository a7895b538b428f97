"""Tests for import API routes."""

from __future__ import annotations

from io import BytesIO
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from crm.common.models import CallListItem, StudentGroupStatus
from crm.core.config import settings

API = "/api/v1/imports"

CSV_CONTENT = b"Full Name,Email,Phone\nAda,ada@x.com,555\nBen,ben@x.com,\n,nobody@x.com,\n"


def upload(client, auth_headers, destination, content=CSV_CONTENT, filename="students.csv", **params):
    return client.post(
        f"{API}/preview",
        params={
            "destination_type": params.pop("destination_type", "call_list"),
            "destination_id": str(destination.id),
            **params,
        },
        files={"file": (filename, BytesIO(content), "text/csv")},
        headers=auth_headers,
    )


@pytest.fixture
def import_id(client, auth_headers, call_list) -> str:
    response = upload(client, auth_headers, call_list)
    assert response.status_code == 200
    return response.json()["import_id"]


class TestImportUpload:
    """Test import file upload."""

    def test_upload_csv(self, client: TestClient, auth_headers, call_list):
        response = upload(client, auth_headers, call_list)

        assert response.status_code == 200
        data = response.json()
        assert data["headers"] == ["Full Name", "Email", "Phone"]
        assert data["total_rows"] == 3
        assert len(data["preview_rows"]) == 3
        assert data["suggestions"] == {"email": "Email", "name": "Full Name", "phone": "Phone"}
        assert data["suggested_match_by"] == "email_or_phone"
        assert data["matching_stats"] == {"will_match": 0, "will_create": 2, "will_skip": 1}
        assert "Full Name" in data["mapping_candidates"]

    def test_upload_requires_auth(self, client: TestClient, call_list):
        response = upload(client, {}, call_list)

        assert response.status_code == 401

    def test_upload_invalid_token(self, client: TestClient, call_list):
        response = upload(client, {"Authorization": "Bearer not-a-token"}, call_list)

        assert response.status_code == 401

    def test_upload_unsupported_format(self, client: TestClient, auth_headers, call_list):
        response = upload(client, auth_headers, call_list, filename="students.pdf")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "unsupported_format"

    def test_upload_empty_file(self, client: TestClient, auth_headers, call_list):
        response = upload(client, auth_headers, call_list, content=b"Full Name,Email\n")

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "File is empty or has no valid data rows"

    def test_upload_too_large(self, client: TestClient, auth_headers, call_list, monkeypatch):
        monkeypatch.setattr(settings, "import_max_upload_bytes", 10)

        response = upload(client, auth_headers, call_list)

        assert response.status_code == 413
        assert response.json()["error"]["code"] == "upload_too_large"

    def test_upload_timeout(self, client: TestClient, auth_headers, call_list, monkeypatch):
        monkeypatch.setattr(settings, "import_preview_timeout_seconds", 0)

        response = upload(client, auth_headers, call_list)

        assert response.status_code == 408
        assert response.json()["error"]["message"] == (
            "Processing took too long. Try a smaller file."
        )

    def test_upload_unknown_destination(self, client: TestClient, auth_headers):
        response = upload(client, auth_headers, SimpleNamespace(id=uuid4()))

        assert response.status_code == 404

    def test_upload_group_with_batches(self, client: TestClient, auth_headers, group, batch):
        response = upload(
            client,
            auth_headers,
            group,
            destination_type="group",
            batch_ids=[str(batch.id)],
        )

        assert response.status_code == 200

    def test_invalid_destination_type(self, client: TestClient, auth_headers, call_list):
        response = upload(client, auth_headers, call_list, destination_type="mailing_list")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"


class TestPastePreview:
    """Test bulk-paste preview."""

    def test_paste(self, client: TestClient, auth_headers, call_list):
        response = client.post(
            f"{API}/preview/paste",
            json={
                "destination_type": "call_list",
                "destination_id": str(call_list.id),
                "text": "Name\tEmail\nAda\tada@x.com\n",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["total_rows"] == 1

    def test_paste_row_limit(self, client: TestClient, auth_headers, call_list, monkeypatch):
        monkeypatch.setattr(settings, "import_max_paste_rows", 1)

        response = client.post(
            f"{API}/preview/paste",
            json={
                "destination_type": "call_list",
                "destination_id": str(call_list.id),
                "text": "Name,Email\nAda,ada@x.com\nBen,ben@x.com\n",
            },
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "too_many_rows"


class TestCommitFlow:
    """Test commit start, chunk processing and status."""

    def test_full_flow(self, client: TestClient, auth_headers, call_list, db, import_id):
        response = client.post(
            f"{API}/commit",
            json={
                "import_id": import_id,
                "column_mapping": {"name": "Full Name", "email": "Email", "phone": "Phone"},
            },
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "PROCESSING"
        assert data["progress"]["processed_rows"] == 0
        assert data["result"] is None

        response = client.post(
            f"{API}/commit/process",
            json={"import_id": import_id, "chunk_size": 2},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["progress"]["processed_rows"] == 2

        response = client.post(
            f"{API}/commit/process",
            json={"import_id": import_id},
            headers=auth_headers,
        )
        data = response.json()
        assert data["status"] == "COMPLETED"
        assert data["progress"]["percent"] == 100.0
        assert data["result"]["outcome"] == "partial"
        assert data["result"]["stats"]["created"] == 2
        assert data["result"]["errors"] == ["Row 4: Missing name"]

        assert db.query(CallListItem).filter_by(call_list_id=call_list.id).count() == 2

        response = client.get(f"{API}/{import_id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["result"]["error_count"] == 1

    def test_commit_incompatible_strategy(self, client: TestClient, auth_headers, import_id):
        response = client.post(
            f"{API}/commit",
            json={
                "import_id": import_id,
                "column_mapping": {"name": "Full Name", "email": "Email"},
                "match_by": "email_or_phone",
            },
            headers=auth_headers,
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "incompatible_match_strategy"
        assert error["details"]["errors"][0]["allowed"] == ["name", "email"]

    def test_commit_missing_name(self, client: TestClient, auth_headers, import_id):
        response = client.post(
            f"{API}/commit",
            json={
                "import_id": import_id,
                "column_mapping": {"email": "Email"},
                "match_by": "email",
            },
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "missing_required_field"

    def test_process_before_commit(self, client: TestClient, auth_headers, import_id):
        response = client.post(
            f"{API}/commit/process",
            json={"import_id": import_id},
            headers=auth_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_import_state"

    def test_group_import(self, client: TestClient, auth_headers, group, db):
        response = upload(client, auth_headers, group, destination_type="group")
        import_id = response.json()["import_id"]

        client.post(
            f"{API}/commit",
            json={
                "import_id": import_id,
                "column_mapping": {"name": "Full Name", "email": "Email"},
                "match_by": "email",
            },
            headers=auth_headers,
        )
        response = client.post(
            f"{API}/commit/process", json={"import_id": import_id}, headers=auth_headers
        )

        assert response.json()["status"] == "COMPLETED"
        assert db.query(StudentGroupStatus).filter_by(group_id=group.id).count() == 2

    def test_unknown_import(self, client: TestClient, auth_headers):
        response = client.get(f"{API}/{uuid4()}", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestImportReports:
    """Test matching stats, history, fields and error export."""

    def test_matching_stats(self, client: TestClient, auth_headers, import_id):
        response = client.post(
            f"{API}/{import_id}/matching-stats",
            json={
                "column_mapping": {"name": "Full Name", "email": "Email"},
                "match_by": "email",
                "create_new_students": False,
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"will_match": 0, "will_create": 0, "will_skip": 3}

    def test_matching_stats_unknown_column(self, client: TestClient, auth_headers, import_id):
        response = client.post(
            f"{API}/{import_id}/matching-stats",
            json={"column_mapping": {"name": "Nom"}, "match_by": "name"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "unknown_column"

    def test_error_report(self, client: TestClient, auth_headers, import_id):
        client.post(
            f"{API}/commit",
            json={"import_id": import_id, "column_mapping": {"name": "Full Name", "email": "Email"}, "match_by": "email"},
            headers=auth_headers,
        )
        client.post(f"{API}/commit/process", json={"import_id": import_id}, headers=auth_headers)

        response = client.get(f"{API}/{import_id}/errors", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        assert response.text.splitlines() == ["row,message", "4,Missing name"]

    def test_list_imports(self, client: TestClient, auth_headers, import_id):
        response = client.get(API, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert [item["import_id"] for item in data] == [import_id]
        assert data[0]["status"] == "READY"
        assert data[0]["source_name"] == "students.csv"

    def test_fields(self, client: TestClient, auth_headers):
        response = client.get(f"{API}/fields", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        keys = [f["key"] for f in data["fields"]]
        assert keys[:3] == ["name", "email", "phone"]
        assert "enrollment.groupName" in keys
        phone = next(f for f in data["fields"] if f["key"] == "phone")
        assert phone["repeatable"] is True
        strategies = {s["value"]: s["requires"] for s in data["match_strategies"]}
        assert strategies["email_or_phone"] == ["email", "phone"]


class TestAppEndpoints:
    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ping(self, client: TestClient):
        response = client.get("/api/v1/ping")

        assert response.json() == {"message": "pong"}
        assert "X-Request-ID" in response.headers
        assert response.headers["X-Content-Type-Options"] == "nosniff"
