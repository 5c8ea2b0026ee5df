from unittest import mock

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from app.config import get_settings
from app.main import create_app
from app.signing import SessionSigner
from app.storage import S3BucketStorage

BUCKET = "files"
SECRET = "test-secret"
NOW_MS = 1_700_000_000_000


@pytest.fixture
def s3(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client
    get_settings.cache_clear()


def build_client(monkeypatch, *, spy: bool = False, **overrides):
    monkeypatch.setenv("FM_APP_SECRET_KEY", SECRET)
    monkeypatch.setenv("FM_STORAGE_BUCKET", BUCKET)
    monkeypatch.setenv("FM_STORAGE_REGION", "us-east-1")
    monkeypatch.setenv("FM_STORAGE_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("FM_STORAGE_SECRET_ACCESS_KEY", "testing")
    for name, value in overrides.items():
        monkeypatch.setenv(f"FM_{name.upper()}", str(value))
    get_settings.cache_clear()

    settings = get_settings()
    storage = S3BucketStorage(settings)
    if spy:
        storage = mock.MagicMock(wraps=storage)
    app = create_app(settings, storage=storage, clock=lambda: NOW_MS)
    return TestClient(app), storage


def auth_headers(role: str, user_id: str = "u-1") -> dict:
    token = SessionSigner(SECRET).issue(user_id=user_id, role=role, ttl_seconds=300)
    return {"Authorization": f"Bearer {token}"}


def test_list_objects_returns_signed_records(s3, monkeypatch):
    s3.put_object(Bucket=BUCKET, Key="a/b.txt", Body=b"0123456789")
    client, _ = build_client(monkeypatch)
    with client:
        listing = client.get("/objects")
        assert listing.status_code == 200
        records = listing.json()
        assert len(records) == 1
        record = records[0]
        assert record["key"] == "a/b.txt"
        assert record["size"] == 10
        assert record["lastModified"]
        assert "a/b.txt" in record["downloadUrl"]
        assert "X-Amz-Expires=600" in record["downloadUrl"]


def test_list_empty_bucket_returns_empty_array(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        listing = client.get("/objects")
        assert listing.status_code == 200
        assert listing.json() == []


def test_list_storage_failure_returns_generic_error(s3, monkeypatch):
    client, _ = build_client(monkeypatch, storage_bucket="no-such-bucket")
    with client:
        listing = client.get("/objects")
        assert listing.status_code == 500
        body = listing.json()
        assert body["error"]["code"] == "storage_unavailable"
        assert body["error"]["message"] == "Failed to list files"


def test_list_page_follows_cursor(s3, monkeypatch):
    for name in ("a.txt", "b.txt", "c.txt"):
        s3.put_object(Bucket=BUCKET, Key=name, Body=b"x")
    client, _ = build_client(monkeypatch)
    with client:
        first = client.get("/objects/page", params={"limit": 2})
        assert first.status_code == 200
        first_body = first.json()
        assert [o["key"] for o in first_body["objects"]] == ["a.txt", "b.txt"]
        assert first_body["nextCursor"]

        second = client.get("/objects/page", params={"limit": 2, "cursor": first_body["nextCursor"]})
        second_body = second.json()
        assert [o["key"] for o in second_body["objects"]] == ["c.txt"]
        assert second_body["nextCursor"] is None


def test_list_page_rejects_out_of_range_limit(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        bad = client.get("/objects/page", params={"limit": 0})
        assert bad.status_code == 400
        assert bad.json()["error"]["code"] == "bad_request"


def test_presign_builds_timestamped_key(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        presign = client.post(
            "/objects/presign",
            json={"fileName": "report.pdf", "fileType": "application/pdf", "directory": "2024/q1"},
        )
        assert presign.status_code == 200
        body = presign.json()
        assert body["key"] == "2024/q1/1700000000000-report.pdf"
        assert "1700000000000-report.pdf" in body["uploadUrl"]
        assert "X-Amz-Expires=600" in body["uploadUrl"]
        assert body["expiresAt"] == 1_700_000_000 + 600


def test_presign_accepts_file_directory_alias(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        presign = client.post(
            "/objects/presign",
            json={"fileName": "notes.txt", "fileType": "text/plain", "fileDirectory": " docs/ "},
        )
        assert presign.status_code == 200
        assert presign.json()["key"] == "docs/1700000000000-notes.txt"


def test_presign_suffix_key_variant(s3, monkeypatch):
    client, _ = build_client(monkeypatch, key_timestamp_position="suffix")
    with client:
        presign = client.post(
            "/objects/presign",
            json={"fileName": "notes.txt", "fileType": "text/plain", "directory": "docs"},
        )
        assert presign.json()["key"] == "docs/notes.txt-1700000000000"


@pytest.mark.parametrize(
    "payload",
    [
        {"fileName": "report.pdf", "fileType": ""},
        {"fileName": "", "fileType": "application/pdf"},
        {"fileType": "application/pdf"},
        {},
    ],
)
def test_presign_missing_fields_never_reach_storage(s3, monkeypatch, payload):
    client, storage = build_client(monkeypatch, spy=True)
    with client:
        presign = client.post("/objects/presign", json=payload)
        assert presign.status_code == 400
        body = presign.json()
        assert body["error"]["code"] == "bad_request"
        assert body["error"]["message"] == "Missing fileName or fileType"
    storage.presign.assert_not_called()


def test_presign_malformed_payload_returns_bad_request(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        presign = client.post("/objects/presign", json={"fileName": ["x"], "fileType": "text/plain"})
        assert presign.status_code == 400
        assert presign.json()["error"]["message"] == "invalid request parameters"


def test_reads_require_session_when_configured(s3, monkeypatch):
    client, _ = build_client(monkeypatch, require_auth_for_reads="true")
    with client:
        anonymous = client.get("/objects")
        assert anonymous.status_code == 401
        assert anonymous.json()["error"]["code"] == "unauthorized"

        signed_in = client.get("/objects", headers=auth_headers("user"))
        assert signed_in.status_code == 200


def test_download_url_endpoint_mints_get_capability(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        minted = client.post("/objects/download-url", json={"key": "a/b.txt"})
        assert minted.status_code == 200
        body = minted.json()
        assert body["key"] == "a/b.txt"
        assert "a/b.txt" in body["downloadUrl"]

        missing = client.post("/objects/download-url", json={})
        assert missing.status_code == 400


def test_delete_requires_authentication(s3, monkeypatch):
    s3.put_object(Bucket=BUCKET, Key="a/b.txt", Body=b"x")
    client, storage = build_client(monkeypatch, spy=True)
    with client:
        deleted = client.request("DELETE", "/objects", json={"file": {"key": "a/b.txt"}})
        assert deleted.status_code == 401
        assert deleted.json()["error"]["message"] == "Not authenticated"
    storage.delete.assert_not_called()


def test_delete_with_tampered_token_is_unauthenticated(s3, monkeypatch):
    client, storage = build_client(monkeypatch, spy=True)
    token = SessionSigner("other-secret").issue(user_id="u-1", role="admin", ttl_seconds=300)
    with client:
        deleted = client.request(
            "DELETE",
            "/objects",
            json={"file": {"key": "a/b.txt"}},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert deleted.status_code == 401
    storage.delete.assert_not_called()


def test_delete_by_non_admin_is_forbidden_and_file_remains(s3, monkeypatch):
    s3.put_object(Bucket=BUCKET, Key="a/b.txt", Body=b"x")
    client, storage = build_client(monkeypatch, spy=True)
    with client:
        deleted = client.request(
            "DELETE",
            "/objects",
            json={"file": {"key": "a/b.txt"}},
            headers=auth_headers("user"),
        )
        assert deleted.status_code == 403
        assert deleted.json()["error"]["code"] == "forbidden"

        listing = client.get("/objects")
        assert [record["key"] for record in listing.json()] == ["a/b.txt"]
    storage.delete.assert_not_called()


def test_delete_by_admin_removes_object(s3, monkeypatch):
    s3.put_object(Bucket=BUCKET, Key="a/b.txt", Body=b"x")
    client, _ = build_client(monkeypatch)
    with client:
        deleted = client.request(
            "DELETE",
            "/objects",
            json={"file": {"key": "a/b.txt"}},
            headers=auth_headers("admin"),
        )
        assert deleted.status_code == 200
        assert deleted.json() == {"success": True, "key": "a/b.txt"}

        listing = client.get("/objects")
        assert listing.json() == []


def test_delete_accepts_session_cookie(s3, monkeypatch):
    s3.put_object(Bucket=BUCKET, Key="c.txt", Body=b"x")
    client, _ = build_client(monkeypatch)
    token = SessionSigner(SECRET).issue(user_id="u-9", role="admin", ttl_seconds=300)
    with client:
        client.cookies.set("session", token)
        deleted = client.request("DELETE", "/objects", json={"file": {"key": "c.txt"}})
        assert deleted.status_code == 200


def test_delete_absent_key_is_idempotent(s3, monkeypatch):
    client, _ = build_client(monkeypatch)
    with client:
        deleted = client.request(
            "DELETE",
            "/objects",
            json={"file": {"key": "never/existed.txt"}},
            headers=auth_headers("admin"),
        )
        assert deleted.status_code == 200
        assert deleted.json()["success"] is True


def test_delete_missing_key_returns_bad_request(s3, monkeypatch):
    client, storage = build_client(monkeypatch, spy=True)
    with client:
        no_key = client.request("DELETE", "/objects", json={"file": {}}, headers=auth_headers("admin"))
        assert no_key.status_code == 400
        assert no_key.json()["error"]["message"] == "Missing key"

        no_body = client.request("DELETE", "/objects", headers=auth_headers("admin"))
        assert no_body.status_code == 400
    storage.delete.assert_not_called()


def test_delete_checks_credentials_before_reading_body(s3, monkeypatch):
    client, storage = build_client(monkeypatch, spy=True)
    garbled = {"content": b"{not json", "headers": {"Content-Type": "application/json"}}
    with client:
        anonymous = client.request("DELETE", "/objects", **garbled)
        assert anonymous.status_code == 401
        assert anonymous.json()["error"]["code"] == "unauthorized"

        as_user = client.request(
            "DELETE",
            "/objects",
            content=garbled["content"],
            headers={**garbled["headers"], **auth_headers("user")},
        )
        assert as_user.status_code == 403

        as_admin = client.request(
            "DELETE",
            "/objects",
            content=garbled["content"],
            headers={**garbled["headers"], **auth_headers("admin")},
        )
        assert as_admin.status_code == 400
        assert as_admin.json()["error"]["code"] == "bad_request"
    storage.delete.assert_not_called()


def test_health_reports_environment(s3, monkeypatch):
    client, _ = build_client(monkeypatch, app_env="test")
    with client:
        health = client.get("/health")
        assert health.json() == {"status": "ok", "environment": "test"}
