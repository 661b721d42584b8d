import re

from formrelayapi.routers import uploads
from formrelayapi.storage import StorageConfigError, StorageError


def fake_signed_url(path):
    return {"signedUrl": f"http://minio.test/form-files/{path}?X-Amz-Signature=sig", "path": path, "token": "sig"}


def test_upload_url(client, monkeypatch):
    monkeypatch.setattr(uploads, "create_signed_upload_url", fake_signed_url)

    r = client.post("/api/storage/upload-url", json={"fileName": "Résumé final.PDF", "fileType": "application/pdf"})
    assert r.status_code == 200
    body = r.json()
    assert body["originalFileName"] == "Résumé final.PDF"
    assert body["sanitizedFileName"] == "Resume_final.pdf"
    assert re.fullmatch(r"form-attachments/\d+_[0-9a-z]+_Resume_final\.pdf", body["path"])
    assert body["uploadUrl"].endswith("X-Amz-Signature=sig")
    assert body["token"] == "sig"


def test_upload_url_requires_name_and_type(client):
    r = client.post("/api/storage/upload-url", json={"fileName": "a.txt"})
    assert r.status_code == 400
    assert r.json() == {"error": "fileName and fileType are required"}

    r = client.post("/api/storage/upload-url", json={"fileType": "text/plain"})
    assert r.status_code == 400


def test_upload_url_without_storage_credentials(client, monkeypatch):
    def not_configured(path):
        raise StorageConfigError("no credentials")

    monkeypatch.setattr(uploads, "create_signed_upload_url", not_configured)
    r = client.post("/api/storage/upload-url", json={"fileName": "a.txt", "fileType": "text/plain"})
    assert r.status_code == 500
    assert r.json() == {"error": "Server configuration error"}


def test_upload_url_storage_failure(client, monkeypatch):
    def broken(path):
        raise StorageError("bucket missing")

    monkeypatch.setattr(uploads, "create_signed_upload_url", broken)
    r = client.post("/api/storage/upload-url", json={"fileName": "a.txt", "fileType": "text/plain"})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to create upload URL"}


def test_malformed_json_body(client):
    r = client.post(
        "/api/storage/upload-url",
        content=b'{"fileName": ',
        headers={"content-type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request data"
