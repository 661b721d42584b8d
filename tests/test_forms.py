import uuid

from conftest import form_payload

from formrelayapi.routers import form as form_router
from formrelayapi.routers import submit


def test_create_and_get_form(client, owner_headers):
    r = client.post("/api/forms", json=form_payload(), headers=owner_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Form created successfully"

    r = client.get(f"/api/forms/{body['id']}", headers=owner_headers)
    assert r.status_code == 200
    form = r.json()
    assert form["title"] == "Contact"
    assert form["email_recipient"] == "inbox@example.com"
    assert form["is_active"] is True
    assert [f["id"] for f in form["fields"]] == ["name", "email", "agree", "cv"]


def test_create_requires_session(client):
    r = client.post("/api/forms", json=form_payload())
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}


def test_missing_title(client, owner_headers):
    payload = form_payload()
    del payload["title"]
    r = client.post("/api/forms", json=payload, headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "TITLE_REQUIRED"
    assert r.json()["translationKey"] == "validation.titleRequired"


def test_empty_title(client, owner_headers):
    r = client.post("/api/forms", json=form_payload(title=""), headers=owner_headers)
    assert r.json()["code"] == "TITLE_REQUIRED"


def test_title_too_long(client, owner_headers):
    r = client.post("/api/forms", json=form_payload(title="x" * 101), headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "TITLE_TOO_LONG"

    r = client.post("/api/forms", json=form_payload(title="x" * 100), headers=owner_headers)
    assert r.status_code == 200


def test_empty_fields(client, owner_headers):
    r = client.post("/api/forms", json=form_payload(fields=[]), headers=owner_headers)
    assert r.status_code == 400
    assert r.json() == {
        "error": "At least one field is required to create a form",
        "code": "FIELDS_REQUIRED",
        "translationKey": "validation.fieldsRequired",
    }


def test_blank_field_label(client, owner_headers):
    fields = [{"id": "a", "type": "text", "label": "   "}]
    r = client.post("/api/forms", json=form_payload(fields=fields), headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "FIELD_LABEL_REQUIRED"


def test_invalid_recipient(client, owner_headers):
    r = client.post("/api/forms", json=form_payload(emailRecipient="not-an-email"), headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "EMAIL_INVALID"


def test_first_failing_rule_is_reported(client, owner_headers):
    r = client.post(
        "/api/forms",
        json=form_payload(title="", fields=[], emailRecipient="bad"),
        headers=owner_headers,
    )
    assert r.json()["code"] == "TITLE_REQUIRED"


def test_update_form(client, owner_headers, created_form):
    r = client.put(
        f"/api/forms/{created_form}",
        json=form_payload(title="Renamed"),
        headers=owner_headers,
    )
    assert r.status_code == 200
    assert r.json() == {"id": created_form, "message": "Form updated successfully"}
    assert client.get(f"/api/forms/{created_form}", headers=owner_headers).json()["title"] == "Renamed"


def test_update_validates_body(client, owner_headers, created_form):
    r = client.put(f"/api/forms/{created_form}", json=form_payload(fields=[]), headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "FIELDS_REQUIRED"


def test_non_owner_cannot_see_or_change_form(client, owner_headers, other_headers, created_form):
    for method in ("get", "delete"):
        r = getattr(client, method)(f"/api/forms/{created_form}", headers=other_headers)
        assert r.status_code == 404
        assert r.json() == {"error": "Form not found or access denied"}

    r = client.put(f"/api/forms/{created_form}", json=form_payload(), headers=other_headers)
    assert r.status_code == 404

    # untouched for its owner
    assert client.get(f"/api/forms/{created_form}", headers=owner_headers).status_code == 200


def test_unknown_and_malformed_ids(client, owner_headers):
    assert client.get(f"/api/forms/{uuid.uuid4()}", headers=owner_headers).status_code == 404
    assert client.get("/api/forms/not-a-uuid", headers=owner_headers).status_code == 404


def test_delete_form(client, owner_headers, created_form):
    r = client.delete(f"/api/forms/{created_form}", headers=owner_headers)
    assert r.status_code == 200
    assert r.json() == {"message": "Form deleted successfully"}
    assert client.get(f"/api/forms/{created_form}", headers=owner_headers).status_code == 404


def test_list_forms(client, owner_headers, other_headers, created_form):
    client.post("/api/forms", json=form_payload(title="Second"), headers=owner_headers)
    client.post("/api/forms", json=form_payload(title="Someone else's"), headers=other_headers)

    r = client.get("/api/forms", headers=owner_headers)
    assert r.status_code == 200
    forms = r.json()
    assert [f["title"] for f in forms] == ["Second", "Contact"]
    assert all(f["submissions_count"] == 0 for f in forms)


def test_public_form(client, created_form):
    r = client.get(f"/api/forms/{created_form}/public")
    assert r.status_code == 200
    assert set(r.json()) == {"id", "title", "description", "fields"}

    r = client.get(f"/api/forms/{uuid.uuid4()}/public")
    assert r.status_code == 404
    assert r.json() == {"error": "Form not found or inactive"}


def test_qr_code(client, owner_headers, other_headers, created_form):
    r = client.get(f"/api/forms/{created_form}/qr", headers=owner_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content.startswith(b"\x89PNG")

    assert client.get(f"/api/forms/{created_form}/qr", headers=other_headers).status_code == 404


def test_non_object_body(client, owner_headers, created_form):
    r = client.post("/api/forms", json=["Contact"], headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"
    assert r.json()["translationKey"] == "validation.generic"

    r = client.put(f"/api/forms/{created_form}", json="Contact", headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_delete_form_with_submissions(client, owner_headers, created_form, monkeypatch):
    async def fake_send_email(**kwargs):
        return "msg_1"

    monkeypatch.setattr(submit, "send_email", fake_send_email)
    r = client.post("/api/submit", json={"formId": created_form, "data": {"name": "Ada"}})
    assert r.status_code == 200

    assert client.delete(f"/api/forms/{created_form}", headers=owner_headers).status_code == 200
    assert client.get("/api/forms", headers=owner_headers).json() == []


def test_failed_delete_leaves_form_in_place(client, owner_headers, created_form, monkeypatch):
    real_execute = form_router.database.execute

    async def failing_execute(query, values=None):
        raise RuntimeError("connection reset by peer")

    monkeypatch.setattr(form_router.database, "execute", failing_execute)
    r = client.delete(f"/api/forms/{created_form}", headers=owner_headers)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to delete form"}

    monkeypatch.setattr(form_router.database, "execute", real_execute)
    assert client.get(f"/api/forms/{created_form}", headers=owner_headers).status_code == 200
    assert client.delete(f"/api/forms/{created_form}", headers=owner_headers).status_code == 200
