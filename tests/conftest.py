import os

os.environ["ENV_STATE"] = "test"

import time
import uuid

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from formrelayapi import main
from formrelayapi.ratelimit import confirm_limiter, edge_auth_counter

JWT_SECRET = "test-jwt-secret"
OWNER_ID = str(uuid.UUID(int=1))
OTHER_ID = str(uuid.UUID(int=2))


def make_token(user_id: str, email: str = "owner@example.com", name: str = None, expires_in: int = 3600) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "role": "authenticated",
        "exp": int(time.time()) + expires_in,
        "user_metadata": {"name": name} if name else {},
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def bearer(user_id: str, **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


@pytest.fixture(autouse=True)
def reset_limiters():
    confirm_limiter.reset()
    edge_auth_counter.reset()
    yield
    confirm_limiter.reset()
    edge_auth_counter.reset()


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, "ensure_bucket", lambda: None)
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def owner_headers():
    return bearer(OWNER_ID, email="owner@example.com", name="Owner")


@pytest.fixture
def other_headers():
    return bearer(OTHER_ID, email="other@example.com")


def form_payload(**overrides) -> dict:
    payload = {
        "title": "Contact",
        "description": "Get in touch",
        "fields": [
            {"id": "name", "type": "text", "label": "Name", "required": True},
            {"id": "email", "type": "email", "label": "Email"},
            {"id": "agree", "type": "checkbox", "label": "Agree"},
            {
                "id": "cv",
                "type": "file",
                "label": "CV",
                "fileConstraints": {"maxSize": 10, "allowedTypes": ["application/pdf"]},
            },
        ],
        "emailRecipient": "inbox@example.com",
        "emailSubject": "New contact",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def created_form(client, owner_headers):
    r = client.post("/api/forms", json=form_payload(), headers=owner_headers)
    assert r.status_code == 200
    return r.json()["id"]
