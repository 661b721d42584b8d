from conftest import OWNER_ID, make_token

from formrelayapi.config import config
from formrelayapi.middleware import SECURITY_HEADERS
from formrelayapi.ratelimit import edge_auth_counter


def sign_in(client):
    client.cookies.set(config.SESSION_COOKIE_NAME, make_token(OWNER_ID))


def test_security_headers(client):
    r = client.get("/health")
    assert r.status_code == 200
    for name, value in SECURITY_HEADERS.items():
        assert r.headers[name] == value
    assert "frame-ancestors 'none'" in r.headers["content-security-policy"]


def test_security_headers_on_errors(client):
    r = client.get("/api/comments")
    assert r.status_code == 401
    assert r.headers["x-frame-options"] == "DENY"


def test_static_assets_are_skipped(client):
    for path in ("/favicon.ico", "/_next/static/chunk.js", "/images/logo.svg"):
        r = client.get(path)
        assert "x-frame-options" not in r.headers


def test_protected_route_redirects_to_signin(client):
    r = client.get("/dashboard/forms", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/auth/signin?from=%2Fdashboard%2Fforms"
    assert r.headers["x-content-type-options"] == "nosniff"


def test_protected_route_with_session_passes_through(client):
    sign_in(client)
    r = client.get("/dashboard", follow_redirects=False)
    # no page is served here, but the request was not redirected
    assert r.status_code == 404


def test_signed_in_user_leaves_auth_pages(client):
    sign_in(client)
    r = client.get("/auth/signin", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/dashboard"

    r = client.get("/auth/signup", params={"from": "/forms/abc"}, follow_redirects=False)
    assert r.headers["location"] == "/forms/abc"

    r = client.get("/auth/signin", params={"from": "https://evil.example"}, follow_redirects=False)
    assert r.headers["location"] == "/dashboard"


def test_anonymous_user_reaches_auth_pages(client):
    r = client.get("/auth/signin", follow_redirects=False)
    assert r.status_code == 404


def test_auth_traffic_is_counted_not_blocked(client):
    headers = {"x-forwarded-for": "192.0.2.44"}
    for _ in range(35):
        r = client.get("/api/auth/user", headers=headers)
        assert r.status_code == 401
    assert edge_auth_counter.hit("192.0.2.44") is True
    assert edge_auth_counter.hit("192.0.2.45") is False
