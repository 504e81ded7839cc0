"""Tests for CSRF token issuance and validation."""

from __future__ import annotations

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from bltnm_edge.csrf import (
    CSRF_HEADER,
    TOKEN_INVALID,
    TOKEN_MISSING,
    CsrfError,
    CsrfProtect,
    generate_token,
    is_asset_path,
)
from bltnm_edge.sessions import Session


# ── CsrfProtect ─────────────────────────────────────────────────


def test_generate_token_is_256_bit_hex():
    token = generate_token()
    assert len(token) == 64
    int(token, 16)
    assert generate_token() != token


def test_ensure_token_is_idempotent():
    protect = CsrfProtect()
    session = Session(id="s1")
    first = protect.ensure_token(session)
    assert session.csrf_token == first
    assert protect.ensure_token(session) == first


def test_validate_missing_token():
    protect = CsrfProtect()
    session = Session(id="s1")
    protect.ensure_token(session)
    for provided in (None, ""):
        with pytest.raises(CsrfError) as exc:
            protect.validate(session, provided)
        assert exc.value.code == TOKEN_MISSING


def test_validate_without_stored_token_is_invalid():
    with pytest.raises(CsrfError) as exc:
        CsrfProtect().validate(Session(id="s1"), "abc")
    assert exc.value.code == TOKEN_INVALID


def test_validate_mismatch_is_invalid():
    protect = CsrfProtect()
    session = Session(id="s1")
    protect.ensure_token(session)
    with pytest.raises(CsrfError) as exc:
        protect.validate(session, "0" * 64)
    assert exc.value.code == TOKEN_INVALID


def test_validate_match_passes():
    protect = CsrfProtect()
    session = Session(id="s1")
    token = protect.ensure_token(session)
    protect.validate(session, token)


def test_invalidate_clears_token():
    protect = CsrfProtect()
    session = Session(id="s1")
    token = protect.ensure_token(session)
    protect.invalidate(session)
    assert session.csrf_token is None
    with pytest.raises(CsrfError):
        protect.validate(session, token)


def test_ttl_zero_never_expires(clock):
    protect = CsrfProtect(ttl=0, clock=clock)
    session = Session(id="s1")
    token = protect.ensure_token(session)
    clock.advance(10 ** 7)
    assert protect.ensure_token(session) == token
    protect.validate(session, token)


def test_ttl_expiry_rejects_and_regenerates(clock):
    protect = CsrfProtect(ttl=60, clock=clock)
    session = Session(id="s1")
    token = protect.ensure_token(session)
    clock.advance(61)
    with pytest.raises(CsrfError) as exc:
        protect.validate(session, token)
    assert exc.value.code == TOKEN_INVALID
    fresh = protect.ensure_token(session)
    assert fresh != token
    protect.validate(session, fresh)


# ── Middleware ──────────────────────────────────────────────────


def test_safe_request_issues_token_and_cookie(client):
    r = client.get("/health")
    assert r.status_code == 200
    token = r.headers[CSRF_HEADER]
    assert len(token) == 64
    assert "sid" in r.cookies


def test_token_is_stable_within_session(client):
    first = client.get("/health").headers[CSRF_HEADER]
    second = client.get("/health").headers[CSRF_HEADER]
    assert first == second
    assert client.get("/api/csrf-token").json() == {"csrfToken": first}


def test_separate_sessions_get_separate_tokens(app, client):
    first = client.get("/health").headers[CSRF_HEADER]
    with TestClient(app) as other:
        second = other.get("/health").headers[CSRF_HEADER]
    assert first != second


def test_unsafe_request_without_token_is_rejected(client):
    client.get("/health")
    r = client.post("/api/auth/signout")
    assert r.status_code == 403
    assert r.json() == {
        "message": "CSRF token missing",
        "error": "CSRF token is required for this request",
        "code": "TOKEN_MISSING",
    }


def test_unsafe_request_with_wrong_token_is_rejected(client):
    client.get("/health")
    r = client.post("/api/auth/signout", headers={CSRF_HEADER: "f" * 64})
    assert r.status_code == 403
    body = r.json()
    assert body["code"] == "TOKEN_INVALID"
    assert body["message"] == "Invalid CSRF token"
    assert body["error"] == "The provided CSRF token is invalid or expired"


def test_unsafe_request_without_session_is_invalid(client):
    r = client.post("/api/auth/signout", headers={CSRF_HEADER: "abc"})
    assert r.status_code == 403
    assert r.json()["code"] == "TOKEN_INVALID"


def test_header_token_passes(client):
    token = client.get("/health").headers[CSRF_HEADER]
    r = client.post("/api/auth/signout", headers={CSRF_HEADER: token})
    assert r.status_code == 200
    assert r.json() == {"message": "Logout successful"}


def test_form_field_token_passes(client):
    token = client.get("/health").headers[CSRF_HEADER]
    r = client.post("/api/auth/signout", data={"csrf_token": token})
    assert r.status_code == 200


def test_json_field_token_passes(client):
    token = client.get("/health").headers[CSRF_HEADER]
    r = client.post("/api/auth/signout", json={"_csrf": token})
    assert r.status_code == 200


def test_header_takes_precedence_over_body(client):
    token = client.get("/health").headers[CSRF_HEADER]
    r = client.post(
        "/api/auth/signout",
        headers={CSRF_HEADER: "wrong"},
        json={"_csrf": token},
    )
    assert r.status_code == 403
    assert r.json()["code"] == "TOKEN_INVALID"


def test_signout_invalidates_token(client):
    token = client.get("/health").headers[CSRF_HEADER]
    assert client.post("/api/auth/signout", headers={CSRF_HEADER: token}).status_code == 200
    r = client.post("/api/auth/signout", headers={CSRF_HEADER: token})
    assert r.status_code == 403
    assert r.json()["code"] == "TOKEN_INVALID"
    assert client.get("/health").headers[CSRF_HEADER] != token


def test_failure_message_is_localized(client):
    client.get("/health")
    r = client.post("/api/auth/signout", headers={"accept-language": "ar"})
    assert r.status_code == 403
    body = r.json()
    assert body["code"] == "TOKEN_MISSING"
    assert body["message"] == "رمز الحماية مفقود"


def test_webhook_path_is_exempt(client):
    r = client.post("/api/webhooks/polar", content=b"{}")
    assert r.status_code == 400
    assert r.json() == {"error": "No signature"}


def test_malformed_form_body_is_token_missing(client):
    client.get("/health")
    r = client.post(
        "/api/auth/signout",
        content=b"garbage",
        headers={"content-type": "multipart/form-data"},
    )
    assert r.status_code == 403
    assert r.json()["code"] == "TOKEN_MISSING"


# ── Assets ──────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/static/style.css", True),
        ("/_next/chunk", True),
        ("/favicon.ico", True),
        ("/shop/logo.png", True),
        ("/health", False),
        ("/api/csrf-token", False),
        ("/v1.2/health", False),
    ],
)
def test_is_asset_path(path, expected):
    assert is_asset_path(path) is expected


def test_static_requests_do_not_create_sessions(app, client):
    for _ in range(50):
        r = client.get("/static/style.css")
        assert r.status_code == 200
        assert CSRF_HEADER not in r.headers
        assert "sid" not in r.cookies
    assert len(app.state.sessions) == 0


def test_repeat_safe_requests_reuse_one_session(app, client):
    for _ in range(5):
        client.get("/health")
    assert len(app.state.sessions) == 1


# ── Methods ─────────────────────────────────────────────────────

ALL_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


@pytest.fixture
def echo_client(app):
    @app.api_route("/echo", methods=ALL_METHODS)
    async def echo(request: Request):
        return {"method": request.method}

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS"])
def test_safe_methods_issue_token(echo_client, method):
    r = echo_client.request(method, "/echo")
    assert r.status_code == 200
    token = r.headers[CSRF_HEADER]
    assert len(token) == 64
    assert "sid" in r.cookies
    assert echo_client.get("/echo").headers[CSRF_HEADER] == token


@pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
def test_unsafe_methods_require_token(echo_client, method):
    token = echo_client.get("/echo").headers[CSRF_HEADER]

    missing = echo_client.request(method, "/echo")
    assert missing.status_code == 403
    assert missing.json()["code"] == TOKEN_MISSING

    wrong = echo_client.request(method, "/echo", headers={CSRF_HEADER: "0" * 64})
    assert wrong.status_code == 403
    assert wrong.json()["code"] == TOKEN_INVALID

    ok = echo_client.request(method, "/echo", headers={CSRF_HEADER: token})
    assert ok.status_code == 200
    assert ok.json() == {"method": method}
