from types import SimpleNamespace
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient
import pytest

from storefront.auth import service as auth_service
from storefront.utils.security import (
    get_current_user,
    get_current_user_id,
    require_admin,
    COOKIE_NAME,
)

def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(user=Depends(get_current_user)):
        return user

    @app.get("/who")
    def who(user_id=Depends(get_current_user_id)):
        return {"user_id": user_id}

    @app.get("/admin")
    def admin(user=Depends(require_admin)):
        return {"ok": True}

    return app

def _fake_get_user(tokens):
    def _get(token):
        if token not in tokens:
            raise Exception("invalid JWT")
        return tokens[token]
    return _get

@pytest.fixture
def sec_client(monkeypatch):
    monkeypatch.setattr(auth_service, "get_user_from_token", _fake_get_user({
        "user-token": {"id": "u1", "email": "u@example.com", "role": "user"},
        "admin-token": {"id": "a1", "email": "a@example.com", "role": "admin"},
    }))
    return TestClient(_make_app())

def test_determine_role():
    assert auth_service.determine_role({"role": "ADMIN"}) == "admin"
    assert auth_service.determine_role({"role": "scanner"}) == "user"
    assert auth_service.determine_role(None) == "user"

def test_get_user_from_token_reads_app_metadata(monkeypatch):
    user = SimpleNamespace(id="u1", email="u@example.com", app_metadata={"role": "admin"})
    fake_client = SimpleNamespace(auth=SimpleNamespace(get_user=lambda token: SimpleNamespace(user=user)))
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: fake_client)
    assert auth_service.get_user_from_token("tok") == {"id": "u1", "email": "u@example.com", "role": "admin"}

def test_guest_has_no_user_id(sec_client):
    assert sec_client.get("/who").json() == {"user_id": None}

def test_bearer_token_identifies_user(sec_client):
    r = sec_client.get("/who", headers={"Authorization": "Bearer user-token"})
    assert r.json() == {"user_id": "u1"}

def test_cookie_token_identifies_user(sec_client):
    sec_client.cookies.set(COOKIE_NAME, "user-token")
    assert sec_client.get("/who").json() == {"user_id": "u1"}

def test_invalid_token_is_treated_as_guest(sec_client):
    r = sec_client.get("/who", headers={"Authorization": "Bearer expired"})
    assert r.status_code == 200
    assert r.json() == {"user_id": None}

def test_get_current_user_requires_token(sec_client):
    r = sec_client.get("/me")
    assert r.status_code == 401
    assert r.json()["detail"] == "Non authentifié"

def test_get_current_user_invalid_token(sec_client):
    r = sec_client.get("/me", headers={"Authorization": "Bearer expired"})
    assert r.status_code == 401

def test_require_admin(sec_client):
    assert sec_client.get("/admin", headers={"Authorization": "Bearer user-token"}).status_code == 403
    assert sec_client.get("/admin", headers={"Authorization": "Bearer admin-token"}).json() == {"ok": True}
