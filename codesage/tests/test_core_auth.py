"""Tests for caller resolution (JWT / X-User-Id) and admin guard."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import update

from codesage.core.auth import get_current_user, require_admin, verify_jwt
from codesage.core.config import settings
from codesage.core.database import get_db_session, user_profiles
from codesage.core.errors import AppError, AuthenticationError, app_error_handler
from codesage.features.limiter import server
from codesage.models.user import UserRole


SECRET = "test-jwt-secret-0123456789abcdef0123"


def _token(sub="jwt-user", email="jwt@example.com", expires_in=timedelta(minutes=5)):
    claims = {"sub": sub, "email": email, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, SECRET, algorithm="HS256")


def _make_app():
    app = FastAPI()
    app.add_exception_handler(AppError, app_error_handler)

    @app.get("/me")
    async def me(user=Depends(get_current_user)):
        return {"id": user.id, "email": user.email, "role": user.role.value}

    @app.get("/admin")
    async def admin(user=Depends(require_admin)):
        return {"id": user.id}

    return app


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)
    return SECRET


def test_verify_jwt_disabled_without_secret(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", None)
    assert verify_jwt("anything") is None


def test_verify_jwt_rejects_expired_and_forged(jwt_secret):
    with pytest.raises(AuthenticationError):
        verify_jwt(_token(expires_in=timedelta(minutes=-1)))
    forged = jwt.encode({"sub": "x"}, "another-secret-0123456789abcdef012345", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        verify_jwt(forged)
    no_sub = jwt.encode({"email": "a@b.c"}, SECRET, algorithm="HS256")
    with pytest.raises(AuthenticationError):
        verify_jwt(no_sub)


def test_bearer_token_resolves_profile(sqlite_db, jwt_secret):
    resp = TestClient(_make_app()).get("/me", headers={"Authorization": f"Bearer {_token()}"})
    assert resp.status_code == 200
    assert resp.json() == {"id": "jwt-user", "email": "jwt@example.com", "role": "free_user"}
    assert server.get_profile("jwt-user") is not None


def test_invalid_bearer_is_401(sqlite_db, jwt_secret):
    resp = TestClient(_make_app()).get("/me", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


def test_missing_identity_is_401(sqlite_db):
    assert TestClient(_make_app()).get("/me").status_code == 401


def test_admin_guard(sqlite_db):
    client = TestClient(_make_app())
    assert client.get("/admin", headers={"X-User-Id": "plain"}).status_code == 403

    server.ensure_profile("root")
    with get_db_session() as session:
        session.execute(update(user_profiles).where(user_profiles.c.id == "root").values(role=UserRole.SUPER_ADMIN.value))
    assert client.get("/admin", headers={"X-User-Id": "root"}).status_code == 200


def test_user_id_header_ignored_once_jwt_secret_set(sqlite_db, jwt_secret, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "development")
    client = TestClient(_make_app())
    assert client.get("/me", headers={"X-User-Id": "victim"}).status_code == 401
    ok = client.get("/me", headers={"Authorization": f"Bearer {_token(sub='victim')}"})
    assert ok.json()["id"] == "victim"


def test_user_id_header_allowed_in_test_env_with_secret(sqlite_db, jwt_secret, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "test")
    resp = TestClient(_make_app()).get("/me", headers={"X-User-Id": "fixture-user"})
    assert resp.status_code == 200
    assert resp.json()["id"] == "fixture-user"


def test_user_id_header_never_trusted_in_production(sqlite_db, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", None)
    monkeypatch.setattr(settings, "ENV", "production")
    assert TestClient(_make_app()).get("/me", headers={"X-User-Id": "anyone"}).status_code == 401
