import os
from datetime import datetime, timedelta, timezone

import jwt
from fastapi.testclient import TestClient

from forkliftops.main import app

client = TestClient(app)


def _mint_token(user_id="dev-user", role="admin") -> str:
    r = client.post("/auth/token", json={"user_id": user_id, "role": role})
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


def _headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _raw_token(**claims) -> str:
    return jwt.encode(claims, os.environ["JWT_SECRET"], algorithm="HS256")


def test_missing_authorization_header_401():
    r = client.get("/jobs")
    assert r.status_code == 401


def test_wrong_scheme_401():
    token = _mint_token()
    r = client.get("/jobs", headers={"Authorization": f"Basic {token}"})
    assert r.status_code == 401


def test_garbled_bearer_token_401():
    r = client.get("/jobs", headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 401


def test_expired_token_401():
    token = _raw_token(sub="dev-user", role="admin", exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    r = client.get("/jobs", headers=_headers(token))
    assert r.status_code == 401


def test_token_without_role_claim_401():
    token = _raw_token(sub="dev-user", exp=datetime.now(timezone.utc) + timedelta(hours=1))
    r = client.get("/jobs", headers=_headers(token))
    assert r.status_code == 401


def test_unknown_role_claim_403():
    token = _raw_token(sub="dev-user", role="janitor", exp=datetime.now(timezone.utc) + timedelta(hours=1))
    r = client.get("/jobs", headers=_headers(token))
    assert r.status_code == 403
    assert "Invalid role claim" in r.text


def test_insufficient_role_403():
    token = _mint_token(user_id="tech-1", role="technician")
    r = client.post("/jobs", json={"customer_id": "cust-1", "job_type": "Repair"}, headers=_headers(token))
    assert r.status_code == 403
    assert "Insufficient role" in r.text


def test_token_request_rejects_unknown_role():
    r = client.post("/auth/token", json={"user_id": "x", "role": "janitor"})
    assert r.status_code == 400


def test_token_issuer_hidden_outside_dev(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    r = client.post("/auth/token", json={"user_id": "x", "role": "admin"})
    assert r.status_code == 404
