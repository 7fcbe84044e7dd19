"""
Tests for Firebase ID token verification and the auth dependency.

Tokens are signed with a throwaway RSA key; the JWKS lookup is patched to
return its public half.
"""

import time
from unittest.mock import MagicMock, patch

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from app.auth.firebase_jwt import verify_firebase_id_token
from src.config import AuthSettings

PROJECT_ID = "linkranger-test"


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(rsa_key):
    signing_key = MagicMock(key=rsa_key.public_key())
    client = MagicMock()
    client.get_signing_key_from_jwt.return_value = signing_key
    with patch("app.auth.firebase_jwt._get_jwks_client", return_value=client):
        yield client


def make_token(rsa_key, **overrides):
    now = int(time.time())
    claims = {
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "aud": PROJECT_ID,
        "sub": "firebase-uid-1",
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    return jwt.encode(claims, rsa_key, algorithm="RS256")


class TestVerifyFirebaseIdToken:

    def test_valid_token(self, rsa_key, jwks):
        claims = verify_firebase_id_token(make_token(rsa_key), AuthSettings(firebase_project_id=PROJECT_ID))
        assert claims["sub"] == "firebase-uid-1"

    def test_wrong_audience(self, rsa_key, jwks):
        token = make_token(rsa_key, aud="another-project")
        with pytest.raises(jwt.InvalidAudienceError):
            verify_firebase_id_token(token, AuthSettings(firebase_project_id=PROJECT_ID))

    def test_wrong_issuer(self, rsa_key, jwks):
        token = make_token(rsa_key, iss="https://evil.example.com")
        with pytest.raises(jwt.InvalidIssuerError):
            verify_firebase_id_token(token, AuthSettings(firebase_project_id=PROJECT_ID))

    def test_expired(self, rsa_key, jwks):
        token = make_token(rsa_key, exp=int(time.time()) - 60)
        with pytest.raises(jwt.ExpiredSignatureError):
            verify_firebase_id_token(token, AuthSettings(firebase_project_id=PROJECT_ID))

    def test_project_not_configured(self, rsa_key):
        with pytest.raises(ValueError):
            verify_firebase_id_token(make_token(rsa_key), AuthSettings(firebase_project_id=None))


class TestAuthDependency:

    def test_dev_mode_uses_bearer_as_uid(self, client):
        response = client.get("/plans/me", headers={"Authorization": "Bearer dev-user"})
        assert response.status_code == 200
        assert response.headers["X-Request-ID"]

    def test_verified_token_outside_dev_mode(self, monkeypatch, app_factory, rsa_key, jwks, ledger):
        monkeypatch.setenv("DEV_MODE", "false")
        monkeypatch.setenv("FIREBASE_PROJECT_ID", PROJECT_ID)
        client = TestClient(app_factory())

        response = client.post(
            "/usage/record",
            json={"feature_type": "summary", "tokens_used": 10, "cost_usd": 0},
            headers={"Authorization": f"Bearer {make_token(rsa_key)}"},
        )

        assert response.status_code == 200
        assert ledger.events[0].user_id == "firebase-uid-1"

    def test_expired_token_is_401(self, monkeypatch, app_factory, rsa_key, jwks):
        monkeypatch.setenv("DEV_MODE", "false")
        monkeypatch.setenv("FIREBASE_PROJECT_ID", PROJECT_ID)
        client = TestClient(app_factory())

        token = make_token(rsa_key, exp=int(time.time()) - 60)
        response = client.get("/usage/stats", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "EXPIRED_TOKEN"

    def test_dev_mode_blocked_in_production(self, monkeypatch, app_factory):
        monkeypatch.setenv("DEV_MODE", "true")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.delenv("FIREBASE_PROJECT_ID", raising=False)
        client = TestClient(app_factory())

        response = client.get("/usage/stats", headers={"Authorization": "Bearer some-uid"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_TOKEN"
