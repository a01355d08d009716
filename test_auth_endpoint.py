"""
Tests for the authentication endpoints and the bearer token dependency.
"""
from datetime import datetime, timedelta, timezone

from jose import jwt

from berries.config import settings
from berries.routers import auth


def signup(client, email="alice@example.com", password="berries123", confirm=None):
    return client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": password, "confirm": confirm or password},
    )


def test_signup_returns_working_token(client):
    response = signup(client, email="  Alice@Example.com ")
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "alice@example.com"

    claims = jwt.decode(body["token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    assert claims["sub"] == "alice@example.com"

    history = client.get(
        "/api/v1/chat/history",
        headers={"Authorization": f"Bearer {body['token']}"},
    )
    assert history.status_code == 200


def test_signup_password_mismatch(client):
    response = signup(client, password="one", confirm="two")
    assert response.status_code == 400
    assert response.json()["detail"] == "Passwords do not match"


def test_signup_duplicate_email(client):
    assert signup(client).status_code == 200
    response = signup(client, email="ALICE@example.com")
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_login(client):
    signup(client)
    response = client.post(
        "/api/v1/auth/login",
        json={"email": "alice@example.com", "password": "berries123"},
    )
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "alice@example.com"


def test_login_rejects_bad_credentials(client):
    signup(client)
    wrong_password = client.post(
        "/api/v1/auth/login",
        json={"email": "alice@example.com", "password": "nope"},
    )
    unknown_user = client.post(
        "/api/v1/auth/login",
        json={"email": "bob@example.com", "password": "berries123"},
    )
    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json()["detail"] == "Invalid credentials"


def test_google_login_creates_account_once(client, monkeypatch):
    monkeypatch.setattr(settings, "google_oauth_client_id", "client-id.apps.googleusercontent.com")
    seen = []

    def fake_verify(token, request, audience):
        seen.append((token, audience))
        return {"sub": "1234567890", "email": "Carol@Example.com"}

    monkeypatch.setattr(auth.id_token, "verify_oauth2_token", fake_verify)

    first = client.post("/api/v1/auth/google", json={"google_token": "google-id-token"})
    second = client.post("/api/v1/auth/google", json={"google_token": "google-id-token"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["user"] == second.json()["user"]
    assert first.json()["user"]["email"] == "carol@example.com"
    assert seen[0] == ("google-id-token", "client-id.apps.googleusercontent.com")


def test_google_login_without_email_uses_subject(client, monkeypatch):
    monkeypatch.setattr(settings, "google_oauth_client_id", "client-id")
    monkeypatch.setattr(
        auth.id_token,
        "verify_oauth2_token",
        lambda token, request, audience: {"sub": "42"},
    )
    response = client.post("/api/v1/auth/google", json={"google_token": "t"})
    assert response.json()["user"]["email"] == "42@google.com"


def test_google_login_invalid_token(client, monkeypatch):
    monkeypatch.setattr(settings, "google_oauth_client_id", "client-id")

    def reject(token, request, audience):
        raise ValueError("Wrong recipient")

    monkeypatch.setattr(auth.id_token, "verify_oauth2_token", reject)
    response = client.post("/api/v1/auth/google", json={"google_token": "t"})
    assert response.status_code == 401


def test_google_login_not_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "google_oauth_client_id", "")
    response = client.post("/api/v1/auth/google", json={"google_token": "t"})
    assert response.status_code == 500


def test_missing_and_malformed_tokens_are_rejected(client):
    assert client.get("/api/v1/chat/sessions").status_code == 401
    assert client.get("/api/v1/chat/sessions", headers={"Authorization": "Bearer "}).status_code == 401
    assert client.get("/api/v1/chat/sessions", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_expired_token_is_rejected(client):
    token = jwt.encode(
        {"sub": "alice@example.com", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    response = client.get("/api/v1/chat/sessions", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token expired"


def test_token_signed_with_other_secret_is_rejected(client):
    token = jwt.encode({"sub": "alice@example.com"}, "someone-else", algorithm="HS256")
    response = client.get("/api/v1/chat/sessions", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_token_without_subject_is_rejected(client):
    token = jwt.encode({"email": "alice@example.com"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    response = client.get("/api/v1/chat/sessions", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
