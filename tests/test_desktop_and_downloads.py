"""
Tests for the desktop hand-off routes, installer downloads and the health check
"""
import time
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import jwt

from auth_utils import ALGORITHM, DESKTOP_TOKEN_SECONDS, DESKTOP_TOKEN_TYPE, decode_desktop_token, issue_desktop_token
from conftest import bearer, token_for
from config.settings import settings


def test_generate_deep_link(client, create_user):
    user = create_user(email="desk+top@example.com", plan="annual", days_ago=1, name="Desk User")

    response = client.post("/api/generate-deep-link", headers=bearer(token_for(user)))

    assert response.status_code == 200
    data = response.json()
    link = urlparse(data["deepLink"])
    assert link.scheme == "hireon"
    assert link.netloc == "auth"
    query = parse_qs(link.query)
    assert query["token"][0] == data["token"]
    assert query["user"][0] == "desk+top@example.com"
    assert "desk%2Btop%40example.com" in data["deepLink"]
    assert int(query["expires"][0]) == data["fallbackData"]["expires"]

    decoded = decode_desktop_token(data["token"])
    assert decoded["type"] == DESKTOP_TOKEN_TYPE
    assert decoded["subscription"] == "annual"
    assert decoded["name"] == "Desk User"
    assert decoded["exp"] - int(time.time()) <= DESKTOP_TOKEN_SECONDS


def test_generate_deep_link_requires_session(client):
    assert client.post("/api/generate-deep-link").status_code == 401


def test_validate_electron_token(client, create_user):
    user = create_user(email="electron@example.com", plan="monthly")
    deep_link = client.post("/api/generate-deep-link", headers=bearer(token_for(user))).json()

    response = client.post("/api/validate-electron-token", json={"token": deep_link["token"]})

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["user"]["id"] == user.id
    assert data["user"]["subscription"] == "monthly"


def test_validate_electron_token_failures(client):
    assert client.post("/api/validate-electron-token", json={}).status_code == 400

    expired = issue_desktop_token("u1", "u1@example.com", None, "monthly", None,
                                  now=time.time() - 2 * DESKTOP_TOKEN_SECONDS)
    response = client.post("/api/validate-electron-token", json={"token": expired})
    assert response.status_code == 401
    assert response.json()["detail"] == "Deep link token has expired"

    session_like = jwt.encode({"userId": "u1", "type": "session", "exp": time.time() + 60},
                              settings.jwt_secret_key, algorithm=ALGORITHM)
    response = client.post("/api/validate-electron-token", json={"token": session_like})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid token type"

    lapsed = issue_desktop_token("u1", "u1@example.com", None, "monthly", int(time.time()) - 10)
    response = client.post("/api/validate-electron-token", json={"token": lapsed})
    assert response.status_code == 401
    assert response.json()["detail"] == "Subscription has expired"

    assert client.post("/api/validate-electron-token", json={"token": "garbage"}).status_code == 401


def test_generate_token_file(client, create_user):
    user = create_user(email="file@example.com", plan="monthly")

    response = client.post("/api/generate-token-file", headers=bearer(token_for(user)))

    assert response.status_code == 200
    assert response.headers["content-disposition"] == 'attachment; filename="hireon-auth-token.json"'
    data = response.json()
    assert data["type"] == "hireon_auth_token"
    assert data["user"]["email"] == "file@example.com"
    assert decode_desktop_token(data["token"])["userId"] == user.id


def test_download_redirects(client):
    windows = client.get("/api/download/windows", follow_redirects=False)
    mac = client.get("/api/download/MAC", follow_redirects=False)

    assert windows.status_code == 307
    assert windows.headers["location"] == settings.download_windows_url
    assert mac.status_code == 307
    assert mac.headers["location"] == settings.download_mac_url


def test_download_unknown_platform(client):
    assert client.get("/api/download/linux", follow_redirects=False).status_code == 404


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["database"] == "ok"
    assert response.headers["x-frame-options"] == "DENY"
    assert response.headers["x-content-type-options"] == "nosniff"


def test_health_reports_unreachable_store(client):
    with patch("main.ping_db", AsyncMock(side_effect=ConnectionError("db down"))):
        response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unavailable"
