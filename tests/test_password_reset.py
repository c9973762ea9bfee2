"""
Tests for the forgot-password / reset-password flow and the email sender
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from auth import FORGOT_PASSWORD_MESSAGE
from conftest import TEST_PASSWORD, bearer, token_for
from crud.password_reset import PasswordResetRepository
from crud.user import UserRepository
from services.email_service import RESEND_API_URL, EmailService

NEW_PASSWORD = "BrandNewPass456"


def _reset_token(response):
    query = parse_qs(urlparse(response.json()["resetUrl"]).query)
    return query["token"][0]


def test_unknown_email_gets_generic_response(client):
    response = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert response.json()["message"] == FORGOT_PASSWORD_MESSAGE
    assert "resetUrl" not in response.json()


def test_forgot_password_requires_email(client):
    assert client.post("/api/auth/forgot-password", json={}).status_code == 400
    assert client.post("/api/auth/forgot-password", json={"email": "not-an-email"}).status_code == 400


def test_repeated_requests_are_accepted(client, create_user):
    create_user(email="repeat@example.com")

    first = client.post("/api/auth/forgot-password", json={"email": "repeat@example.com"})
    second = client.post("/api/auth/forgot-password", json={"email": "repeat@example.com"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["message"] == second.json()["message"] == FORGOT_PASSWORD_MESSAGE
    assert _reset_token(first) != _reset_token(second)


def test_full_reset_flow(client, create_user):
    """
    The reset link sets a new password, can only be used once, and every session
    token issued before the reset stops working.
    """
    user = create_user(email="reset@example.com", plan="monthly", days_ago=3)
    old_token = token_for(user)

    forgot = client.post("/api/auth/forgot-password", json={"email": "reset@example.com"})
    assert forgot.status_code == 200
    assert forgot.json()["resetUrl"].startswith("http")
    reset_token = _reset_token(forgot)

    reset = client.post("/api/auth/reset-password", json={"token": reset_token, "password": NEW_PASSWORD})
    assert reset.status_code == 200

    assert client.get("/api/user/profile", headers=bearer(old_token)).status_code == 401

    old_login = client.post("/api/auth/login", json={"email": "reset@example.com", "password": TEST_PASSWORD})
    assert old_login.status_code == 401

    login = client.post("/api/auth/login", json={"email": "reset@example.com", "password": NEW_PASSWORD})
    assert login.status_code == 200
    assert login.json()["user"]["plan"] == "monthly"
    assert client.get("/api/user/profile", headers=bearer(login.json()["token"])).status_code == 200

    reused = client.post("/api/auth/reset-password", json={"token": reset_token, "password": "AnotherPass789"})
    assert reused.status_code == 400


def test_reset_does_not_extend_subscription(client, create_user):
    user = create_user(email="keep@example.com", plan="monthly", days_ago=3)
    before = client.get("/api/user/profile", headers=bearer(token_for(user))).json()["expires"]

    reset_token = _reset_token(client.post("/api/auth/forgot-password", json={"email": "keep@example.com"}))
    client.post("/api/auth/reset-password", json={"token": reset_token, "password": NEW_PASSWORD})

    token = client.post("/api/auth/login", json={"email": "keep@example.com", "password": NEW_PASSWORD}).json()["token"]
    assert client.get("/api/user/profile", headers=bearer(token)).json()["expires"] == before


def test_reset_rejects_invalid_token_and_weak_password(client, create_user):
    create_user(email="weak@example.com")
    reset_token = _reset_token(client.post("/api/auth/forgot-password", json={"email": "weak@example.com"}))

    invalid = client.post("/api/auth/reset-password", json={"token": "nope", "password": NEW_PASSWORD})
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Invalid or expired reset token"

    weak = client.post("/api/auth/reset-password", json={"token": reset_token, "password": "weak"})
    assert weak.status_code == 400

    missing = client.post("/api/auth/reset-password", json={"token": reset_token})
    assert missing.status_code == 400


def test_forgot_password_store_failure(client):
    failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))

    with patch.object(UserRepository, "get_user_by_email", failing):
        response = client.post("/api/auth/forgot-password", json={"email": "user@example.com"})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_reset_token_falls_back_to_memory_when_store_write_fails():
    missing_row = MagicMock()
    missing_row.scalar_one_or_none.return_value = None
    db = MagicMock()
    db.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))
    db.rollback = AsyncMock()
    db.execute = AsyncMock(return_value=missing_row)
    repo = PasswordResetRepository(db)

    await repo.save_token("fallback-token", "user-1", "user@example.com",
                          datetime.utcnow() + timedelta(minutes=60))

    db.rollback.assert_awaited_once()
    record = await repo.get_valid_token("fallback-token")
    assert record is not None
    assert record.user_id == "user-1"

    await repo.mark_used(record.token_hash)
    assert await repo.get_valid_token("fallback-token") is None


@pytest.mark.asyncio
async def test_email_service_without_key_does_not_send():
    service = EmailService(api_key="")

    with patch("services.email_service.httpx.AsyncClient.post", new_callable=AsyncMock) as post:
        assert await service.send_email("a@example.com", "Hi", "<p>Hi</p>") is False
        post.assert_not_called()


@pytest.mark.asyncio
async def test_email_service_posts_to_resend():
    service = EmailService(api_key="re_test", sender="HireOn <noreply@example.com>")
    response = httpx.Response(200, json={"id": "email_1"})

    with patch("services.email_service.httpx.AsyncClient.post", new_callable=AsyncMock,
               return_value=response) as post:
        sent = await service.send_password_reset("a@example.com", "https://app/reset?token=t", 60)

    assert sent is True
    args, kwargs = post.call_args
    assert args[0] == RESEND_API_URL
    assert kwargs["headers"]["Authorization"] == "Bearer re_test"
    assert kwargs["json"]["to"] == ["a@example.com"]
    assert "https://app/reset?token=t" in kwargs["json"]["html"]


@pytest.mark.asyncio
async def test_email_service_reports_provider_failures():
    service = EmailService(api_key="re_test")

    with patch("services.email_service.httpx.AsyncClient.post", new_callable=AsyncMock,
               return_value=httpx.Response(422, json={"message": "bad"})):
        assert await service.send_email("a@example.com", "Hi", "<p>Hi</p>") is False

    with patch("services.email_service.httpx.AsyncClient.post", new_callable=AsyncMock,
               side_effect=httpx.ConnectError("unreachable")):
        assert await service.send_email("a@example.com", "Hi", "<p>Hi</p>") is False
