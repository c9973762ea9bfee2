"""
Tests for subscription reconciliation and the expiry sweep
"""
import time
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from auth_utils import decode_token, hash_password, issue_token
from crud.user import UserRepository
from services.errors import StoreUnavailableError, UserNotFoundError
from services.subscription_service import SubscriptionService
from utils.expiry import to_epoch_seconds
from utils.token_revoker import InMemoryTokenRevoker


async def _user(repo, email, plan, days_ago):
    user = await repo.create_user({
        "email": email,
        "hashed_password": hash_password("TestPass123"),
        "plan": plan,
        "verified": plan != "free",
    })
    return await repo.update_user(user, {"updated_at": datetime.utcnow() - timedelta(days=days_ago)})


@pytest.fixture
def services(test_db):
    repo = UserRepository(test_db)
    revoker = InMemoryTokenRevoker()
    return repo, revoker, SubscriptionService(test_db, repo, revoker)


async def test_lapsed_trial_is_downgraded_and_old_tokens_revoked(test_db, services):
    repo, revoker, service = services
    user = await _user(repo, "trial@example.com", "trial", days_ago=3)
    token_issued_at = time.time() - 60

    status = await service.reconcile(user.id)

    assert status.downgraded is True
    assert status.plan == "free"
    assert status.verified is False
    assert status.is_expired is True
    assert status.is_active is False

    await test_db.commit()
    stored = await repo.get_user_by_id(user.id)
    assert stored.plan == "free"
    assert stored.verified is False
    # The downgrade is a plan-mutating write
    assert to_epoch_seconds(stored.updated_at) == pytest.approx(time.time(), abs=5)

    assert revoker.is_user_revoked(user.id, issued_at=token_issued_at) is True
    assert revoker.is_user_revoked(user.id, issued_at=time.time() + 1) is False
    assert status.revoked_at is not None


async def test_token_reissued_after_downgrade_survives_a_frozen_clock(test_db):
    frozen = time.time()
    repo = UserRepository(test_db)
    revoker = InMemoryTokenRevoker(clock=lambda: frozen)
    service = SubscriptionService(test_db, repo, revoker, clock=lambda: frozen)
    user = await _user(repo, "frozen@example.com", "trial", days_ago=3)

    status = await service.reconcile(user.id)
    token = issue_token(user, plan=status.plan, now=frozen, min_issued_at=status.revoked_at)

    assert status.revoked_at == frozen
    assert revoker.is_user_revoked(user.id, issued_at=decode_token(token)["iat"]) is False
    assert revoker.is_user_revoked(user.id, issued_at=frozen - 0.001) is True


async def test_annual_plan_ten_days_in_is_left_alone(services):
    repo, revoker, service = services
    user = await _user(repo, "annual@example.com", "annual", days_ago=10)

    status = await service.reconcile(user.id)

    assert status.downgraded is False
    assert status.plan == "annual"
    assert status.verified is True
    assert status.is_active is True
    assert status.expires_at == int(to_epoch_seconds(user.updated_at)) + 365 * 86400
    assert revoker.is_user_revoked(user.id) is False


async def test_reconcile_is_idempotent(services):
    repo, revoker, service = services
    user = await _user(repo, "monthly@example.com", "monthly", days_ago=31)

    first = await service.reconcile(user.id)
    updated_at = (await repo.get_user_by_id(user.id)).updated_at
    second = await service.reconcile(user.id)

    assert first.downgraded is True
    assert second.downgraded is False
    assert second.plan == "free"
    stored = await repo.get_user_by_id(user.id)
    assert stored.plan == "free"
    assert stored.updated_at == updated_at


async def test_missing_user_raises(services):
    _, _, service = services
    with pytest.raises(UserNotFoundError):
        await service.reconcile("does-not-exist")


async def test_store_failure_falls_back_to_token(test_db):
    repo = UserRepository(test_db)
    repo.get_user_by_id = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
    service = SubscriptionService(test_db, repo, InMemoryTokenRevoker())
    now = time.time()
    payload = {"id": "u1", "plan": "monthly", "verified": True, "expires": int(now) + 3600}

    status = await service.reconcile("u1", token_payload=payload, now=now)

    assert status.stale is True
    assert status.plan == "monthly"
    assert status.verified is True
    assert status.is_expired is False
    assert status.expires_at == payload["expires"]

    with pytest.raises(StoreUnavailableError):
        await service.reconcile("u1", now=now)


async def test_stale_token_past_its_expiry_reports_expired(test_db):
    repo = UserRepository(test_db)
    repo.get_user_by_id = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
    service = SubscriptionService(test_db, repo, InMemoryTokenRevoker())
    now = time.time()

    status = await service.reconcile("u1", token_payload={"plan": "trial", "verified": True,
                                                          "expires": int(now) - 1}, now=now)
    assert status.is_expired is True
    assert status.is_active is False


async def test_sweep_downgrades_only_lapsed_users(test_db, services):
    repo, revoker, service = services
    lapsed_trial = await _user(repo, "a@example.com", "trial", days_ago=3)
    lapsed_monthly = await _user(repo, "b@example.com", "monthly", days_ago=45)
    active = await _user(repo, "c@example.com", "annual", days_ago=10)
    await _user(repo, "d@example.com", "free", days_ago=800)
    await test_db.commit()

    assert await service.sweep_expired() == 2

    assert (await repo.get_user_by_id(lapsed_trial.id)).plan == "free"
    assert (await repo.get_user_by_id(lapsed_monthly.id)).plan == "free"
    assert (await repo.get_user_by_id(active.id)).plan == "annual"
    assert await service.sweep_expired() == 0
