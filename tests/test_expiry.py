"""
Tests for the subscription expiry calculator and plan catalog
"""
from datetime import datetime, timedelta

import pytest

from config.plans import (PLAN_ANNUAL, PLAN_FREE, PLAN_MONTHLY, PLAN_TRIAL,
                          SECONDS_PER_DAY, duration_days, is_known_plan, token_lifetime)
from utils.expiry import (days_remaining, expiry_instant, is_expired,
                          to_epoch_seconds, to_naive_utc)

UPDATED_AT = 1_700_000_000


@pytest.mark.parametrize("plan,days", [(PLAN_TRIAL, 2), (PLAN_MONTHLY, 30), (PLAN_ANNUAL, 365)])
def test_paid_plans_expire_strictly_after_duration(plan, days):
    boundary = UPDATED_AT + days * SECONDS_PER_DAY

    assert expiry_instant(plan, UPDATED_AT) == boundary
    assert is_expired(plan, UPDATED_AT, boundary - 1) is False
    # Exactly at the boundary the plan is still active
    assert is_expired(plan, UPDATED_AT, boundary) is False
    assert is_expired(plan, UPDATED_AT, boundary + 1) is True


@pytest.mark.parametrize("now", [UPDATED_AT - 10, UPDATED_AT, UPDATED_AT + 10 * 365 * SECONDS_PER_DAY])
def test_free_plan_never_expires(now):
    assert is_expired(PLAN_FREE, UPDATED_AT, now) is False
    assert expiry_instant(PLAN_FREE, UPDATED_AT) is None
    assert days_remaining(PLAN_FREE, UPDATED_AT, now) is None


def test_unknown_plan_is_non_expiring():
    assert is_known_plan("premium") is False
    assert duration_days("premium") is None
    assert is_expired("premium", UPDATED_AT, UPDATED_AT + 1000 * SECONDS_PER_DAY) is False
    assert expiry_instant(None, UPDATED_AT) is None


def test_naive_datetimes_are_treated_as_utc():
    updated_at = to_naive_utc(UPDATED_AT)

    assert to_epoch_seconds(updated_at) == UPDATED_AT
    assert expiry_instant(PLAN_TRIAL, updated_at) == UPDATED_AT + 2 * SECONDS_PER_DAY
    assert is_expired(PLAN_TRIAL, updated_at, updated_at + timedelta(days=3)) is True
    assert is_expired(PLAN_ANNUAL, updated_at, updated_at + timedelta(days=10)) is False


def test_days_remaining_counts_whole_days_and_floors_at_zero():
    now = UPDATED_AT + 10 * SECONDS_PER_DAY + 3600

    assert days_remaining(PLAN_MONTHLY, UPDATED_AT, now) == 19
    assert days_remaining(PLAN_TRIAL, UPDATED_AT, now) == 0


def test_token_lifetimes_follow_the_catalog():
    assert token_lifetime(PLAN_TRIAL) == "2d"
    assert token_lifetime(PLAN_ANNUAL) == "365d"
    assert token_lifetime("unknown") == token_lifetime(PLAN_FREE) == "30d"


def test_datetime_now_is_accepted():
    updated_at = datetime.utcnow() - timedelta(days=3)
    assert is_expired(PLAN_TRIAL, updated_at, datetime.utcnow()) is True
