"""
Plan catalog: named subscription plans and their fixed durations.

Durations are process constants. They are never read from settings or stored per
user, so every expiry computation in the service agrees on them.
"""
from typing import Optional

SECONDS_PER_DAY = 86400

PLAN_FREE = "free"
PLAN_TRIAL = "trial"
PLAN_MONTHLY = "monthly"
PLAN_ANNUAL = "annual"

# Subscription validity in days; free has no expiry
PLAN_DURATION_DAYS = {
    PLAN_TRIAL: 2,
    PLAN_MONTHLY: 30,
    PLAN_ANNUAL: 365,
}

# Session token lifetime handed to the token issuer
PLAN_TOKEN_LIFETIME = {
    PLAN_FREE: "30d",
    PLAN_TRIAL: "2d",
    PLAN_MONTHLY: "30d",
    PLAN_ANNUAL: "365d",
}

# Prices in INR (whole rupees)
PLAN_PRICES = {
    PLAN_FREE: 0,
    PLAN_TRIAL: 99,
    PLAN_MONTHLY: 999,
    PLAN_ANNUAL: 9999,
}

ALL_PLANS = (PLAN_FREE, PLAN_TRIAL, PLAN_MONTHLY, PLAN_ANNUAL)
PURCHASABLE_PLANS = (PLAN_TRIAL, PLAN_MONTHLY, PLAN_ANNUAL)

LONGEST_PLAN_DAYS = max(PLAN_DURATION_DAYS.values())


def is_known_plan(plan: Optional[str]) -> bool:
    return plan in ALL_PLANS


def is_purchasable_plan(plan: Optional[str]) -> bool:
    return plan in PURCHASABLE_PLANS


def duration_days(plan: Optional[str]) -> Optional[int]:
    """Days a plan stays active after its last plan-mutating write, or None if it never lapses."""
    return PLAN_DURATION_DAYS.get(plan)


def token_lifetime(plan: Optional[str]) -> str:
    return PLAN_TOKEN_LIFETIME.get(plan, PLAN_TOKEN_LIFETIME[PLAN_FREE])


def plan_price(plan: str) -> int:
    return PLAN_PRICES[plan]
