"""
Billing Service - Razorpay order creation, payment verification and plan upgrades
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import razorpay
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from config.plans import (PLAN_TRIAL, SECONDS_PER_DAY, duration_days,
                          is_purchasable_plan, plan_price)
from config.settings import settings
from crud.user import UserRepository
from database_models import User
from services.errors import (PaymentGatewayError, PaymentVerificationError,
                             UserNotFoundError)
from utils.expiry import to_naive_utc
from utils.security_utils import validate_amount, validate_currency

logger = logging.getLogger(__name__)


def compute_signature(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """HMAC-SHA256 over "<order_id>|<payment_id>" compared against the gateway's signature."""
    expected = compute_signature(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    return hmac.compare_digest(expected, signature or "")


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected, signature or "")


def _get_razorpay_client():
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        return None
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


class BillingService:
    """
    Service class for handling billing-related business logic.
    The gateway client is injectable; by default it is built from settings.
    """

    def __init__(self, db: AsyncSession, user_repo: UserRepository, client=None,
                 clock: Callable[[], float] = time.time):
        self.db = db
        self.user_repo = user_repo
        self.client = client if client is not None else _get_razorpay_client()
        self.clock = clock

    def validate_purchase(self, user: User, plan: str) -> None:
        if not is_purchasable_plan(plan):
            raise PaymentVerificationError(f"Invalid subscription plan: {plan}")
        if plan == PLAN_TRIAL and user.has_used_trial:
            raise PaymentVerificationError("Trial has already been used")

    async def create_order(self, user_id: str, plan: str, amount=None, currency: Optional[str] = "INR") -> Dict[str, Any]:
        """
        Create a Razorpay order for a plan purchase.

        The amount defaults to the catalog price; a client-supplied amount must
        match it.

        Returns:
            dict with id, amount (in paise), currency and receipt
        """
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        self.validate_purchase(user, plan)

        price = plan_price(plan)
        try:
            currency = validate_currency(currency)
            amount = validate_amount(price if amount is None else amount)
        except ValueError as e:
            raise PaymentVerificationError(str(e)) from e
        if currency == "INR" and amount != price:
            raise PaymentVerificationError(f"Amount does not match the {plan} plan price")

        if self.client is None:
            logger.error("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set. Cannot create order.")
            raise PaymentGatewayError("Payment gateway is not configured")

        options = {
            "amount": amount * 100,  # paise
            "currency": currency,
            "receipt": f"receipt_{int(self.clock() * 1000)}",
            "notes": {"plan": plan, "userId": user_id},
        }
        try:
            order = await run_in_threadpool(self.client.order.create, data=options)
        except Exception as e:
            logger.error(f"Razorpay order creation failed: {e}", exc_info=True)
            raise PaymentGatewayError("Failed to create order") from e

        logger.info(f"Order created: {order.get('id')} user={user_id} plan={plan}")
        return {
            "id": order.get("id"),
            "amount": order.get("amount"),
            "currency": order.get("currency"),
            "receipt": order.get("receipt"),
        }

    async def verify_payment(self, user_id: str, order_id: str, payment_id: str,
                             signature: str, plan: str) -> User:
        """
        Verify a checkout signature and upgrade the user's plan.

        Nothing is written unless the signature matches.

        Raises:
            PaymentVerificationError: missing fields, bad signature, replay, invalid plan
            UserNotFoundError: the user row does not exist
        """
        if not order_id or not payment_id or not signature:
            raise PaymentVerificationError("Missing required payment parameters")

        secret = settings.razorpay_key_secret
        if not secret:
            logger.error("RAZORPAY_KEY_SECRET not set. Cannot verify payment signature.")
            raise PaymentGatewayError("Payment gateway is not configured")

        if not verify_payment_signature(order_id, payment_id, signature, secret):
            logger.warning(f"Invalid payment signature for order {order_id} user={user_id}")
            raise PaymentVerificationError("Invalid payment signature")

        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        self.validate_purchase(user, plan)

        history = list(user.payment_history or [])
        if any(entry.get("paymentId") == payment_id for entry in history):
            raise PaymentVerificationError("Payment has already been processed")

        now = self.clock()
        history.append({
            "paymentId": payment_id,
            "orderId": order_id,
            "plan": plan,
            "verifiedAt": to_naive_utc(now).isoformat() + "Z",
            "expiresAt": to_naive_utc(now + duration_days(plan) * SECONDS_PER_DAY).isoformat() + "Z",
        })

        extra = {"payment_history": history}
        if plan == PLAN_TRIAL:
            extra["has_used_trial"] = True
        user = await self.user_repo.set_plan(user, plan, True, now=to_naive_utc(now), **extra)

        logger.info(f"Payment verified: {payment_id} user={user_id} plan={plan}")
        return user

    def parse_webhook(self, body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and decode a Razorpay webhook body.

        Raises:
            PaymentGatewayError: webhook secret not configured
            PaymentVerificationError: signature mismatch or malformed body
        """
        secret = settings.razorpay_webhook_secret
        if not secret:
            logger.error("RAZORPAY_WEBHOOK_SECRET is not set")
            raise PaymentGatewayError("Webhook secret not configured")
        if not verify_webhook_signature(body, signature, secret):
            logger.error("Invalid webhook signature")
            raise PaymentVerificationError("Invalid webhook signature")
        try:
            return json.loads(body)
        except ValueError as e:
            raise PaymentVerificationError("Invalid payload format") from e

    def process_webhook(self, event: Dict[str, Any]) -> str:
        """Log a verified webhook event; plan changes happen in verify_payment."""
        event_type = event.get("event", "unknown")
        payload = event.get("payload") or {}

        if event_type in ("payment.captured", "payment.failed"):
            entity = (payload.get("payment") or {}).get("entity") or {}
            logger.info(f"Webhook {event_type}: payment={entity.get('id')} order={entity.get('order_id')}")
        elif event_type == "order.paid":
            entity = (payload.get("order") or {}).get("entity") or {}
            logger.info(f"Webhook {event_type}: order={entity.get('id')}")
        else:
            logger.info(f"Unhandled webhook event: {event_type}")
        return event_type
