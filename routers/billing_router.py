"""
Billing Router - API endpoints for Razorpay checkout
Webhook is defined FIRST; it reads the raw body for signature verification
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthContext, get_current_user, issue_session_token
from config.plans import PLAN_MONTHLY
from config.settings import settings
from crud.user import UserRepository
from database import get_db
from services.billing_service import BillingService
from services.errors import PaymentGatewayError, PaymentVerificationError, UserNotFoundError
from utils.expiry import expiry_instant
from utils.responses import internal_error, success_response

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/razorpay", tags=["billing"])


class CreateOrderRequest(BaseModel):
    amount: Optional[Union[int, float, str]] = None
    currency: Optional[str] = "INR"
    plan: Optional[str] = PLAN_MONTHLY


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    plan: Optional[str] = PLAN_MONTHLY


def get_billing_service(db: AsyncSession = Depends(get_db)) -> BillingService:
    """FastAPI dependency; tests override it to inject a fake gateway client."""
    return BillingService(db, UserRepository(db))


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST
@billing_router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Handle Razorpay webhook events with signature verification.

    Only verified events are processed. Plan upgrades happen in
    verify-payment; webhook events are logged for reconciliation.
    """
    try:
        payload = await request.body()
        signature = request.headers.get("x-razorpay-signature")

        try:
            event = billing_service.parse_webhook(payload, signature)
        except PaymentGatewayError as e:
            raise HTTPException(status_code=500, detail=str(e))
        except PaymentVerificationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        event_type = billing_service.process_webhook(event)
        return {"status": "ok", "event": event_type}
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Webhook processing", e)


@billing_router.post("/create-order")
async def create_order(
    request: CreateOrderRequest,
    current: AuthContext = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Create a Razorpay order for the selected plan"""
    try:
        order = await billing_service.create_order(
            current.user_id,
            request.plan,
            amount=request.amount,
            currency=request.currency,
        )
        return success_response(order=order, key_id=settings.razorpay_key_id)
    except PaymentVerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except PaymentGatewayError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Order creation", e)


@billing_router.post("/verify-payment")
async def verify_payment(
    request: VerifyPaymentRequest,
    current: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Verify the checkout signature and upgrade the plan.

    Returns a new token carrying the upgraded plan; the user row is untouched
    when the signature does not match.
    """
    try:
        user = await billing_service.verify_payment(
            current.user_id,
            request.razorpay_order_id,
            request.razorpay_payment_id,
            request.razorpay_signature,
            request.plan,
        )
        await db.commit()

        token = issue_session_token(user)
        latest = user.payment_history[-1]
        return success_response(
            userId=user.id,
            plan=user.plan,
            verifiedAt=latest["verifiedAt"],
            paymentId=latest["paymentId"],
            token=token,
            expires=expiry_instant(user.plan, user.updated_at),
            expiresAt=latest["expiresAt"],
        )
    except PaymentVerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except PaymentGatewayError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Payment verification", e)
