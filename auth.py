"""
Authentication routes and dependencies
"""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import decode_token, hash_password, issue_token, verify_password
from config.plans import PLAN_FREE, token_lifetime
from config.settings import IS_PRODUCTION, settings
from crud.password_reset import PasswordResetRepository
from crud.user import UserRepository
from database import get_db
from database_models import User
from services.email_service import EmailService, get_email_service
from services.errors import GoogleAuthError, StoreUnavailableError, UserNotFoundError
from services.google_auth_service import GoogleAuthService, get_google_auth_service
from services.subscription_service import SubscriptionService, SubscriptionStatus
from utils.expiry import to_naive_utc
from utils.responses import internal_error, store_unavailable, success_response
from utils.security_utils import validate_email, validate_name, validate_password_strength
from utils.token_revoker import TOKEN_RETENTION_SECONDS, TokenRevoker, get_token_revoker

logger = logging.getLogger(__name__)

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a password reset link has been sent."


# Request models
class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class GoogleLoginRequest(BaseModel):
    idToken: Optional[str] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


@dataclass
class AuthContext:
    """What a token-gated route gets once the gate has passed."""
    user_id: str
    email: str
    token: str
    payload: dict
    subscription: SubscriptionStatus


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def issue_session_token(user: User, plan: Optional[str] = None, min_issued_at: Optional[float] = None) -> str:
    plan = plan or user.plan
    return issue_token(user, plan=plan, expires_in=token_lifetime(plan), min_issued_at=min_issued_at)


def user_summary(user: User, token: str) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "picture": user.picture,
        "provider": user.provider,
        "plan": user.plan,
        "verified": bool(user.verified),
        "expires": decode_token(token)["expires"],
    }


# Dependency for protected routes
async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
) -> AuthContext:
    """
    Token gate for protected routes.

    No token -> 401; bad signature or expired -> 403; revoked token or a token
    issued before the user's revocation cutoff -> 401; otherwise the user's
    subscription is reconciled and the request proceeds (404 if the user is gone).
    """
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")

    payload = decode_token(token)
    if not payload or not payload.get("id"):
        raise HTTPException(status_code=403, detail="Invalid or expired token")

    user_id = str(payload["id"])
    if revoker.is_revoked(token) or revoker.is_user_revoked(user_id, payload.get("iat")):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    service = SubscriptionService(db, UserRepository(db), revoker)
    try:
        status = await service.reconcile(user_id, token_payload=payload)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    if status.downgraded:
        await db.commit()

    return AuthContext(
        user_id=user_id,
        email=payload.get("email"),
        token=token,
        payload=payload,
        subscription=status,
    )


async def load_user(user_repo: UserRepository, user_id: str) -> User:
    try:
        user = await user_repo.get_user_by_id(user_id)
    except SQLAlchemyError as e:
        raise store_unavailable("Load user", e)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@auth_router.post("/signup")
async def signup(request: SignupRequest, db: AsyncSession = Depends(get_db)):
    """Create a new password account on the free plan"""
    try:
        if not request.email or not request.password or not request.name:
            raise HTTPException(status_code=400, detail="Email, password, and name are required")

        try:
            email = validate_email(request.email)
            name = validate_name(request.name)
            validate_password_strength(request.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        # Initialize repository
        user_repo = UserRepository(db)

        # Check if email already exists
        existing_user = await user_repo.get_user_by_email(email)
        if existing_user:
            raise HTTPException(status_code=400, detail="User already exists")

        try:
            user = await user_repo.create_user({
                "email": email,
                "name": name,
                "hashed_password": hash_password(request.password),
                "provider": "password",
                "plan": PLAN_FREE,
                "verified": False,
            })
            await db.commit()
        except IntegrityError:
            # A concurrent signup took the email between the check and the insert
            await db.rollback()
            raise HTTPException(status_code=400, detail="User already exists")

        token = issue_session_token(user, PLAN_FREE)
        logger.info(f"User signed up: {user.id}")
        return success_response(token=token, user=user_summary(user, token))
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Signup", e)


@auth_router.post("/login")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
):
    """Login with email and password; the plan is reconciled before the token is minted"""
    try:
        if not request.email or not request.password:
            raise HTTPException(status_code=400, detail="Email and password are required")

        # Initialize repository
        user_repo = UserRepository(db)

        # Find user by email
        user = await user_repo.get_user_by_email(request.email.strip())
        if not user or not verify_password(request.password, user.hashed_password):
            raise HTTPException(status_code=401, detail="Invalid credentials")

        service = SubscriptionService(db, user_repo, revoker)
        status = await service.reconcile(user.id)
        if status.downgraded:
            await db.commit()

        token = issue_session_token(user, status.plan, min_issued_at=status.revoked_at)
        return success_response(token=token, user=user_summary(user, token))
    except HTTPException:
        raise
    except StoreUnavailableError as e:
        raise store_unavailable("Login", e)
    except Exception as e:
        raise internal_error("Login", e)


@auth_router.post("/google")
async def google_login(
    request: GoogleLoginRequest,
    db: AsyncSession = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
    google: GoogleAuthService = Depends(get_google_auth_service),
):
    """
    Sign in with a Google ID token.
    Creates the account on first sign-in and links Google to an existing
    password account with the same email.
    """
    try:
        if not request.idToken:
            raise HTTPException(status_code=400, detail="Google ID token is required")

        try:
            identity = await google.verify_id_token(request.idToken)
        except GoogleAuthError as e:
            raise HTTPException(status_code=401, detail=str(e))

        user_repo = UserRepository(db)
        user = await user_repo.get_user_by_email(identity.email)

        revoked_at = None
        if user is None:
            user = await user_repo.create_user({
                "email": identity.email,
                "name": identity.name,
                "google_id": identity.subject_id,
                "picture": identity.picture,
                "provider": "google",
                "plan": PLAN_FREE,
                "verified": False,
            })
            logger.info(f"Google user created: {user.id}")
        else:
            if not user.google_id:
                user = await user_repo.link_google_account(user, identity.subject_id, identity.picture)
                logger.info(f"Google account linked to user {user.id}")
            status = await SubscriptionService(db, user_repo, revoker).reconcile(user.id)
            revoked_at = status.revoked_at
        await db.commit()

        token = issue_session_token(user, min_issued_at=revoked_at)
        return success_response(token=token, user=user_summary(user, token))
    except HTTPException:
        raise
    except StoreUnavailableError as e:
        raise store_unavailable("Google login", e)
    except Exception as e:
        raise internal_error("Google authentication", e)


@auth_router.post("/validate-token")
async def validate_token(
    request: TokenRequest,
    db: AsyncSession = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
):
    """Validate a session token for the desktop app"""
    try:
        if not request.token:
            raise HTTPException(status_code=400, detail="Token is required")

        payload = decode_token(request.token)
        if not payload or not payload.get("id"):
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user_id = str(payload["id"])
        if revoker.is_revoked(request.token) or revoker.is_user_revoked(user_id, payload.get("iat")):
            raise HTTPException(status_code=401, detail="Token has been revoked")

        user_repo = UserRepository(db)
        try:
            status = await SubscriptionService(db, user_repo, revoker).reconcile(user_id, token_payload=payload)
        except UserNotFoundError:
            raise HTTPException(status_code=404, detail="User not found")
        if status.downgraded:
            await db.commit()

        if status.stale:
            # Store unreachable; identity comes from the token
            user_info = {"id": user_id, "email": payload.get("email"), "name": None}
        else:
            user = await load_user(user_repo, user_id)
            user_info = {"id": user.id, "email": user.email, "name": user.name}
        return success_response(
            valid=True,
            user={
                **user_info,
                "subscription": status.plan,
                "isVerified": status.verified,
                "isExpired": status.is_expired,
                "expires": status.expires_at,
            },
            tokenInfo={
                "issuedAt": to_naive_utc(payload["iat"]).isoformat() + "Z",
                "subscription": payload.get("plan"),
                "expires": payload.get("expires"),
            },
        )
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Token validation", e)


@dataclass
class _TokenSubject:
    id: str
    email: str
    verified: bool


@auth_router.post("/check-subscription")
async def check_subscription(current: AuthContext = Depends(get_current_user)):
    """
    Re-check the caller's plan against the store.
    Always returns a fresh token carrying the effective plan.
    """
    try:
        status = current.subscription
        token = issue_token(
            _TokenSubject(current.user_id, current.email, status.verified),
            plan=status.plan,
            expires_in=token_lifetime(status.plan),
            min_issued_at=status.revoked_at,
        )
        return success_response(
            subscription=status.plan,
            isVerified=status.verified,
            isExpired=status.is_expired,
            expires=status.expires_at,
            downgraded=status.downgraded,
            token=token,
        )
    except Exception as e:
        raise internal_error("Subscription check", e)


@auth_router.get("/trial-eligibility")
async def trial_eligibility(
    current: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await load_user(UserRepository(db), current.user_id)
    return success_response(eligible=not user.has_used_trial, hasUsedTrial=bool(user.has_used_trial))


@auth_router.post("/logout")
async def logout(
    current: AuthContext = Depends(get_current_user),
    revoker: TokenRevoker = Depends(get_token_revoker),
):
    """Revoke the presented token for the rest of its transport lifetime"""
    remaining = int(current.payload.get("exp", 0) - time.time())
    revoker.revoke(current.token, max(TOKEN_RETENTION_SECONDS, remaining))
    logger.info(f"User {current.user_id} logged out")
    return success_response(message="Logged out successfully")


@auth_router.post("/forgot-password")
async def forgot_password(
    request: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Start a password reset.

    The response is the same whether or not the account exists. The cooldown
    between requests is enforced by the credential-route rate limit only.
    """
    try:
        if not request.email or not request.email.strip():
            raise HTTPException(status_code=400, detail="Email is required")
        try:
            email = validate_email(request.email)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        try:
            user = await UserRepository(db).get_user_by_email(email)
        except SQLAlchemyError as e:
            raise store_unavailable("Forgot password", e)

        response = success_response(message=FORGOT_PASSWORD_MESSAGE)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return response

        raw_token = secrets.token_urlsafe(32)
        expires_at = datetime.utcnow() + timedelta(minutes=settings.password_reset_ttl_minutes)
        await PasswordResetRepository(db).save_token(raw_token, user.id, user.email, expires_at)
        await db.commit()

        reset_url = f"{settings.frontend_url.rstrip('/')}/reset-password?token={raw_token}"
        sent = await email_service.send_password_reset(user.email, reset_url, settings.password_reset_ttl_minutes)
        logger.info(f"Password reset issued for user {user.id} (email sent: {sent})")

        if not IS_PRODUCTION and not email_service.is_configured:
            response["resetUrl"] = reset_url
        return response
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Forgot password", e)


@auth_router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
):
    """Consume a reset token, set the new password and revoke every earlier session"""
    try:
        if not request.token or not request.password:
            raise HTTPException(status_code=400, detail="Token and password are required")
        try:
            validate_password_strength(request.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        reset_repo = PasswordResetRepository(db)
        user_repo = UserRepository(db)
        try:
            record = await reset_repo.get_valid_token(request.token)
            user = await user_repo.get_user_by_id(record.user_id) if record else None
        except SQLAlchemyError as e:
            raise store_unavailable("Reset password", e)

        if record is None or user is None:
            raise HTTPException(status_code=400, detail="Invalid or expired reset token")

        await user_repo.set_password(user, hash_password(request.password))
        await reset_repo.mark_used(record.token_hash)
        await db.commit()

        revoker.revoke_all_for_user(user.id)
        logger.info(f"Password reset completed for user {user.id}")
        return success_response(message="Password has been reset successfully")
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Reset password", e)
