"""
User Router - profile and subscription status for the signed-in user
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthContext, get_current_user, load_user
from crud.user import UserRepository
from database import get_db
from utils.expiry import days_remaining
from utils.responses import internal_error, success_response

logger = logging.getLogger(__name__)

user_router = APIRouter(prefix="/api/user", tags=["user"])


class ProfileUpdateRequest(BaseModel):
    jobRole: Optional[str] = None
    company: Optional[str] = None
    experience: Optional[str] = None
    resumeUrl: Optional[str] = None


@user_router.get("/profile")
async def get_profile(
    current: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Profile of the caller with the reconciled plan"""
    status = current.subscription
    if status.stale:
        # Store unreachable; answer from the token
        return {
            "id": current.user_id,
            "email": current.email,
            "plan": status.plan,
            "verified": status.verified,
            "expires": status.expires_at,
            "stale": True,
        }

    user = await load_user(UserRepository(db), current.user_id)
    profile = user.profile or {}
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "picture": user.picture,
        "plan": status.plan,
        "verified": status.verified,
        "expires": status.expires_at,
        "jobRole": profile.get("jobRole", ""),
        "company": profile.get("company", ""),
        "experience": profile.get("experience", ""),
        "profile": profile,
        "resumeUrl": user.resume_url or "",
        "createdAt": user.created_at.isoformat() + "Z" if user.created_at else None,
    }


@user_router.put("/profile")
async def update_profile(
    request: ProfileUpdateRequest,
    current: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update profile fields. Never changes the plan or its expiry."""
    try:
        user_repo = UserRepository(db)
        user = await load_user(user_repo, current.user_id)
        user = await user_repo.update_profile(
            user,
            request.model_dump(exclude={"resumeUrl"}),
            resume_url=request.resumeUrl,
        )
        await db.commit()
        return success_response(user={
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "subscription": user.plan,
            "isVerified": bool(user.verified),
            "profile": user.profile,
            "resumeUrl": user.resume_url,
        })
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Profile update", e)


@user_router.get("/subscription-status")
async def subscription_status(current: AuthContext = Depends(get_current_user),
                              db: AsyncSession = Depends(get_db)):
    status = current.subscription
    body = status.to_dict()
    body["isActive"] = status.is_active
    body["daysRemaining"] = None
    if not status.stale and status.expires_at is not None:
        user = await load_user(UserRepository(db), current.user_id)
        body["daysRemaining"] = days_remaining(user.plan, user.updated_at, time.time())
    return body
