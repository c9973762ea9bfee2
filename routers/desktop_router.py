"""
Desktop Router - hand-off of a signed-in web session to the desktop app
"""

import logging
import time
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthContext, get_current_user
from auth_utils import DESKTOP_TOKEN_SECONDS, DESKTOP_TOKEN_TYPE, decode_desktop_token, issue_desktop_token
from config.settings import settings
from crud.user import UserRepository
from database import get_db
from utils.expiry import to_naive_utc
from utils.responses import internal_error, success_response

logger = logging.getLogger(__name__)

desktop_router = APIRouter(prefix="/api", tags=["desktop"])

TOKEN_FILE_NAME = "hireon-auth-token.json"


class DesktopTokenRequest(BaseModel):
    token: Optional[str] = None


async def _desktop_claims(current: AuthContext, db: AsyncSession) -> dict:
    """Identity and reconciled plan to embed in a hand-off token."""
    status = current.subscription
    name = None
    if not status.stale:
        user = await UserRepository(db).get_user_by_id(current.user_id)
        name = user.name if user else None
    return {
        "user_id": current.user_id,
        "email": current.email,
        "name": name,
        "subscription": status.plan,
        "expires": status.expires_at,
    }


@desktop_router.post("/generate-deep-link")
async def generate_deep_link(
    current: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deep link that opens the desktop app already signed in"""
    try:
        claims = await _desktop_claims(current, db)
        desktop_token = issue_desktop_token(**claims)

        expires = claims["expires"] if claims["expires"] is not None else ""
        deep_link = (
            f"{settings.desktop_deep_link_scheme}://auth?token={desktop_token}"
            f"&user={quote(claims['email'] or '', safe='')}&expires={expires}"
        )
        logger.info(f"Deep link generated for user {current.user_id}")
        return success_response(
            deepLink=deep_link,
            token=desktop_token,
            fallbackData={
                "token": desktop_token,
                "user": claims["email"],
                "name": claims["name"],
                "subscription": claims["subscription"],
                "expires": claims["expires"],
                "generatedAt": datetime.utcnow().isoformat() + "Z",
            },
            message="Deep link generated successfully",
        )
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Deep link generation", e)


@desktop_router.post("/validate-electron-token")
async def validate_electron_token(request: DesktopTokenRequest):
    """Check a hand-off token presented by the desktop app"""
    if not request.token:
        raise HTTPException(status_code=400, detail="Token is required")

    try:
        decoded = decode_desktop_token(request.token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Deep link token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    except Exception as e:
        raise internal_error("Token validation", e)

    if decoded.get("type") != DESKTOP_TOKEN_TYPE:
        raise HTTPException(status_code=400, detail="Invalid token type")

    expires = decoded.get("expires")
    if expires and time.time() > expires:
        raise HTTPException(status_code=401, detail="Subscription has expired")

    return success_response(
        valid=True,
        user={
            "id": decoded.get("userId"),
            "email": decoded.get("email"),
            "name": decoded.get("name"),
            "subscription": decoded.get("subscription"),
            "expires": expires,
        },
    )


@desktop_router.post("/generate-token-file")
async def generate_token_file(
    current: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Same hand-off as the deep link, delivered as a JSON file for manual import"""
    try:
        claims = await _desktop_claims(current, db)
        now = time.time()
        token_data = {
            "version": "1.0",
            "type": "hireon_auth_token",
            "user": {
                "id": claims["user_id"],
                "email": claims["email"],
                "name": claims["name"],
                "subscription": claims["subscription"],
                "expires": claims["expires"],
            },
            "token": issue_desktop_token(now=now, **claims),
            "generatedAt": to_naive_utc(now).isoformat() + "Z",
            "expiresAt": to_naive_utc(now + DESKTOP_TOKEN_SECONDS).isoformat() + "Z",
            "instructions": "Import this file in your HireOn desktop app to authenticate",
        }
        return JSONResponse(
            content=token_data,
            headers={"Content-Disposition": f'attachment; filename="{TOKEN_FILE_NAME}"'},
        )
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error("Token file generation", e)
