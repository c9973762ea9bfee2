"""
Google Sign-In - verifies ID tokens issued to the web client
"""

import logging
from dataclasses import dataclass
from typing import Optional

from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from starlette.concurrency import run_in_threadpool

from config.settings import settings
from services.errors import GoogleAuthError

logger = logging.getLogger(__name__)


@dataclass
class GoogleIdentity:
    subject_id: str
    email: str
    name: Optional[str]
    picture: Optional[str]


class GoogleAuthService:
    def __init__(self, client_id: Optional[str] = None):
        self.client_id = client_id if client_id is not None else settings.google_client_id

    def _verify(self, token: str) -> dict:
        return id_token.verify_oauth2_token(token, google_requests.Request(), self.client_id)

    async def verify_id_token(self, token: str) -> GoogleIdentity:
        """
        Verify an ID token against GOOGLE_CLIENT_ID as audience.

        Raises:
            GoogleAuthError: not configured, bad signature/audience, or no email claim
        """
        if not self.client_id:
            logger.error("GOOGLE_CLIENT_ID is not set. Google sign-in unavailable.")
            raise GoogleAuthError("Google sign-in is not configured")

        try:
            claims = await run_in_threadpool(self._verify, token)
        except (ValueError, google_exceptions.GoogleAuthError) as e:
            logger.warning(f"Google ID token rejected: {e}")
            raise GoogleAuthError("Invalid Google ID token") from e

        email = claims.get("email")
        if not email:
            raise GoogleAuthError("Email not provided by Google")

        return GoogleIdentity(
            subject_id=claims["sub"],
            email=email.lower(),
            name=claims.get("name"),
            picture=claims.get("picture"),
        )


def get_google_auth_service() -> GoogleAuthService:
    """FastAPI dependency."""
    return GoogleAuthService()
