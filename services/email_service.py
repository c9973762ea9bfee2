"""
Email Service - transactional email through the Resend HTTP API
"""

import logging
from typing import Optional

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailService:
    """
    Sends transactional email. Without RESEND_API_KEY the service runs in a
    log-only mode and every send reports failure.
    """

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.sender = sender or settings.email_from

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, to: str, subject: str, html: str) -> bool:
        """
        Send one email.

        Returns:
            True if the provider accepted the message, False otherwise
        """
        if not self.is_configured:
            logger.warning(f"RESEND_API_KEY not set. Email to {to} not sent (subject: {subject})")
            return False

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}

        try:
            async with httpx.AsyncClient() as client:
                res = await client.post(RESEND_API_URL, headers=headers, json=payload, timeout=15)
        except httpx.RequestError as e:
            logger.error(f"Resend request failed for {to}: {e}")
            return False

        if not res.is_success:
            logger.warning(f"Resend API returned {res.status_code}: {res.text}")
            return False

        logger.info(f"Email sent to {to}: {subject}")
        return True

    async def send_password_reset(self, to: str, reset_url: str, ttl_minutes: int) -> bool:
        html = (
            "<p>We received a request to reset your HireOn password.</p>"
            f'<p><a href="{reset_url}">Reset your password</a></p>'
            f"<p>This link expires in {ttl_minutes} minutes. "
            "If you did not request a reset, you can ignore this email.</p>"
        )
        return await self.send_email(to, "Reset your HireOn password", html)


def get_email_service() -> EmailService:
    """FastAPI dependency."""
    return EmailService()
