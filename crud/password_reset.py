"""
PasswordResetRepository for single-use password reset tokens
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database_models import PasswordResetToken

logger = logging.getLogger(__name__)


@dataclass
class ResetTokenRecord:
    token_hash: str
    user_id: str
    email: str
    expires_at: datetime
    used: bool = False


# Process-local fallback for when the store rejects the write. Lost on restart
# and not shared between instances.
_fallback_tokens: Dict[str, ResetTokenRecord] = {}


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class PasswordResetRepository:
    """Stores reset tokens in the database, falling back to process memory."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save_token(self, token: str, user_id: str, email: str, expires_at: datetime) -> None:
        token_hash = hash_reset_token(token)
        try:
            self.db.add(PasswordResetToken(
                token_hash=token_hash,
                user_id=user_id,
                email=email,
                expires_at=expires_at,
                used=False,
            ))
            await self.db.flush()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Reset token store write failed ({e}); keeping token in memory")
            _fallback_tokens[token_hash] = ResetTokenRecord(
                token_hash=token_hash,
                user_id=user_id,
                email=email,
                expires_at=expires_at,
            )

    async def get_valid_token(self, token: str, now: Optional[datetime] = None) -> Optional[ResetTokenRecord]:
        """Return the unused, unexpired record for a raw token, or None."""
        now = now or datetime.utcnow()
        token_hash = hash_reset_token(token)

        result = await self.db.execute(
            select(PasswordResetToken).where(PasswordResetToken.token_hash == token_hash)
        )
        row = result.scalar_one_or_none()
        if row is not None:
            record = ResetTokenRecord(
                token_hash=row.token_hash,
                user_id=row.user_id,
                email=row.email,
                expires_at=row.expires_at,
                used=row.used,
            )
        else:
            record = _fallback_tokens.get(token_hash)

        if record is None or record.used or record.expires_at <= now:
            return None
        return record

    async def mark_used(self, token_hash: str) -> None:
        fallback = _fallback_tokens.pop(token_hash, None)
        if fallback is not None:
            return
        result = await self.db.execute(
            select(PasswordResetToken).where(PasswordResetToken.token_hash == token_hash)
        )
        row = result.scalar_one_or_none()
        if row is not None:
            row.used = True
            await self.db.flush()

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Garbage-collect expired or used tokens from both stores."""
        now = now or datetime.utcnow()

        stale = [key for key, record in _fallback_tokens.items() if record.used or record.expires_at <= now]
        for key in stale:
            del _fallback_tokens[key]

        result = await self.db.execute(
            delete(PasswordResetToken).where(
                (PasswordResetToken.expires_at <= now) | (PasswordResetToken.used.is_(True))
            )
        )
        await self.db.flush()
        return len(stale) + (result.rowcount or 0)
