import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, JSON, String

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    User account with its subscription state.

    ``updated_at`` is the instant of the last plan-mutating write and the only
    basis for expiry computation (expiry = updated_at + plan duration). Writes that
    do not change the plan (profile edits, password resets) use their own columns.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)  # None for Google-only accounts

    # Google linkage
    google_id = Column(String, nullable=True, index=True)
    picture = Column(String, nullable=True)
    provider = Column(String, nullable=False, default="password")

    # Subscription state
    plan = Column(String, nullable=False, default="free", index=True)
    verified = Column(Boolean, nullable=False, default=False)
    has_used_trial = Column(Boolean, nullable=False, default=False)
    payment_history = Column(JSON, nullable=False, default=list)

    # Profile
    profile = Column(JSON, nullable=False, default=dict)
    resume_url = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    profile_updated_at = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)


class PasswordResetToken(Base):
    """Single-use password reset token; only the SHA-256 digest is stored."""
    __tablename__ = "password_reset_tokens"

    token_hash = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
