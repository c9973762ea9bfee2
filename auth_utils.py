"""
Authentication utilities: Password hashing and JWT token management
"""

import time
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from config.plans import SECONDS_PER_DAY
from config.settings import settings

# Password hashing context
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# JWT configuration
ALGORITHM = "HS256"
DEFAULT_TOKEN_DAYS = 7
DESKTOP_TOKEN_TYPE = "electron_auth"
DESKTOP_TOKEN_SECONDS = 3600


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a password against its hash. Accounts without a password never match."""
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def _require_secret() -> str:
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot sign or verify JWT tokens.")
    return settings.jwt_secret_key


def parse_duration_days(expires_in: Optional[str]) -> int:
    """
    Parse a lifetime such as "30d" into days.

    Anything that is not "<n>d" falls back to 7 days.
    """
    if isinstance(expires_in, str) and expires_in.endswith("d"):
        try:
            days = int(expires_in[:-1])
        except ValueError:
            return DEFAULT_TOKEN_DAYS
        if days > 0:
            return days
    return DEFAULT_TOKEN_DAYS


def issue_token(user, plan: Optional[str] = None, expires_in: str = "30d", now: Optional[float] = None,
                min_issued_at: Optional[float] = None) -> str:
    """
    Mint a session token for a user.

    The payload carries the business expiry (``expires``) next to the transport
    expiry (``exp``). Both come from the same duration but the server only trusts
    ``expires`` after re-checking the user record.

    Args:
        user: object with id, email and verified attributes
        plan: plan name to embed (defaults to the user's plan)
        expires_in: lifetime string, e.g. "30d"
        now: issuance instant in epoch seconds (defaults to the current time)
        min_issued_at: floor for ``iat``, e.g. a revocation cutoff recorded
            earlier in the same request

    Returns:
        Encoded JWT string
    """
    secret = _require_secret()
    issued_at = time.time() if now is None else now
    if min_issued_at is not None:
        issued_at = max(issued_at, min_issued_at)
    lifetime = parse_duration_days(expires_in) * SECONDS_PER_DAY
    expires = int(issued_at) + lifetime

    payload = {
        "id": str(user.id),
        "email": user.email,
        "plan": plan or user.plan,
        "verified": bool(user.verified),
        "expires": expires,
        # sub-second precision so per-user revocation can order tokens
        "iat": issued_at,
        "exp": expires,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a session token. Returns None if the signature is invalid or expired."""
    secret = _require_secret()
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def issue_desktop_token(user_id: str, email: str, name: Optional[str], subscription: str,
                        expires: Optional[int], now: Optional[float] = None) -> str:
    """Short-lived hand-off token for the desktop app (deep link or token file)."""
    secret = _require_secret()
    issued_at = time.time() if now is None else now
    payload = {
        "userId": user_id,
        "email": email,
        "name": name,
        "subscription": subscription,
        "expires": expires,
        "type": DESKTOP_TOKEN_TYPE,
        "timestamp": int(issued_at * 1000),
        "iat": int(issued_at),
        "exp": int(issued_at) + DESKTOP_TOKEN_SECONDS,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_desktop_token(token: str) -> Dict[str, Any]:
    """
    Decode a desktop hand-off token.

    Raises:
        jwt.ExpiredSignatureError: the hand-off window has passed
        jwt.InvalidTokenError: the token is malformed or signed with another key
    """
    secret = _require_secret()
    return jwt.decode(token, secret, algorithms=[ALGORITHM])
