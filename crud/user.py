"""
UserRepository for database operations on User model
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.plans import PLAN_FREE
from database_models import User

# Fields a profile edit may write. Anything touching the plan goes through
# update_user/set_plan so that updated_at stays the plan-mutation instant.
PROFILE_FIELDS = ("jobRole", "company", "experience")


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for the User model.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address.

        Args:
            email: User's email address (case-insensitive search)

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        """
        Retrieve a user by ID.

        Args:
            user_id: User's ID

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_paid_user_ids(self) -> List[str]:
        """IDs of every user whose plan can lapse (anything but free)."""
        result = await self.db.execute(
            select(User.id).where(User.plan != PLAN_FREE)
        )
        return list(result.scalars().all())

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new user in the database.

        Args:
            user_data: Dictionary containing user data. Must include:
                - email: str
                Optional:
                - name, hashed_password, google_id, picture, provider
                - plan (defaults to free), verified (defaults to False)

        Returns:
            Created User object
        """
        now = datetime.utcnow()
        user = User(
            email=user_data["email"].lower(),
            name=user_data.get("name"),
            hashed_password=user_data.get("hashed_password"),
            google_id=user_data.get("google_id"),
            picture=user_data.get("picture"),
            provider=user_data.get("provider", "password"),
            plan=user_data.get("plan", PLAN_FREE),
            verified=user_data.get("verified", False),
            has_used_trial=False,
            payment_history=[],
            profile={},
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(user)  # Refresh to get the generated ID
        return user

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields and return the refreshed row.

        Callers decide whether the write is plan-mutating; this method never
        stamps updated_at on its own.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"verified": True})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def set_plan(self, user: User, plan: str, verified: bool, now: Optional[datetime] = None, **extra) -> User:
        """Plan-mutating write: changes plan/verified and stamps updated_at."""
        updates = {
            "plan": plan,
            "verified": verified,
            "updated_at": now or datetime.utcnow(),
        }
        updates.update(extra)
        return await self.update_user(user, updates)

    async def link_google_account(self, user: User, google_id: str, picture: Optional[str]) -> User:
        """Attach a Google identity to an existing account."""
        updates = {
            "google_id": google_id,
            "picture": picture or user.picture,
            "provider": user.provider or "google",
        }
        return await self.update_user(user, updates)

    async def update_profile(self, user: User, profile_data: dict, resume_url: Optional[str] = None) -> User:
        """
        Merge profile fields into the user's profile.

        Only profile_updated_at is stamped: a profile edit must never move
        updated_at, which would silently extend a subscription.
        """
        now = datetime.utcnow()
        profile = dict(user.profile or {})
        for key in PROFILE_FIELDS:
            if profile_data.get(key) is not None:
                profile[key] = profile_data[key]
        profile["updatedAt"] = now.isoformat()

        updates = {"profile": profile, "profile_updated_at": now}
        if resume_url:
            updates["resume_url"] = resume_url
        return await self.update_user(user, updates)

    async def set_password(self, user: User, hashed_password: str) -> User:
        """Replace the password hash; does not touch updated_at."""
        return await self.update_user(
            user,
            {"hashed_password": hashed_password, "password_changed_at": datetime.utcnow()},
        )
