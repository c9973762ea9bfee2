"""
Subscription Service - re-derives plan status from the user record and
downgrades lapsed subscriptions
"""
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.plans import PLAN_FREE
from crud.user import UserRepository
from services.errors import StoreUnavailableError, UserNotFoundError
from utils.expiry import expiry_instant, is_expired, to_naive_utc
from utils.token_revoker import TokenRevoker

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionStatus:
    user_id: str
    plan: str
    verified: bool
    is_expired: bool
    expires_at: Optional[int]
    downgraded: bool = False
    stale: bool = False  # derived from the token because the store was unreachable
    revoked_at: Optional[float] = None  # revocation cutoff written by this reconcile

    @property
    def is_active(self) -> bool:
        """Paid plan that has not lapsed."""
        return self.plan != PLAN_FREE and self.verified and not self.is_expired

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SubscriptionService:
    """
    Service for reconciling a user's subscription against the plan catalog.

    One code path serves login, profile fetch, the check-subscription endpoint
    and the hourly sweep. Reconciliation is not transactional: concurrent
    requests may both downgrade the same user, and both writes converge on the
    same free state.
    """

    def __init__(self, db: AsyncSession, user_repo: UserRepository, revoker: TokenRevoker,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the subscription service.

        Args:
            db: AsyncSession instance for database operations
            user_repo: UserRepository instance for user operations
            revoker: token revocation store used when a plan lapses
            clock: epoch-seconds clock, injectable for tests
        """
        self.db = db
        self.user_repo = user_repo
        self.revoker = revoker
        self.clock = clock

    async def reconcile(self, user_id: str, token_payload: Optional[dict] = None,
                        now: Optional[float] = None) -> SubscriptionStatus:
        """
        Load the user, downgrade if the plan has lapsed, and return the effective status.

        If the store cannot be read and a decoded token is available, the status
        is rebuilt from the token instead of failing the request.

        Raises:
            UserNotFoundError: the user row does not exist
            StoreUnavailableError: the store failed and no token payload was given
        """
        now = self.clock() if now is None else now

        try:
            user = await self.user_repo.get_user_by_id(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Subscription reconcile: store read failed for user {user_id}: {e}")
            if token_payload is None:
                raise StoreUnavailableError(str(e)) from e
            return self._status_from_token(user_id, token_payload, now)

        if user is None:
            raise UserNotFoundError(user_id)

        lapsed = is_expired(user.plan, user.updated_at, now)
        if not lapsed or user.plan == PLAN_FREE:
            return SubscriptionStatus(
                user_id=user.id,
                plan=user.plan,
                verified=bool(user.verified),
                is_expired=lapsed,
                expires_at=expiry_instant(user.plan, user.updated_at),
            )

        old_plan = user.plan
        try:
            await self.user_repo.set_plan(user, PLAN_FREE, False, now=to_naive_utc(now))
        except SQLAlchemyError as e:
            # Next request retries the downgrade
            await self.db.rollback()
            logger.error(f"Subscription reconcile: downgrade write failed for user {user_id}: {e}")
            return SubscriptionStatus(
                user_id=user_id,
                plan=PLAN_FREE,
                verified=False,
                is_expired=True,
                expires_at=None,
                stale=True,
            )

        cutoff = self.revoker.revoke_all_for_user(user.id)
        logger.info(f"Subscription expired: user {user.id} downgraded {old_plan} -> {PLAN_FREE}")
        return SubscriptionStatus(
            user_id=user.id,
            plan=PLAN_FREE,
            verified=False,
            is_expired=True,
            expires_at=None,
            downgraded=True,
            revoked_at=cutoff,
        )

    def _status_from_token(self, user_id: str, payload: dict, now: float) -> SubscriptionStatus:
        plan = payload.get("plan") or PLAN_FREE
        expires = payload.get("expires")
        lapsed = plan != PLAN_FREE and expires is not None and now > expires
        return SubscriptionStatus(
            user_id=user_id,
            plan=plan,
            verified=bool(payload.get("verified")),
            is_expired=lapsed,
            expires_at=expires if plan != PLAN_FREE else None,
            stale=True,
        )

    async def sweep_expired(self, now: Optional[float] = None) -> int:
        """
        Reconcile every non-free user. Returns the number downgraded.

        Each downgrade is committed on its own so one bad row cannot roll back
        the rest of the sweep.
        """
        now = self.clock() if now is None else now
        user_ids = await self.user_repo.list_paid_user_ids()

        downgraded = 0
        for user_id in user_ids:
            try:
                status = await self.reconcile(user_id, now=now)
                if status.downgraded:
                    await self.db.commit()
                    downgraded += 1
            except UserNotFoundError:
                continue
            except (SQLAlchemyError, StoreUnavailableError) as e:
                await self.db.rollback()
                logger.error(f"Subscription sweep: failed for user {user_id}: {e}")

        logger.info(f"Subscription sweep: checked {len(user_ids)} users, downgraded {downgraded}")
        return downgraded
