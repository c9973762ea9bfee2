"""
Background jobs: hourly subscription sweep and reset-token garbage collection
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from sqlalchemy.ext.asyncio import async_sessionmaker

from crud.password_reset import PasswordResetRepository
from crud.user import UserRepository
from services.subscription_service import SubscriptionService
from utils.token_revoker import TokenRevoker

logger = logging.getLogger(__name__)


class PeriodicJob:
    """
    Runs an async callable every ``interval_seconds`` on its own task.

    A tick that arrives while the previous run is still going is skipped.
    Failures are logged and the loop keeps running.
    """

    def __init__(self, name: str, func: Callable[[], Awaitable], interval_seconds: float,
                 run_immediately: bool = False):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._running = asyncio.Lock()
        self.runs = 0
        self.skipped = 0

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run the job unless a previous run is in flight. Returns False when skipped."""
        if self._running.locked():
            self.skipped += 1
            logger.warning(f"Job {self.name}: previous run still in progress, skipping tick")
            return False
        async with self._running:
            try:
                await self.func()
            except Exception as e:
                logger.error(f"Job {self.name} failed: {e}", exc_info=True)
            finally:
                self.runs += 1
        return True

    def _spawn(self):
        task = asyncio.create_task(self.run_once())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _loop(self):
        if self.run_immediately:
            self._spawn()
        while True:
            await asyncio.sleep(self.interval_seconds)
            # Fire without awaiting so a slow run cannot delay the schedule
            self._spawn()

    def start(self):
        if self.is_started:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Job {self.name} started (every {self.interval_seconds}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        for task in list(self._inflight):
            task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Job {self.name} stopped")


def build_subscription_sweep(session_factory: async_sessionmaker, revoker: TokenRevoker):
    async def sweep():
        async with session_factory() as session:
            service = SubscriptionService(session, UserRepository(session), revoker)
            await service.sweep_expired()
    return sweep


def build_reset_token_gc(session_factory: async_sessionmaker, revoker: TokenRevoker):
    async def collect():
        async with session_factory() as session:
            removed = await PasswordResetRepository(session).delete_expired()
            await session.commit()
        purged = revoker.purge_expired()
        logger.info(f"Reset token GC: removed {removed} reset tokens, {purged} revocation entries")
    return collect


class JobScheduler:
    """Owns the periodic jobs started with the application."""

    def __init__(self):
        self.jobs: List[PeriodicJob] = []

    def add(self, job: PeriodicJob) -> PeriodicJob:
        self.jobs.append(job)
        return job

    def start(self):
        for job in self.jobs:
            job.start()

    async def stop(self):
        for job in self.jobs:
            await job.stop()
