import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from loguru import logger

from mspark.core.clock import as_utc, utcnow
from mspark.core.config import settings
from mspark.core.exceptions import (
    AlreadyCompletedError,
    AuctionNotDueError,
    InvalidTransitionError,
    NotFoundError,
)
from mspark.enums.auction_status import AuctionStatus
from mspark.models import Auction

CompletionHandler = Callable[[UUID], Awaitable[Any]]


@dataclass
class ScheduledCompletion:
    auction_id: UUID
    fire_at: datetime
    attempts: int = 0
    in_flight: bool = False
    deferred_fire_at: Optional[datetime] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)


@dataclass
class CompletionFailure:
    auction_id: UUID
    attempts: int
    error: str
    failed_at: datetime


class AuctionScheduler:
    """
    Process-local completion timers, one asyncio task per active auction.

    The scheduler does not know how to complete an auction; AuctionService
    binds its completion entry point with ``bind`` once both exist. Each job
    makes at most ``max_attempts`` attempts with a linear backoff, after which
    the failure is logged and kept in ``failures`` for an operator.
    """

    def __init__(
        self,
        max_attempts: int = None,
        backoff_seconds: float = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.max_attempts = max_attempts or settings.AUCTION_COMPLETION_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.AUCTION_COMPLETION_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.failures: Dict[UUID, CompletionFailure] = {}
        self._clock = clock
        self._handler: Optional[CompletionHandler] = None
        self._jobs: Dict[UUID, ScheduledCompletion] = {}

    def bind(self, handler: CompletionHandler):
        self._handler = handler

    # =========================================================================
    # Job table
    # =========================================================================

    def schedule(self, auction_id: UUID, fire_at: datetime) -> ScheduledCompletion:
        if self._handler is None:
            raise RuntimeError("Scheduler has no completion handler bound")
        fire_at = as_utc(fire_at)

        job = self._jobs.get(auction_id)
        if job and job.in_flight:
            # armed once the running attempt finishes without completing
            job.deferred_fire_at = fire_at
            logger.info(f"Completion of auction {auction_id} in flight, deferring reschedule to {fire_at}")
            return job
        return self._arm(auction_id, fire_at)

    def expedite(self, auction_id: UUID) -> Optional[ScheduledCompletion]:
        """
        Complete an auction now, without spending more than its remaining attempts.

        An auction whose attempts are exhausted stays in ``failures`` until
        ``reschedule_by_id``; a running attempt is left alone; a waiting job
        keeps its attempt count and only fires earlier.
        """
        if self._handler is None:
            raise RuntimeError("Scheduler has no completion handler bound")
        if auction_id in self.failures:
            logger.info(f"Auction {auction_id} exhausted its completion attempts, not expediting")
            return None

        now = self._clock()
        job = self._jobs.get(auction_id)
        if job and (job.in_flight or job.fire_at <= now):
            return job
        return self._arm(auction_id, now, attempts=job.attempts if job else 0)

    def _arm(self, auction_id: UUID, fire_at: datetime, attempts: int = 0) -> ScheduledCompletion:
        previous = self._jobs.get(auction_id)
        if previous:
            previous.task.cancel()

        job = ScheduledCompletion(auction_id=auction_id, fire_at=fire_at, attempts=attempts)
        self._jobs[auction_id] = job
        job.task = asyncio.create_task(self._run(job), name=f"complete-auction-{auction_id}")
        logger.debug(f"Auction {auction_id} completion scheduled at {fire_at} (attempts so far: {attempts})")
        return job

    def cancel(self, auction_id: UUID) -> bool:
        """Drop a waiting job. An attempt already running is left to finish."""
        job = self._jobs.get(auction_id)
        if not job:
            return False
        if job.in_flight:
            job.deferred_fire_at = None
            return False
        job.task.cancel()
        del self._jobs[auction_id]
        logger.debug(f"Auction {auction_id} completion timer cancelled")
        return True

    def get(self, auction_id: UUID) -> Optional[ScheduledCompletion]:
        return self._jobs.get(auction_id)

    def jobs(self) -> List[ScheduledCompletion]:
        return sorted(self._jobs.values(), key=lambda job: job.fire_at)

    def __len__(self) -> int:
        return len(self._jobs)

    # =========================================================================
    # Operator API
    # =========================================================================

    async def reschedule_by_id(self, auction_id: UUID) -> Optional[ScheduledCompletion]:
        auction = await Auction.get_or_none(id=auction_id, is_deleted=False)
        if not auction:
            raise NotFoundError("Auction not found")
        if auction.status != AuctionStatus.active:
            self.cancel(auction_id)
            return None
        self.failures.pop(auction_id, None)
        return self.schedule(auction.id, auction.end_time)

    async def cancel_by_id(self, auction_id: UUID) -> bool:
        return self.cancel(auction_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> Dict[str, int]:
        """Arm timers for every active auction and complete the overdue ones."""
        now = self._clock()
        rows = await Auction.filter(status=AuctionStatus.active, is_deleted=False).values_list("id", "end_time")

        overdue, upcoming = [], 0
        for auction_id, end_time in rows:
            if as_utc(end_time) <= now:
                overdue.append(self.schedule(auction_id, now))
            else:
                self.schedule(auction_id, end_time)
                upcoming += 1

        logger.info(f"Scheduler started: {len(overdue)} overdue, {upcoming} scheduled")
        if overdue:
            await asyncio.gather(*(job.task for job in overdue), return_exceptions=True)
        return {"overdue": len(overdue), "scheduled": upcoming}

    async def shutdown(self):
        tasks = [job.task for job in self._jobs.values() if job.task]
        self._jobs.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Scheduler stopped, {len(tasks)} timers cancelled")

    # =========================================================================
    # Job execution
    # =========================================================================

    async def _sleep_until(self, fire_at: datetime):
        while True:
            remaining = (fire_at - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def _run(self, job: ScheduledCompletion):
        try:
            next_fire = job.fire_at
            while next_fire is not None:
                await self._sleep_until(next_fire)
                next_fire = await self._attempt(job)
        except asyncio.CancelledError:
            logger.debug(f"Completion job for auction {job.auction_id} cancelled")
            raise
        finally:
            if self._jobs.get(job.auction_id) is job:
                del self._jobs[job.auction_id]

    async def _attempt(self, job: ScheduledCompletion) -> Optional[datetime]:
        """Run one completion attempt; returns when to try again, or None when done"""
        job.in_flight = True
        job.attempts += 1
        try:
            await self._handler(job.auction_id)
        except AuctionNotDueError as e:
            logger.info(f"Auction {job.auction_id} is not due until {e.end_time}, re-arming")
            return self._rearm(job, job.deferred_fire_at or as_utc(e.end_time))
        except (AlreadyCompletedError, NotFoundError) as e:
            logger.info(f"Auction {job.auction_id} needs no completion: {e.message}")
            return None
        except InvalidTransitionError as e:
            logger.info(f"Auction {job.auction_id} cannot be completed: {e.message}")
            return self._rearm(job, job.deferred_fire_at) if job.deferred_fire_at else None
        except Exception as e:
            if job.deferred_fire_at:
                return self._rearm(job, job.deferred_fire_at)
            if job.attempts >= self.max_attempts:
                logger.error(
                    f"Giving up on auction {job.auction_id} after {job.attempts} attempts: {e!r}. "
                    f"Manual intervention required"
                )
                self.failures[job.auction_id] = CompletionFailure(
                    auction_id=job.auction_id,
                    attempts=job.attempts,
                    error=repr(e),
                    failed_at=self._clock(),
                )
                return None
            delay = self.backoff_seconds * job.attempts
            logger.warning(
                f"Completion attempt {job.attempts}/{self.max_attempts} for auction {job.auction_id} "
                f"failed: {e!r}; retrying in {delay}s"
            )
            job.fire_at = self._clock() + timedelta(seconds=delay)
            return job.fire_at
        else:
            logger.info(f"Auction {job.auction_id} completed on attempt {job.attempts}")
            self.failures.pop(job.auction_id, None)
            return None
        finally:
            job.in_flight = False

    @staticmethod
    def _rearm(job: ScheduledCompletion, fire_at: datetime) -> datetime:
        job.fire_at = fire_at
        job.deferred_fire_at = None
        job.attempts = 0
        return fire_at
