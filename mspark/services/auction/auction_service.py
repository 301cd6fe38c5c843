from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from mspark.core.clock import as_utc, utcnow
from mspark.core.exceptions import (
    AlreadyCompletedError,
    AuctionNotDueError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from mspark.enums.auction_status import AuctionStatus
from mspark.enums.gem_status import GemStatus
from mspark.models import Auction, Bid, Gem, User
from mspark.services.auction.locks import KeyedLock
from mspark.services.auction.scheduler import AuctionScheduler
from mspark.services.finance.settlement_service import SettlementOutcome, SettlementService


class AuctionService:
    """
    Auction lifecycle: active -> completed | cancelled, cancelled -> active.

    Every transition runs under the auction lock, inside a transaction, and
    ends in a status/version guarded update. Timers are (re)armed only after
    the transaction has committed.
    """

    def __init__(self, locks: KeyedLock, scheduler: AuctionScheduler, settlement: SettlementService):
        self._locks = locks
        self._scheduler = scheduler
        self._settlement = settlement
        scheduler.bind(self.complete_expired)

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    async def get_auction(auction_id: UUID) -> Auction:
        auction = await Auction.get_or_none(id=auction_id, is_deleted=False).prefetch_related(
            "gem", "merchant", "highest_bidder"
        )
        if not auction:
            raise NotFoundError("Auction not found")
        return auction

    @staticmethod
    async def get_bids(auction_id: UUID) -> List[Bid]:
        return await Bid.filter(auction_id=auction_id, is_deleted=False).order_by("-amount", "-created_at")

    # =========================================================================
    # Transitions
    # =========================================================================

    async def create_auction(
        self,
        merchant: User,
        gem_id: UUID,
        price_start: Decimal,
        end_time: datetime,
        start_time: Optional[datetime] = None,
    ) -> Auction:
        price_start = Decimal(price_start).quantize(Decimal("0.01"))
        if price_start <= 0:
            raise BadRequestError("Starting price must be positive")

        now = utcnow()
        end_time = as_utc(end_time)
        start_time = as_utc(start_time) if start_time else now
        if end_time <= now:
            raise BadRequestError("End time must be in the future")
        if end_time <= start_time:
            raise BadRequestError("End time must be after start time")

        async with self._locks.hold(("gem", gem_id)):
            async with in_transaction():
                gem = await Gem.get_or_none(id=gem_id, is_deleted=False)
                if not gem:
                    raise NotFoundError("Gem not found")
                if gem.merchant_id != merchant.id:
                    raise ForbiddenError("You can only auction your own gems")
                if gem.status == GemStatus.sold:
                    raise ConflictError("Gem is already sold")
                if await self._gem_in_active_auction(gem.id):
                    raise ConflictError("Gem is already in an active auction")

                auction = await Auction.create(
                    gem_id=gem.id,
                    merchant_id=merchant.id,
                    price_start=price_start,
                    current_price=price_start,
                    start_time=start_time,
                    end_time=end_time,
                    status=AuctionStatus.active,
                )

        self._scheduler.schedule(auction.id, auction.end_time)
        logger.info(f"Auction {auction.id} created for gem {gem_id}, ends at {end_time}")
        return auction

    async def cancel_auction(self, auction_id: UUID, actor: User) -> Auction:
        async with self._locks.hold(("auction", auction_id)):
            async with in_transaction():
                auction = await self._load_for_update(auction_id)
                self._authorize(auction, actor)
                if auction.status not in (AuctionStatus.pending, AuctionStatus.active):
                    raise InvalidTransitionError(f"Cannot cancel a {auction.status.value} auction")
                await self._guarded_update(auction, status=AuctionStatus.cancelled)

        self._scheduler.cancel(auction.id)
        logger.info(f"Auction {auction.id} cancelled by {actor.id}")
        return auction

    async def reactivate_auction(
        self, auction_id: UUID, actor: User, end_time: Optional[datetime] = None
    ) -> Auction:
        new_end_time = as_utc(end_time) if end_time else None
        if new_end_time and new_end_time <= utcnow():
            raise BadRequestError("End time must be in the future")

        current = await Auction.get_or_none(id=auction_id, is_deleted=False)
        if not current:
            raise NotFoundError("Auction not found")

        async with self._locks.hold(("auction", auction_id)), self._locks.hold(("gem", current.gem_id)):
            async with in_transaction():
                auction = await self._load_for_update(auction_id)
                self._authorize(auction, actor)
                if auction.status != AuctionStatus.cancelled:
                    raise InvalidTransitionError("Only cancelled auctions can be reactivated")

                effective_end = new_end_time or as_utc(auction.end_time)
                if effective_end <= utcnow():
                    raise BadRequestError("Auction end time has passed, provide a new end time")

                gem = await Gem.get(id=auction.gem_id)
                if gem.status == GemStatus.sold:
                    raise ConflictError("Gem is already sold")
                if await self._gem_in_active_auction(gem.id, exclude=auction.id):
                    raise ConflictError("Gem is already in an active auction")

                await self._guarded_update(auction, status=AuctionStatus.active, end_time=effective_end)

        self._scheduler.schedule(auction.id, auction.end_time)
        logger.info(f"Auction {auction.id} reactivated by {actor.id}, ends at {auction.end_time}")
        return auction

    async def extend_auction(self, auction_id: UUID, actor: User, end_time: datetime) -> Auction:
        end_time = as_utc(end_time)
        if end_time <= utcnow():
            raise BadRequestError("End time must be in the future")

        async with self._locks.hold(("auction", auction_id)):
            async with in_transaction():
                auction = await self._load_for_update(auction_id)
                self._authorize(auction, actor)
                if auction.status != AuctionStatus.active:
                    raise InvalidTransitionError("Only active auctions can be extended")
                await self._guarded_update(auction, end_time=end_time)

        self._scheduler.schedule(auction.id, end_time)
        logger.info(f"Auction {auction.id} extended to {end_time}")
        return auction

    async def delete_auction(self, auction_id: UUID, actor: User) -> None:
        async with self._locks.hold(("auction", auction_id)):
            async with in_transaction():
                auction = await self._load_for_update(auction_id)
                self._authorize(auction, actor)
                await Auction.filter(id=auction.id).update(
                    is_deleted=True,
                    deleted_at=utcnow(),
                    version=auction.version + 1,
                    updated_at=utcnow(),
                )

        self._scheduler.cancel(auction.id)
        logger.info(f"Auction {auction.id} deleted by {actor.id}")

    # =========================================================================
    # Completion
    # =========================================================================

    async def complete_auction(self, auction_id: UUID, actor: User) -> Auction:
        """Manual completion by the owning merchant or an admin"""
        outcome = await self._complete(auction_id, actor=actor)
        self._scheduler.cancel(auction_id)
        return outcome.auction

    async def complete_expired(self, auction_id: UUID) -> SettlementOutcome:
        """Scheduler entry point; refuses auctions whose end time is still ahead"""
        return await self._complete(auction_id, require_due=True)

    async def _complete(
        self, auction_id: UUID, actor: Optional[User] = None, require_due: bool = False
    ) -> SettlementOutcome:
        async with self._locks.hold(("auction", auction_id)):
            async with in_transaction():
                auction = await self._load_for_update(auction_id)
                if actor:
                    self._authorize(auction, actor)
                if auction.status == AuctionStatus.completed:
                    raise AlreadyCompletedError()
                if auction.status != AuctionStatus.active:
                    raise InvalidTransitionError(f"Cannot complete a {auction.status.value} auction")
                if require_due and utcnow() < as_utc(auction.end_time):
                    raise AuctionNotDueError(as_utc(auction.end_time))

                if not await self._guarded_update(auction, status=AuctionStatus.completed):
                    raise AlreadyCompletedError()
                outcome = await self._settlement.settle_completed_auction(auction)

        logger.info(
            f"Auction {auction.id} completed at {auction.current_price}, "
            f"winner {auction.highest_bidder_id or 'none'}"
        )
        self._settlement.announce_completion(outcome)
        return outcome

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _authorize(auction: Auction, actor: User):
        if actor.is_admin or auction.merchant_id == actor.id:
            return
        raise ForbiddenError("Only the auction owner or an admin can change this auction")

    @staticmethod
    async def _load_for_update(auction_id: UUID) -> Auction:
        auction = await Auction.filter(id=auction_id, is_deleted=False).select_for_update().first()
        if not auction:
            raise NotFoundError("Auction not found")
        return auction

    @staticmethod
    async def _gem_in_active_auction(gem_id: UUID, exclude: Optional[UUID] = None) -> bool:
        query = Auction.filter(gem_id=gem_id, status=AuctionStatus.active, is_deleted=False)
        if exclude:
            query = query.exclude(id=exclude)
        return await query.exists()

    @staticmethod
    async def _guarded_update(auction: Auction, **changes) -> bool:
        """Apply changes only if nobody moved the auction since it was read"""
        changes["version"] = auction.version + 1
        changes["updated_at"] = utcnow()
        updated = await Auction.filter(
            id=auction.id, status=auction.status, version=auction.version, is_deleted=False
        ).update(**changes)
        if not updated:
            if changes.get("status") == AuctionStatus.completed:
                return False
            raise InvalidTransitionError("Auction changed while updating, please retry")

        for name, value in changes.items():
            setattr(auction, name, value)
        return True
