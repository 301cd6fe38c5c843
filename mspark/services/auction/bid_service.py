from decimal import Decimal
from typing import Tuple
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from mspark.core.clock import as_utc, utcnow
from mspark.core.exceptions import (
    AuctionEndedError,
    BadRequestError,
    BidTooLowError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from mspark.enums.auction_status import AuctionStatus
from mspark.models import Auction, Bid, Gem, User
from mspark.services.auction.locks import KeyedLock
from mspark.services.auction.scheduler import AuctionScheduler
from mspark.services.communication import mail_templates
from mspark.services.communication.notification_service import NotificationService


class _StaleAuction(Exception):
    """The guarded auction update matched no row"""


class BidService:
    def __init__(
        self,
        locks: KeyedLock,
        notifications: NotificationService,
        scheduler: AuctionScheduler,
        max_attempts: int = 3,
    ):
        self._locks = locks
        self._notifications = notifications
        self._scheduler = scheduler
        self.max_attempts = max_attempts

    async def place_bid(self, auction_id: UUID, bidder: User, amount: Decimal) -> Tuple[Bid, Auction]:
        """
        Accept a bid and make its bidder the highest one.

        Bids on one auction are serialized by the auction lock in this process
        and by the version-guarded update across processes. A writer that lost
        the guard re-reads the auction and then fails on the new price.
        """
        amount = Decimal(amount).quantize(Decimal("0.01"))
        if amount <= 0:
            raise BadRequestError("Bid amount must be positive")

        async with self._locks.hold(("auction", auction_id)):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    async with in_transaction():
                        auction = await self.validate_bid(auction_id, bidder, amount)
                        previous_bidder_id = auction.highest_bidder_id
                        bid = await self.apply_bid(auction, bidder, amount)
                    break
                except _StaleAuction:
                    logger.warning(f"Auction {auction_id} changed under bid attempt {attempt}, retrying")
                except AuctionEndedError:
                    self._scheduler.expedite(auction_id)
                    raise
            else:
                raise ConflictError("Auction is busy, please place the bid again")

        logger.info(f"Bid {bid.id} of {amount} by {bidder.id} accepted on auction {auction.id}")
        if previous_bidder_id and previous_bidder_id != bidder.id:
            await self._notify_outbid(auction, previous_bidder_id, amount)
        return bid, auction

    @staticmethod
    async def validate_bid(auction_id: UUID, bidder: User, amount: Decimal) -> Auction:
        auction = await Auction.filter(id=auction_id, is_deleted=False).select_for_update().first()
        if not auction:
            raise NotFoundError("Auction not found")
        if auction.status != AuctionStatus.active:
            raise BadRequestError(f"Auction is {auction.status.value}, bids are not accepted")
        if utcnow() > as_utc(auction.end_time):
            raise AuctionEndedError()
        if auction.merchant_id == bidder.id:
            raise ForbiddenError("You cannot bid on your own auction")
        if amount <= auction.current_price:
            raise BidTooLowError(auction.current_price)
        return auction

    @staticmethod
    async def apply_bid(auction: Auction, bidder: User, amount: Decimal) -> Bid:
        bid = await Bid.create(bidder_id=bidder.id, auction_id=auction.id, amount=amount)
        updated = await Auction.filter(
            id=auction.id, status=AuctionStatus.active, version=auction.version
        ).update(
            current_price=amount,
            highest_bidder_id=bidder.id,
            version=auction.version + 1,
            updated_at=utcnow(),
        )
        if not updated:
            raise _StaleAuction()

        auction.current_price = amount
        auction.highest_bidder_id = bidder.id
        auction.version += 1
        return bid

    async def _notify_outbid(self, auction: Auction, previous_bidder_id: UUID, amount: Decimal):
        previous = await User.get_or_none(id=previous_bidder_id)
        gem = await Gem.get_or_none(id=auction.gem_id)
        if not previous or not gem:
            return
        self._notifications.notify(mail_templates.outbid_template(auction, gem, amount), previous.email)
