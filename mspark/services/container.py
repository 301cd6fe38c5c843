from dataclasses import dataclass

from loguru import logger

from mspark.services.auction.auction_service import AuctionService
from mspark.services.auction.bid_service import BidService
from mspark.services.auction.locks import KeyedLock
from mspark.services.auction.scheduler import AuctionScheduler
from mspark.services.communication.mail_service import MailService
from mspark.services.communication.notification_service import NotificationService
from mspark.services.finance.exchange_rate_service import ExchangeRateService
from mspark.services.finance.settlement_service import SettlementService
from mspark.services.payment.coingate import CoinGateClient


@dataclass
class Services:
    locks: KeyedLock
    gateway: CoinGateClient
    notifications: NotificationService
    rates: ExchangeRateService
    scheduler: AuctionScheduler
    settlement: SettlementService
    auctions: AuctionService
    bids: BidService

    async def shutdown(self):
        await self.scheduler.shutdown()
        await self.notifications.drain()
        await self.gateway.close()
        logger.info("Services stopped")


def build_services(
    gateway: CoinGateClient = None,
    mail: MailService = None,
    scheduler: AuctionScheduler = None,
) -> Services:
    """Wire the service graph once per process (or per test)"""
    # an idle scheduler is falsy (no jobs), so compare against None
    if gateway is None:
        gateway = CoinGateClient()
    if mail is None:
        mail = MailService()
    if scheduler is None:
        scheduler = AuctionScheduler()
    locks = KeyedLock()
    notifications = NotificationService(mail)
    rates = ExchangeRateService(gateway)
    settlement = SettlementService(gateway, rates, notifications, locks)
    auctions = AuctionService(locks, scheduler, settlement)
    bids = BidService(locks, notifications, scheduler)
    return Services(
        locks=locks,
        gateway=gateway,
        notifications=notifications,
        rates=rates,
        scheduler=scheduler,
        settlement=settlement,
        auctions=auctions,
        bids=bids,
    )
