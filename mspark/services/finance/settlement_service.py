from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from mspark.core.clock import utcnow
from mspark.core.config import settings
from mspark.core.exceptions import BadRequestError, ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError
from mspark.enums.auction_status import AuctionStatus
from mspark.enums.gem_status import GemStatus
from mspark.enums.payment_status import FAILED_STATUSES, SETTLED_STATUSES, PaymentStatus
from mspark.enums.payment_type import PaymentType
from mspark.enums.wallet_status import WalletStatus
from mspark.models import Auction, Gem, Mspark, Payment, User, Wallet
from mspark.models.mspark import MsparkType
from mspark.schemas.gateway import GatewayOrder, OrderCallback, OrderRequest, PayoutCallback, PayoutRequest
from mspark.services.auction.locks import KeyedLock
from mspark.services.communication import mail_templates
from mspark.services.communication.notification_service import NotificationService
from mspark.services.finance.exchange_rate_service import ExchangeRateService
from mspark.services.payment.coingate import CoinGateClient

FAILED_STATUS_VALUES = [status.value for status in FAILED_STATUSES]


@dataclass
class SettlementOutcome:
    auction: Auction
    gem: Gem
    merchant: User
    winner: Optional[User] = None
    payment: Optional[Payment] = None


class SettlementService:
    """Everything that happens to money once an auction is over"""

    def __init__(
        self,
        gateway: CoinGateClient,
        rates: ExchangeRateService,
        notifications: NotificationService,
        locks: KeyedLock,
    ):
        self._gateway = gateway
        self._rates = rates
        self._notifications = notifications
        self._locks = locks

    # =========================================================================
    # Auction completion
    # =========================================================================

    async def settle_completed_auction(self, auction: Auction) -> SettlementOutcome:
        """
        Mark the gem sold and open the winner's payment order.

        Must run inside the transaction that moved the auction to completed,
        so a gateway or database failure here rolls the completion back too.
        """
        gem = await Gem.get_or_none(id=auction.gem_id)
        if not gem:
            raise NotFoundError(f"Gem {auction.gem_id} of auction {auction.id} not found")
        await Gem.filter(id=gem.id).update(status=GemStatus.sold)
        gem.status = GemStatus.sold

        merchant = await User.get(id=auction.merchant_id)
        outcome = SettlementOutcome(auction=auction, gem=gem, merchant=merchant)
        if not auction.highest_bidder_id:
            logger.info(f"Auction {auction.id} ended without bids, no payment created")
            return outcome

        outcome.winner = await User.get(id=auction.highest_bidder_id)
        existing = await Payment.filter(
            auction_id=auction.id, payment_type=PaymentType.order
        ).exclude(payment_status__in=FAILED_STATUS_VALUES).first()
        if existing:
            logger.warning(f"Auction {auction.id} already has order payment {existing.id}, reusing it")
            outcome.payment = existing
            return outcome

        order = await self._gateway.create_order(self._order_request(auction, gem, outcome.winner))
        outcome.payment = await Payment.create(
            amount=auction.current_price,
            price_currency=order.price_currency or settings.SETTLEMENT_PRICE_CURRENCY,
            receive_currency=order.receive_currency or settings.SETTLEMENT_RECEIVE_CURRENCY,
            description=self._description(auction, gem),
            payment_type=PaymentType.order,
            payment_status=PaymentStatus.from_gateway(order.status),
            bidder_id=outcome.winner.id,
            auction_id=auction.id,
            gateway_id=order.id,
            payment_link=order.payment_url,
            metadata={
                **self._order_metadata(order),
                "callbacks": [],
                "previous_attempts": [],
            },
        )
        logger.info(f"Order payment {outcome.payment.id} recorded for auction {auction.id}")
        return outcome

    def announce_completion(self, outcome: SettlementOutcome) -> None:
        """Emails for a committed completion"""
        auction, gem = outcome.auction, outcome.gem
        self._notifications.notify(
            mail_templates.auction_complete_for_merchant(auction, gem, outcome.winner),
            outcome.merchant.email,
        )
        if not outcome.winner:
            return
        self._notifications.notify(
            mail_templates.auction_complete_for_bidder(auction, gem),
            outcome.winner.email,
        )
        if outcome.payment and outcome.payment.payment_link:
            self._notifications.notify(
                mail_templates.payment_link_template(auction, gem, outcome.payment),
                outcome.winner.email,
            )

    # =========================================================================
    # Order callbacks and re-creation
    # =========================================================================

    async def handle_order_callback(self, callback: OrderCallback) -> Payment:
        async with self._locks.hold(("payment", callback.id)):
            payment = await Payment.get_or_none(gateway_id=callback.id)
            if not payment:
                raise NotFoundError("Payment record not found")

            if (payment.metadata or {}).get("gateway_token") != callback.token:
                logger.warning(f"Rejected callback for payment {payment.id}: token mismatch")
                raise ForbiddenError("Invalid token")

            status = PaymentStatus.from_gateway(callback.status, default=payment.payment_status)
            metadata = dict(payment.metadata or {})
            metadata["callbacks"] = [
                *metadata.get("callbacks", []),
                {"received_at": utcnow().isoformat(), "status": callback.status},
            ]
            metadata["original_response"] = callback.model_dump(mode="json")
            metadata["is_refundable"] = callback.is_refundable
            metadata["fees"] = callback.fees or []
            if status in SETTLED_STATUSES:
                metadata.update(
                    paid_at=callback.paid_at,
                    pay_amount=callback.pay_amount,
                    pay_currency=callback.pay_currency,
                    receive_amount=callback.receive_amount,
                )

            payment.payment_status = status
            payment.metadata = metadata
            await payment.save()
            logger.info(f"Payment {payment.id} is now {status.value}")

        if status == PaymentStatus.paid or status in FAILED_STATUSES:
            await payment.fetch_related("bidder", "auction__gem")
            template = (
                mail_templates.payment_paid_template(payment, payment.auction.gem)
                if status == PaymentStatus.paid
                else mail_templates.payment_failed_template(payment, payment.auction.gem)
            )
            self._notifications.notify(template, payment.bidder.email if payment.bidder else None)
        return payment

    async def recreate_order(self, auction_id: UUID) -> Payment:
        """Open a fresh gateway order for a failed one, keeping the old attempt in metadata"""
        async with self._locks.hold(("settlement", auction_id)):
            auction = await Auction.get_or_none(id=auction_id, is_deleted=False)
            if not auction:
                raise NotFoundError("Auction not found")
            if auction.status != AuctionStatus.completed:
                raise InvalidTransitionError(f"Auction {auction.id} is yet to be completed")

            payment = await Payment.filter(
                auction_id=auction.id, payment_type=PaymentType.order
            ).order_by("-created_at").first()
            if not payment:
                raise NotFoundError("Payment record not found")
            if payment.payment_status not in FAILED_STATUSES | SETTLED_STATUSES and payment.gateway_id:
                # the expiry callback may never have arrived
                payment = await self._refresh_order_status(payment)
            if not payment.payment_status.is_failed:
                raise ConflictError(
                    f"Payment is {payment.payment_status.value}, only expired, canceled or invalid orders can be recreated"
                )

            gem = await Gem.get(id=auction.gem_id)
            winner = await User.get(id=payment.bidder_id)

            async with in_transaction():
                order = await self._gateway.create_order(self._order_request(auction, gem, winner))
                metadata = dict(payment.metadata or {})
                metadata["previous_attempts"] = [
                    *metadata.get("previous_attempts", []),
                    {
                        "attempt_date": utcnow().isoformat(),
                        "status": payment.payment_status.value,
                        "gateway_id": payment.gateway_id,
                        "payment_link": payment.payment_link,
                    },
                ]
                metadata.update(self._order_metadata(order))

                payment.amount = auction.current_price
                payment.price_currency = order.price_currency or settings.SETTLEMENT_PRICE_CURRENCY
                payment.receive_currency = order.receive_currency or settings.SETTLEMENT_RECEIVE_CURRENCY
                payment.payment_status = PaymentStatus.from_gateway(order.status)
                payment.gateway_id = order.id
                payment.payment_link = order.payment_url
                payment.metadata = metadata
                await payment.save()

        logger.info(f"Order payment {payment.id} recreated as gateway order {order.id}")
        self._notifications.notify(mail_templates.payment_link_template(auction, gem, payment), winner.email)
        return payment

    async def _refresh_order_status(self, payment: Payment) -> Payment:
        """Store the gateway's current order status when it differs from ours"""
        remote = await self._gateway.get_order(payment.gateway_id)
        async with self._locks.hold(("payment", payment.gateway_id)):
            await payment.refresh_from_db()
            status = PaymentStatus.from_gateway(remote.status, default=payment.payment_status)
            if status == payment.payment_status:
                return payment

            metadata = dict(payment.metadata or {})
            metadata["callbacks"] = [
                *metadata.get("callbacks", []),
                {"received_at": utcnow().isoformat(), "status": remote.status, "source": "status_check"},
            ]
            payment.payment_status = status
            payment.metadata = metadata
            await payment.save()
        logger.info(f"Payment {payment.id} is now {status.value} according to the gateway")
        return payment

    # =========================================================================
    # Merchant payout
    # =========================================================================

    async def get_platform_fees(self) -> Mspark:
        mspark, _ = await Mspark.get_or_create(
            type=MsparkType.primary,
            defaults={
                "name": "Mspark",
                "platform_fee": settings.DEFAULT_PLATFORM_FEE,
                "verification_fee": settings.DEFAULT_VERIFICATION_FEE,
            },
        )
        return mspark

    @staticmethod
    def net_payout(gross: Decimal, platform_fee: Decimal, verification_fee: Decimal) -> Decimal:
        net = gross - gross * platform_fee - gross * verification_fee
        return net.quantize(Decimal("0.01"), rounding=ROUND_DOWN)

    async def create_send(self, auction_id: UUID) -> Payment:
        async with self._locks.hold(("settlement", auction_id)):
            auction = await Auction.get_or_none(id=auction_id, is_deleted=False)
            if not auction:
                raise NotFoundError("Auction not found")
            if auction.status != AuctionStatus.completed:
                raise InvalidTransitionError("Only completed auctions can be paid out")

            paid = await Payment.filter(
                auction_id=auction.id, payment_type=PaymentType.order, payment_status=PaymentStatus.paid
            ).exists()
            if not paid:
                raise BadRequestError(f"Auction {auction.id} has not been paid yet")

            existing = await Payment.filter(
                auction_id=auction.id, payment_type=PaymentType.send
            ).exclude(payment_status__in=FAILED_STATUS_VALUES).first()
            if existing:
                raise ConflictError(f"Payout {existing.id} already exists for auction {auction.id}")

            wallet = await Wallet.filter(
                user_id=auction.merchant_id, status=WalletStatus.active, is_deleted=False
            ).first()
            if not wallet:
                raise NotFoundError("Merchant has no active payout wallet")

            fees = await self.get_platform_fees()
            net = self.net_payout(auction.current_price, fees.platform_fee, fees.verification_fee)
            if net <= 0:
                raise BadRequestError("Payout amount after fees is not positive")
            amount = await self._rates.convert(net, settings.SETTLEMENT_PRICE_CURRENCY, wallet.currency_symbol)
            rate = await self._rates.get_rate(settings.SETTLEMENT_PRICE_CURRENCY, wallet.currency_symbol)
            gem = await Gem.get(id=auction.gem_id)

            async with in_transaction():
                payout = await self._gateway.create_payout(
                    PayoutRequest(
                        external_id=str(auction.id),
                        beneficiary_payout_setting_id=wallet.gateway_payout_setting_id,
                        amount=str(amount),
                        currency=wallet.currency_symbol,
                        purpose=f"Payout for {gem.name} (Auction {auction.id})",
                        callback_url=f"{settings.BASE_URL}/send/callback",
                    )
                )
                payment = await Payment.create(
                    amount=amount,
                    price_currency=settings.SETTLEMENT_PRICE_CURRENCY,
                    receive_currency=wallet.currency_symbol,
                    description=f"Payout for {gem.name} (Auction {auction.id})",
                    payment_type=PaymentType.send,
                    payment_status=PaymentStatus.from_gateway(payout.status, default=PaymentStatus.processing),
                    merchant_id=auction.merchant_id,
                    auction_id=auction.id,
                    gateway_id=payout.id,
                    metadata={
                        "gross_amount": str(auction.current_price),
                        "net_amount": str(net),
                        "platform_fee": str(fees.platform_fee),
                        "verification_fee": str(fees.verification_fee),
                        "exchange_rate": str(rate),
                        "wallet_id": str(wallet.id),
                        "original_response": payout.model_dump(mode="json"),
                        "callbacks": [],
                    },
                )

        logger.info(f"Payout {payment.id} of {amount} {wallet.currency_symbol} created for auction {auction.id}")
        merchant = await User.get(id=auction.merchant_id)
        self._notifications.notify(mail_templates.payout_template(payment, gem), merchant.email)
        return payment

    async def handle_payout_callback(self, callback: PayoutCallback) -> Payment:
        async with self._locks.hold(("payment", callback.id)):
            payment = await Payment.get_or_none(gateway_id=callback.id, payment_type=PaymentType.send)
            if not payment:
                raise NotFoundError("Payout record not found")
            if callback.external_id and callback.external_id != str(payment.auction_id):
                logger.warning(f"Rejected payout callback for {payment.id}: external id mismatch")
                raise ForbiddenError("Payout reference does not match")

            status = PaymentStatus.from_gateway(callback.status, default=payment.payment_status)
            metadata = dict(payment.metadata or {})
            metadata["callbacks"] = [
                *metadata.get("callbacks", []),
                {"received_at": utcnow().isoformat(), "status": callback.status},
            ]
            metadata["payout_status"] = callback.status
            payment.payment_status = status
            payment.metadata = metadata
            await payment.save()
            logger.info(f"Payout {payment.id} is now {status.value}")

        if status == PaymentStatus.paid:
            await payment.fetch_related("merchant", "auction__gem")
            self._notifications.notify(
                mail_templates.payout_template(payment, payment.auction.gem),
                payment.merchant.email if payment.merchant else None,
            )
        return payment

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _description(auction: Auction, gem: Gem) -> str:
        return f"Payment for {gem.name} (Auction {auction.id})"

    def _order_request(self, auction: Auction, gem: Gem, winner: User) -> OrderRequest:
        return OrderRequest(
            order_id=str(auction.id),
            price_amount=str(auction.current_price),
            price_currency=settings.SETTLEMENT_PRICE_CURRENCY,
            receive_currency=settings.SETTLEMENT_RECEIVE_CURRENCY,
            title=f"Auction Payment for {gem.name}",
            description=self._description(auction, gem),
            callback_url=f"{settings.BASE_URL}/payments/callback",
            success_url=f"{settings.FRONTEND_URL}/dashboard/payments/success",
            cancel_url=f"{settings.FRONTEND_URL}/dashboard/payments/cancel",
            purchaser_email=winner.email,
        )

    @staticmethod
    def _order_metadata(order: GatewayOrder) -> dict:
        return {
            "gateway_token": order.token,
            "original_order_id": order.order_id,
            "is_refundable": order.is_refundable,
            "original_response": order.model_dump(mode="json"),
        }
