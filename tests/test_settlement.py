import pytest
from decimal import Decimal

from mspark.core.cache import get_cache
from mspark.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from mspark.enums.payment_status import PaymentStatus
from mspark.enums.payment_type import PaymentType
from mspark.models import Mspark, Payment
from mspark.models.mspark import MsparkType
from mspark.schemas.gateway import OrderCallback, PayoutCallback
from mspark.services.finance.settlement_service import SettlementService


@pytest.fixture
async def won_auction(services, auction, admin, bidder_a):
    """Auction won by bidder_a at 200"""
    await services.bids.place_bid(auction.id, bidder_a, Decimal("200"))
    await services.auctions.complete_auction(auction.id, admin)
    await services.notifications.drain()
    return auction


@pytest.fixture
async def order_payment(won_auction) -> Payment:
    return await Payment.get(auction_id=won_auction.id, payment_type=PaymentType.order)


def order_callback(payment: Payment, status: str, token: str = None, **extra) -> OrderCallback:
    return OrderCallback(
        id=payment.gateway_id,
        status=status,
        token=token or payment.metadata["gateway_token"],
        order_id=str(payment.auction_id),
        **extra,
    )


@pytest.mark.asyncio
async def test_paid_callback(services, order_payment, bidder_a, mail):
    """Test a paid callback updates status and keeps the payment details"""
    callback = order_callback(
        order_payment,
        "paid",
        paid_at="2026-10-19T10:00:00+00:00",
        pay_amount="0.0031",
        pay_currency="BTC",
        receive_amount="0.0030",
        fees=[{"type": "processing_fee", "amount": "0.0001"}],
    )

    payment = await services.settlement.handle_order_callback(callback)
    await services.notifications.drain()

    await payment.refresh_from_db()
    assert payment.payment_status == PaymentStatus.paid
    assert payment.metadata["paid_at"] == "2026-10-19T10:00:00+00:00"
    assert payment.metadata["pay_currency"] == "BTC"
    assert payment.metadata["gateway_token"] == order_payment.metadata["gateway_token"]
    assert [c["status"] for c in payment.metadata["callbacks"]] == ["paid"]
    assert any("Payment received" in s for s in mail.subjects_for(bidder_a.email))


@pytest.mark.asyncio
async def test_callback_with_wrong_token(services, order_payment):
    """Test a forged callback is rejected and the payment is left alone"""
    with pytest.raises(ForbiddenError):
        await services.settlement.handle_order_callback(order_callback(order_payment, "paid", token="forged"))

    stored = await Payment.get(id=order_payment.id)
    assert stored.payment_status == PaymentStatus.new
    assert stored.metadata == order_payment.metadata


@pytest.mark.asyncio
async def test_callback_for_unknown_order(services):
    with pytest.raises(NotFoundError):
        await services.settlement.handle_order_callback(OrderCallback(id="999999", status="paid", token="x"))


@pytest.mark.asyncio
async def test_expired_callback_notifies_bidder(services, order_payment, bidder_a, mail):
    await services.settlement.handle_order_callback(order_callback(order_payment, "expired"))
    await services.notifications.drain()

    stored = await Payment.get(id=order_payment.id)
    assert stored.payment_status == PaymentStatus.expired
    assert "paid_at" not in stored.metadata
    assert any("expired" in s for s in mail.subjects_for(bidder_a.email))


@pytest.mark.asyncio
async def test_recreate_paid_order_refused(services, won_auction, order_payment, coingate):
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))

    with pytest.raises(ConflictError):
        await services.settlement.recreate_order(won_auction.id)
    assert coingate.count("POST", "/orders") == 1


@pytest.mark.asyncio
async def test_recreate_open_order_refused(services, won_auction):
    with pytest.raises(ConflictError):
        await services.settlement.recreate_order(won_auction.id)


@pytest.mark.asyncio
async def test_recreate_expired_order(services, won_auction, order_payment, bidder_a, mail):
    """Test re-creation updates the same payment and archives the old attempt"""
    await services.settlement.handle_order_callback(order_callback(order_payment, "expired"))
    await services.notifications.drain()
    mail.sent.clear()

    payment = await services.settlement.recreate_order(won_auction.id)
    await services.notifications.drain()

    assert payment.id == order_payment.id
    assert payment.gateway_id != order_payment.gateway_id
    assert payment.payment_status == PaymentStatus.new
    assert await Payment.filter(auction_id=won_auction.id, payment_type=PaymentType.order).count() == 1

    stored = await Payment.get(id=payment.id)
    [previous] = stored.metadata["previous_attempts"]
    assert previous["gateway_id"] == order_payment.gateway_id
    assert previous["payment_link"] == order_payment.payment_link
    assert previous["status"] == "expired"
    assert stored.metadata["gateway_token"] == f"token-{payment.gateway_id}"

    [subject] = mail.subjects_for(bidder_a.email)
    assert "payment" in subject.lower()


@pytest.mark.asyncio
async def test_recreate_order_expired_without_callback(services, won_auction, order_payment, coingate):
    """Test the gateway is asked for the order status when no callback arrived"""
    coingate.orders[order_payment.gateway_id]["status"] = "expired"

    payment = await services.settlement.recreate_order(won_auction.id)

    assert payment.gateway_id != order_payment.gateway_id
    assert payment.metadata["previous_attempts"][0]["status"] == "expired"
    assert [c["status"] for c in payment.metadata["callbacks"]] == ["expired"]
    assert coingate.count("GET", f"/orders/{order_payment.gateway_id}") == 1


@pytest.mark.asyncio
async def test_recreate_order_paid_without_callback(services, won_auction, order_payment, wallet, coingate):
    """Test a paid status found at the gateway is stored even though re-creation is refused"""
    coingate.orders[order_payment.gateway_id]["status"] = "paid"

    with pytest.raises(ConflictError):
        await services.settlement.recreate_order(won_auction.id)

    stored = await Payment.get(id=order_payment.id)
    assert stored.payment_status == PaymentStatus.paid
    assert stored.gateway_id == order_payment.gateway_id
    [entry] = stored.metadata["callbacks"]
    assert entry["status"] == "paid"
    assert entry["source"] == "status_check"
    assert coingate.count("POST", "/orders") == 1

    payout = await services.settlement.create_send(won_auction.id)
    assert payout.payment_type == PaymentType.send


@pytest.mark.asyncio
async def test_recreate_for_active_auction(services, auction):
    with pytest.raises(InvalidTransitionError):
        await services.settlement.recreate_order(auction.id)


@pytest.mark.asyncio
async def test_send_requires_paid_order(services, won_auction, wallet):
    with pytest.raises(BadRequestError):
        await services.settlement.create_send(won_auction.id)


@pytest.mark.asyncio
async def test_send_for_active_auction(services, auction, wallet):
    with pytest.raises(InvalidTransitionError):
        await services.settlement.create_send(auction.id)


@pytest.mark.asyncio
async def test_create_send(services, won_auction, order_payment, wallet, merchant, coingate, mail):
    """Test the payout deducts both fees and converts into the wallet currency"""
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))

    payout = await services.settlement.create_send(won_auction.id)
    await services.notifications.drain()

    # 200 - 5% - 2% = 186.00 USD, at 0.5 USDT per USD
    assert payout.amount == Decimal("93.00000000")
    assert payout.payment_type == PaymentType.send
    assert payout.payment_status == PaymentStatus.pending
    assert payout.merchant_id == merchant.id
    assert payout.receive_currency == "USDT"
    assert payout.metadata["net_amount"] == "186.00"
    assert payout.metadata["exchange_rate"] == "0.5"
    assert coingate.count("GET", "/rates/merchant/USD/USDT") == 1

    request = coingate.payouts[payout.gateway_id]
    assert request["external_id"] == str(won_auction.id)
    assert request["amount"] == "93.00000000"
    assert request["currency"] == "USDT"
    assert any("Payout" in s for s in mail.subjects_for(merchant.email))


@pytest.mark.asyncio
async def test_duplicate_send_refused(services, won_auction, order_payment, wallet, coingate):
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))
    await services.settlement.create_send(won_auction.id)

    with pytest.raises(ConflictError):
        await services.settlement.create_send(won_auction.id)
    assert coingate.count("POST", "/payouts") == 1


@pytest.mark.asyncio
async def test_send_after_failed_payout(services, won_auction, order_payment, wallet):
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))
    first = await services.settlement.create_send(won_auction.id)
    await services.settlement.handle_payout_callback(
        PayoutCallback(id=first.gateway_id, status="rejected", external_id=str(won_auction.id))
    )

    second = await services.settlement.create_send(won_auction.id)
    assert second.id != first.id


@pytest.mark.asyncio
async def test_send_without_wallet(services, won_auction, order_payment):
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))
    with pytest.raises(NotFoundError):
        await services.settlement.create_send(won_auction.id)


@pytest.mark.asyncio
async def test_send_uses_platform_fees(services, won_auction, order_payment, wallet):
    await Mspark.create(
        name="Mspark",
        type=MsparkType.primary,
        platform_fee=Decimal("0.10"),
        verification_fee=Decimal("0.05"),
    )
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))

    payout = await services.settlement.create_send(won_auction.id)

    # 200 - 10% - 5% = 170.00 USD
    assert payout.amount == Decimal("85.00000000")


@pytest.mark.asyncio
async def test_payout_callback(services, won_auction, order_payment, wallet, merchant, mail):
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))
    payout = await services.settlement.create_send(won_auction.id)
    await services.notifications.drain()
    mail.sent.clear()

    updated = await services.settlement.handle_payout_callback(
        PayoutCallback(id=payout.gateway_id, status="completed", external_id=str(won_auction.id))
    )
    await services.notifications.drain()

    assert updated.payment_status == PaymentStatus.paid
    assert updated.metadata["payout_status"] == "completed"
    assert len(mail.subjects_for(merchant.email)) == 1


@pytest.mark.asyncio
async def test_payout_callback_with_foreign_reference(services, won_auction, order_payment, wallet):
    await services.settlement.handle_order_callback(order_callback(order_payment, "paid"))
    payout = await services.settlement.create_send(won_auction.id)

    with pytest.raises(ForbiddenError):
        await services.settlement.handle_payout_callback(
            PayoutCallback(id=payout.gateway_id, status="completed", external_id="another-auction")
        )
    assert (await Payment.get(id=payout.id)).payment_status == PaymentStatus.pending


@pytest.mark.asyncio
async def test_exchange_rate_is_cached(services, coingate):
    """Test a rate is fetched once and then served from the cache"""
    first = await services.rates.get_rate("USD", "USDT")
    coingate.rate = "0.9"
    second = await services.rates.get_rate("usd", "usdt")

    assert first == second == Decimal("0.5")
    assert coingate.count("GET", "/rates/merchant/USD/USDT") == 1
    assert await get_cache().get("rate:USD:USDT") == "0.5"


@pytest.mark.asyncio
async def test_same_currency_rate(services, coingate):
    assert await services.rates.get_rate("USD", "USD") == Decimal("1")
    assert await services.rates.convert(Decimal("12.5"), "USD", "USD") == Decimal("12.50000000")
    assert coingate.calls == []


def test_net_payout_rounds_down():
    assert SettlementService.net_payout(Decimal("99.99"), Decimal("0.05"), Decimal("0.02")) == Decimal("92.99")
