import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("COINGATE_API_KEY", "test-coingate-key")
os.environ.setdefault("SCHEDULER_AUTOSTART", "false")

import asyncio
import json
import pytest
import httpx
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from tortoise import Tortoise

from mspark.core.cache import get_cache, init_cache
from mspark.core.clock import utcnow
from mspark.core.database import TORTOISE_MODULES
from mspark.enums.gem_status import GemStatus
from mspark.enums.wallet_status import WalletStatus
from mspark.models import Auction, Gem, User, Wallet
from mspark.models.user import UserRole
from mspark.services.auction.scheduler import AuctionScheduler
from mspark.services.communication.mail_service import MailService, MailTemplate
from mspark.services.container import Services, build_services
from mspark.services.payment.coingate import CoinGateClient


class FakeCoinGate:
    """In-process stand-in for the CoinGate v2 API"""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.orders: dict[str, dict] = {}
        self.payouts: dict[str, dict] = {}
        self.order_status = "new"
        self.payout_status = "pending"
        self.rate = "0.5"
        self.fail_orders = 0
        self.fail_payouts = 0
        self._next_id = 1000

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, path in self.calls if m == method and path.endswith(suffix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if request.method == "POST" and path.endswith("/orders"):
            if self.fail_orders:
                self.fail_orders -= 1
                return httpx.Response(503, json={"message": "Service unavailable"})
            body = json.loads(request.content)
            self._next_id += 1
            order = {
                "id": self._next_id,
                "status": self.order_status,
                "order_id": body["order_id"],
                "price_amount": body["price_amount"],
                "price_currency": body["price_currency"],
                "receive_currency": body["receive_currency"],
                "payment_url": f"https://pay.coingate.test/invoice/{self._next_id}",
                "token": f"token-{self._next_id}",
                "is_refundable": False,
            }
            self.orders[str(self._next_id)] = order
            return httpx.Response(200, json=order)

        if request.method == "POST" and path.endswith("/payouts"):
            if self.fail_payouts:
                self.fail_payouts -= 1
                return httpx.Response(422, json={"message": "Insufficient balance"})
            body = json.loads(request.content)
            self._next_id += 1
            payout = {
                "id": self._next_id,
                "status": self.payout_status,
                "external_id": body["external_id"],
                "amount": body["amount"],
                "currency": body["currency"],
                "actions_required": [],
                "fees": [],
            }
            self.payouts[str(self._next_id)] = payout
            return httpx.Response(200, json=payout)

        if request.method == "GET" and "/orders/" in path:
            order = self.orders.get(path.rsplit("/", 1)[-1])
            if order:
                return httpx.Response(200, json=order)

        if request.method == "GET" and "/rates/merchant/" in path:
            return httpx.Response(200, text=self.rate)

        return httpx.Response(404, json={"message": "Not found"})


class RecordingMailService(MailService):
    def __init__(self):
        super().__init__(hostname="smtp.test", port=25, username="", password="", sender="noreply@test")
        self.sent: list[tuple[MailTemplate, str]] = []
        self.fail = False

    async def send(self, template: MailTemplate, recipient: str) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP server unavailable")
        self.sent.append((template, recipient))

    def subjects_for(self, recipient: str) -> list[str]:
        return [template.subject for template, to in self.sent if to == recipient]


async def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02):
    """Poll an async predicate until it holds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if await predicate():
            return
        await asyncio.sleep(interval)
    raise AssertionError("Condition not met in time")


async def expire(auction: Auction, services: Services):
    """Move an auction's end time into the past without letting its timer fire"""
    services.scheduler.cancel(auction.id)
    auction.end_time = utcnow() - timedelta(seconds=1)
    await Auction.filter(id=auction.id).update(end_time=auction.end_time)


@pytest.fixture(autouse=True)
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules=TORTOISE_MODULES,
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    init_cache("aiocache.SimpleMemoryCache")
    await get_cache().clear()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def coingate() -> FakeCoinGate:
    return FakeCoinGate()


@pytest.fixture
def mail() -> RecordingMailService:
    return RecordingMailService()


@pytest.fixture
async def services(coingate: FakeCoinGate, mail: RecordingMailService) -> AsyncGenerator[Services, None]:
    gateway = CoinGateClient(
        api_url="https://coingate.test/api/v2",
        api_key="test",
        transport=httpx.MockTransport(coingate.handler),
    )
    services = build_services(
        gateway=gateway,
        mail=mail,
        scheduler=AuctionScheduler(max_attempts=3, backoff_seconds=0.01),
    )
    yield services
    await services.shutdown()


@pytest.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    from mspark.main import app

    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def merchant() -> User:
    return await User.create(email="merchant@example.com", username="gemhouse", role=UserRole.merchant)


@pytest.fixture
async def other_merchant() -> User:
    return await User.create(email="rival@example.com", username="rivalgems", role=UserRole.merchant)


@pytest.fixture
async def bidder_a() -> User:
    return await User.create(email="alice@example.com", username="alice", role=UserRole.bidder)


@pytest.fixture
async def bidder_b() -> User:
    return await User.create(email="bob@example.com", username="bob", role=UserRole.bidder)


@pytest.fixture
async def admin() -> User:
    return await User.create(email="admin@example.com", username="admin", role=UserRole.admin)


@pytest.fixture
async def gem(merchant: User) -> Gem:
    return await Gem.create(
        name="Ceylon Sapphire",
        type="sapphire",
        color="blue",
        images=["uploads/sapphire.jpg"],
        price=Decimal("120.00"),
        status=GemStatus.verified,
        merchant=merchant,
    )


@pytest.fixture
async def auction(services: Services, merchant: User, gem: Gem) -> Auction:
    return await services.auctions.create_auction(
        merchant=merchant,
        gem_id=gem.id,
        price_start=Decimal("100.00"),
        end_time=utcnow() + timedelta(hours=1),
    )


@pytest.fixture
async def wallet(merchant: User) -> Wallet:
    return await Wallet.create(
        user=merchant,
        status=WalletStatus.active,
        platform_title="CoinGate",
        currency_title="Tether",
        currency_symbol="USDT",
        crypto_address="TQ9hx2VrXq8ysd5X6bHqQ1Wv3p9Yf1Jt4m",
        gateway_payout_setting_id="ps-001",
    )
