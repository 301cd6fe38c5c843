from decimal import Decimal
from loguru import logger

from mspark.core.cache import get_cache
from mspark.core.config import settings
from mspark.services.payment.coingate import CoinGateClient


class ExchangeRateService:
    """Gateway exchange rates, cached for at most an hour"""

    def __init__(self, gateway: CoinGateClient, ttl: int = None):
        self._gateway = gateway
        self.ttl = min(ttl or settings.EXCHANGE_RATE_TTL, 3600)

    @staticmethod
    def cache_key(from_currency: str, to_currency: str) -> str:
        return f"rate:{from_currency.upper()}:{to_currency.upper()}"

    async def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return Decimal("1")

        cache = get_cache()
        key = self.cache_key(from_currency, to_currency)
        cached = await cache.get(key)
        if cached:
            return Decimal(cached)

        rate = await self._gateway.get_exchange_rate(from_currency.upper(), to_currency.upper())
        await cache.set(key, str(rate), ttl=self.ttl)
        logger.debug(f"Cached rate {from_currency}/{to_currency} = {rate} for {self.ttl}s")
        return rate

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        rate = await self.get_rate(from_currency, to_currency)
        return (amount * rate).quantize(Decimal("0.00000001"))
