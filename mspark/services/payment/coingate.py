from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from loguru import logger

from mspark.core.config import settings
from mspark.core.exceptions import UpstreamFailureError
from mspark.schemas.gateway import GatewayOrder, GatewayPayout, OrderRequest, PayoutRequest


class CoinGateClient:
    """
    Thin async client for the parts of the CoinGate v2 API settlement needs.

    Every failure (timeout, transport error, non-2xx answer, unreadable body)
    surfaces as UpstreamFailureError so callers can roll back and retry.
    """

    def __init__(
        self,
        api_url: str = None,
        api_key: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=api_url or settings.COINGATE_API_URL,
            headers={
                "Authorization": f"Token {api_key or settings.COINGATE_API_KEY}",
                "Accept": "application/json",
            },
            timeout=timeout or settings.COINGATE_TIMEOUT,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            logger.warning(f"CoinGate {method} {path} timed out: {e}")
            raise UpstreamFailureError(f"Payment gateway timed out on {path}") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"CoinGate {method} {path} failed with {e.response.status_code}: {e.response.text}")
            raise UpstreamFailureError(f"Payment gateway rejected {path} ({e.response.status_code})") from e
        except httpx.RequestError as e:
            logger.error(f"CoinGate {method} {path} request error: {e}")
            raise UpstreamFailureError(f"Payment gateway unreachable on {path}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFailureError("Payment gateway returned an unreadable body") from e

    async def create_order(self, order: OrderRequest) -> GatewayOrder:
        response = await self._request("POST", "/orders", json=order.model_dump(exclude_none=True))
        created = GatewayOrder.model_validate(self._json(response))
        logger.info(f"CoinGate order {created.id} created for {order.order_id} ({created.status})")
        return created

    async def get_order(self, order_id: str) -> GatewayOrder:
        response = await self._request("GET", f"/orders/{order_id}")
        return GatewayOrder.model_validate(self._json(response))

    async def create_payout(self, payout: PayoutRequest) -> GatewayPayout:
        response = await self._request("POST", "/payouts", json=payout.model_dump())
        created = GatewayPayout.model_validate(self._json(response))
        logger.info(f"CoinGate payout {created.id} created for {payout.external_id} ({created.status})")
        return created

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        response = await self._request("GET", f"/rates/merchant/{from_currency}/{to_currency}")
        try:
            rate = Decimal(response.text.strip().strip('"'))
        except InvalidOperation as e:
            raise UpstreamFailureError(f"Payment gateway returned an invalid rate: {response.text!r}") from e
        if rate <= 0:
            raise UpstreamFailureError(f"No exchange rate for {from_currency}/{to_currency}")
        return rate
