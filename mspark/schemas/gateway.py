from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, field_validator


class OrderRequest(BaseModel):
    """Body of CoinGate POST /orders"""
    order_id: str
    price_amount: str
    price_currency: str
    receive_currency: str
    title: str
    description: str
    callback_url: str
    success_url: str
    cancel_url: str
    purchaser_email: Optional[str] = None


class GatewayOrder(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    payment_url: Optional[str] = None
    price_currency: Optional[str] = None
    receive_currency: Optional[str] = None
    token: Optional[str] = None
    order_id: Optional[str] = None
    is_refundable: Optional[bool] = None

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any):
        return str(v) if v is not None else None


class PayoutRequest(BaseModel):
    """Body of CoinGate POST /payouts"""
    external_id: str
    beneficiary_payout_setting_id: str
    amount: str
    currency: str
    purpose: str
    callback_url: str


class GatewayPayout(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    actions_required: Optional[Any] = None
    fees: Optional[Any] = None
    external_id: Optional[str] = None

    @field_validator("id", "external_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any):
        return str(v) if v is not None else None


class OrderCallback(BaseModel):
    """Order status webhook sent by CoinGate to /payments/callback"""
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    token: str
    order_id: Optional[str] = None
    is_refundable: Optional[bool] = None
    fees: Optional[list] = None
    paid_at: Optional[str] = None
    pay_amount: Optional[Union[str, float]] = None
    pay_currency: Optional[str] = None
    receive_amount: Optional[Union[str, float]] = None

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any):
        return str(v) if v is not None else None


class PayoutCallback(BaseModel):
    """Payout status webhook sent by CoinGate to /send/callback"""
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    external_id: Optional[str] = None

    @field_validator("id", "external_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any):
        return str(v) if v is not None else None
