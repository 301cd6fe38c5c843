from uuid import UUID
from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, field_serializer

from mspark.enums.payment_type import PaymentType
from mspark.enums.payment_status import PaymentStatus


class AuctionPaymentRequest(BaseModel):
    """Body of the admin recreate-order and send endpoints"""
    auction_id: UUID


class PaymentResponse(BaseModel):
    """Schema for payment response"""
    id: UUID
    auction_id: Optional[UUID]
    bidder_id: Optional[UUID]
    merchant_id: Optional[UUID]
    amount: Decimal
    price_currency: str
    receive_currency: str
    description: str
    payment_type: PaymentType
    payment_status: PaymentStatus
    gateway_id: Optional[str]
    payment_link: Optional[str]
    transaction_date: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("amount")
    def serialize_amount(self, v: Decimal, _info):
        return str(v)
