from uuid import UUID
from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_serializer

from mspark.enums.auction_status import AuctionStatus


class AuctionCreate(BaseModel):
    """Schema for creating an auction"""
    gem_id: UUID
    price_start: Decimal = Field(..., gt=0, decimal_places=2, description="Starting price, must be positive")
    end_time: datetime
    start_time: Optional[datetime] = None


class AuctionExtend(BaseModel):
    end_time: datetime


class AuctionReactivate(BaseModel):
    end_time: Optional[datetime] = None


class BidCreate(BaseModel):
    """Schema for placing a bid"""
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Bid amount, max 2 decimal places")


class BidResponse(BaseModel):
    id: UUID
    auction_id: UUID
    bidder_id: UUID
    amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("amount")
    def serialize_amount(self, v: Decimal, _info):
        return float(v)


class AuctionResponse(BaseModel):
    """Schema for auction response"""
    id: UUID
    gem_id: UUID
    merchant_id: UUID
    highest_bidder_id: Optional[UUID]
    price_start: Decimal
    current_price: Decimal
    start_time: datetime
    end_time: datetime
    status: AuctionStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("price_start", "current_price")
    def serialize_decimal(self, v: Decimal, _info):
        return float(v)


class AuctionDetailResponse(AuctionResponse):
    bids: list[BidResponse] = []

    @classmethod
    def from_auction(cls, auction, bids) -> "AuctionDetailResponse":
        data = {name: getattr(auction, name) for name in AuctionResponse.model_fields}
        return cls(**data, bids=[BidResponse.model_validate(bid) for bid in bids])


class BidPlacedResponse(BaseModel):
    success: bool = True
    message: str = "Bid placed successfully"
    current_price: Decimal
    bid: BidResponse
    data: AuctionResponse

    @field_serializer("current_price")
    def serialize_decimal(self, v: Decimal, _info):
        return float(v)
