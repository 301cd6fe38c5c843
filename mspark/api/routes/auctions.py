from fastapi import APIRouter, Depends, status
from uuid import UUID

from mspark.models.user import User, UserRole
from mspark.api.dependencies import get_current_active_user, get_services, require_roles
from mspark.schemas.auction import (
    AuctionCreate,
    AuctionExtend,
    AuctionReactivate,
    AuctionResponse,
    AuctionDetailResponse,
    BidCreate,
    BidResponse,
    BidPlacedResponse,
)
from mspark.services.container import Services

router = APIRouter()


@router.post("/", response_model=AuctionResponse, status_code=status.HTTP_201_CREATED)
async def create_auction(
    data: AuctionCreate,
    current_user: User = Depends(require_roles(UserRole.merchant)),
    services: Services = Depends(get_services),
):
    """Put one of the merchant's gems up for auction"""
    return await services.auctions.create_auction(
        merchant=current_user,
        gem_id=data.gem_id,
        price_start=data.price_start,
        end_time=data.end_time,
        start_time=data.start_time,
    )


@router.get("/{auction_id}", response_model=AuctionDetailResponse)
async def get_auction(auction_id: UUID, services: Services = Depends(get_services)):
    auction = await services.auctions.get_auction(auction_id)
    bids = await services.auctions.get_bids(auction_id)
    return AuctionDetailResponse.from_auction(auction, bids)


@router.post("/{auction_id}/bid", response_model=BidPlacedResponse, status_code=status.HTTP_201_CREATED)
async def place_bid(
    auction_id: UUID,
    data: BidCreate,
    current_user: User = Depends(require_roles(UserRole.bidder, UserRole.merchant)),
    services: Services = Depends(get_services),
):
    """Place a bid; merchants reach the service so bidding on their own auction is reported as forbidden"""
    bid, auction = await services.bids.place_bid(auction_id, current_user, data.amount)
    return BidPlacedResponse(
        current_price=auction.current_price,
        bid=BidResponse.model_validate(bid),
        data=AuctionResponse.model_validate(auction),
    )


@router.put("/{auction_id}/cancel", response_model=AuctionResponse)
async def cancel_auction(
    auction_id: UUID,
    current_user: User = Depends(get_current_active_user),
    services: Services = Depends(get_services),
):
    return await services.auctions.cancel_auction(auction_id, current_user)


@router.put("/{auction_id}/active", response_model=AuctionResponse)
async def reactivate_auction(
    auction_id: UUID,
    data: AuctionReactivate = None,
    current_user: User = Depends(get_current_active_user),
    services: Services = Depends(get_services),
):
    return await services.auctions.reactivate_auction(
        auction_id, current_user, end_time=data.end_time if data else None
    )


@router.put("/{auction_id}/extend", response_model=AuctionResponse)
async def extend_auction(
    auction_id: UUID,
    data: AuctionExtend,
    current_user: User = Depends(get_current_active_user),
    services: Services = Depends(get_services),
):
    return await services.auctions.extend_auction(auction_id, current_user, data.end_time)


@router.put("/{auction_id}/complete", response_model=AuctionResponse)
async def complete_auction(
    auction_id: UUID,
    current_user: User = Depends(get_current_active_user),
    services: Services = Depends(get_services),
):
    return await services.auctions.complete_auction(auction_id, current_user)


@router.delete("/{auction_id}")
async def delete_auction(
    auction_id: UUID,
    current_user: User = Depends(get_current_active_user),
    services: Services = Depends(get_services),
):
    await services.auctions.delete_auction(auction_id, current_user)
    return {"success": True, "message": "Auction deleted successfully"}
