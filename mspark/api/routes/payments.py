from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ValidationError
from typing import Type, TypeVar
from uuid import UUID
from loguru import logger

from mspark.models import Payment
from mspark.models.user import User
from mspark.api.dependencies import admin_required, get_current_active_user, get_services
from mspark.schemas.gateway import OrderCallback, PayoutCallback
from mspark.schemas.payment import AuctionPaymentRequest, PaymentResponse
from mspark.services.container import Services

router = APIRouter()
send_router = APIRouter()

CallbackT = TypeVar("CallbackT", bound=BaseModel)


async def read_callback(request: Request, schema: Type[CallbackT]) -> CallbackT:
    """CoinGate posts callbacks form-encoded; JSON is accepted as well"""
    if request.headers.get("content-type", "").startswith("application/json"):
        payload = await request.json()
    else:
        payload = dict(await request.form())
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Malformed gateway callback: {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors())


@router.post("/callback")
async def order_callback(request: Request, services: Services = Depends(get_services)):
    """Order status webhook"""
    callback = await read_callback(request, OrderCallback)
    payment = await services.settlement.handle_order_callback(callback)
    return {"success": True, "status": payment.payment_status}


@router.post("/recreate-order", response_model=PaymentResponse)
async def recreate_order(
    data: AuctionPaymentRequest,
    current_user: User = Depends(admin_required),
    services: Services = Depends(get_services),
):
    """Open a new gateway order for an expired, canceled or invalid one"""
    return await services.settlement.recreate_order(data.auction_id)


@router.post("/send", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_send(
    data: AuctionPaymentRequest,
    current_user: User = Depends(admin_required),
    services: Services = Depends(get_services),
):
    """Pay the merchant out for a paid auction"""
    return await services.settlement.create_send(data.auction_id)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: UUID, current_user: User = Depends(get_current_active_user)):
    payment = await Payment.get_or_none(id=payment_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    if not current_user.is_admin and current_user.id not in (payment.bidder_id, payment.merchant_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return payment


@send_router.post("/callback")
async def payout_callback(request: Request, services: Services = Depends(get_services)):
    """Payout status webhook"""
    callback = await read_callback(request, PayoutCallback)
    payment = await services.settlement.handle_payout_callback(callback)
    return {"success": True, "status": payment.payment_status}
